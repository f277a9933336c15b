from __future__ import annotations

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits)) or "0"


def generate_unique_id(prefix: str | None = None) -> str:
    """Millisecond timestamp in base36, a dash, then 11 random base36 chars.

    Ids sort by creation time to the millisecond but are only unique with
    high probability.
    """
    timestamp_part = _base36(time.time_ns() // 1_000_000)
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(11))
    ident = f"{timestamp_part}-{random_part}"
    return f"{prefix}_{ident}" if prefix else ident
