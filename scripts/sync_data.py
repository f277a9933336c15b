"""Reconcile the database and the JSON file store once, then exit.

    python -m scripts.sync_data --kind configurations
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from config.settings import Settings, settings
from core.context import AppContext
from core.models import RecordKind

log = logging.getLogger(__name__)


async def run(config: Settings, kind: str) -> dict[str, int]:
    context = AppContext.from_settings(config)
    status = await context.open(start_worker=False)
    try:
        if not status["database"]:
            log.warning("Database unavailable; nothing can be reconciled against it")
        if kind == "all":
            return await context.reconciler.reconcile_all()
        record_kind = RecordKind(kind)
        return {record_kind.value: await context.reconciler.reconcile_kind(record_kind)}
    finally:
        await context.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--kind",
        choices=["all", *(k.value for k in RecordKind)],
        default="all",
        help="which records to reconcile (default: all)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    counts = asyncio.run(run(settings, args.kind))
    for name, count in counts.items():
        print(f"{name}: {count} record(s) written")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
