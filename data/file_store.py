from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from core.errors import ValidationError
from core.models import RecordKind

log = logging.getLogger(__name__)


class FileStore:
    """One JSON document per record, one directory per record kind.

    Always available. There is no locking: concurrent writers to the same
    id race and the last rename wins.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def _dir(self, kind: RecordKind) -> Path:
        return self.base_dir / kind.value

    def _path(self, kind: RecordKind, record_id: str) -> Path:
        return self._dir(kind) / f"{record_id}.json"

    async def init(self) -> None:
        await asyncio.to_thread(self._init_sync)

    def _init_sync(self) -> None:
        for kind in RecordKind:
            self._dir(kind).mkdir(parents=True, exist_ok=True)
        log.info("File storage ready at %s", self.base_dir.resolve())

    async def list(
        self, kind: RecordKind, *, limit: int | None = None, offset: int = 0
    ) -> list[Any]:
        records = sorted((await self.load_all(kind)).values(), key=kind.sort_key, reverse=True)
        end = offset + limit if limit is not None else None
        return records[offset:end]

    async def get(self, kind: RecordKind, record_id: str) -> Any | None:
        return await asyncio.to_thread(self._read, kind, self._path(kind, record_id))

    async def put(self, kind: RecordKind, record: Any) -> None:
        await asyncio.to_thread(self._write, self._path(kind, record.id), record.to_dict())

    async def delete(self, kind: RecordKind, record_id: str) -> bool:
        return await asyncio.to_thread(self._remove, self._path(kind, record_id))

    async def load_all(self, kind: RecordKind) -> dict[str, Any]:
        return await asyncio.to_thread(self._load_all_sync, kind)

    # ── blocking helpers (run in a worker thread) ────────────────────

    def _read(self, kind: RecordKind, path: Path) -> Any | None:
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            log.error("Skipping malformed %s file %s: %s", kind.label, path.name, exc)
            return None
        try:
            return kind.from_dict(data)
        except ValidationError as exc:
            log.error("Skipping undecodable %s file %s: %s", kind.label, path.name, exc)
            return None

    def _load_all_sync(self, kind: RecordKind) -> dict[str, Any]:
        directory = self._dir(kind)
        if not directory.is_dir():
            return {}
        records: dict[str, Any] = {}
        for path in directory.glob("*.json"):
            record = self._read(kind, path)
            if record is None:
                continue
            if record.id != path.stem:
                log.warning("File %s holds %s id %r; ignoring it", path.name, kind.label, record.id)
                continue
            records[record.id] = record
        return records

    @staticmethod
    def _write(path: Path, doc: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
