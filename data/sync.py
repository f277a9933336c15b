from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from core.models import RecordKind
from data.database import Database
from data.file_store import FileStore
from data.repositories import repository_for
from data.storage import BACKEND_ERRORS

log = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class Reconciler:
    """Merges both backends per record kind, most recently updated wins.

    Only creates or updates; a record missing from one side is copied, never
    deleted. A pass over already consistent backends writes nothing.
    """

    def __init__(self, database: Database, files: FileStore) -> None:
        self._database = database
        self._files = files
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def reconcile_configurations(self) -> int:
        return await self.reconcile_kind(RecordKind.CONFIGURATION)

    async def reconcile_results(self) -> int:
        return await self.reconcile_kind(RecordKind.RESULT)

    async def reconcile_all(self) -> dict[str, int]:
        return {kind.value: await self.reconcile_kind(kind) for kind in RecordKind}

    async def reconcile_kind(self, kind: RecordKind) -> int:
        """Run one pass for *kind*; returns the number of records written."""
        async with self._lock:
            return await self._reconcile(kind)

    async def _reconcile(self, kind: RecordKind) -> int:
        db_records = await self._load_relational(kind)
        file_records = await self._load_files(kind)
        if db_records is None and file_records is None:
            log.warning("Skipping %s reconciliation: no backend readable", kind.value)
            return 0

        to_db: list[Any] = []
        to_files: list[Any] = []
        for record_id in sorted(set(db_records or {}) | set(file_records or {})):
            in_db = (db_records or {}).get(record_id)
            in_files = (file_records or {}).get(record_id)
            if in_db is None:
                to_db.append(in_files)
            elif in_files is None:
                to_files.append(in_db)
            else:
                db_ts = in_db.updated_at or _EPOCH
                file_ts = in_files.updated_at or _EPOCH
                if file_ts > db_ts:
                    to_db.append(in_files)
                elif db_ts > file_ts:
                    to_files.append(in_db)

        written = 0
        if db_records is not None:
            written += await self._write_relational(kind, to_db)
        elif to_db:
            log.info("Database unavailable; %d %s wait for the next pass", len(to_db), kind.value)
        if file_records is not None:
            written += await self._write_files(kind, to_files)

        log.info(
            "Reconciled %s: %d of %d corrections written (%d for database, %d for files)",
            kind.value, written, len(to_db) + len(to_files), len(to_db), len(to_files),
        )
        return written

    async def _load_relational(self, kind: RecordKind) -> dict[str, Any] | None:
        if not await self._database.ensure_available():
            return None
        try:
            async with self._database.session() as session:
                return await repository_for(kind, session).load_all()
        except BACKEND_ERRORS as exc:
            log.warning("Could not read %s from the database: %s", kind.value, exc)
            return None

    async def _load_files(self, kind: RecordKind) -> dict[str, Any] | None:
        try:
            return await self._files.load_all(kind)
        except OSError as exc:
            log.warning("Could not read %s from files: %s", kind.value, exc)
            return None

    async def _write_relational(self, kind: RecordKind, records: list[Any]) -> int:
        written = 0
        for record in records:
            try:
                async with self._database.session() as session:
                    repo = repository_for(kind, session)
                    if _is_stale(record, await repo.get(record.id)):
                        log.debug("Database already has a newer %s %s", kind.label, record.id)
                        continue
                    await repo.upsert(record)
            except BACKEND_ERRORS as exc:
                log.warning("Could not write %s %s to the database: %s", kind.label, record.id, exc)
                continue
            written += 1
        return written

    async def _write_files(self, kind: RecordKind, records: list[Any]) -> int:
        written = 0
        for record in records:
            try:
                if _is_stale(record, await self._files.get(kind, record.id)):
                    log.debug("Files already have a newer %s %s", kind.label, record.id)
                    continue
                await self._files.put(kind, record)
            except OSError as exc:
                log.warning("Could not write %s %s to files: %s", kind.label, record.id, exc)
                continue
            written += 1
        return written


def _is_stale(record: Any, stored: Any | None) -> bool:
    """True when *stored* was updated at or after *record* (a write raced the pass)."""
    if stored is None:
        return False
    return (stored.updated_at or _EPOCH) >= (record.updated_at or _EPOCH)
