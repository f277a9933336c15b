"""Storage facade: relational store first, file store as fallback.

Every call tries the relational store unless its liveness flag says it is
down, and falls back to the file store on any relational failure. Callers
cannot tell which backend served them. Successful relational writes are
mirrored to the file store in the background; the reverse direction is left
to :class:`data.sync.Reconciler`.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from core.errors import StorageError, ValidationError
from core.ids import generate_unique_id
from core.models import RecordKind, ScrapingConfig, ScrapingResult, utcnow, validate_id
from data.database import Database
from data.file_store import FileStore
from data.repositories import repository_for

log = logging.getLogger(__name__)

# Failures that mean "this backend cannot serve the call right now".
BACKEND_ERRORS = (SQLAlchemyError, OSError, TimeoutError)

# How far a stored updatedAt may run ahead of this clock and still be honoured.
_MAX_CLOCK_SKEW = timedelta(seconds=1)


class Storage:
    def __init__(self, database: Database, files: FileStore) -> None:
        self.database = database
        self.files = files
        self._mirrors: dict[tuple[RecordKind, str], asyncio.Task] = {}
        self.configurations = RecordCollection(self, RecordKind.CONFIGURATION)
        self.results = RecordCollection(self, RecordKind.RESULT)

    def collection(self, kind: RecordKind) -> RecordCollection:
        return self.configurations if kind is RecordKind.CONFIGURATION else self.results

    # ── reads ────────────────────────────────────────────────────────

    async def list(
        self, kind: RecordKind, *, limit: int | None = None, offset: int = 0
    ) -> list[Any]:
        """One page from exactly one backend, newest first."""
        if limit is not None and limit < 0:
            raise ValidationError(f"Invalid limit parameter: {limit}. Must be >= 0.")
        if offset < 0:
            raise ValidationError(f"Invalid offset parameter: {offset}. Must be >= 0.")
        # limit=0 lists everything.
        limit = limit or None

        if await self.database.ensure_available():
            try:
                async with self.database.session() as session:
                    return await repository_for(kind, session).list(limit=limit, offset=offset)
            except BACKEND_ERRORS as exc:
                log.warning("Listing %s from the database failed, using files: %s", kind.value, exc)
        try:
            return await self.files.list(kind, limit=limit, offset=offset)
        except OSError as exc:
            raise StorageError(f"Could not list {kind.value} from any backend") from exc

    async def get_by_id(self, kind: RecordKind, record_id: str) -> Any | None:
        validate_id(record_id, f"{kind.label} id")
        relational_failed = False
        if await self.database.ensure_available():
            try:
                async with self.database.session() as session:
                    record = await repository_for(kind, session).get(record_id)
            except BACKEND_ERRORS as exc:
                relational_failed = True
                log.warning("Loading %s %s from the database failed, using files: %s",
                            kind.label, record_id, exc)
            else:
                if record is not None:
                    return record
        try:
            return await self.files.get(kind, record_id)
        except OSError as exc:
            if relational_failed or not self.database.available:
                raise StorageError(f"Could not load {kind.label} {record_id} from any backend") from exc
            log.warning("Reading %s %s from files failed: %s", kind.label, record_id, exc)
            return None

    # ── writes ───────────────────────────────────────────────────────

    async def upsert(self, kind: RecordKind, record: Any) -> Any:
        """Validate, stamp and save *record*; returns the stored copy."""
        record = self._prepare(kind, record)

        if await self.database.ensure_available():
            try:
                async with self.database.session() as session:
                    await repository_for(kind, session).upsert(record)
            except BACKEND_ERRORS as exc:
                log.warning("Saving %s %s to the database failed, writing to files: %s",
                            kind.label, record.id, exc)
            else:
                self._mirror(kind, copy.deepcopy(record))
                return record

        try:
            await self.files.put(kind, record)
        except OSError as exc:
            raise StorageError(f"Failed to save {kind.label} {record.id} to any storage medium") from exc
        log.debug("Saved %s %s to file storage", kind.label, record.id)
        return record

    async def delete(self, kind: RecordKind, record_id: str) -> bool:
        """Remove *record_id* from every reachable backend.

        Not transactional: a copy in a backend that is down at call time is
        left behind, and reconciliation does not propagate deletions.
        """
        validate_id(record_id, f"{kind.label} id")
        pending = self._mirrors.get((kind, record_id))
        if pending is not None:
            await asyncio.wait([pending])

        deleted = False
        relational_ok = False
        if await self.database.ensure_available():
            try:
                async with self.database.session() as session:
                    deleted = await repository_for(kind, session).delete(record_id)
                relational_ok = True
            except BACKEND_ERRORS as exc:
                log.warning("Deleting %s %s from the database failed: %s", kind.label, record_id, exc)
        if not relational_ok:
            log.info("Database unreachable; any database copy of %s %s stays behind",
                     kind.label, record_id)

        try:
            deleted = await self.files.delete(kind, record_id) or deleted
        except OSError as exc:
            if not relational_ok:
                raise StorageError(f"Failed to delete {kind.label} {record_id} from any storage medium") from exc
            log.warning("Deleting %s %s from files failed: %s", kind.label, record_id, exc)
        return deleted

    async def flush(self) -> None:
        """Wait for every in-flight mirror write."""
        while self._mirrors:
            await asyncio.wait(list(self._mirrors.values()))

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _prepare(kind: RecordKind, record: Any) -> Any:
        if not isinstance(record, kind.record_type):
            raise ValidationError(f"Expected a {kind.label} record, got {type(record).__name__}")
        record.validate()
        record = copy.deepcopy(record)

        # Server clock only. A stored updatedAt at or just past now is stepped
        # over so updates stay ordered; one further ahead is ignored.
        now = utcnow()
        previous = record.updated_at
        if previous is not None and now <= previous <= now + _MAX_CLOCK_SKEW:
            now = previous + timedelta(microseconds=1)
        if record.id is None:
            record.id = generate_unique_id()
        if record.created_at is None or record.created_at > now:
            record.created_at = now
        record.updated_at = now
        return record

    def _mirror(self, kind: RecordKind, record: Any) -> None:
        key = (kind, record.id)
        task = asyncio.create_task(self._write_mirror(kind, record, self._mirrors.get(key)))
        self._mirrors[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._mirrors.get(key) is done:
                del self._mirrors[key]

        task.add_done_callback(_forget)

    async def _write_mirror(
        self, kind: RecordKind, record: Any, previous: asyncio.Task | None
    ) -> None:
        # Mirrors of one id land in call order.
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await self.files.put(kind, record)
        except OSError as exc:
            log.warning("Mirroring %s %s to file storage failed: %s", kind.label, record.id, exc)


class RecordCollection:
    """The facade narrowed to one record kind."""

    def __init__(self, storage: Storage, kind: RecordKind) -> None:
        self._storage = storage
        self.kind = kind

    async def list(self, *, limit: int | None = None, offset: int = 0) -> list[Any]:
        return await self._storage.list(self.kind, limit=limit, offset=offset)

    async def get_by_id(self, record_id: str) -> ScrapingConfig | ScrapingResult | None:
        return await self._storage.get_by_id(self.kind, record_id)

    async def upsert(self, record: Any) -> Any:
        return await self._storage.upsert(self.kind, record)

    async def delete(self, record_id: str) -> bool:
        return await self._storage.delete(self.kind, record_id)
