from __future__ import annotations

import logging
from typing import Any, ClassVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationError
from core.models import RecordKind, ScrapingConfig, ScrapingResult
from data.schema import Base, DBConfiguration, DBResult

log = logging.getLogger(__name__)


class _RecordRepository:
    """CRUD over one table; rows map to and from record dataclasses."""

    table: ClassVar[type[Base]]

    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    def _order_by(self) -> tuple[Any, ...]:
        raise NotImplementedError

    def _to_record(self, row: Any) -> Any:
        raise NotImplementedError

    def _apply(self, row: Any, record: Any) -> None:
        raise NotImplementedError

    def _decode(self, row: Any) -> Any | None:
        try:
            return self._to_record(row)
        except ValidationError as exc:
            log.error("Skipping undecodable %s row %s: %s", self.table.__tablename__, row.id, exc)
            return None

    async def list(self, *, limit: int | None = None, offset: int = 0) -> list[Any]:
        q = select(self.table).order_by(*self._order_by())
        if limit is not None:
            q = q.limit(limit)
        if offset:
            q = q.offset(offset)
        result = await self._s.execute(q)
        records = (self._decode(row) for row in result.scalars().all())
        return [r for r in records if r is not None]

    async def get(self, record_id: str) -> Any | None:
        row = await self._s.get(self.table, record_id)
        return self._decode(row) if row is not None else None

    async def upsert(self, record: Any) -> None:
        row = await self._s.get(self.table, record.id)
        if row is None:
            row = self.table(id=record.id)
            self._s.add(row)
        self._apply(row, record)

    async def delete(self, record_id: str) -> bool:
        result = await self._s.execute(delete(self.table).where(self.table.id == record_id))
        return bool(result.rowcount)

    async def load_all(self) -> dict[str, Any]:
        result = await self._s.execute(select(self.table))
        records = (self._decode(row) for row in result.scalars().all())
        return {r.id: r for r in records if r is not None}


# ── ConfigurationRepository ──────────────────────────────────────────


class ConfigurationRepository(_RecordRepository):
    table = DBConfiguration

    def _order_by(self) -> tuple[Any, ...]:
        return (DBConfiguration.updated_at.desc(), DBConfiguration.id.desc())

    def _to_record(self, row: DBConfiguration) -> ScrapingConfig:
        return ScrapingConfig.from_dict(
            {
                "id": row.id,
                "name": row.name,
                "url": row.url,
                "urls": row.urls,
                "mode": row.mode,
                "scrapingMode": row.scraping_mode,
                "selector": row.selector,
                "selectorType": row.selector_type,
                "categories": row.categories,
                "options": row.options,
                "outputFormat": row.output_format,
                "schedule": row.schedule,
                "priority": row.priority,
                "batchId": row.batch_id,
                "status": row.status,
                "progress": row.progress,
                "retryCount": row.retry_count,
                "maxRetries": row.max_retries,
                "tags": row.tags,
                "owner": row.owner,
                "notes": row.notes,
                "version": row.version,
                "metadata": row.extra,
                "createdAt": row.created_at,
                "updatedAt": row.updated_at,
            }
        )

    def _apply(self, row: DBConfiguration, config: ScrapingConfig) -> None:
        doc = config.to_dict()
        row.name = doc["name"]
        row.url = doc["url"]
        row.urls = doc["urls"]
        row.mode = doc["mode"]
        row.scraping_mode = doc["scrapingMode"]
        row.selector = doc["selector"]
        row.selector_type = doc["selectorType"]
        row.categories = doc["categories"]
        row.options = doc["options"]
        row.output_format = doc["outputFormat"]
        row.schedule = doc["schedule"]
        row.priority = doc["priority"]
        row.batch_id = doc["batchId"]
        row.status = doc["status"]
        row.progress = doc["progress"]
        row.retry_count = doc["retryCount"]
        row.max_retries = doc["maxRetries"]
        row.tags = doc["tags"]
        row.owner = doc["owner"]
        row.notes = doc["notes"]
        row.version = doc["version"]
        row.extra = doc["metadata"]
        row.created_at = doc["createdAt"]
        row.updated_at = doc["updatedAt"]


# ── ResultRepository ─────────────────────────────────────────────────


class ResultRepository(_RecordRepository):
    table = DBResult

    def _order_by(self) -> tuple[Any, ...]:
        return (DBResult.timestamp.desc(), DBResult.id.desc())

    def _to_record(self, row: DBResult) -> ScrapingResult:
        return ScrapingResult.from_dict(
            {
                "id": row.id,
                "configId": row.config_id,
                "url": row.url,
                "timestamp": row.timestamp,
                "status": row.status,
                "categories": row.categories,
                "raw": row.raw,
                "metadata": row.extra,
                "createdAt": row.created_at,
                "updatedAt": row.updated_at,
            }
        )

    def _apply(self, row: DBResult, result: ScrapingResult) -> None:
        doc = result.to_dict()
        row.config_id = doc["configId"]
        row.url = doc["url"]
        row.timestamp = doc["timestamp"]
        row.status = doc["status"]
        row.categories = doc["categories"]
        row.raw = doc["raw"]
        row.extra = doc["metadata"]
        row.created_at = doc["createdAt"]
        row.updated_at = doc["updatedAt"]


REPOSITORIES: dict[RecordKind, type[_RecordRepository]] = {
    RecordKind.CONFIGURATION: ConfigurationRepository,
    RecordKind.RESULT: ResultRepository,
}


def repository_for(kind: RecordKind, session: AsyncSession) -> _RecordRepository:
    return REPOSITORIES[kind](session)
