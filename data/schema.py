from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timestamps are stored as ISO-8601 UTC strings (see core.models.format_ts):
# they sort correctly and round-trip without precision loss on every dialect.
TS = String(40)


class Base(DeclarativeBase):
    pass


class DBConfiguration(Base):
    __tablename__ = "scraping_configurations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    url: Mapped[str] = mapped_column(Text, default="")
    urls: Mapped[list[Any]] = mapped_column(JSON, default=list)
    mode: Mapped[str] = mapped_column(String(20))
    scraping_mode: Mapped[str] = mapped_column(String(20))
    selector: Mapped[str] = mapped_column(Text, default="")
    selector_type: Mapped[str] = mapped_column(String(20))
    categories: Mapped[list[Any]] = mapped_column(JSON, default=list)
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    output_format: Mapped[str] = mapped_column(String(20))
    schedule: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[str | None] = mapped_column(String(10), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), index=True)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    tags: Mapped[list[Any]] = mapped_column(JSON, default=list)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # "metadata" is reserved on declarative classes.
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[str | None] = mapped_column(TS, nullable=True)
    updated_at: Mapped[str | None] = mapped_column(TS, index=True, nullable=True)


class DBResult(Base):
    __tablename__ = "scraping_results"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    config_id: Mapped[str] = mapped_column(String(64), index=True)
    url: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[str] = mapped_column(TS, index=True)
    status: Mapped[str] = mapped_column(String(20))
    categories: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    raw: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[str | None] = mapped_column(TS, nullable=True)
    updated_at: Mapped[str | None] = mapped_column(TS, nullable=True)
