from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.errors import ValidationError

RUN_MODES = ("single", "multiple", "scheduled")
SCRAPING_MODES = ("basic", "thorough", "semantic")
SELECTOR_TYPES = ("css", "xpath", "auto")
OUTPUT_FORMATS = ("json", "html", "text", "structured")
CONFIG_STATUSES = ("pending", "processing", "completed", "failed", "retrying", "queued")
RESULT_STATUSES = ("success", "partial", "failed", "warning")
JOB_STATUSES = ("queued", "processing", "completed", "failed")
PRIORITIES = ("high", "medium", "low")
FREQUENCIES = ("daily", "weekly", "monthly")

# Ids double as file names in the file store.
_ID_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$")
_ITEM_ID_RE = re.compile(r"^item_(\d+)$")


# ── helpers ──────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    """ISO-8601 in UTC with microseconds, so strings sort like instants."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValidationError(f"Timestamp out of range: {value!r}") from exc


def validate_id(value: Any, what: str = "id") -> str:
    if not isinstance(value, str) or not _ID_RE.match(value):
        raise ValidationError(f"Invalid {what}: {value!r}")
    return value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _require_dict(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{what} must be an object")
    return value


def _get_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return copy.deepcopy(value)


def _get_dict(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    return copy.deepcopy(_require_dict(value, key))


def _dump_flat(obj: Any) -> dict[str, Any]:
    return {_camel(f.name): copy.deepcopy(getattr(obj, f.name)) for f in fields(obj)}


def _load_flat(cls: type, data: Any, what: str) -> Any:
    data = _require_dict(data, what)
    kwargs = {}
    for f in fields(cls):
        value = data.get(_camel(f.name))
        if value is not None:
            kwargs[f.name] = copy.deepcopy(value)
    return cls(**kwargs)


# ── type checks ──────────────────────────────────────────────────────

_NUMBER = (int, float)


def _check_type(
    value: Any, expected: type | tuple[type, ...], what: str, *, optional: bool = False
) -> None:
    if value is None and optional:
        return
    expected = expected if isinstance(expected, tuple) else (expected,)
    # bool is an int subclass; only accept it where bool is asked for
    if (isinstance(value, bool) and bool not in expected) or not isinstance(value, expected):
        names = " or ".join(t.__name__ for t in expected)
        raise ValidationError(f"{what} must be {names}; got {value!r}")


def _check_list(
    value: Any, item_type: type | tuple[type, ...], what: str, *, optional: bool = False
) -> None:
    if value is None and optional:
        return
    _check_type(value, list, what)
    for i, item in enumerate(value):
        _check_type(item, item_type, f"{what}[{i}]")


def _check_str_map(value: Any, what: str, *, optional: bool = False) -> None:
    if value is None and optional:
        return
    _check_type(value, dict, what)
    for key, item in value.items():
        _check_type(key, str, f"{what} key")
        _check_type(item, str, f"{what}[{key!r}]")


# ── configuration ────────────────────────────────────────────────────


@dataclass
class ScrapingOptions:
    handle_dynamic_content: bool = True
    follow_pagination: bool = False
    extract_images: bool = True
    deduplicate_results: bool = True
    max_pages: int = 5
    skip_headers_footers: bool = False
    skip_images_media: bool = False
    stealth_mode: bool = True
    respect_robots_txt: bool = True
    rate_limit_delay: int = 1000  # ms
    proxy_url: str | None = None
    user_agent: str | None = None
    cookies: dict[str, str] | None = None
    headers: dict[str, str] | None = None
    timeout: int | None = None  # ms
    retry_delay: int | None = None  # ms

    def to_dict(self) -> dict[str, Any]:
        return _dump_flat(self)

    @classmethod
    def from_dict(cls, data: Any) -> ScrapingOptions:
        return _load_flat(cls, data, "options")

    def validate(self) -> None:
        for name in (
            "handle_dynamic_content",
            "follow_pagination",
            "extract_images",
            "deduplicate_results",
            "skip_headers_footers",
            "skip_images_media",
            "stealth_mode",
            "respect_robots_txt",
        ):
            _check_type(getattr(self, name), bool, f"options.{_camel(name)}")
        _check_type(self.max_pages, int, "options.maxPages")
        _check_type(self.rate_limit_delay, int, "options.rateLimitDelay")
        _check_type(self.timeout, int, "options.timeout", optional=True)
        _check_type(self.retry_delay, int, "options.retryDelay", optional=True)
        _check_type(self.proxy_url, str, "options.proxyUrl", optional=True)
        _check_type(self.user_agent, str, "options.userAgent", optional=True)
        _check_str_map(self.cookies, "options.cookies", optional=True)
        _check_str_map(self.headers, "options.headers", optional=True)
        if self.max_pages < 1 or self.rate_limit_delay < 0:
            raise ValidationError("options.maxPages must be >= 1 and rateLimitDelay >= 0")
        if (self.timeout is not None and self.timeout <= 0) or (
            self.retry_delay is not None and self.retry_delay < 0
        ):
            raise ValidationError("options.timeout must be > 0 and retryDelay >= 0")


@dataclass
class Schedule:
    frequency: str = "daily"
    time: str = "00:00"
    start_date: str | None = None
    end_date: str | None = None
    days_of_week: list[int] | None = None
    timezone: str | None = None
    enabled: bool = True
    last_run: str | None = None
    next_run: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _dump_flat(self)

    @classmethod
    def from_dict(cls, data: Any) -> Schedule:
        return _load_flat(cls, data, "schedule")

    def validate(self) -> None:
        _check_choice(self.frequency, FREQUENCIES, "schedule.frequency")
        _check_type(self.time, str, "schedule.time")
        _check_type(self.enabled, bool, "schedule.enabled")
        for name in ("start_date", "end_date", "timezone", "last_run", "next_run"):
            _check_type(getattr(self, name), str, f"schedule.{_camel(name)}", optional=True)
        _check_list(self.days_of_week, int, "schedule.daysOfWeek", optional=True)
        if self.days_of_week and not all(0 <= d <= 6 for d in self.days_of_week):
            raise ValidationError("schedule.daysOfWeek entries must be 0-6")


@dataclass
class ScrapingConfig:
    """A saved scraping configuration.

    ``metadata`` is the open-ended extension field; every other attribute
    has a fixed meaning. The job queue keeps run statistics in it.
    """

    id: str | None = None
    name: str = ""
    url: str = ""
    urls: list[str] = field(default_factory=list)
    mode: str = "single"
    scraping_mode: str = "basic"
    selector: str = ""
    selector_type: str = "auto"
    categories: list[str] = field(default_factory=list)
    options: ScrapingOptions = field(default_factory=ScrapingOptions)
    output_format: str = "json"
    schedule: Schedule | None = None
    priority: str | None = None
    batch_id: str | None = None
    status: str = "pending"
    progress: int | None = None
    retry_count: int = 0
    max_retries: int = 3
    tags: list[str] = field(default_factory=list)
    owner: str | None = None
    notes: str | None = None
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def target_urls(self) -> list[str]:
        if self.mode == "multiple" and self.urls:
            return list(self.urls)
        return [self.url]

    def validate(self) -> None:
        if self.id is not None:
            validate_id(self.id, "configuration id")
        _check_type(self.url, str, "url")
        if not isinstance(self.urls, list) or not all(
            isinstance(u, str) and u for u in self.urls
        ):
            raise ValidationError("urls must be a list of non-empty strings")
        if not self.url and not (self.mode == "multiple" and self.urls):
            raise ValidationError("Invalid scraping configuration: url is required")
        _check_type(self.name, str, "name")
        _check_type(self.selector, str, "selector")
        for name in ("batch_id", "owner", "notes", "version"):
            _check_type(getattr(self, name), str, _camel(name), optional=True)
        _check_type(self.progress, int, "progress", optional=True)
        _check_type(self.retry_count, int, "retryCount")
        _check_type(self.max_retries, int, "maxRetries")
        if self.retry_count < 0 or self.max_retries < 0:
            raise ValidationError("retryCount and maxRetries must be >= 0")
        _check_list(self.tags, str, "tags")
        _check_choice(self.mode, RUN_MODES, "mode")
        _check_choice(self.scraping_mode, SCRAPING_MODES, "scrapingMode")
        _check_choice(self.selector_type, SELECTOR_TYPES, "selectorType")
        _check_choice(self.output_format, OUTPUT_FORMATS, "outputFormat")
        _check_choice(self.status, CONFIG_STATUSES, "status")
        if self.priority is not None:
            _check_choice(self.priority, PRIORITIES, "priority")
        if not isinstance(self.categories, list) or not all(
            isinstance(c, str) and c for c in self.categories
        ):
            raise ValidationError("categories must be a list of non-empty names")
        if self.schedule is not None:
            self.schedule.validate()
        self.options.validate()
        if not isinstance(self.metadata, dict):
            raise ValidationError("metadata must be an object")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "urls": list(self.urls),
            "mode": self.mode,
            "scrapingMode": self.scraping_mode,
            "selector": self.selector,
            "selectorType": self.selector_type,
            "categories": list(self.categories),
            "options": self.options.to_dict(),
            "outputFormat": self.output_format,
            "schedule": self.schedule.to_dict() if self.schedule else None,
            "priority": self.priority,
            "batchId": self.batch_id,
            "status": self.status,
            "progress": self.progress,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "tags": list(self.tags),
            "owner": self.owner,
            "notes": self.notes,
            "version": self.version,
            "metadata": copy.deepcopy(self.metadata),
            "createdAt": format_ts(self.created_at),
            "updatedAt": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> ScrapingConfig:
        data = _require_dict(data, "configuration")
        options = data.get("options")
        schedule = data.get("schedule")
        return cls(
            id=data.get("id") or None,
            name=data.get("name") or "",
            url=data.get("url") or "",
            urls=_get_list(data, "urls"),
            mode=data.get("mode") or "single",
            scraping_mode=data.get("scrapingMode") or "basic",
            selector=data.get("selector") or "",
            selector_type=data.get("selectorType") or "auto",
            categories=_get_list(data, "categories"),
            options=ScrapingOptions.from_dict(options) if options is not None else ScrapingOptions(),
            output_format=data.get("outputFormat") or "json",
            # Older rows store an empty object for "no schedule".
            schedule=Schedule.from_dict(schedule) if schedule else None,
            priority=data.get("priority"),
            batch_id=data.get("batchId"),
            status=data.get("status") or "pending",
            progress=data.get("progress"),
            retry_count=data.get("retryCount") or 0,
            max_retries=data.get("maxRetries") if data.get("maxRetries") is not None else 3,
            tags=_get_list(data, "tags"),
            owner=data.get("owner"),
            notes=data.get("notes"),
            version=data.get("version"),
            metadata=_get_dict(data, "metadata"),
            created_at=parse_ts(data.get("createdAt")),
            updated_at=parse_ts(data.get("updatedAt")),
        )


# ── result ───────────────────────────────────────────────────────────


@dataclass
class CategoryItem:
    id: str
    title: str
    content: str
    source: str | None = None
    confidence: float | None = None
    verified: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _dump_flat(self)

    @classmethod
    def from_dict(cls, data: Any) -> CategoryItem:
        data = _require_dict(data, "category item")
        for key in ("id", "title", "content"):
            if not isinstance(data.get(key), str):
                raise ValidationError(f"category item {key} must be a string")
        return _load_flat(cls, data, "category item")


@dataclass
class CategoryData:
    items: list[CategoryItem] = field(default_factory=list)
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "description": self.description,
            "metadata": copy.deepcopy(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Any) -> CategoryData:
        data = _require_dict(data, "category")
        return cls(
            items=[CategoryItem.from_dict(item) for item in _get_list(data, "items")],
            description=data.get("description") or "",
            metadata=_get_dict(data, "metadata"),
        )


@dataclass
class RawContent:
    json: str | None = None
    html: str | None = None
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _dump_flat(self)

    @classmethod
    def from_dict(cls, data: Any) -> RawContent:
        return _load_flat(cls, data, "raw")


_RESULT_METADATA_KEYS = {
    "processingTime": "processing_time",
    "pageCount": "page_count",
    "elementCount": "element_count",
    "errors": "errors",
    "warnings": "warnings",
    "version": "version",
}


@dataclass
class ResultMetadata:
    """Known result metadata; anything else is kept in ``extra``."""

    processing_time: float | None = None  # ms
    page_count: int | None = None
    element_count: int | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    version: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = copy.deepcopy(self.extra)
        for key, attr in _RESULT_METADATA_KEYS.items():
            data[key] = copy.deepcopy(getattr(self, attr))
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ResultMetadata:
        data = _require_dict(data, "metadata")
        known = {}
        for key, attr in _RESULT_METADATA_KEYS.items():
            if data.get(key) is not None:
                known[attr] = copy.deepcopy(data[key])
        extra = {k: copy.deepcopy(v) for k, v in data.items() if k not in _RESULT_METADATA_KEYS}
        return cls(extra=extra, **known)

    def validate(self) -> None:
        _check_type(self.processing_time, _NUMBER, "metadata.processingTime", optional=True)
        _check_type(self.page_count, int, "metadata.pageCount", optional=True)
        _check_type(self.element_count, int, "metadata.elementCount", optional=True)
        _check_list(self.errors, str, "metadata.errors")
        _check_list(self.warnings, str, "metadata.warnings")
        _check_type(self.version, str, "metadata.version", optional=True)
        _check_type(self.extra, dict, "metadata")


@dataclass
class ScrapingResult:
    config_id: str
    url: str
    id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    status: str = "success"
    categories: dict[str, CategoryData] = field(default_factory=dict)
    raw: RawContent | None = None
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def add_item(
        self,
        category: str,
        title: str,
        content: str,
        *,
        source: str | None = None,
        confidence: float | None = None,
        verified: bool = False,
    ) -> CategoryItem:
        """Append an item under *category* with the next free ``item_<n>`` id."""
        if not category:
            raise ValidationError("category name must not be empty")
        numbers = [
            int(m.group(1))
            for data in self.categories.values()
            for item in data.items
            if (m := _ITEM_ID_RE.match(item.id))
        ]
        item = CategoryItem(
            id=f"item_{max(numbers, default=0) + 1}",
            title=title,
            content=content,
            source=source,
            confidence=confidence,
            verified=verified,
        )
        self.categories.setdefault(category, CategoryData()).items.append(item)
        return item

    def validate(self) -> None:
        if self.id is not None:
            validate_id(self.id, "result id")
        if not isinstance(self.config_id, str) or not self.config_id:
            raise ValidationError("Invalid scraping result: configId is required")
        if not isinstance(self.url, str) or not self.url:
            raise ValidationError("Invalid scraping result: url is required")
        if not isinstance(self.timestamp, datetime):
            raise ValidationError("Invalid scraping result: timestamp is required")
        _check_choice(self.status, RESULT_STATUSES, "status")
        _check_type(self.categories, dict, "categories")
        seen: set[str] = set()
        for name, data in self.categories.items():
            if not isinstance(name, str) or not name:
                raise ValidationError("category names must be non-empty strings")
            _check_type(data.description, str, f"categories[{name!r}].description")
            _check_type(data.metadata, dict, f"categories[{name!r}].metadata")
            for item in data.items:
                if not isinstance(item.id, str) or not item.id or item.id in seen:
                    raise ValidationError(f"duplicate or empty item id {item.id!r}")
                seen.add(item.id)
                _check_type(item.title, str, f"item {item.id} title")
                _check_type(item.content, str, f"item {item.id} content")
                _check_type(item.source, str, f"item {item.id} source", optional=True)
                _check_type(item.confidence, _NUMBER, f"item {item.id} confidence", optional=True)
                _check_type(item.verified, bool, f"item {item.id} verified")
                _check_type(item.metadata, dict, f"item {item.id} metadata")
        if self.raw is not None:
            for name in ("json", "html", "text"):
                _check_type(getattr(self.raw, name), str, f"raw.{name}", optional=True)
        self.metadata.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "configId": self.config_id,
            "url": self.url,
            "timestamp": format_ts(self.timestamp),
            "status": self.status,
            "categories": {name: data.to_dict() for name, data in self.categories.items()},
            "raw": self.raw.to_dict() if self.raw else None,
            "metadata": self.metadata.to_dict(),
            "createdAt": format_ts(self.created_at),
            "updatedAt": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> ScrapingResult:
        data = _require_dict(data, "result")
        raw = data.get("raw")
        metadata = data.get("metadata")
        return cls(
            id=data.get("id") or None,
            config_id=data.get("configId") or "",
            url=data.get("url") or "",
            timestamp=parse_ts(data.get("timestamp")) or utcnow(),
            status=data.get("status") or "success",
            categories={
                name: CategoryData.from_dict(value)
                for name, value in _get_dict(data, "categories").items()
            },
            raw=RawContent.from_dict(raw) if raw else None,
            metadata=ResultMetadata.from_dict(metadata) if metadata else ResultMetadata(),
            created_at=parse_ts(data.get("createdAt")),
            updated_at=parse_ts(data.get("updatedAt")),
        )


def _check_choice(value: Any, choices: tuple[str, ...], what: str) -> None:
    if value not in choices:
        raise ValidationError(f"{what} must be one of {', '.join(choices)}; got {value!r}")


# ── record kinds ─────────────────────────────────────────────────────


class RecordKind(str, Enum):
    CONFIGURATION = "configurations"
    RESULT = "results"

    @property
    def label(self) -> str:
        return "configuration" if self is RecordKind.CONFIGURATION else "result"

    @property
    def record_type(self) -> type:
        return ScrapingConfig if self is RecordKind.CONFIGURATION else ScrapingResult

    def from_dict(self, data: Any) -> ScrapingConfig | ScrapingResult:
        return self.record_type.from_dict(data)

    def sort_key(self, record: ScrapingConfig | ScrapingResult) -> tuple[str, str]:
        """Listing order, newest first when sorted in reverse."""
        if self is RecordKind.CONFIGURATION:
            ts = record.updated_at or record.created_at
        else:
            ts = record.timestamp
        return (format_ts(ts) or "", record.id or "")


# ── jobs ─────────────────────────────────────────────────────────────


@dataclass
class Job:
    """Deferred scraping work; lives only in the in-process queue."""

    id: str
    config: ScrapingConfig
    status: str = "queued"
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result_ids: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "config": self.config.to_dict(),
            "status": self.status,
            "createdAt": format_ts(self.created_at),
            "startedAt": format_ts(self.started_at),
            "finishedAt": format_ts(self.finished_at),
            "resultIds": list(self.result_ids),
            "error": self.error,
        }
