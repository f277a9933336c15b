from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.errors import ValidationError
from core.ids import generate_unique_id
from core.models import (
    RecordKind,
    ScrapingConfig,
    ScrapingResult,
    format_ts,
    parse_ts,
    validate_id,
)


def test_config_from_dict_reads_camel_case_and_defaults() -> None:
    config = ScrapingConfig.from_dict(
        {
            "url": "https://shop.test",
            "scrapingMode": "thorough",
            "selectorType": "css",
            "options": {"maxPages": 2, "rateLimitDelay": 250},
            "metadata": {"owner_team": "growth"},
        }
    )

    assert config.id is None
    assert config.mode == "single"
    assert config.scraping_mode == "thorough"
    assert config.options.max_pages == 2
    assert config.options.rate_limit_delay == 250
    assert config.options.follow_pagination is False
    assert config.metadata == {"owner_team": "growth"}
    assert config.status == "pending"
    assert config.max_retries == 3


def test_config_to_dict_uses_camel_case_keys() -> None:
    doc = ScrapingConfig(id="cfg-1", url="https://a.test", batch_id="b1").to_dict()

    assert doc["batchId"] == "b1"
    assert doc["options"]["handleDynamicContent"] is True
    assert "scraping_mode" not in doc
    assert doc["createdAt"] is None


def test_empty_schedule_object_means_no_schedule() -> None:
    config = ScrapingConfig.from_dict({"url": "https://a.test", "schedule": {}})
    assert config.schedule is None

    scheduled = ScrapingConfig.from_dict(
        {"url": "https://a.test", "schedule": {"frequency": "weekly", "daysOfWeek": [1, 3]}}
    )
    assert scheduled.schedule.frequency == "weekly"
    assert scheduled.schedule.days_of_week == [1, 3]


@pytest.mark.parametrize(
    "doc",
    [
        {},
        {"url": "https://a.test", "mode": "sometimes"},
        {"url": "https://a.test", "priority": "urgent"},
        {"url": "https://a.test", "categories": [""]},
        {"url": "https://a.test", "options": {"maxPages": 0}},
        {"url": "https://a.test", "id": "../escape"},
        {"url": 123},
        {"url": "https://a.test", "name": ["shop"]},
        {"url": "https://a.test", "retryCount": "lots"},
        {"url": "https://a.test", "maxRetries": -1},
        {"url": "https://a.test", "progress": True},
        {"url": "https://a.test", "tags": [1, 2]},
        {"url": "https://a.test", "owner": {"team": "growth"}},
        {"url": "https://a.test", "options": {"maxPages": "5"}},
        {"url": "https://a.test", "options": {"maxPages": True}},
        {"url": "https://a.test", "options": {"followPagination": "yes"}},
        {"url": "https://a.test", "options": {"headers": {"X-Token": 7}}},
        {"url": "https://a.test", "schedule": {"enabled": "true"}},
        {"url": "https://a.test", "schedule": {"daysOfWeek": [9]}},
    ],
)
def test_invalid_configs_are_rejected(doc) -> None:
    with pytest.raises(ValidationError):
        ScrapingConfig.from_dict(doc).validate()


def test_multiple_mode_targets_every_url() -> None:
    config = ScrapingConfig(mode="multiple", urls=["https://a.test", "https://b.test"])
    config.validate()
    assert config.target_urls() == ["https://a.test", "https://b.test"]
    assert ScrapingConfig(url="https://c.test").target_urls() == ["https://c.test"]


def test_from_dict_rejects_non_objects() -> None:
    with pytest.raises(ValidationError):
        ScrapingConfig.from_dict(["https://a.test"])
    with pytest.raises(ValidationError):
        ScrapingConfig.from_dict({"url": "https://a.test", "urls": "https://b.test"})


def test_add_item_numbers_items_across_categories() -> None:
    result = ScrapingResult(config_id="cfg", url="https://a.test")
    first = result.add_item("news", "A", "a")
    second = result.add_item("sports", "B", "b")
    third = result.add_item("news", "C", "c", confidence=0.5)

    assert [first.id, second.id, third.id] == ["item_1", "item_2", "item_3"]
    assert len(result.categories["news"].items) == 2
    result.validate()


def test_duplicate_item_ids_fail_validation() -> None:
    result = ScrapingResult.from_dict(
        {
            "configId": "cfg",
            "url": "https://a.test",
            "categories": {
                "news": {"items": [{"id": "item_1", "title": "A", "content": "a"}]},
                "sports": {"items": [{"id": "item_1", "title": "B", "content": "b"}]},
            },
        }
    )
    with pytest.raises(ValidationError):
        result.validate()


def test_result_metadata_keeps_unknown_keys() -> None:
    result = ScrapingResult.from_dict(
        {
            "configId": "cfg",
            "url": "https://a.test",
            "metadata": {"pageCount": 3, "crawler": "v2"},
        }
    )

    assert result.metadata.page_count == 3
    doc = result.to_dict()
    assert doc["metadata"]["crawler"] == "v2"
    assert doc["metadata"]["pageCount"] == 3


def test_result_requires_config_id_and_url() -> None:
    with pytest.raises(ValidationError):
        ScrapingResult.from_dict({"url": "https://a.test"}).validate()
    with pytest.raises(ValidationError):
        ScrapingResult.from_dict({"configId": "cfg"}).validate()


def test_timestamps_are_utc_with_microseconds() -> None:
    ts = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert format_ts(ts) == "2024-05-01T12:00:00.000000+00:00"
    assert parse_ts("2024-05-01T14:00:00+02:00") == ts
    assert parse_ts(format_ts(ts)) == ts
    with pytest.raises(ValidationError):
        parse_ts("yesterday")


def test_sort_key_prefers_updated_at() -> None:
    older = ScrapingConfig(
        id="a", url="https://a.test", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    newer = ScrapingConfig(
        id="b", url="https://b.test", created_at=datetime(2024, 2, 1, tzinfo=timezone.utc)
    )
    ordered = sorted([older, newer], key=RecordKind.CONFIGURATION.sort_key, reverse=True)
    assert [c.id for c in ordered] == ["b", "a"]


def test_generated_ids_are_valid_and_distinct() -> None:
    ids = {generate_unique_id() for _ in range(200)}
    assert len(ids) == 200
    for ident in ids:
        validate_id(ident)

    job_id = generate_unique_id("job")
    assert job_id.startswith("job_")
    validate_id(job_id)


@pytest.mark.parametrize("bad", ["", "a/b", ".hidden", "x" * 65, None, 42])
def test_validate_id_rejects_unsafe_names(bad) -> None:
    with pytest.raises(ValidationError):
        validate_id(bad)


@pytest.mark.parametrize(
    "patch",
    [
        {"metadata": {"errors": "boom"}},
        {"metadata": {"warnings": [None]}},
        {"metadata": {"pageCount": "3"}},
        {"metadata": {"processingTime": "fast"}},
        {"categories": {"news": {"description": 5}}},
        {
            "categories": {
                "news": {
                    "items": [{"id": "item_1", "title": "A", "content": "a", "confidence": "high"}]
                }
            }
        },
        {"raw": {"html": ["<p>"]}},
    ],
)
def test_wrongly_typed_result_fields_fail_validation(patch) -> None:
    doc = {"configId": "cfg", "url": "https://a.test", **patch}
    with pytest.raises(ValidationError):
        ScrapingResult.from_dict(doc).validate()


def test_out_of_range_timestamps_are_validation_errors() -> None:
    with pytest.raises(ValidationError):
        parse_ts("9999-12-31T23:59:59-05:00")
