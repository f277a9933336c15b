from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from conftest import unreachable_database_url
from core.models import RecordKind, ScrapingConfig, ScrapingResult
from data.repositories import repository_for
from data.sync import Reconciler

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _config(record_id: str, name: str = "", minutes: int = 0) -> ScrapingConfig:
    ts = T0 + timedelta(minutes=minutes)
    return ScrapingConfig(
        id=record_id, name=name, url=f"https://{record_id}.test", created_at=T0, updated_at=ts
    )


async def _put_relational(database, kind: RecordKind, *records) -> None:
    async with database.session() as session:
        repo = repository_for(kind, session)
        for record in records:
            await repo.upsert(record)


async def _load_relational(database, kind: RecordKind) -> dict:
    async with database.session() as session:
        return await repository_for(kind, session).load_all()


def test_missing_records_are_copied_and_second_pass_is_a_no_op(make_storage) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.CONFIGURATION, _config("only-on-disk"))
        await _put_relational(database, RecordKind.CONFIGURATION, _config("only-in-db"))
        first = await reconciler.reconcile_configurations()
        second = await reconciler.reconcile_configurations()
        in_db = await _load_relational(database, RecordKind.CONFIGURATION)
        on_disk = await files.load_all(RecordKind.CONFIGURATION)
        await database.close()
        return first, second, in_db, on_disk

    first, second, in_db, on_disk = asyncio.run(scenario())

    assert first == 2
    assert second == 0
    assert sorted(in_db) == sorted(on_disk) == ["only-in-db", "only-on-disk"]
    assert in_db == on_disk


def test_most_recent_update_wins_in_both_directions(make_storage) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.CONFIGURATION, _config("a", "disk newer", minutes=5))
        await files.put(RecordKind.CONFIGURATION, _config("b", "disk older", minutes=1))
        await _put_relational(
            database,
            RecordKind.CONFIGURATION,
            _config("a", "db older", minutes=1),
            _config("b", "db newer", minutes=5),
        )
        written = await reconciler.reconcile_configurations()
        in_db = await _load_relational(database, RecordKind.CONFIGURATION)
        on_disk = await files.load_all(RecordKind.CONFIGURATION)
        await database.close()
        return written, in_db, on_disk

    written, in_db, on_disk = asyncio.run(scenario())

    assert written == 2
    assert in_db["a"].name == on_disk["a"].name == "disk newer"
    assert in_db["b"].name == on_disk["b"].name == "db newer"


def test_identical_timestamps_are_left_alone(make_storage) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.CONFIGURATION, _config("a", "on disk", minutes=3))
        await _put_relational(database, RecordKind.CONFIGURATION, _config("a", "in db", minutes=3))
        written = await reconciler.reconcile_configurations()
        on_disk = await files.get(RecordKind.CONFIGURATION, "a")
        await database.close()
        return written, on_disk

    written, on_disk = asyncio.run(scenario())

    assert written == 0
    assert on_disk.name == "on disk"


def test_results_are_reconciled_too(make_storage) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)
    result = ScrapingResult(
        id="res-1", config_id="cfg", url="https://a.test", created_at=T0, updated_at=T0
    )

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.RESULT, result)
        counts = await reconciler.reconcile_all()
        in_db = await _load_relational(database, RecordKind.RESULT)
        await database.close()
        return counts, in_db

    counts, in_db = asyncio.run(scenario())

    assert counts == {"configurations": 0, "results": 1}
    assert in_db["res-1"] == result


def test_unavailable_database_skips_the_pass(tmp_path, make_storage) -> None:
    database, files, _ = make_storage(database_url=unreachable_database_url(tmp_path))
    reconciler = Reconciler(database, files)

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.CONFIGURATION, _config("a"))
        counts = await reconciler.reconcile_all()
        await database.close()
        return counts

    assert asyncio.run(scenario()) == {"configurations": 0, "results": 0}


def test_one_failed_write_does_not_abort_the_pass(make_storage, monkeypatch) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)
    real_put = files.put

    async def flaky_put(kind, record):
        if record.id == "b":
            raise OSError("disk full")
        await real_put(kind, record)

    async def scenario():
        await files.init()
        await database.init()
        await _put_relational(
            database, RecordKind.CONFIGURATION, _config("a"), _config("b"), _config("c")
        )
        monkeypatch.setattr(files, "put", flaky_put)
        written = await reconciler.reconcile_configurations()
        on_disk = await files.load_all(RecordKind.CONFIGURATION)
        await database.close()
        return written, on_disk

    written, on_disk = asyncio.run(scenario())

    assert written == 2
    assert sorted(on_disk) == ["a", "c"]


def test_running_flag_reflects_an_active_pass(make_storage) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)
    seen: list[bool] = []
    real_load_all = files.load_all

    async def observing_load_all(kind):
        seen.append(reconciler.running)
        return await real_load_all(kind)

    files.load_all = observing_load_all

    async def scenario():
        await files.init()
        await database.init()
        await reconciler.reconcile_results()
        await database.close()

    asyncio.run(scenario())

    assert seen == [True]
    assert reconciler.running is False


def test_writes_landing_after_the_snapshot_are_not_overwritten(make_storage, monkeypatch) -> None:
    database, files, _ = make_storage()
    reconciler = Reconciler(database, files)
    real_load_files = reconciler._load_files

    async def load_then_race(kind):
        snapshot = await real_load_files(kind)
        # Both backends take a newer write while the pass is in flight.
        await _put_relational(database, kind, _config("a", "newer in db", minutes=9))
        await files.put(kind, _config("b", "newer on disk", minutes=9))
        return snapshot

    async def scenario():
        await files.init()
        await database.init()
        await files.put(RecordKind.CONFIGURATION, _config("a", "disk", minutes=5))
        await files.put(RecordKind.CONFIGURATION, _config("b", "disk", minutes=1))
        await _put_relational(
            database,
            RecordKind.CONFIGURATION,
            _config("a", "db", minutes=1),
            _config("b", "db", minutes=5),
        )
        monkeypatch.setattr(reconciler, "_load_files", load_then_race)
        written = await reconciler.reconcile_configurations()
        in_db = await _load_relational(database, RecordKind.CONFIGURATION)
        on_disk = await files.load_all(RecordKind.CONFIGURATION)
        await database.close()
        return written, in_db, on_disk

    written, in_db, on_disk = asyncio.run(scenario())

    assert written == 0
    assert in_db["a"].name == "newer in db"
    assert on_disk["b"].name == "newer on disk"
