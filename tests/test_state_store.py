from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chronos_checks.errors import FetchError, PersistError
from chronos_checks.state_store import StateStore, parse_timestamp


URL = "http://chronos1.prod.example.com:4400/scheduler/jobs"
T0 = datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _Fetch:
    def __init__(self, jobs: list[dict]) -> None:
        self.jobs = jobs
        self.calls = 0

    def __call__(self) -> list[dict]:
        self.calls += 1
        return [dict(j) for j in self.jobs]


def _job(name: str, success: str = "", error: str = "", disabled: bool = False) -> dict:
    return {"name": name, "disabled": disabled, "lastSuccess": success, "lastError": error, "owner": "ops@example.com"}


def _store(tmp_path: Path, fetch, clock) -> StateStore:
    return StateStore(tmp_path / "chronos-state.json", fetch, source_url=URL, clock=clock)


def test_refresh_sorts_tasks_and_writes_cache_format(tmp_path: Path) -> None:
    fetch = _Fetch([_job("zeta"), _job("Alpha"), _job("beta", success="2024-01-02T00:00:00Z")])
    store = _store(tmp_path, fetch, _Clock(T0))

    snap = store.refresh()

    assert [t.name for t in snap.tasks] == ["Alpha", "beta", "zeta"]
    assert snap.query_time == T0
    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert set(data) == {"chronos_url", "query_time", "tasks"}
    assert data["chronos_url"] == URL
    assert parse_timestamp(data["query_time"]) == T0
    assert [t["name"] for t in data["tasks"]] == ["Alpha", "beta", "zeta"]
    # upstream fields are kept verbatim
    assert data["tasks"][0]["owner"] == "ops@example.com"
    assert data["tasks"][1]["lastSuccess"] == "2024-01-02T00:00:00Z"


def test_missing_cache_triggers_refresh(tmp_path: Path) -> None:
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, _Clock(T0))

    snap = store.current_snapshot(timedelta(minutes=3))

    assert fetch.calls == 1
    assert [t.name for t in snap.tasks] == ["etl"]
    assert store.path.exists()


def test_freshness_boundary_is_inclusive(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    store.refresh()
    assert fetch.calls == 1

    clock.now = T0 + timedelta(minutes=3)
    snap = store.current_snapshot(timedelta(minutes=3))
    assert fetch.calls == 1
    assert snap.query_time == T0

    clock.now = T0 + timedelta(minutes=3, microseconds=1)
    snap = store.current_snapshot(timedelta(minutes=3))
    assert fetch.calls == 2
    assert snap.query_time == clock.now


def test_sub_minute_staleness_is_detected(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    store.refresh()

    clock.now = T0 + timedelta(seconds=61)
    store.current_snapshot(timedelta(minutes=1))
    assert fetch.calls == 2


def test_fresh_cache_is_served_without_fetch(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    first = store.refresh()

    clock.now = T0 + timedelta(seconds=30)
    fetch.jobs = [_job("other")]
    snap = store.current_snapshot(timedelta(minutes=3))

    assert fetch.calls == 1
    assert snap == first


def test_fetch_failure_keeps_previous_cache(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    store.refresh()
    before = store.path.read_bytes()

    def broken() -> list[dict]:
        raise FetchError("connection refused")

    failing = StateStore(store.path, broken, source_url=URL, clock=clock)
    clock.now = T0 + timedelta(minutes=10)
    with pytest.raises(FetchError):
        failing.current_snapshot(timedelta(minutes=3))

    assert store.path.read_bytes() == before
    assert list(tmp_path.iterdir()) == [store.path]


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "etl"},
        [{"disabled": False}],
        [{"name": "etl", "lastSuccess": "yesterday"}],
        [{"name": "etl", "lastSuccess": "0001-01-01T00:00:00+01:00"}],
        [{"name": "etl", "disabled": "false"}],
        ["etl"],
    ],
)
def test_malformed_payload_is_fetch_error(tmp_path: Path, payload) -> None:
    store = _store(tmp_path, lambda: payload, _Clock(T0))
    with pytest.raises(FetchError):
        store.refresh()
    assert not store.path.exists()


def test_interrupted_write_leaves_old_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl", success="2024-01-02T00:00:00Z")])
    store = _store(tmp_path, fetch, clock)
    old = store.refresh()

    def crash(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(Path, "replace", crash)
    fetch.jobs = [_job("etl"), _job("new")]
    clock.now = T0 + timedelta(minutes=5)
    with pytest.raises(PersistError):
        store.refresh()
    monkeypatch.undo()

    assert store.load() == old
    # temp file is cleaned up
    assert list(tmp_path.iterdir()) == [store.path]


def test_unwritable_location_is_persist_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    store = StateStore(blocker / "state.json", _Fetch([_job("etl")]), source_url=URL, clock=_Clock(T0))
    with pytest.raises(PersistError):
        store.refresh()


def test_corrupt_cache_is_persist_error(tmp_path: Path) -> None:
    path = tmp_path / "chronos-state.json"
    path.write_text('{"chronos_url": "http://x", "query_time": "2024-01-', encoding="utf-8")
    fetch = _Fetch([_job("etl")])
    store = StateStore(path, fetch, source_url=URL, clock=_Clock(T0))

    with pytest.raises(PersistError):
        store.current_snapshot(timedelta(minutes=3))
    assert fetch.calls == 0


def test_explicit_refresh_replaces_corrupt_cache(tmp_path: Path) -> None:
    path = tmp_path / "chronos-state.json"
    path.write_text("not json", encoding="utf-8")
    store = StateStore(path, _Fetch([_job("etl")]), source_url=URL, clock=_Clock(T0))

    store.refresh()

    assert store.load() is not None


def test_query_time_never_goes_backwards(tmp_path: Path) -> None:
    clock = _Clock(T0)
    store = _store(tmp_path, _Fetch([_job("etl")]), clock)
    store.refresh()

    clock.now = T0 - timedelta(hours=1)
    snap = store.refresh()

    assert snap.query_time == T0


def test_reads_cache_written_by_other_tools(tmp_path: Path) -> None:
    path = tmp_path / "chronos-state.json"
    path.write_text(
        json.dumps(
            {
                "chronos_url": URL,
                "query_time": "2024-01-10T12:00:00+00:00",
                "tasks": [_job("b"), _job("a", error="2024-01-01T00:00:00.123Z")],
            }
        ),
        encoding="utf-8",
    )
    store = StateStore(path, _Fetch([]), source_url=URL, clock=_Clock(T0 + timedelta(minutes=1)))

    snap = store.current_snapshot(timedelta(minutes=3))

    assert [t.name for t in snap.tasks] == ["a", "b"]
    assert snap.tasks[0].last_error == datetime(2024, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", None),
        (None, None),
        ("2024-01-02T00:00:00Z", datetime(2024, 1, 2, tzinfo=timezone.utc)),
        ("2024-01-02T02:00:00+02:00", datetime(2024, 1, 2, tzinfo=timezone.utc)),
        ("2024-01-02T00:00:00", datetime(2024, 1, 2, tzinfo=timezone.utc)),
    ],
)
def test_parse_timestamp(raw, expected) -> None:
    assert parse_timestamp(raw) == expected


def test_unencodable_task_name_is_persist_error(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    old = store.refresh()

    fetch.jobs = [_job("etl\ud800")]
    with pytest.raises(PersistError):
        store.refresh()

    assert store.load() == old
    assert list(tmp_path.iterdir()) == [store.path]


def test_huge_max_age_never_expires(tmp_path: Path) -> None:
    clock = _Clock(T0)
    fetch = _Fetch([_job("etl")])
    store = _store(tmp_path, fetch, clock)
    store.refresh()

    clock.now = T0 + timedelta(days=365)
    store.current_snapshot(timedelta.max)

    assert fetch.calls == 1


def test_corrupt_timestamp_in_cache_is_persist_error(tmp_path: Path) -> None:
    path = tmp_path / "chronos-state.json"
    path.write_text(
        json.dumps({"chronos_url": URL, "query_time": "0001-01-01T00:00:00+01:00", "tasks": []}),
        encoding="utf-8",
    )
    store = StateStore(path, _Fetch([]), source_url=URL, clock=_Clock(T0))
    with pytest.raises(PersistError):
        store.load()
