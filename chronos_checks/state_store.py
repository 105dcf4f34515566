from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import structlog

from chronos_checks.errors import FetchError, PersistError


logger = structlog.get_logger(__name__)

FetchJobs = Callable[[], list[dict[str, Any]]]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Chronos reports `lastSuccess` / `lastError` as ISO-8601 strings, or "" when the
    event never happened. Naive values are taken as UTC.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    s = value.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    ts = datetime.fromisoformat(s)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    try:
        return ts.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {value!r}") from e


@dataclass(frozen=True)
class TaskRecord:
    name: str
    disabled: bool = False
    last_success: datetime | None = None
    last_error: datetime | None = None
    # Task object exactly as Chronos returned it; this is what gets persisted.
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, raw: Any) -> "TaskRecord":
        if not isinstance(raw, dict):
            raise ValueError("Task entry is not a JSON object")
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError(f"Task entry has no usable name: {name!r}")
        disabled = raw.get("disabled", False)
        if not isinstance(disabled, bool):
            raise ValueError(f"Task {name!r} has a non-boolean disabled flag: {disabled!r}")
        return cls(
            name=name,
            disabled=disabled,
            last_success=parse_timestamp(raw.get("lastSuccess")),
            last_error=parse_timestamp(raw.get("lastError")),
            raw=dict(raw),
        )


@dataclass(frozen=True)
class Snapshot:
    source_url: str
    query_time: datetime
    tasks: tuple[TaskRecord, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "chronos_url": self.source_url,
            "query_time": self.query_time.isoformat(),
            "tasks": [t.raw or _task_to_raw(t) for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        if not isinstance(data, dict):
            raise ValueError("State data must be a JSON object")
        source_url = data.get("chronos_url")
        if not isinstance(source_url, str) or not source_url:
            raise ValueError("State data has no chronos_url")
        query_time = parse_timestamp(data.get("query_time"))
        if query_time is None:
            raise ValueError("State data has no query_time")
        raw_tasks = data.get("tasks")
        if not isinstance(raw_tasks, list):
            raise ValueError("State data tasks must be a list")
        return cls(source_url=source_url, query_time=query_time, tasks=sort_tasks(raw_tasks))


def _task_to_raw(task: TaskRecord) -> dict[str, Any]:
    return {
        "name": task.name,
        "disabled": task.disabled,
        "lastSuccess": task.last_success.isoformat() if task.last_success else "",
        "lastError": task.last_error.isoformat() if task.last_error else "",
    }


def sort_tasks(raw_tasks: list[Any]) -> tuple[TaskRecord, ...]:
    records = [TaskRecord.from_dict(item) for item in raw_tasks]
    # Plain str ordering: case-sensitive, by code point.
    records.sort(key=lambda t: t.name)
    return tuple(records)


class StateStore:
    """
    Cached view of the Chronos task list, backed by a single JSON file.

    Reads are served from the file while it is fresh; a stale or missing file forces
    a refresh through the injected `fetch` callable. A refresh replaces the file with
    one atomic rename, so concurrent invocations see either the old or the new state.
    """

    def __init__(
        self,
        path: str | Path,
        fetch: FetchJobs,
        *,
        source_url: str,
        clock: Clock = utcnow,
    ) -> None:
        self.path = Path(path).expanduser()
        self.source_url = source_url
        self._fetch = fetch
        self._clock = clock

    def load(self) -> Snapshot | None:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistError(f"Could not read state file {self.path}: {e}") from e

        try:
            return Snapshot.from_dict(json.loads(data.decode("utf-8")))
        except ValueError as e:
            raise PersistError(f"Corrupt state file {self.path}: {e}") from e

    def current_snapshot(self, max_age: timedelta) -> Snapshot:
        cached = self.load()
        if cached is None:
            logger.info("No state file, refreshing", path=str(self.path))
            return self._refresh(previous=None)

        try:
            expires_before: datetime | None = self._clock() - max_age
        except OverflowError:
            # Window reaches past datetime.min: nothing can be older than that.
            expires_before = None
        if expires_before is not None and cached.query_time < expires_before:
            logger.info(
                "State file expired, refreshing",
                path=str(self.path),
                query_time=cached.query_time.isoformat(),
                max_age_seconds=max_age.total_seconds(),
            )
            return self._refresh(previous=cached)

        logger.debug("Serving cached state", path=str(self.path), query_time=cached.query_time.isoformat())
        return cached

    def refresh(self) -> Snapshot:
        try:
            previous = self.load()
        except PersistError as e:
            # Being replaced anyway; it only matters for query_time ordering.
            logger.warning("Ignoring unreadable state file during refresh", error=str(e))
            previous = None
        return self._refresh(previous=previous)

    def _refresh(self, *, previous: Snapshot | None) -> Snapshot:
        raw_tasks = self._fetch()
        if not isinstance(raw_tasks, list):
            raise FetchError(f"Expected a JSON array of tasks from {self.source_url}")
        try:
            tasks = sort_tasks(raw_tasks)
        except ValueError as e:
            raise FetchError(f"Malformed task data from {self.source_url}: {e}") from e

        query_time = self._clock()
        if previous is not None and query_time < previous.query_time:
            query_time = previous.query_time

        snapshot = Snapshot(source_url=self.source_url, query_time=query_time, tasks=tasks)
        self._write_atomic(snapshot.to_dict())
        logger.info("Refreshed state", path=str(self.path), tasks=len(tasks), source=self.source_url)
        return snapshot

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        tmp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = Path(f.name)
                f.write(json.dumps(payload, ensure_ascii=False, indent=2))
                f.flush()
                os.fsync(f.fileno())
            tmp_path.replace(self.path)
        except (OSError, ValueError) as e:
            # ValueError covers text the utf-8 codec cannot encode (lone surrogates).
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise PersistError(f"Could not write state file {self.path}: {e}") from e
