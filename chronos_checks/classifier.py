from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Iterable
from urllib.parse import urlsplit

from chronos_checks.errors import ClassificationError
from chronos_checks.state_store import Snapshot, TaskRecord


class Status(IntEnum):
    """Nagios plugin return codes."""

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


@dataclass(frozen=True)
class ClassifiedResult:
    host: str
    service: str
    status: Status
    message: str

    def to_nagios_api(self) -> dict[str, object]:
        return {
            "host": self.host,
            "service": self.service,
            "status": int(self.status),
            "output": self.message,
        }


def _fmt(ts: datetime) -> str:
    return ts.isoformat()


def monitoring_host(source_url: str, *, label: str = "chronos") -> str:
    """
    chronos1.prod.example.com -> chronos.prod.example.com
    """
    hostname = urlsplit(source_url).hostname or ""
    parts = [p for p in hostname.split(".") if p]
    domain = ".".join(parts[1:])
    return f"{label}.{domain}" if domain else label


def classify_task(task: TaskRecord) -> tuple[Status, str]:
    name = task.name
    last_success = task.last_success
    last_error = task.last_error

    if task.disabled:
        return Status.WARNING, f"{name} WARNING: Task disabled!"

    if last_error is None and last_success is None:
        return Status.CRITICAL, f"{name} CRITICAL: Task cannot run! No successful or failed runs."

    if last_error is not None and last_success is None:
        return (
            Status.CRITICAL,
            f"{name} CRITICAL: Task cannot run! No successes, recorded last failure at {_fmt(last_error)}",
        )

    if last_success is not None and last_error is None:
        return Status.OK, f"{name} OK: Task reports success at {_fmt(last_success)}"

    if last_success > last_error:
        return (
            Status.OK,
            f"{name} OK: Task reports recovery at {_fmt(last_success)} from error at {_fmt(last_error)}",
        )

    if last_error > last_success:
        return Status.CRITICAL, f"{name} CRITICAL: Task failed! Error recorded at {_fmt(last_error)}"

    # Identical success and error times: neither event is known to be the latest.
    return Status.UNKNOWN, f"{name} UNKNOWN: No conditions match known task state!"


class TaskClassifier:
    def __init__(self, *, host_label: str = "chronos") -> None:
        self.host_label = host_label

    def classify(self, snapshot: Snapshot) -> list[ClassifiedResult]:
        host = monitoring_host(snapshot.source_url, label=self.host_label)
        results: list[ClassifiedResult] = []
        for task in snapshot.tasks:
            status, message = classify_task(task)
            results.append(ClassifiedResult(host=host, service=task.name, status=status, message=message))
        return results


def find_result(results: Iterable[ClassifiedResult], service: str) -> ClassifiedResult:
    for result in results:
        if result.service == service:
            return result
    raise ClassificationError(f"Unknown Chronos task: {service}")
