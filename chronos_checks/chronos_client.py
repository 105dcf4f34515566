from __future__ import annotations

from typing import Any

import httpx
import structlog

from chronos_checks.errors import FetchError


logger = structlog.get_logger(__name__)

JOBS_PATH = "/scheduler/jobs"


def _coerce_jobs(data: Any, url: str) -> list[dict[str, Any]]:
    if not isinstance(data, list):
        raise FetchError(f"Unexpected Chronos response from {url} (not a JSON array)")
    for item in data:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            raise FetchError(f"Unexpected Chronos task entry from {url}: {item!r:.200}")
    return data


class ChronosClient:
    def __init__(self, base_url: str, *, timeout_seconds: float = 15.0, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self._client = client

    @property
    def jobs_url(self) -> str:
        return f"{self.base_url}{JOBS_PATH}"

    def fetch_jobs(self) -> list[dict[str, Any]]:
        url = self.jobs_url
        try:
            if self._client is not None:
                resp = self._client.get(url, timeout=self.timeout_seconds)
            else:
                with httpx.Client() as client:
                    resp = client.get(url, timeout=self.timeout_seconds)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Chronos returned HTTP {e.response.status_code} for {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Could not reach Chronos at {url}: {type(e).__name__}: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise FetchError(f"Chronos returned invalid JSON from {url}") from e

        jobs = _coerce_jobs(data, url)
        logger.debug("Fetched Chronos jobs", url=url, count=len(jobs))
        return jobs
