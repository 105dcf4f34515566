from __future__ import annotations

import json
from typing import Iterable, Sequence

import httpx
import structlog

from chronos_checks.classifier import ClassifiedResult, find_result
from chronos_checks.errors import DeliveryError


logger = structlog.get_logger(__name__)


def render_results(results: Iterable[ClassifiedResult]) -> str:
    return json.dumps([r.to_nagios_api() for r in results], ensure_ascii=False, indent=2)


def check_exit(results: Sequence[ClassifiedResult], task_name: str) -> tuple[str, int]:
    """Message and NRPE exit code for a single task."""
    result = find_result(results, task_name)
    return result.message, int(result.status)


class NagiosApiClient:
    """Submits passive check results to nagios-api (zorkian/nagios-api)."""

    def __init__(self, base_url: str, *, timeout_seconds: float = 15.0, client: httpx.Client | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self._client = client

    @property
    def submit_url(self) -> str:
        return f"{self.base_url}/submit_result"

    def submit_results(self, results: Sequence[ClassifiedResult]) -> int:
        if self._client is not None:
            return self._submit_all(self._client, results)
        with httpx.Client() as client:
            return self._submit_all(client, results)

    def _submit_all(self, client: httpx.Client, results: Sequence[ClassifiedResult]) -> int:
        url = self.submit_url
        sent = 0
        for result in results:
            try:
                resp = client.post(url, json=result.to_nagios_api(), timeout=self.timeout_seconds)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise DeliveryError(
                    f"Nagios API returned HTTP {e.response.status_code} for {result.service} ({sent} submitted)"
                ) from e
            except httpx.HTTPError as e:
                raise DeliveryError(
                    f"Could not submit {result.service} to {url}: {type(e).__name__}: {e} ({sent} submitted)"
                ) from e
            sent += 1
        logger.info("Submitted results to Nagios API", url=url, count=sent)
        return sent
