from __future__ import annotations

import random
from dataclasses import dataclass

import structlog

from chronos_checks.config import InventoryNode
from chronos_checks.errors import DiscoveryError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ChronosNode:
    fqdn: str
    port: int
    scheme: str = "http"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.fqdn}:{self.port}"


class Inventory:
    """
    Static environment -> Chronos nodes lookup, read from the `environments`
    section of the config. When an environment lists several nodes, one is
    picked at random.
    """

    def __init__(self, environments: dict[str, list[InventoryNode]], *, rng: random.Random | None = None) -> None:
        self._environments = environments
        self._rng = rng or random.Random()

    def locate(self, environment: str, *, scheme: str = "http") -> ChronosNode:
        if environment not in self._environments:
            known = ", ".join(sorted(self._environments)) or "none"
            raise DiscoveryError(f"Environment does not exist: {environment} (known: {known})")

        nodes = self._environments[environment]
        if not nodes:
            raise DiscoveryError(f"Could not find a Chronos node in {environment}")

        node = self._rng.choice(nodes)
        logger.debug("Selected Chronos node", environment=environment, fqdn=node.fqdn, candidates=len(nodes))
        return ChronosNode(fqdn=node.fqdn, port=node.port, scheme=scheme)
