from __future__ import annotations


class ChronosCheckError(Exception):
    """Base class for every failure the check can surface to its caller."""


class ConfigError(ChronosCheckError):
    pass


class DiscoveryError(ChronosCheckError):
    """The environment is unknown or has no Chronos nodes."""


class FetchError(ChronosCheckError):
    """Network, HTTP or payload failure while talking to Chronos."""


class PersistError(ChronosCheckError):
    """The state file could not be written, read or parsed."""


class ClassificationError(ChronosCheckError):
    """A requested task is not part of the classified set."""


class DeliveryError(ChronosCheckError):
    """Submitting results to the Nagios API failed."""
