"""Exception types raised across the collection pipeline."""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigError(BridgeError):
    """Configuration file missing or failed validation."""


class SourceError(BridgeError):
    """A single source could not produce data for this cycle."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class FetchFailed(SourceError):
    """Remote exposition endpoint unreachable, timed out or returned non-2xx."""


class ReadFailed(SourceError):
    """Local pseudo-file missing or unreadable."""


class KindMismatch(BridgeError):
    """A metric name was used with two different kinds."""

    def __init__(self, name: str, existing: str, requested: str):
        super().__init__(
            f"metric '{name}' is registered as {existing}, not {requested}"
        )
        self.name = name
        self.existing = existing
        self.requested = requested


class InvalidDelta(BridgeError):
    """Negative increment applied to a counter."""

    def __init__(self, name: str, delta: float):
        super().__init__(f"counter '{name}' cannot be incremented by {delta}")
        self.name = name
        self.delta = delta
