"""Exception hierarchy for the cache and metering core."""


class CoreError(Exception):
    """Base exception for cache and ledger errors."""


class ConnectionFailure(CoreError):
    """Backing cache could not be reached after all connection attempts."""

    def __init__(self, url: str, attempts: int, reason: str):
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Cache at {url} unreachable after {attempts} attempts: {reason}")


class NotConnected(CoreError):
    """Cache operation attempted while the store is not connected."""


class LedgerIOFailure(CoreError):
    """Usage ledger could not be read or written."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Usage ledger {path}: {reason}")


class StorageCorruption(CoreError):
    """Usage ledger exists but does not hold a valid document."""
