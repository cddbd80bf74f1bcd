"""
Error taxonomy for the self-populating cache.

Foreground callers (``get`` / ``populate``) receive these directly. On the
background stale-repopulation path they are delivered to the notifier's
``error`` event instead.
"""

from typing import Optional


class CacheError(Exception):
    """Base exception for cache population errors."""
    def __init__(self, message: str, key: Optional[str] = None, code: Optional[str] = None):
        self.message = message
        self.key = key
        self.code = code
        super().__init__(message)


class PopulateError(CacheError):
    """Raised when the populate function (or the write after it) fails.

    ``lease_name`` is set when the failure happened while holding a lease.
    """
    def __init__(self, message: str, key: Optional[str] = None, lease_name: Optional[str] = None):
        self.lease_name = lease_name
        super().__init__(message, key=key, code="POPULATE_ERROR")


class PopulateTimeoutError(CacheError, TimeoutError):
    """Raised when populate does not complete within its time budget.

    The populate call itself keeps running; only the caller stops waiting.
    """
    def __init__(self, timeout_ms: int, key: Optional[str] = None):
        self.timeout_ms = timeout_ms
        target = f" for {key!r}" if key is not None else ""
        super().__init__(
            f"populate{target} did not complete within {timeout_ms}ms",
            key=key,
        )
        self.code = "POPULATE_TIMEOUT"


class LockError(CacheError):
    """Raised when the lease coordinator fails for reasons other than contention."""
    def __init__(self, message: str, lease_name: str, key: Optional[str] = None):
        self.lease_name = lease_name
        super().__init__(message, key=key, code="LOCK_ERROR")


class LeaseHeldError(CacheError):
    """Raised by a coordinator when another holder already owns the lease.

    This is benign contention, not a failure: some other process is
    already populating the key.
    """
    def __init__(self, lease_name: str):
        self.lease_name = lease_name
        super().__init__(f"lease already held: {lease_name}", code="LEASE_HELD")
