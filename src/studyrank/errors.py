"""Exceptions shared across the engines and their backing stores."""


class StoreError(RuntimeError):
    """Raised when a backing store read or write fails."""


# Message surfaced to callers for backing-store failures
GENERIC_ERROR = "Something went wrong. Please try again."
