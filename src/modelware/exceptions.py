"""Custom exceptions for the modelware library."""


class ModelwareError(Exception):
    """Base exception for all modelware errors."""


class KeyDerivationError(ModelwareError):
    """Raised when request parameters cannot be canonicalized into a cache key."""


InvalidKeyError = KeyDerivationError


class StoreUnavailableError(ModelwareError):
    """Raised by a cache store when a GET or SET cannot be completed."""

    def __init__(self, operation: str, key: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cache store {operation} failed for {key!r}{detail}")


class ProtocolMismatchError(ModelwareError):
    """A restoration entry did not belong to the middleware consuming it."""

    def __init__(self, middleware_id: str, found_id: str | None) -> None:
        self.middleware_id = middleware_id
        self.found_id = found_id
        if found_id is None:
            message = f"No state entry available for middleware {middleware_id!r}"
        else:
            message = (
                f"Middleware ID mismatch during state restoration: "
                f"expected {middleware_id!r}, found {found_id!r}"
            )
        super().__init__(message)


class SerializationError(ModelwareError):
    """A middleware's serialize or deserialize hook raised."""

    def __init__(self, middleware_id: str, phase: str, cause: BaseException) -> None:
        self.middleware_id = middleware_id
        self.phase = phase
        self.cause = cause
        super().__init__(f"State {phase} failed for middleware {middleware_id!r}: {cause}")


class QuotaExceededError(ModelwareError):
    """Raised when a request is rejected by quota enforcement."""

    def __init__(self, result: object, reason: str) -> None:
        self.result = result
        self.reason = reason
        super().__init__(f"Quota exceeded: {reason}")
