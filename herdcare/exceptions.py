"""Error taxonomy for herd treatment compliance."""


class HerdCareError(Exception):
    """Base exception for all herdcare errors."""

    pass


class ValidationError(HerdCareError):
    """Raised when a request is missing required data. Nothing is read or written."""

    pass


class UnsupportedTransitionError(ValidationError):
    """Raised when an obligation cannot move to the requested state."""

    pass


class MissingReferenceError(HerdCareError, LookupError):
    """Raised when a referenced treatment type or animal does not exist."""

    pass


class EmptyBatchError(MissingReferenceError):
    """Raised when a batch label matches no animal."""

    def __init__(self, batch: str) -> None:
        super().__init__(f"Batch '{batch}' not found or empty")
        self.batch = batch


class StorageError(HerdCareError):
    """Raised when the storage collaborator fails a read or write."""

    def __init__(self, operation: str, kind: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage {operation} on '{kind}' failed{detail}")
        self.operation = operation
        self.kind = kind
        self.cause = cause
