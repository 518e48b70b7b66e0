"""Error taxonomy shared by the store, lock, progress and traversal layers."""


class AnnotatorError(Exception):
    """Base class for annotation workbench failures."""

    pass


class ValidationError(AnnotatorError, ValueError):
    """Raised when an uploaded collection or a stored value has the wrong shape."""

    pass


class NotFoundError(AnnotatorError, LookupError):
    """Raised when a document id or position does not exist in the store."""

    pass


class OperationTimeoutError(AnnotatorError, TimeoutError):
    """Raised when lock acquisition or a bounded scan exceeds the operation deadline.

    Transient: the caller may retry the whole operation but must not assume
    that any partial work was committed.
    """

    pass


class LockReleaseError(AnnotatorError, RuntimeError):
    """Raised when a lock token is released without being held.

    Indicates a programming defect, not a recoverable condition.
    """

    pass
