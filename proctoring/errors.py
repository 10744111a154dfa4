class ProctoringError(Exception):
    """Base class for errors raised by the proctoring service."""


class ValidationError(ProctoringError):
    """Input rejected before it reaches the store."""


class NotFoundError(ProctoringError):
    pass


class NoDataError(ProctoringError):
    """A report was requested for an empty event stream."""
