# flowguard/errors.py


class FlowguardError(Exception):
    """Base class for flowguard failures that are not validation findings."""


class OperationError(FlowguardError):
    """A single patch operation could not be applied to the working copy."""

    def __init__(self, message: str, code: str = "INVALID_OPERATION"):
        super().__init__(message)
        self.message = message
        self.code = code


class CatalogError(FlowguardError):
    """The node catalog file or mapping is malformed."""
