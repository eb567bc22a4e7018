class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class InvalidInputError(ValueError):
    """User input rejected before any work is attempted."""


class OperationInProgressError(RuntimeError):
    """An operation is already outstanding for the same slot."""
