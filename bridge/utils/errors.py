"""
Exceptions shared across the Bridge services.
"""


class ConfigurationError(ValueError):
    """Raised when a caller supplies a configuration value the engine cannot interpret."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f'Invalid {field}: {message}')


class OperationCancelledError(Exception):
    """Raised when a long-running scan is aborted between candidates."""
    pass
