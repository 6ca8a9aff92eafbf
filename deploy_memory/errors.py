"""
Exceptions raised by Deploy Memory.
"""


class DeployMemoryError(Exception):
    """Base class for all Deploy Memory errors."""


class ConfigError(DeployMemoryError):
    """Invalid configuration value."""


class CollectorError(DeployMemoryError):
    """A failure signal source could not be read."""

    def __init__(self, stack_name: str, message: str):
        super().__init__(message)
        self.stack_name = stack_name


class StackNotFoundError(CollectorError):
    """The requested stack does not exist in the region."""


class StackAccessDeniedError(CollectorError):
    """The caller is not allowed to describe the stack or its events."""


class StoreError(DeployMemoryError):
    """A stored memory record could not be decoded."""
