"""Custom exceptions for Server Bootstrap."""


class BootstrapError(Exception):
    """Base exception for all bootstrap errors."""

    pass


class InvalidArgumentError(BootstrapError):
    """Raised when command-line input is invalid."""

    pass


class PrivilegeError(InvalidArgumentError):
    """Raised when not running with administrative privileges."""

    pass


class SystemRequirementError(BootstrapError):
    """Raised when system requirements are not met."""

    pass


class CommandExecutionError(BootstrapError):
    """Raised when command execution fails."""

    pass


class FacetError(BootstrapError):
    """Raised when a facet fails in a way that must abort the run."""

    def __init__(self, facet: str, message: str) -> None:
        super().__init__(message)
        self.facet = facet
