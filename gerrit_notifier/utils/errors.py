"""Error handling utilities."""

from typing import Optional


class GerritNotifierError(Exception):
    """Base exception for the gerrit notifier."""
    pass


class ConfigurationError(GerritNotifierError):
    """Service configuration is missing or invalid."""
    pass


class GerritAPIError(GerritNotifierError):
    """Gerrit REST call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProjectConfigError(GerritNotifierError):
    """Project configuration layer could not be loaded."""

    def __init__(self, message: str, project: Optional[str] = None):
        super().__init__(message)
        self.project = project


class IgnoreRuleError(GerritNotifierError):
    """Ignore pattern could not be compiled."""

    def __init__(self, message: str, pattern: str):
        super().__init__(message)
        self.pattern = pattern


class DirectoryError(GerritNotifierError):
    """Slack user directory could not be loaded."""
    pass


class StreamSessionError(GerritNotifierError):
    """Event stream session ended."""
    pass
