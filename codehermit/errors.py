"""Error taxonomy for review orchestration failures."""

from __future__ import annotations


class CodeHermitError(RuntimeError):
    """Base error for failures that end a review run with exit code 1."""


class ConfigError(CodeHermitError):
    """Raised when required configuration or credentials are missing."""


class NotFoundError(CodeHermitError):
    """Raised when a repository path or pull request cannot be found."""


class AuthError(CodeHermitError):
    """Raised when the PR metadata provider rejects the configured credential."""


class DiffError(CodeHermitError):
    """Raised when git could not produce a diff at all."""


class ProcessSpawnError(CodeHermitError):
    """Raised when the review agent executable cannot be started."""


class InputError(CodeHermitError):
    """Raised when required user input is missing or malformed."""


class AzureApiError(CodeHermitError):
    """Raised when an Azure DevOps API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class AzureRateLimitError(AzureApiError):
    """Raised when Azure DevOps throttling prevents request completion."""
