from typing import Any, Dict, Optional


class CocdError(RuntimeError):
    """
    Base error for monitor components. Carries metadata for structured logging.
    """

    category: str = "runtime"
    retryable: bool = True

    def __init__(self, message: str, *, metadata: Optional[Dict[str, Any]] = None, retryable: Optional[bool] = None) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


class ConfigError(CocdError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    retryable = False


class GitHubAPIError(CocdError):
    """Raised when the GitHub API returns an error response or cannot be reached."""

    category = "api"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message, metadata=metadata, retryable=retryable)
        self.status_code = status_code


class AuthenticationError(GitHubAPIError):
    """Raised when the token is missing, revoked or lacks access. Ends a sweep."""

    category = "auth"
    retryable = False


class RateLimitError(GitHubAPIError):
    """Raised when the API rate limit is exhausted."""

    category = "rate_limit"


class ActionPendingError(GitHubAPIError):
    """
    Raised when GitHub accepted an action but has not applied it yet
    (e.g. "job scheduled on GitHub side"). Not a failure.
    """

    category = "pending"
    retryable = False
