"""
Error taxonomy for GitHub App linking and repository access.

Every error carries the HTTP status it maps to; ``api.middleware`` turns
uncaught instances into ``{"detail": ...}`` JSON responses.
"""

from __future__ import annotations


class GitHubAppError(Exception):
    """Base class for all GitHub App errors."""

    status_code: int = 500
    default_message: str = "GitHub App error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidState(GitHubAppError):
    status_code = 400
    default_message = "State does not match"


class MissingInput(GitHubAppError):
    status_code = 400
    default_message = "Required callback input is missing"


class SetupIncomplete(GitHubAppError):
    status_code = 400
    default_message = "Installation setup did not complete"


class AuthorizationFailure(GitHubAppError):
    status_code = 403
    default_message = "Invalid authentication token"


class VerificationFailure(GitHubAppError):
    status_code = 403
    default_message = "Invalid installation id"


class NotLinked(GitHubAppError):
    status_code = 404
    default_message = "No GitHub App installation linked to this user"


class DemoModeRestricted(GitHubAppError):
    status_code = 403
    default_message = "Not available in demo mode"


class UpstreamUnavailable(GitHubAppError):
    status_code = 503
    default_message = "GitHub is unavailable"


class UpstreamTimeout(UpstreamUnavailable):
    status_code = 504
    default_message = "GitHub API timeout"
