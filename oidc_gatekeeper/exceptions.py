"""Exceptions raised while authenticating a request against the IdP."""
from typing import Optional


class ConfigurationError(RuntimeError):
    """The gatekeeper cannot start with the given configuration."""


class AuthenticationError(RuntimeError):
    """Base class for failures that end the authentication flow."""

    status_code = 500


class CookieReadError(AuthenticationError):
    """The session cookie is present but could not be read."""

    status_code = 500


class CallbackError(AuthenticationError):
    """The IdP redirected back with an ``error`` query parameter."""

    status_code = 400

    def __init__(self, error: str, description: Optional[str] = None) -> None:
        self.error = error
        self.description = description or ''
        super().__init__(f"Got error in callback '{error}' with message '{self.description}'")


class ExchangeError(AuthenticationError):
    """Trading the authorization code for a token failed."""

    status_code = 400

    def __init__(self, message: str, status: Optional[int] = None,
                 error: Optional[str] = None, description: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.description = description
        super().__init__(message)


class InvalidToken(AuthenticationError):
    """The user-info endpoint did not accept the bearer token."""

    status_code = 401


class RequestCancelled(AuthenticationError):
    """The flow was cancelled before it finished, e.g. during shutdown."""

    status_code = 503
