from __future__ import annotations

from typing import Optional, Tuple, Type

import httpx


class PluginError(Exception):
    """Base error raised by source plugins and the plugin registry."""

    code = "UNKNOWN_ERROR"
    retryable = True

    def __init__(self, message: str, *, source: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.source = source
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class RateLimitedError(PluginError):
    code = "RATE_LIMITED"
    retryable = True


class FetchTimeoutError(PluginError):
    code = "TIMEOUT"
    retryable = True


class NotFoundError(PluginError):
    code = "NOT_FOUND"
    retryable = False


class AuthError(PluginError):
    code = "AUTH_ERROR"
    retryable = False


class UnknownPluginError(PluginError):
    code = "UNKNOWN_ERROR"
    retryable = True


class ConfigInvalidError(PluginError):
    code = "CONFIG_INVALID"
    retryable = False


class DuplicateRegistrationError(PluginError, ValueError):
    code = "DUPLICATE_REGISTRATION"
    retryable = False


class PluginNotFoundError(PluginError, LookupError):
    code = "PLUGIN_NOT_FOUND"
    retryable = False


# Checked in order; the first pattern found in the lower-cased message wins.
MESSAGE_RULES: Tuple[Tuple[Tuple[str, ...], Type[PluginError]], ...] = (
    (("rate limit", "429"), RateLimitedError),
    (("timeout", "timed out", "etimedout"), FetchTimeoutError),
    (("enotfound", "name or service not known", "404"), NotFoundError),
    (("econnrefused", "connection refused", "401", "403"), AuthError),
)

STATUS_RULES = {
    429: RateLimitedError,
    408: FetchTimeoutError,
    404: NotFoundError,
    401: AuthError,
    403: AuthError,
}


def classify_message(message: str) -> Type[PluginError]:
    lowered = (message or "").lower()
    for patterns, error_cls in MESSAGE_RULES:
        if any(pattern in lowered for pattern in patterns):
            return error_cls
    return UnknownPluginError


def classify_error(exc: BaseException, *, source: Optional[str] = None) -> PluginError:
    """Map any exception raised while talking to a platform onto the plugin taxonomy."""
    if isinstance(exc, PluginError):
        if exc.source is None:
            exc.source = source
        return exc
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return FetchTimeoutError(message, source=source, cause=exc)
    if isinstance(exc, httpx.HTTPStatusError):
        error_cls = STATUS_RULES.get(exc.response.status_code)
        if error_cls is not None:
            return error_cls(message, source=source, cause=exc)
    return classify_message(message)(message, source=source, cause=exc)
