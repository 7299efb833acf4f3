"""Gateway error taxonomy and error classification.

Every backend adapter converts SDK exceptions into one of the
GatewayError subclasses below, so retry and fallback logic only
reason about ``ErrorKind`` values:

- ConfigurationError: no credentials for a required provider (fatal)
- QuotaError: HTTP 429 / RESOURCE_EXHAUSTED (rotate key, then backoff)
- AuthError: HTTP 401/403 (rotate key, never wait)
- NotFoundError: model unknown at the provider (terminal for a link)
- TransientError: anything else (chain advances to the next link)
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar

from pydantic import ValidationError


class ErrorKind(StrEnum):
    """Classification driving retry, rotation and fallback decisions."""

    QUOTA = "quota"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    CONFIGURATION = "configuration"
    OTHER = "other"


# Substrings used only when an exception carries no status code.
QUOTA_MARKERS: tuple[str, ...] = ("429", "RESOURCE_EXHAUSTED")


class GatewayError(Exception):
    """Base class for all errors raised by the gateway."""

    kind: ClassVar[ErrorKind] = ErrorKind.OTHER

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(GatewayError):
    """No usable credentials for a provider."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, provider: str, message: str | None = None) -> None:
        super().__init__(
            message or f"No API keys available for provider: {provider}",
            provider=provider,
        )


class QuotaError(GatewayError):
    """Provider rejected the call as rate limited or quota exhausted."""

    kind = ErrorKind.QUOTA


class AuthError(GatewayError):
    """Credential rejected by the provider."""

    kind = ErrorKind.AUTH


class NotFoundError(GatewayError):
    """Requested model does not exist at the provider."""

    kind = ErrorKind.NOT_FOUND


class TransientError(GatewayError):
    """Any other network, provider or parse failure."""


class StructuredOutputError(TransientError):
    """Raised when a JSON-mode response cannot be parsed.

    Attributes:
        provider: Name of the provider that returned invalid output.
        raw_content: The raw response text that failed validation.
        schema_name: Name of the expected shape.
    """

    def __init__(
        self,
        provider: str,
        raw_content: str,
        schema_name: str,
        cause: ValidationError | ValueError,
    ) -> None:
        self.raw_content = raw_content
        self.schema_name = schema_name
        super().__init__(
            f"{provider}: failed to parse response as {schema_name}",
            provider=provider,
        )
        self.__cause__ = cause


class AllLinksFailedError(GatewayError):
    """Every link of a fallback chain failed.

    ``__cause__`` is the error of the last link tried, not the first.
    """

    def __init__(
        self,
        task: str,
        layers_attempted: int,
        errors: list[tuple[str, str]],
        last_error: BaseException | None,
    ) -> None:
        self.task = task
        self.layers_attempted = layers_attempted
        self.errors = errors
        self.last_error = last_error
        last = str(last_error) if last_error is not None else "no links configured"
        super().__init__(
            f"Task '{task}' failed after {layers_attempted} fallback layers. "
            f"Last error: {last}"
        )
        self.__cause__ = last_error


def kind_for_status(status: int | None) -> ErrorKind | None:
    """Map an HTTP status code to an ErrorKind, None if not an error."""
    if status is None or status < 400:
        return None
    if status == 429:
        return ErrorKind.QUOTA
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.OTHER


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify any exception into an ErrorKind.

    Gateway errors carry their kind. Foreign exceptions are inspected
    with duck typing so no SDK exception classes are imported here:
    ``status_code`` (openai, httpx-style) first, then ``code``
    (google-genai), then the message text as a last resort.
    """
    if isinstance(exc, GatewayError):
        return exc.kind

    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            kind = kind_for_status(value)
            if kind is not None:
                return kind

    status = getattr(exc, "status", None)
    if status == "RESOURCE_EXHAUSTED":
        return ErrorKind.QUOTA

    message = str(exc)
    if any(marker in message for marker in QUOTA_MARKERS):
        return ErrorKind.QUOTA
    return ErrorKind.OTHER


def is_quota_error(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.QUOTA
