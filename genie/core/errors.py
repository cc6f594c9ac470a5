"""Error taxonomy for the invocation layer.

Every failure surfaced to callers is a ProviderError subclass carrying the
provider it came from and an HTTP-like status code, so callers can render one
consolidated message per operation (and suppress error UI for Cancelled).
"""


class ProviderError(Exception):
    """Base error for all provider invocation failures."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ClientNotInitialized(ProviderError):
    """The backend client handle was never constructed (missing API key)."""

    status_code = 500


class ModelNotSelected(ProviderError):
    """No model id was configured for the request."""

    status_code = 400


class Cancelled(ProviderError):
    """User-initiated or programmatic cancellation."""

    status_code = 499

    def __init__(self, message: str = "Request cancelled", **kwargs) -> None:
        super().__init__(message, **kwargs)


class RateLimited(ProviderError):
    """Backend rejected the call with a rate-limit signal."""

    status_code = 429


class RetriesExhausted(ProviderError):
    """Retry budget spent; wraps the last retryable failure."""

    def __init__(self, message: str, *, last_error: BaseException, **kwargs) -> None:
        status = getattr(last_error, "status_code", None)
        if isinstance(status, int):
            kwargs.setdefault("status_code", status)
        super().__init__(message, **kwargs)
        self.last_error = last_error


class ParseError(ProviderError):
    """Structured output could not be decoded into the expected schema."""

    status_code = 502

    def __init__(self, message: str, *, raw_text: str | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.raw_text = raw_text


class NoToolCall(ProviderError):
    """A tool-mode response carried neither a tool call nor a final answer."""

    status_code = 502


class InvalidCredential(ProviderError):
    """Credential probe failed."""

    status_code = 401


class UnsupportedProvider(ProviderError):
    """Unknown backend name."""

    status_code = 400


class UnsupportedRequestKind(ProviderError):
    """Request kind has no schema or is not supported by the backend."""

    status_code = 400


class UnknownPricing(ProviderError):
    """No pricing entry for a model key. Logged, never raised to callers."""

    status_code = 404


class LedgerUnavailable(ProviderError):
    """Durable store failure. Logged, never raised to callers."""

    status_code = 503


def wrap_error(error: BaseException, provider: str) -> ProviderError:
    """Convert an arbitrary SDK failure into a ProviderError."""
    if isinstance(error, ProviderError):
        if not error.provider:
            error.provider = provider
        return error
    status = getattr(error, "status_code", None)
    if not isinstance(status, int):
        status = getattr(error, "code", None)
    wrapped = ProviderError(
        f"{type(error).__name__}: {error}",
        provider=provider,
        status_code=status if isinstance(status, int) else 500,
    )
    wrapped.__cause__ = error
    return wrapped


__all__ = [
    "ProviderError",
    "ClientNotInitialized",
    "ModelNotSelected",
    "Cancelled",
    "RateLimited",
    "RetriesExhausted",
    "ParseError",
    "NoToolCall",
    "InvalidCredential",
    "UnsupportedProvider",
    "UnsupportedRequestKind",
    "UnknownPricing",
    "LedgerUnavailable",
    "wrap_error",
]
