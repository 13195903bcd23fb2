"""
Application Exception Hierarchy

Provides structured exceptions for:
- Request validation (rejected before any network activity)
- Provider failures (HTTP, empty output, malformed structure, transport)
- Orchestration outcome (all providers exhausted)
- Cache backend failures (internal only)
- Configuration errors
"""

from typing import Optional, Any


class MetaMindError(Exception):
    """Base exception for all MetaMind errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        return self.message


# ==================== Validation Errors ====================

class ValidationError(MetaMindError):
    """Input validation error"""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        details = {"field": field}
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate, prompts can be huge
        super().__init__(message, details)


class InvalidRequestError(ValidationError):
    """Orchestrated request rejected before any provider call"""

    @classmethod
    def empty_prompt(cls) -> "InvalidRequestError":
        return cls("prompt", "A non-empty prompt is required for an orchestrated request")

    @classmethod
    def unknown_shape(cls, shape: Any) -> "InvalidRequestError":
        return cls(
            "expected_shape",
            f"Expected shape must be 'object' or 'array', got {shape!r}",
            shape
        )

    @classmethod
    def bad_lifetime(cls, lifetime_ms: Any) -> "InvalidRequestError":
        return cls(
            "cache_lifetime_ms",
            f"Cache lifetime must be a positive number of milliseconds, got {lifetime_ms!r}",
            lifetime_ms
        )


# ==================== Provider Errors ====================

class ProviderError(MetaMindError):
    """Base class for a single failed provider attempt"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs: Any
    ):
        self.provider = provider
        self.status_code = status_code
        details = {"provider": provider, "status_code": status_code, **kwargs}
        super().__init__(message, details)

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same credential may succeed"""
        return False


class ProviderHttpError(ProviderError):
    """Non-2xx response from a provider's generation endpoint"""

    def __init__(
        self,
        provider: str,
        status_code: int,
        response_body: Any = None,
        message: Optional[str] = None
    ):
        self.response_body = response_body
        super().__init__(
            message or f"{provider} error (HTTP {status_code})",
            provider=provider,
            status_code=status_code,
            response_body=str(response_body)[:500] if response_body is not None else None,
        )

    @property
    def is_transient(self) -> bool:
        return self.status_code in (408, 429, 500, 502, 503, 504, 529)

    @classmethod
    def rate_limited(cls, provider: str, body: Any = None) -> "ProviderHttpError":
        return cls(provider, 429, body, message=f"{provider} rate limited this credential")

    @classmethod
    def authentication_failed(cls, provider: str, body: Any = None) -> "ProviderHttpError":
        return cls(provider, 401, body, message=f"{provider} rejected the API key")

    @classmethod
    def overloaded(cls, provider: str) -> "ProviderHttpError":
        return cls(provider, 529, message=f"{provider} is overloaded")


class EmptyResponseError(ProviderError):
    """Provider answered 2xx but the envelope carried no text"""

    def __init__(self, provider: str):
        super().__init__(f"{provider} returned an empty response", provider=provider)


class MalformedStructureError(ProviderError):
    """Model text did not contain a parseable bracketed payload"""

    def __init__(self, reason: str, raw_text: str, provider: Optional[str] = None):
        self.reason = reason
        self.raw_text = raw_text
        super().__init__(
            f"Could not parse structured payload: {reason}",
            provider=provider,
            reason=reason,
            raw_text=raw_text[:200],
        )


class ProviderConnectionError(ProviderError):
    """Transport-level failure talking to a provider"""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"Failed to reach {provider}: {reason}", provider=provider, reason=reason)

    @property
    def is_transient(self) -> bool:
        return True


class ProviderTimeoutError(ProviderError):
    """A single provider attempt exceeded its deadline"""

    def __init__(self, provider: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{provider} attempt timed out after {timeout_seconds:.1f}s",
            provider=provider,
            timeout_seconds=timeout_seconds,
        )

    @property
    def is_transient(self) -> bool:
        return True


# ==================== Orchestration Errors ====================

class AllProvidersExhaustedError(MetaMindError):
    """Every credential of every routed provider failed"""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        if last_error is None:
            msg = "No provider credentials were available for this request"
        else:
            msg = f"All providers failed after {attempts} attempt(s). Last error: {last_error}"
        super().__init__(
            msg,
            {
                "attempts": attempts,
                "last_error_type": type(last_error).__name__ if last_error else None,
            }
        )


# ==================== Cache Errors ====================

class CacheUnavailableError(MetaMindError):
    """Cache backend could not be read or written. Never surfaced to callers."""

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Cache {operation} failed: {reason}",
            {"operation": operation, "reason": reason}
        )
        self.operation = operation
        self.reason = reason


# ==================== Configuration Errors ====================

class ConfigurationError(MetaMindError):
    """Configuration error"""
    pass


class MissingConfigError(ConfigurationError):
    """Required configuration missing"""

    def __init__(self, key: str, hint: Optional[str] = None):
        msg = f"Required configuration missing: {key}"
        if hint:
            msg += f". {hint}"
        super().__init__(msg, {"key": key})
        self.key = key
