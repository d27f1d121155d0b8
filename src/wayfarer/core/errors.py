"""Wayfarer Error System.

Provides structured error handling with:
- A closed set of error codes grouped by origin (llm, tool, execution, ...)
- A recoverable flag per error (defaulting from the code)
- Free-form context for debugging
- User-safe templated messages for anything shown to end users
"""

from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Error codes organized by origin.

    The value prefix is the category: ``llm``, ``tool``, ``execution``,
    ``session``, ``config``, ``hook`` or ``general``.
    """

    # LLM / provider errors
    LLM_REQUEST_FAILED = "llm.request_failed"
    LLM_TIMEOUT = "llm.timeout"
    LLM_RATE_LIMITED = "llm.rate_limited"
    LLM_AUTH_FAILED = "llm.auth_failed"
    LLM_MODEL_NOT_FOUND = "llm.model_not_found"
    LLM_CONTEXT_TOO_LONG = "llm.context_too_long"
    LLM_PROVIDER_UNAVAILABLE = "llm.provider_unavailable"

    # Tool errors
    TOOL_NOT_FOUND = "tool.not_found"
    TOOL_VALIDATION_FAILED = "tool.validation_failed"
    TOOL_EXECUTION_FAILED = "tool.execution_failed"
    TOOL_RATE_LIMITED = "tool.rate_limited"
    TOOL_TIMEOUT = "tool.timeout"

    # Execution errors
    EXECUTION_TIMEOUT = "execution.timeout"
    EXECUTION_MAX_ITERATIONS = "execution.max_iterations"
    EXECUTION_ABORTED = "execution.aborted"
    EXECUTION_FAILED = "execution.failed"

    # Session errors
    SESSION_NOT_FOUND = "session.not_found"
    SESSION_EXPIRED = "session.expired"
    SESSION_INVALID = "session.invalid"

    # Configuration errors
    CONFIG_INVALID = "config.invalid"
    CONFIG_MISSING_API_KEY = "config.missing_api_key"

    # Hook errors
    HOOK_BLOCKED = "hook.blocked"
    HOOK_TIMEOUT = "hook.timeout"
    HOOK_ERROR = "hook.error"

    # General
    UNKNOWN = "general.unknown"
    INTERNAL = "general.internal"

    @property
    def category(self) -> str:
        """Get the error category name."""
        return self.value.split(".", 1)[0]

    @property
    def is_recoverable(self) -> bool:
        """Whether this error type is typically recoverable."""
        return self in _RECOVERABLE_CODES


_RECOVERABLE_CODES = frozenset({
    ErrorCode.LLM_REQUEST_FAILED,
    ErrorCode.LLM_TIMEOUT,
    ErrorCode.LLM_RATE_LIMITED,
    ErrorCode.LLM_PROVIDER_UNAVAILABLE,
    ErrorCode.LLM_CONTEXT_TOO_LONG,
    ErrorCode.TOOL_EXECUTION_FAILED,
    ErrorCode.TOOL_RATE_LIMITED,
    ErrorCode.TOOL_TIMEOUT,
    ErrorCode.HOOK_TIMEOUT,
})


# User-facing templates. Never include raw provider or tool output here.
USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.LLM_REQUEST_FAILED: "The AI service could not complete the request. Please try again.",
    ErrorCode.LLM_TIMEOUT: "The AI service took too long to respond. Please try again.",
    ErrorCode.LLM_RATE_LIMITED: "The AI service is receiving too many requests. Please wait a moment and retry.",
    ErrorCode.LLM_AUTH_FAILED: "Authentication with the AI provider failed. Please check your API key in settings.",
    ErrorCode.LLM_MODEL_NOT_FOUND: "The configured model is not available. Please choose another model in settings.",
    ErrorCode.LLM_CONTEXT_TOO_LONG: "The conversation is too long for the model. Please start a new conversation.",
    ErrorCode.LLM_PROVIDER_UNAVAILABLE: "The AI provider is currently unavailable. Please try again later.",
    ErrorCode.TOOL_NOT_FOUND: "A requested action is not available.",
    ErrorCode.TOOL_VALIDATION_FAILED: "An action was rejected because its input was invalid.",
    ErrorCode.TOOL_EXECUTION_FAILED: "An action failed while running.",
    ErrorCode.TOOL_RATE_LIMITED: "Too many actions were requested in a short time. Please wait a moment.",
    ErrorCode.TOOL_TIMEOUT: "An action took too long and was stopped.",
    ErrorCode.EXECUTION_TIMEOUT: "The task took too long and was stopped before it finished.",
    ErrorCode.EXECUTION_MAX_ITERATIONS: "The task needed more steps than allowed and was stopped.",
    ErrorCode.EXECUTION_ABORTED: "The task was cancelled.",
    ErrorCode.EXECUTION_FAILED: "The task could not be completed.",
    ErrorCode.SESSION_NOT_FOUND: "The conversation session could not be found. Please start a new one.",
    ErrorCode.SESSION_EXPIRED: "The conversation session has expired. Please start a new one.",
    ErrorCode.SESSION_INVALID: "The conversation session is invalid. Please start a new one.",
    ErrorCode.CONFIG_INVALID: "The agent settings are invalid. Please review your configuration.",
    ErrorCode.CONFIG_MISSING_API_KEY: "No API key is configured for the selected AI provider.",
    ErrorCode.HOOK_BLOCKED: "The action was blocked by a safety check.",
    ErrorCode.HOOK_TIMEOUT: "A safety check took too long to respond.",
    ErrorCode.HOOK_ERROR: "A safety check failed while running.",
    ErrorCode.UNKNOWN: "Something went wrong. Please try again.",
    ErrorCode.INTERNAL: "An internal error occurred. Please try again.",
}


class AgentError(Exception):
    """Base error type for all Wayfarer errors.

    Example:
        >>> err = AgentError("Tool 'search' not registered", ErrorCode.TOOL_NOT_FOUND)
        >>> err.recoverable
        False
        >>> err.category
        'tool'
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message
        self.code = code
        self.recoverable = code.is_recoverable if recoverable is None else recoverable
        self.context = context or {}
        self.cause = cause
        super().__init__(message)

    @property
    def category(self) -> str:
        """Get the error category."""
        return self.code.category

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dict for logging/event payloads."""
        return {
            "code": self.code.value,
            "category": self.category,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
        }

    def for_llm(self) -> str:
        """Format error for LLM consumption so the agent can self-correct."""
        parts = [
            f"ERROR {self.code.value}: {self.message}",
            f"Recoverable: {self.recoverable}",
        ]
        if self.context:
            parts.append(f"Context: {self.context}")
        return "\n".join(parts)


class ProviderError(AgentError):
    """Error raised by an LLM provider client."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.LLM_REQUEST_FAILED,
        *,
        provider: str = "",
        status_code: int | None = None,
        recoverable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        self.provider = provider
        self.status_code = status_code
        ctx = {"provider": provider, **(context or {})}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message, code, recoverable=recoverable, context=ctx, cause=cause)


class CircuitOpenError(ProviderError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    def __init__(self, name: str, retry_in_ms: int):
        self.retry_in_ms = retry_in_ms
        super().__init__(
            f"Circuit breaker '{name}' is open; retry in {retry_in_ms}ms",
            ErrorCode.LLM_PROVIDER_UNAVAILABLE,
            provider=name,
            context={"retry_in_ms": retry_in_ms},
        )


class AllProvidersFailedError(ProviderError):
    """Raised when every provider in a fallback chain failed."""

    def __init__(
        self,
        failures: list[tuple[str, str]],
        code: ErrorCode = ErrorCode.LLM_PROVIDER_UNAVAILABLE,
    ):
        self.failures = failures
        detail = "; ".join(f"{name}: {msg}" for name, msg in failures)
        super().__init__(
            f"All providers failed: {detail}" if failures else "No providers available",
            code,
            recoverable=False,
            context={"failures": [{"provider": n, "error": m} for n, m in failures]},
        )


# Convenience factory functions

def llm_error(
    code: ErrorCode,
    message: str,
    provider: str = "",
    cause: BaseException | None = None,
    **extra: Any,
) -> ProviderError:
    """Create an LLM/provider error."""
    return ProviderError(message, code, provider=provider, context=extra, cause=cause)


def tool_error(
    code: ErrorCode,
    tool: str,
    detail: str = "",
    cause: BaseException | None = None,
    **extra: Any,
) -> AgentError:
    """Create a tool-related error."""
    message = f"Tool '{tool}': {detail}" if detail else f"Tool '{tool}' failed"
    return AgentError(message, code, context={"tool": tool, **extra}, cause=cause)


def execution_error(code: ErrorCode, detail: str, **extra: Any) -> AgentError:
    """Create an execution error."""
    return AgentError(detail, code, context=extra)


def session_error(code: ErrorCode, session_id: str) -> AgentError:
    """Create a session error."""
    return AgentError(
        f"Session '{session_id}': {code.value.split('.', 1)[1].replace('_', ' ')}",
        code,
        context={"session_id": session_id},
    )


def config_error(code: ErrorCode, key: str = "", detail: str = "") -> AgentError:
    """Create a configuration error."""
    return AgentError(
        f"Invalid configuration for '{key}': {detail}" if key else detail,
        code,
        context={"key": key},
    )


def hook_error(code: ErrorCode, hook_id: str, detail: str = "") -> AgentError:
    """Create a hook error."""
    return AgentError(detail or f"Hook '{hook_id}' failed", code, context={"hook_id": hook_id})


# Error translation from HTTP responses

_CONTEXT_LENGTH_MARKERS = ("context length", "context_length", "too long", "maximum context", "too many tokens")


def create_error_from_response(
    status: int,
    body: str = "",
    provider: str = "",
) -> ProviderError:
    """Translate an HTTP error status from a provider into a ProviderError."""
    detail = body[:500] if body else f"HTTP {status}"

    if status in (401, 403):
        return ProviderError(
            f"Authentication failed: {detail}", ErrorCode.LLM_AUTH_FAILED,
            provider=provider, status_code=status, recoverable=False,
        )
    if status == 429:
        return ProviderError(
            f"Rate limited: {detail}", ErrorCode.LLM_RATE_LIMITED,
            provider=provider, status_code=status, recoverable=True,
        )
    if status == 404:
        return ProviderError(
            f"Model not found: {detail}", ErrorCode.LLM_MODEL_NOT_FOUND,
            provider=provider, status_code=status, recoverable=False,
        )
    if status == 503:
        return ProviderError(
            f"Provider unavailable: {detail}", ErrorCode.LLM_PROVIDER_UNAVAILABLE,
            provider=provider, status_code=status, recoverable=True,
        )
    if status == 400 and any(marker in body.lower() for marker in _CONTEXT_LENGTH_MARKERS):
        return ProviderError(
            f"Context too long: {detail}", ErrorCode.LLM_CONTEXT_TOO_LONG,
            provider=provider, status_code=status, recoverable=True,
        )
    return ProviderError(
        f"Request failed: {detail}", ErrorCode.LLM_REQUEST_FAILED,
        provider=provider, status_code=status, recoverable=status >= 500,
    )


def format_error_for_user(error: BaseException) -> str:
    """Render any exception as a templated, user-safe message.

    Raw exception text is never returned; only the template for the
    error's code.
    """
    if isinstance(error, AgentError):
        return USER_MESSAGES.get(error.code, USER_MESSAGES[ErrorCode.UNKNOWN])
    if isinstance(error, TimeoutError):
        return USER_MESSAGES[ErrorCode.EXECUTION_TIMEOUT]
    return USER_MESSAGES[ErrorCode.UNKNOWN]


def error_code_of(error: BaseException) -> ErrorCode:
    """Get the ErrorCode for any exception (UNKNOWN for foreign ones)."""
    if isinstance(error, AgentError):
        return error.code
    if isinstance(error, TimeoutError):
        return ErrorCode.EXECUTION_TIMEOUT
    return ErrorCode.UNKNOWN
