"""Tests for the structured error system."""

import pytest

from wayfarer.core.errors import (
    USER_MESSAGES,
    AgentError,
    AllProvidersFailedError,
    CircuitOpenError,
    ErrorCode,
    ProviderError,
    config_error,
    create_error_from_response,
    error_code_of,
    format_error_for_user,
    session_error,
    tool_error,
)


# =============================================================================
# ErrorCode
# =============================================================================


class TestErrorCode:
    """Tests for the closed error code set."""

    def test_category_is_value_prefix(self) -> None:
        """Category comes from the dotted value."""
        assert ErrorCode.LLM_TIMEOUT.category == "llm"
        assert ErrorCode.TOOL_NOT_FOUND.category == "tool"
        assert ErrorCode.UNKNOWN.category == "general"

    def test_recoverable_codes(self) -> None:
        """Transient failures are recoverable, auth and lookup failures are not."""
        assert ErrorCode.LLM_RATE_LIMITED.is_recoverable
        assert ErrorCode.TOOL_TIMEOUT.is_recoverable
        assert not ErrorCode.LLM_AUTH_FAILED.is_recoverable
        assert not ErrorCode.TOOL_NOT_FOUND.is_recoverable

    def test_every_code_has_user_message(self) -> None:
        """No code falls through to a raw message."""
        assert set(USER_MESSAGES) == set(ErrorCode)


# =============================================================================
# AgentError
# =============================================================================


class TestAgentError:
    """Tests for AgentError and its subclasses."""

    def test_recoverable_defaults_from_code(self) -> None:
        """recoverable follows the code unless overridden."""
        assert AgentError("x", ErrorCode.LLM_TIMEOUT).recoverable is True
        assert AgentError("x", ErrorCode.LLM_TIMEOUT, recoverable=False).recoverable is False

    def test_str_includes_code(self) -> None:
        """String form is prefixed with the code value."""
        assert str(AgentError("boom", ErrorCode.EXECUTION_FAILED)) == "[execution.failed] boom"

    def test_to_dict(self) -> None:
        """to_dict carries code, category and context."""
        err = tool_error(ErrorCode.TOOL_EXECUTION_FAILED, "search", "bad query", query="x")
        data = err.to_dict()
        assert data["code"] == "tool.execution_failed"
        assert data["category"] == "tool"
        assert data["context"] == {"tool": "search", "query": "x"}
        assert data["recoverable"] is True

    def test_for_llm(self) -> None:
        """for_llm renders a structured block the model can act on."""
        text = tool_error(ErrorCode.TOOL_NOT_FOUND, "frobnicate").for_llm()
        assert text.startswith("ERROR tool.not_found:")
        assert "Recoverable: False" in text

    def test_provider_error_context(self) -> None:
        """ProviderError records provider and status code."""
        err = ProviderError("nope", provider="openai", status_code=500)
        assert err.provider == "openai"
        assert err.context["status_code"] == 500

    def test_circuit_open_error(self) -> None:
        """CircuitOpenError is a provider-unavailable error."""
        err = CircuitOpenError("anthropic", 1500)
        assert err.code is ErrorCode.LLM_PROVIDER_UNAVAILABLE
        assert err.retry_in_ms == 1500

    def test_all_providers_failed(self) -> None:
        """AllProvidersFailedError lists every failure and is not recoverable."""
        err = AllProvidersFailedError([("a", "down"), ("b", "timeout")])
        assert "a: down" in err.message
        assert "b: timeout" in err.message
        assert err.recoverable is False

    def test_session_and_config_factories(self) -> None:
        """Factories set code and context."""
        assert session_error(ErrorCode.SESSION_NOT_FOUND, "s1").context == {"session_id": "s1"}
        assert config_error(ErrorCode.CONFIG_INVALID, "max_steps", "must be >= 1").code is ErrorCode.CONFIG_INVALID


# =============================================================================
# HTTP translation
# =============================================================================


class TestCreateErrorFromResponse:
    """Tests for status -> error translation."""

    @pytest.mark.parametrize(
        ("status", "body", "code", "recoverable"),
        [
            (401, "", ErrorCode.LLM_AUTH_FAILED, False),
            (403, "", ErrorCode.LLM_AUTH_FAILED, False),
            (429, "slow down", ErrorCode.LLM_RATE_LIMITED, True),
            (404, "", ErrorCode.LLM_MODEL_NOT_FOUND, False),
            (503, "", ErrorCode.LLM_PROVIDER_UNAVAILABLE, True),
            (400, "prompt exceeds maximum context length", ErrorCode.LLM_CONTEXT_TOO_LONG, True),
            (400, "bad field", ErrorCode.LLM_REQUEST_FAILED, False),
            (500, "", ErrorCode.LLM_REQUEST_FAILED, True),
            (418, "", ErrorCode.LLM_REQUEST_FAILED, False),
        ],
    )
    def test_mapping(self, status: int, body: str, code: ErrorCode, recoverable: bool) -> None:
        """Each status class maps to its code and recoverability."""
        err = create_error_from_response(status, body, "openai")
        assert err.code is code
        assert err.recoverable is recoverable
        assert err.status_code == status


class TestFormatErrorForUser:
    """Tests for user-safe rendering."""

    def test_never_leaks_raw_text(self) -> None:
        """Only the template is returned."""
        err = ProviderError("secret key sk-123 rejected", ErrorCode.LLM_AUTH_FAILED)
        message = format_error_for_user(err)
        assert "sk-123" not in message
        assert message == USER_MESSAGES[ErrorCode.LLM_AUTH_FAILED]

    def test_foreign_exceptions(self) -> None:
        """Timeouts and unknown exceptions get generic templates."""
        assert format_error_for_user(TimeoutError()) == USER_MESSAGES[ErrorCode.EXECUTION_TIMEOUT]
        assert format_error_for_user(RuntimeError("x")) == USER_MESSAGES[ErrorCode.UNKNOWN]
        assert error_code_of(RuntimeError("x")) is ErrorCode.UNKNOWN
