"""Shared HTTP plumbing for provider clients.

HttpProvider owns one lazily created ``httpx.AsyncClient`` and posts JSON
with retry: 408, 429 and 5xx responses, timeouts and connection errors are
retried with exponential backoff plus jitter. A final non-retryable status
is translated with create_error_from_response.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from wayfarer.agent.reliability.backoff import BackoffPolicy, compute_backoff
from wayfarer.core.errors import ErrorCode, ProviderError, create_error_from_response
from wayfarer.models.protocol import CompletionOptions, ProviderKind, ProviderSettings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUS or status >= 500


class HttpProvider:
    """Base class for providers that speak JSON over HTTP."""

    kind: ProviderKind

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        max_connections: int = 10,
    ):
        self.settings = settings
        self._transport = transport
        self._max_connections = max_connections
        self._client: httpx.AsyncClient | None = None
        self._backoff = BackoffPolicy(
            initial_ms=settings.retry_base_ms,
            max_ms=max(settings.retry_base_ms, settings.retry_max_ms),
            jitter=0.2,
        )

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def model(self) -> str:
        return self.settings.model

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            limits = httpx.Limits(
                max_connections=self._max_connections,
                max_keepalive_connections=self._max_connections,
            )
            timeout = httpx.Timeout(timeout=self.settings.timeout_ms / 1000, connect=10.0)
            self._client = httpx.AsyncClient(
                limits=limits,
                timeout=timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _options(self, options: CompletionOptions | None) -> CompletionOptions:
        if options is None:
            return self.settings.default_options()
        defaults = self.settings.default_options()
        return CompletionOptions(
            max_tokens=options.max_tokens or defaults.max_tokens,
            temperature=options.temperature if options.temperature is not None else defaults.temperature,
            top_p=options.top_p if options.top_p is not None else defaults.top_p,
            thinking_budget=options.thinking_budget,
            stop=options.stop,
        )

    async def _post_json(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        """POST ``body`` and return the decoded JSON response.

        Raises:
            ProviderError: LLM_TIMEOUT when every attempt timed out,
                LLM_PROVIDER_UNAVAILABLE on exhausted connection errors,
                otherwise the code mapped from the final HTTP status.
        """
        client = self._get_client()
        max_retries = self.settings.max_retries
        last_exc: Exception | None = None

        for attempt in range(max_retries + 1):
            try:
                response = await client.post(url, json=body, headers=headers)
            except httpx.TimeoutException as e:
                last_exc = e
                logger.warning("%s request timed out (attempt %d)", self.name, attempt + 1)
            except httpx.TransportError as e:
                last_exc = e
                logger.warning("%s connection error (attempt %d): %s", self.name, attempt + 1, e)
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except json.JSONDecodeError as e:
                        raise ProviderError(
                            f"Invalid JSON from {self.name}",
                            ErrorCode.LLM_REQUEST_FAILED,
                            provider=self.name,
                            status_code=response.status_code,
                            cause=e,
                        ) from e
                if not is_retryable_status(response.status_code) or attempt >= max_retries:
                    raise create_error_from_response(
                        response.status_code, _error_detail(response), self.name
                    )
                logger.warning(
                    "%s returned HTTP %d (attempt %d), retrying",
                    self.name,
                    response.status_code,
                    attempt + 1,
                )

            if attempt < max_retries:
                await asyncio.sleep(compute_backoff(self._backoff, attempt) / 1000)

        if isinstance(last_exc, httpx.TimeoutException):
            raise ProviderError(
                f"{self.name} request timed out after {max_retries + 1} attempts",
                ErrorCode.LLM_TIMEOUT,
                provider=self.name,
                cause=last_exc,
            ) from last_exc
        raise ProviderError(
            f"{self.name} unreachable: {last_exc}",
            ErrorCode.LLM_PROVIDER_UNAVAILABLE,
            provider=self.name,
            cause=last_exc,
        ) from last_exc


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a provider error body."""
    try:
        data = response.json()
    except json.JSONDecodeError:
        return response.text or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return response.text or response.reason_phrase
