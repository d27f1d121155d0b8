"""Wayfarer configuration management.

AgentConfig is created once (from settings, a YAML file, or keyword
overrides) and never mutated during a run.

Config locations (in priority order):
1. Environment variables (WAYFARER_*, plus the usual provider API key vars)
2. Explicit path passed to load_config()
3. .wayfarer/config.yaml (project-local)
4. ~/.wayfarer/config.yaml (user-global)
5. Built-in defaults

Thread Safety:
    The process-wide config is lazily loaded under a threading.Lock.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from wayfarer.core.errors import ErrorCode, config_error
from wayfarer.core.types import ThinkingLevel
from wayfarer.core.providers import (
    PROVIDER_API_KEY_ENV,
    PROVIDER_DEFAULT_MODELS,
    ProviderKind,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constant tables
# =============================================================================

@dataclass(frozen=True, slots=True)
class CircuitBreakerDefaults:
    failure_threshold: int = 5
    recovery_timeout_ms: int = 30_000
    success_threshold: int = 3


CIRCUIT_BREAKER_CONFIG = CircuitBreakerDefaults()


@dataclass(frozen=True, slots=True)
class ProviderRateLimit:
    requests_per_minute: int
    tokens_per_minute: int


RATE_LIMIT_CONFIG: dict[ProviderKind, ProviderRateLimit] = {
    ProviderKind.ANTHROPIC: ProviderRateLimit(60, 100_000),
    ProviderKind.OPENAI: ProviderRateLimit(500, 150_000),
    ProviderKind.OPENROUTER: ProviderRateLimit(200, 100_000),
    ProviderKind.OLLAMA: ProviderRateLimit(1_000, 1_000_000),
    ProviderKind.ZAI: ProviderRateLimit(60, 100_000),
}


@dataclass(frozen=True, slots=True)
class CompactionDefaults:
    max_tokens_before_compaction: int = 100_000
    target_tokens_after_compaction: int = 50_000
    preserve_recent_messages: int = 10


COMPACTION_CONFIG = CompactionDefaults()


@dataclass(frozen=True, slots=True)
class ThinkingPrompt:
    """Prompt augmentation for one thinking level."""

    prefix: str
    suffix: str
    include_in_response: bool
    max_tokens: int


THINKING_PROMPT_TEXTS: dict[ThinkingLevel, ThinkingPrompt] = {
    ThinkingLevel.OFF: ThinkingPrompt("", "", False, 0),
    ThinkingLevel.MINIMAL: ThinkingPrompt("Think briefly before responding.", "", False, 200),
    ThinkingLevel.LOW: ThinkingPrompt(
        "Consider the context and plan your approach before acting.",
        "Now proceed with your action.",
        True,
        500,
    ),
    ThinkingLevel.MEDIUM: ThinkingPrompt(
        "Think through your approach step by step:\n"
        "1. Analyze the current situation\n"
        "2. Identify the goal\n"
        "3. Consider available options\n"
        "4. Choose the best action\n"
        "5. Plan the execution",
        "Now execute your plan.",
        True,
        1000,
    ),
    ThinkingLevel.HIGH: ThinkingPrompt(
        "<thinking_protocol>\n"
        "Before taking any action, thoroughly analyze:\n"
        "1. The user's true intent and any implicit requirements\n"
        "2. The current state and available resources\n"
        "3. Potential risks and edge cases\n"
        "4. The optimal sequence of actions\n"
        "5. How to verify success\n"
        "\n"
        "Document your reasoning process and explain your decisions.\n"
        "Consider alternative approaches and their trade-offs.\n"
        "</thinking_protocol>",
        "Now proceed with your well-reasoned action.",
        True,
        2000,
    ),
}


# =============================================================================
# AgentConfig
# =============================================================================


@dataclass(frozen=True)
class AgentConfig:
    """Immutable per-run agent configuration."""

    provider: ProviderKind = ProviderKind.ANTHROPIC
    """Primary LLM backend."""

    model_name: str = PROVIDER_DEFAULT_MODELS[ProviderKind.ANTHROPIC]
    """Model identifier sent to the provider."""

    api_key: str | None = None
    """API key for the primary provider."""

    base_url: str | None = None
    """Full endpoint override for the primary provider."""

    max_tokens: int = 4096
    """Maximum output tokens per LLM call."""

    temperature: int = 70
    """Sampling temperature on a 0-100 scale."""

    top_p: int = 100
    """Nucleus sampling on a 0-100 scale."""

    max_steps: int = 20
    """Maximum ReAct iterations per run."""

    max_duration_ms: int = 300_000
    """Wall-clock budget per run."""

    thinking_level: ThinkingLevel = ThinkingLevel.LOW
    """Reasoning depth for prompt augmentation."""

    autonomous: bool = True
    """Run tool calls without asking for confirmation."""

    enable_caching: bool = True
    """Cache read-only tool results and LLM responses."""

    tool_cache_size: int = 256
    tool_cache_ttl_ms: int = 15_000

    retry_max: int = 3
    retry_base_ms: int = 1_000
    retry_max_delay_ms: int = 10_000
    llm_timeout_ms: int = 60_000

    enable_streaming: bool = True
    enable_telemetry: bool = True
    enable_compaction: bool = True

    fallback_enabled: bool = True
    """Cascade to fallback providers when the primary fails."""

    fallback_providers: tuple[ProviderKind, ...] = ()
    """Ordered fallback chain (after the primary)."""

    api_keys: dict[str, str] = field(default_factory=dict)
    """Per-provider API keys for fallback providers (provider value -> key)."""

    debug: bool = False

    def key_for(self, kind: ProviderKind) -> str | None:
        """Resolve the API key for a provider."""
        if kind is self.provider and self.api_key:
            return self.api_key
        return self.api_keys.get(kind.value) or os.environ.get(PROVIDER_API_KEY_ENV[kind])

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        data["thinking_level"] = self.thinking_level.value
        data["fallback_providers"] = [p.value for p in self.fallback_providers]
        data["api_key"] = "***" if self.api_key else None
        data["api_keys"] = {k: "***" for k in self.api_keys}
        return data


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Values derived from AgentConfig in the units the runtime uses."""

    max_steps: int
    max_duration_ms: int
    temperature: float
    """0.0-1.0"""

    top_p: float
    """0.0-1.0"""

    thinking_level: ThinkingLevel
    tool_cache_size: int
    tool_cache_ttl_ms: int
    llm_timeout_ms: int
    caching: bool
    compaction: bool
    telemetry: bool


_FIELD_NAMES = {f.name for f in fields(AgentConfig)}


def _coerce_enums(data: dict[str, Any]) -> dict[str, Any]:
    """Convert string values for enum fields."""
    out = dict(data)
    if isinstance(out.get("provider"), str):
        out["provider"] = ProviderKind(out["provider"].lower())
    if isinstance(out.get("thinking_level"), str):
        out["thinking_level"] = ThinkingLevel(out["thinking_level"].lower())
    if "fallback_providers" in out:
        value = out["fallback_providers"]
        if isinstance(value, str):
            value = [v.strip() for v in value.split(",") if v.strip()]
        out["fallback_providers"] = tuple(
            v if isinstance(v, ProviderKind) else ProviderKind(str(v).lower()) for v in value
        )
    return out


def create_agent_config(**overrides: Any) -> AgentConfig:
    """Create a config by merging keyword overrides with defaults.

    When the provider is overridden but the model is not, the provider's
    default model is used.

    Raises:
        AgentError: CONFIG_INVALID for unknown keys or enum values.
    """
    unknown = set(overrides) - _FIELD_NAMES
    if unknown:
        raise config_error(ErrorCode.CONFIG_INVALID, ", ".join(sorted(unknown)), "unknown option")
    try:
        values = _coerce_enums(overrides)
    except ValueError as e:
        raise config_error(ErrorCode.CONFIG_INVALID, "provider/thinking_level", str(e)) from e

    if "provider" in values and "model_name" not in values:
        values["model_name"] = PROVIDER_DEFAULT_MODELS[values["provider"]]
    return replace(AgentConfig(), **values)


def get_runtime_config(config: AgentConfig) -> RuntimeConfig:
    """Derive normalized runtime values (0-100 scales become 0-1)."""
    return RuntimeConfig(
        max_steps=config.max_steps,
        max_duration_ms=config.max_duration_ms,
        temperature=config.temperature / 100,
        top_p=config.top_p / 100,
        thinking_level=config.thinking_level,
        tool_cache_size=config.tool_cache_size,
        tool_cache_ttl_ms=config.tool_cache_ttl_ms,
        llm_timeout_ms=config.llm_timeout_ms,
        caching=config.enable_caching,
        compaction=config.enable_compaction,
        telemetry=config.enable_telemetry,
    )


def validate_agent_config(config: AgentConfig) -> list[str]:
    """Validate a config.

    Returns:
        List of human-readable problems. Empty means valid.
    """
    errors: list[str] = []
    if not config.model_name:
        errors.append("Model name is required")
    if config.max_tokens < 1:
        errors.append("max_tokens must be at least 1")
    if config.max_steps < 1:
        errors.append("max_steps must be at least 1")
    if config.max_duration_ms < 1000:
        errors.append("max_duration_ms must be at least 1000")
    if not 0 <= config.temperature <= 100:
        errors.append("temperature must be between 0 and 100")
    if not 0 <= config.top_p <= 100:
        errors.append("top_p must be between 0 and 100")
    if not isinstance(config.thinking_level, ThinkingLevel):
        errors.append(f"Invalid thinking level: {config.thinking_level!r}")
    if not isinstance(config.provider, ProviderKind):
        errors.append(f"Unsupported provider: {config.provider!r}")
    elif config.provider.requires_api_key and not config.key_for(config.provider):
        errors.append(f"API key is required for provider '{config.provider.value}'")
    return errors


# =============================================================================
# File + environment loading
# =============================================================================

_config: AgentConfig | None = None
_config_lock = threading.Lock()


def _deep_update(base: dict, updates: dict) -> dict:
    """Recursively update a dict with another dict."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _coerce_env_value(value: str) -> Any:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def _apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Apply WAYFARER_<FIELD> environment overrides.

    Examples:
        WAYFARER_PROVIDER=openai
        WAYFARER_MAX_STEPS=40
        WAYFARER_ENABLE_COMPACTION=false
    """
    prefix = "WAYFARER_"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):].lower()
        if name not in _FIELD_NAMES:
            continue
        # Strings that look numeric stay strings for these
        if name in ("model_name", "api_key", "base_url"):
            config_dict[name] = value
        else:
            config_dict[name] = _coerce_env_value(value)
    return config_dict


def load_config(path: str | Path | None = None) -> AgentConfig:
    """Load configuration from file with defaults and env overrides.

    Args:
        path: Optional explicit config file path.

    Returns:
        Merged AgentConfig instance.
    """
    global _config

    config_dict: dict[str, Any] = {}

    config_paths: list[Path] = []
    if path:
        config_paths.append(Path(path))
    config_paths.extend([
        Path(".wayfarer/config.yaml"),
        Path.home() / ".wayfarer" / "config.yaml",
    ])

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path) as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Skipping invalid config file %s: %s", config_path, e)
                continue
            _deep_update(config_dict, file_config.get("agent", file_config))
            logger.debug("Loaded config from %s", config_path)
            break  # Use first found config

    config_dict = _apply_env_overrides(config_dict)
    config_dict = {k: v for k, v in config_dict.items() if k in _FIELD_NAMES}

    _config = create_agent_config(**config_dict)
    return _config


def get_config() -> AgentConfig:
    """Get the process configuration, loading if needed."""
    global _config

    if _config is not None:
        return _config

    with _config_lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config() -> None:
    """Reset the process config (useful for testing)."""
    global _config
    with _config_lock:
        _config = None


def save_default_config(path: str | Path = ".wayfarer/config.yaml") -> Path:
    """Save a commented default configuration file.

    Args:
        path: Where to save the config.

    Returns:
        Path to the saved config file.
    """
    config_content = """# Wayfarer Configuration

agent:
  # LLM backend: anthropic | openai | openrouter | ollama | zai
  provider: anthropic
  model_name: claude-3-5-sonnet-20241022

  # API keys are best supplied via ANTHROPIC_API_KEY / OPENAI_API_KEY / ...
  # api_key: sk-...

  # Sampling on a 0-100 scale
  temperature: 70
  top_p: 100
  max_tokens: 4096

  # Run budgets
  max_steps: 20
  max_duration_ms: 300000

  # off | minimal | low | medium | high
  thinking_level: low

  # Resilience
  retry_max: 3
  retry_base_ms: 1000
  retry_max_delay_ms: 10000
  llm_timeout_ms: 60000
  fallback_enabled: true
  fallback_providers: []

  # Features
  enable_caching: true
  tool_cache_size: 256
  tool_cache_ttl_ms: 15000
  enable_compaction: true
  enable_telemetry: true
  enable_streaming: true
"""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(config_content)
    return config_path
