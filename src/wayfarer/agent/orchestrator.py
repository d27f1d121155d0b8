"""Agent: wires every collaborator for a user and runs one request at a time.

Everything is built here and passed down through constructors. Nothing
is looked up from process globals, so two agents in one process never
share state unless the caller hands them the same bus or session manager.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import EventType
from wayfarer.agent.execution.react_loop import ReActConfig, ReActLoop, ReActResult
from wayfarer.agent.execution.thinking import ThinkingEngine
from wayfarer.agent.hooks.manager import HookManager, cache_check_hook
from wayfarer.agent.hooks.rules import RuleEngine
from wayfarer.agent.reliability.circuit_breaker import CircuitBreakerRegistry
from wayfarer.agent.reliability.fallback import FallbackConfig, FallbackManager, FallbackProvider
from wayfarer.agent.reliability.recovery import ErrorRecovery, RecoveryConfig
from wayfarer.agent.reliability.token_tracker import TokenTracker
from wayfarer.cache.response_cache import CachingProvider, ResponseCache
from wayfarer.cache.tool_cache import ToolCache
from wayfarer.config import AgentConfig, get_runtime_config
from wayfarer.core.context import ExecutionContext, new_run_id
from wayfarer.core.errors import AgentError, ErrorCode, error_code_of, format_error_for_user, session_error
from wayfarer.core.types import (
    AgentAction,
    AgentTelemetry,
    ExecutionResult,
    Message,
    Observation,
    ProgressCallback,
    ThinkingLevel,
    ToolDefinition,
)
from wayfarer.models.factory import create_provider
from wayfarer.models.protocol import LlmProvider
from wayfarer.plugins.interface import Plugin, PluginConfig
from wayfarer.plugins.loader import PluginLoader
from wayfarer.session.compactor import CompactionConfig, ContextCompactor
from wayfarer.session.manager import SessionManager
from wayfarer.session.store import ConversationRepository
from wayfarer.tools.rate_limiter import DEFAULT_TOOL_RATE_LIMIT, SlidingWindowLimiter
from wayfarer.tools.executor import ToolExecutor
from wayfarer.tools.registry import ToolRegistry, is_write_tool

logger = logging.getLogger(__name__)

# Priority gap between chained providers
_PRIORITY_STEP = 10


def build_actions(observations: Sequence[Observation], tools: ToolRegistry) -> tuple[AgentAction, ...]:
    """Summarize tool observations as persisted actions."""
    actions: list[AgentAction] = []
    for obs in observations:
        if obs.tool_name is None:
            continue
        tool = tools.get(obs.tool_name)
        if obs.error_code is ErrorCode.HOOK_BLOCKED:
            status = "blocked"
        else:
            status = "executed" if obs.success else "failed"
        actions.append(AgentAction(
            type="write" if tool is not None and is_write_tool(tool) else "read",
            entity=obs.tool_name,
            description=f"Tool call: {obs.tool_name}",
            status=status,
            data={"result": obs.result, "error": obs.error},
        ))
    return tuple(actions)


class Agent:
    """Autonomous agent for one user.

    Example:
        >>> agent = Agent("user-1", create_agent_config(provider="ollama"), tools=[search])
        >>> result = await agent.process_message("Find my open tasks")
        >>> result.success
        True
        >>> await agent.dispose()

    Args:
        user_id: Owner of every run and session this agent creates
        config: Immutable agent configuration
        tools: Tools registered up front
        plugins: Plugins registered up front, initialized by initialize()
        event_bus: Bus for structured events (a private one by default)
        provider: Use this client instead of building one from config
        providers: Ordered fallback chain, first is primary; overrides config
        session_manager: Shared session store (a private one by default)
        repository: Optional conversation persistence, written through
        response_cache: Answer repeated identical LLM requests from this cache
    """

    def __init__(
        self,
        user_id: str,
        config: AgentConfig,
        *,
        tools: Sequence[ToolDefinition] = (),
        plugins: Sequence[Plugin] = (),
        event_bus: EventBus | None = None,
        provider: LlmProvider | None = None,
        providers: Sequence[LlmProvider] | None = None,
        session_manager: SessionManager | None = None,
        repository: ConversationRepository | None = None,
        response_cache: ResponseCache | None = None,
    ):
        self.user_id = user_id
        self.config = config
        self.runtime = get_runtime_config(config)
        self.event_bus = event_bus or EventBus()
        self.repository = repository

        self.registry = ToolRegistry(tools)
        self.hooks = HookManager(self.event_bus)
        self.rules = RuleEngine()
        self.tool_cache = (
            ToolCache(max_size=self.runtime.tool_cache_size, default_ttl_ms=self.runtime.tool_cache_ttl_ms)
            if self.runtime.caching
            else None
        )
        if self.tool_cache is not None:
            self.hooks.register(cache_check_hook(self.tool_cache))
        self.executor = ToolExecutor(
            registry=self.registry,
            cache=self.tool_cache,
            rate_limiter=SlidingWindowLimiter(DEFAULT_TOOL_RATE_LIMIT),
            hooks=self.hooks,
            rules=self.rules,
        )
        self.plugins = PluginLoader(self.registry, self.hooks)
        for plugin in plugins:
            self.plugins.register(plugin)

        self._owns_sessions = session_manager is None
        self.sessions = session_manager or SessionManager(event_bus=self.event_bus)
        self.fallback = FallbackManager(
            FallbackConfig(enabled=config.fallback_enabled),
            CircuitBreakerRegistry(),
            self.event_bus,
        )
        self.recovery = ErrorRecovery(RecoveryConfig(
            max_retry_attempts=config.retry_max,
            base_delay_ms=config.retry_base_ms,
            max_delay_ms=config.retry_max_delay_ms,
            enable_fallback=config.fallback_enabled,
            enable_compaction=config.enable_compaction,
        ))
        self.compactor = ContextCompactor(CompactionConfig()) if self.runtime.compaction else None
        self._token_tracker = TokenTracker()

        self._explicit_providers = list(providers) if providers else ([provider] if provider else [])
        self.response_cache = response_cache
        self._provider: LlmProvider | None = None
        self._initialized = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        """Build the provider chain and plugins, then start the session sweep.

        Raises:
            AgentError: CONFIG_MISSING_API_KEY for the primary provider, or
                CONFIG_INVALID for unresolvable plugin dependencies.
        """
        if self._initialized:
            return
        if self._provider is None:
            for index, llm in enumerate(self._build_providers()):
                name = llm.name if self.fallback.get(llm.name) is None else f"{llm.name}-{index}"
                self.fallback.register(llm, priority=index * _PRIORITY_STEP, name=name)
            chain: LlmProvider = FallbackProvider(self.fallback)
            if self.response_cache is not None:
                chain = CachingProvider(chain, self.response_cache)
            self._provider = chain

        plugin_context = ExecutionContext(new_run_id(), "plugins", self.user_id, self.config, self.event_bus)
        plugin_context.set_tools(self.registry.all())
        await self.plugins.initialize_all(plugin_context)
        if self._owns_sessions:
            self.sessions.start()
        self._initialized = True
        logger.debug(
            "Agent for %s initialized: %d tools, %d plugins, providers=%s",
            self.user_id,
            len(self.registry),
            self.plugins.count,
            [e.name for e in self.fallback.providers],
        )

    def _build_providers(self) -> list[LlmProvider]:
        if self._explicit_providers:
            return list(self._explicit_providers)
        chain = [create_provider(self.config)]
        for kind in self.config.fallback_providers:
            if kind is self.config.provider:
                continue
            try:
                chain.append(create_provider(self.config, kind))
            except AgentError as e:
                logger.warning("Skipping fallback provider %s: %s", kind.value, e.message)
        return chain

    async def dispose(self) -> None:
        await self.plugins.dispose_all()
        if self._owns_sessions:
            await self.sessions.dispose()
        if self._provider is not None:
            await self._provider.aclose()
            self._provider = None
        for entry in self.fallback.providers:
            self.fallback.unregister(entry.name)
        self.fallback.reset()
        self._initialized = False

    # =========================================================================
    # Registration
    # =========================================================================

    def register_tool(self, tool: ToolDefinition) -> None:
        self.registry.register(tool)

    def register_plugin(self, plugin: Plugin, config: PluginConfig | None = None) -> None:
        """Register a plugin. It initializes on the next initialize()."""
        self.plugins.register(plugin, config)
        self._initialized = False

    @property
    def token_tracker(self) -> TokenTracker:
        return self._token_tracker

    def build_system_prompt(self) -> str:
        tools_list = "\n".join(f"- {t.name}: {t.description}" for t in self.registry.all())
        return (
            "You are a helpful AI assistant with access to tools.\n\n"
            f"Available Tools:\n{tools_list or '- (none)'}\n\n"
            "Guidelines:\n"
            "- Use tools when needed to accomplish tasks\n"
            "- Be helpful and concise\n"
            "- Always explain what you're doing\n"
            "- When done, provide a clear summary"
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def process_message(
        self,
        content: str,
        *,
        session_id: str | None = None,
        history: Sequence[Message] | None = None,
        max_steps: int | None = None,
        max_duration_ms: int | None = None,
        thinking_level: ThinkingLevel | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExecutionResult:
        """Run one user request to completion.

        Never raises: failures come back as an unsuccessful result whose
        message is safe to show the user.
        """
        run_id = new_run_id()
        context: ExecutionContext | None = None
        try:
            await self.initialize()
            if session_id is not None:
                session = self.sessions.get(session_id)
                if session is None:
                    raise session_error(ErrorCode.SESSION_NOT_FOUND, session_id)
            else:
                session = self.sessions.create(self.user_id, initial_messages=history)
            sid = session.state.session_id
            prior = self.sessions.messages(sid)

            context = ExecutionContext(run_id, sid, self.user_id, self.config, self.event_bus)
            level = thinking_level or self.runtime.thinking_level
            loop = ReActLoop(
                context,
                self._provider,
                self.executor,
                self.registry.all(),
                self.build_system_prompt(),
                ReActConfig(
                    max_iterations=max_steps or self.runtime.max_steps,
                    max_duration_ms=max_duration_ms or self.runtime.max_duration_ms,
                    thinking_level=level,
                ),
                thinking=ThinkingEngine(level),
                recovery=self.recovery,
                compactor=self.compactor,
                on_progress=on_progress,
                token_tracker=self._token_tracker,
            )
            result = await loop.run(content, prior)
            await self._remember(sid, content, result)

            return ExecutionResult(
                success=result.success,
                message=result.final_message,
                actions=build_actions(result.observations, self.registry),
                telemetry=context.finish(),
                events=result.events,
                plan=context.plan,
                completion_reason=result.completion_reason,
                session_id=sid,
            )
        except AgentError as e:
            logger.warning("Run %s failed: %s", run_id, e)
            return await self._failure(run_id, context, session_id, e)
        except Exception as e:
            logger.exception("Run %s failed", run_id)
            return await self._failure(run_id, context, session_id, e)

    async def _failure(
        self,
        run_id: str,
        context: ExecutionContext | None,
        session_id: str | None,
        error: Exception,
    ) -> ExecutionResult:
        if context is not None:
            await context.emitter.emit(EventType.RUN_FAILED, error=str(error), code=error_code_of(error).value)
            telemetry = context.finish()
            session_id = context.session_id
        else:
            telemetry = AgentTelemetry(run_id=run_id)
        telemetry.errors = max(telemetry.errors, 1)
        return ExecutionResult(
            success=False,
            message=format_error_for_user(error),
            telemetry=telemetry,
            completion_reason="error",
            session_id=session_id,
        )

    async def _remember(self, session_id: str, content: str, result: ReActResult) -> None:
        user_msg = Message(role="user", content=content)
        reply = Message(role="assistant", content=result.final_message)
        self.sessions.add_message(session_id, user_msg)
        self.sessions.add_message(session_id, reply)
        if self.repository is not None:
            await self.repository.add_message(self.user_id, session_id, user_msg)
            await self.repository.add_message(self.user_id, session_id, reply)
