"""Wayfarer command line.

    wayfarer config --show
    wayfarer config --init [--path P]
    wayfarer run "What is 17 * 23?" [--provider ollama] [--thinking medium]
"""

from __future__ import annotations

import asyncio
import dataclasses

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from wayfarer import __version__
from wayfarer.agent.orchestrator import Agent
from wayfarer.cli.demo_tools import demo_tools
from wayfarer.config import (
    AgentConfig,
    create_agent_config,
    get_config,
    load_config,
    save_default_config,
    validate_agent_config,
)
from wayfarer.core.errors import AgentError
from wayfarer.core.providers import PROVIDER_DEFAULT_MODELS, ProviderKind
from wayfarer.core.types import ExecutionResult, ProgressEvent, ProgressEventType, ThinkingLevel
from wayfarer.foundation.logging import configure_logging

console = Console()

_EVENT_STYLES = {
    ProgressEventType.THINKING: "dim",
    ProgressEventType.THOUGHT: "cyan",
    ProgressEventType.STEP_START: "blue",
    ProgressEventType.STEP_COMPLETE: "green",
    ProgressEventType.STEP_FAILED: "red",
    ProgressEventType.OBSERVATION: "dim",
    ProgressEventType.ERROR: "red",
    ProgressEventType.COMPLETE: "bold green",
}


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Wayfarer - autonomous agent execution core."""


# =============================================================================
# config
# =============================================================================


@main.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--init", is_flag=True, help="Create default config file")
@click.option("--path", type=click.Path(), help="Config file path (default: .wayfarer/config.yaml)")
def config(show: bool, init: bool, path: str | None) -> None:
    """Manage Wayfarer configuration.

    Configuration is loaded from (in priority order):
    1. Environment variables (WAYFARER_*)
    2. .wayfarer/config.yaml (project-local)
    3. ~/.wayfarer/config.yaml (user-global)
    4. Built-in defaults

    Examples:

        wayfarer config --show
        wayfarer config --init
        WAYFARER_MAX_STEPS=40 wayfarer config --show
    """
    if init:
        saved_path = save_default_config(path or ".wayfarer/config.yaml")
        console.print(f"[green]✓ Config file created:[/green] {saved_path}")
        console.print("\n[dim]Edit this file to customize Wayfarer behavior.[/dim]")
        return

    try:
        cfg = load_config(path) if path else get_config()
    except AgentError as e:
        raise click.ClickException(str(e)) from e

    console.print(Panel("[bold]Wayfarer Configuration[/bold]", border_style="cyan"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in cfg.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    problems = validate_agent_config(cfg)
    if problems:
        console.print("\n[yellow]Problems:[/yellow]")
        for problem in problems:
            console.print(f"  • {problem}")


# =============================================================================
# run
# =============================================================================


@main.command()
@click.argument("prompt")
@click.option(
    "--provider",
    "-p",
    type=click.Choice([k.value for k in ProviderKind]),
    default=None,
    help="LLM provider (default: from config)",
)
@click.option("--model", "-m", default=None, help="Model name")
@click.option("--max-steps", type=int, default=None, help="Maximum ReAct iterations")
@click.option(
    "--thinking",
    type=click.Choice([level.value for level in ThinkingLevel]),
    default=None,
    help="Reasoning depth",
)
@click.option("--debug", is_flag=True, help="Verbose logging")
def run(
    prompt: str,
    provider: str | None,
    model: str | None,
    max_steps: int | None,
    thinking: str | None,
    debug: bool,
) -> None:
    """Run one request with the built-in demo tools."""
    configure_logging(debug=debug)
    cfg = _run_config(provider, model, max_steps, thinking, debug)

    problems = validate_agent_config(cfg)
    if problems:
        for problem in problems:
            console.print(f"[red]✗ {problem}[/red]")
        raise SystemExit(1)

    console.print(f"[dim]Provider: {cfg.provider.value} · Model: {cfg.model_name}[/dim]\n")
    try:
        result = asyncio.run(_run_once(cfg, prompt))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise SystemExit(130) from None

    _render_result(result)
    if not result.success:
        raise SystemExit(1)


def _run_config(
    provider: str | None,
    model: str | None,
    max_steps: int | None,
    thinking: str | None,
    debug: bool,
) -> AgentConfig:
    base = get_config()
    values = {f.name: getattr(base, f.name) for f in dataclasses.fields(base)}
    if provider:
        kind = ProviderKind(provider)
        if kind is not base.provider:
            values["provider"] = kind
            values["model_name"] = PROVIDER_DEFAULT_MODELS[kind]
            values["api_key"] = None
            values["base_url"] = None
    if model:
        values["model_name"] = model
    if max_steps:
        values["max_steps"] = max_steps
    if thinking:
        values["thinking_level"] = thinking
    if debug:
        values["debug"] = True
    try:
        return create_agent_config(**values)
    except AgentError as e:
        raise click.ClickException(str(e)) from e


async def _run_once(cfg: AgentConfig, prompt: str) -> ExecutionResult:
    agent = Agent("cli", cfg, tools=demo_tools())
    try:
        return await agent.process_message(prompt, on_progress=_print_progress)
    finally:
        await agent.dispose()


def _print_progress(event: ProgressEvent) -> None:
    style = _EVENT_STYLES.get(event.type, "white")
    detail = (
        event.data.get("content")
        or event.data.get("reasoning")
        or event.data.get("tool_name")
        or event.data.get("message")
        or ""
    )
    text = str(detail).replace("\n", " ")
    if len(text) > 120:
        text = text[:117] + "..."
    console.print(f"[{style}]{event.type.value:>14}[/{style}] {escape(text)}", highlight=False)


def _render_result(result: ExecutionResult) -> None:
    border = "green" if result.success else "red"
    console.print()
    console.print(Panel(result.message or "(no message)", title="Result", border_style=border))

    if result.actions:
        actions = Table(title="Actions", show_header=True, header_style="bold")
        actions.add_column("Tool")
        actions.add_column("Type")
        actions.add_column("Status")
        for action in result.actions:
            actions.add_row(action.entity, action.type, action.status)
        console.print(actions)

    if result.telemetry is not None:
        telemetry = Table(title="Telemetry", show_header=False)
        telemetry.add_column("Counter", style="dim")
        telemetry.add_column("Value", justify="right")
        for key, value in result.telemetry.to_dict().items():
            if key not in ("run_id", "start_ms"):
                telemetry.add_row(key, str(value))
        console.print(telemetry)

    if result.completion_reason:
        console.print(f"[dim]Completion reason: {result.completion_reason}[/dim]")
