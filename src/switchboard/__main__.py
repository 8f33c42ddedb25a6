"""CLI entry point for Switchboard."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from switchboard import __version__
from switchboard.config import LOG_LEVELS, Config, ConfigError, load_config
from switchboard.context.budget import PromptInput, budget_stats, fit_input
from switchboard.context.subjects import PastSubject
from switchboard.engine.dispatcher import ChatDispatcher, ChatOptions
from switchboard.exceptions import DispatchError, SwitchboardError


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _dispatcher(ctx: click.Context) -> ChatDispatcher:
    config: Config = ctx.obj["config"]
    return ChatDispatcher.from_config(config)


@click.group()
@click.version_option(version=__version__, prog_name="switchboard")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to switchboard.toml configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(sorted(LOG_LEVELS), case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """Switchboard: route chat calls to local and cloud LLM backends."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    _configure_logging(log_level or config.logging.level)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def models(ctx: click.Context) -> None:
    """List the configured models."""
    dispatcher = _dispatcher(ctx)
    descriptors = dispatcher.get_available_models()
    if not descriptors:
        click.echo("No models configured.")
        return

    table = Table(title="Models")
    table.add_column("ID", style="bold")
    table.add_column("Provider")
    table.add_column("Style")
    table.add_column("Endpoint")
    table.add_column("Context", justify="right")
    for d in descriptors:
        table.add_row(
            d.id,
            d.provider,
            d.inference_style.value,
            d.endpoint or "-",
            str(d.context_window),
        )
    Console().print(table)


@cli.command()
@click.argument("model_id")
@click.argument("message")
@click.option("--system", "system_prompt", default="", help="System prompt.")
@click.option("--stream/--no-stream", default=True, show_default=True)
@click.option("--topic", "topic_id", default="cli", show_default=True, help="Topic id.")
@click.option("--temperature", type=float, default=None, help="Sampling temperature.")
@click.pass_context
def chat(
    ctx: click.Context,
    model_id: str,
    message: str,
    system_prompt: str,
    stream: bool,
    topic_id: str,
    temperature: float | None,
) -> None:
    """Send MESSAGE to MODEL_ID and print the reply."""
    dispatcher = _dispatcher(ctx)

    def _emit(chunk: str) -> None:
        click.echo(chunk, nl=False)

    options = ChatOptions(
        on_stream=_emit if stream else None,
        topic_id=topic_id,
        temperature=temperature,
    )

    async def _run():
        try:
            return await dispatcher.chat(
                PromptInput(new_message=message, system_prompt=system_prompt),
                model_id,
                options,
            )
        finally:
            await dispatcher.close()

    try:
        result = asyncio.run(_run())
    except DispatchError as e:
        click.echo(f"\nError: {e}", err=True)
        click.echo(f"Health: {e.context.health_status.value}", err=True)
        if e.context.alternative_models:
            click.echo(
                f"Try instead: {', '.join(e.context.alternative_models)}", err=True,
            )
        sys.exit(1)
    except SwitchboardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if stream:
        click.echo()
    else:
        click.echo(result.content)


@cli.command()
@click.argument("server")
@click.option("--provider", default="ollama", show_default=True, help="Server type.")
@click.pass_context
def discover(ctx: click.Context, server: str, provider: str) -> None:
    """List and register the models served at SERVER."""
    dispatcher = _dispatcher(ctx)

    async def _run():
        try:
            return await dispatcher.discover_models(server, provider)
        finally:
            await dispatcher.close()

    try:
        found = asyncio.run(_run())
    except SwitchboardError as e:
        click.echo(f"Discovery failed: {e}", err=True)
        sys.exit(1)

    if not found:
        click.echo(f"No models found at {server}.")
        return
    for d in found:
        click.echo(f"  {d.id}")
    click.echo(f"\n{len(found)} model(s) discovered.")


@cli.command(name="test")
@click.argument("model_id")
@click.pass_context
def test_model(ctx: click.Context, model_id: str) -> None:
    """Check that MODEL_ID's backend is reachable."""
    dispatcher = _dispatcher(ctx)

    async def _run():
        try:
            return await dispatcher.test_connection(model_id)
        finally:
            await dispatcher.close()

    try:
        check = asyncio.run(_run())
    except SwitchboardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if check.ok:
        click.echo(f"OK: {check.detail}")
    else:
        click.echo(f"FAILED: {check.detail}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--window", type=int, default=8192, show_default=True, help="Context window.")
@click.option(
    "--system", "system_file",
    type=click.Path(exists=True, path_type=Path), default=None,
    help="File holding the system prompt.",
)
@click.option(
    "--messages", "messages_file",
    type=click.Path(exists=True, path_type=Path), default=None,
    help="JSON file with a list of {role, content} messages.",
)
@click.option(
    "--subjects", "subjects_file",
    type=click.Path(exists=True, path_type=Path), default=None,
    help="JSON file with a list of past subjects.",
)
@click.argument("message", default="(new message)")
@click.pass_context
def budget(
    ctx: click.Context,
    window: int,
    system_file: Path | None,
    messages_file: Path | None,
    subjects_file: Path | None,
    message: str,
) -> None:
    """Show how a prompt would be fitted into a context window."""
    config: Config = ctx.obj["config"]
    try:
        system_prompt = system_file.read_text(encoding="utf-8") if system_file else ""
        messages = json.loads(messages_file.read_text(encoding="utf-8")) if messages_file else []
        subjects = (
            [PastSubject.from_dict(s) for s in json.loads(subjects_file.read_text(encoding="utf-8"))]
            if subjects_file else []
        )
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"Could not read input: {e}", err=True)
        sys.exit(1)

    parts = fit_input(
        PromptInput(
            new_message=message,
            system_prompt=system_prompt,
            past_subjects=subjects,
            current_messages=messages,
        ),
        window,
        target_past_subject_count=config.budget.target_past_subjects,
        target_message_limit=config.budget.target_message_limit,
        initial_compression=config.budget.initial_compression,
    )
    plan = parts.budget
    stats = budget_stats(plan)

    table = Table(title=f"Context budget ({window} tokens)")
    table.add_column("Part")
    table.add_column("Tokens", justify="right")
    table.add_column("Share", justify="right")
    table.add_row("System", str(parts.system.tokens), stats.shares["system"])
    table.add_row(
        f"Past subjects ({len(parts.past_subjects.subject_ids)})",
        str(parts.past_subjects.tokens), stats.shares["past_subjects"],
    )
    table.add_row(
        f"Recent messages ({len(parts.recent_messages.messages)})",
        str(parts.recent_messages.tokens), stats.shares["recent_messages"],
    )
    table.add_row("New message", str(parts.new_message.tokens), "")
    table.add_row("Reserved", str(plan.response_reserve), stats.shares["reserved"])
    console = Console()
    console.print(table)
    console.print(
        f"Compression: {plan.compression_mode.value}  "
        f"Utilization: {stats.utilization_percent:.1f}% ({stats.status})"
    )
    if plan.emergency:
        console.print("[yellow]Emergency reduction applied[/yellow]")
    if not parts.fits:
        console.print("[red]Prompt does not fit even after reduction[/red]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
