"""CLI entry point for autonav.

Commands:
    query: Ask a navigator a question
    plugins health: Check the navigator's plugins
    plugins poll: Collect one round of plugin events

Example:
    autonav query ./platform-docs "How do I deploy?"
    autonav query ./platform-docs "How do I deploy?" --confidence high --json
    autonav plugins health ./platform-docs
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
from pydantic import ValidationError as PydanticValidationError

from autonav import __version__
from autonav.constants import DEFAULT_MAX_TURNS, DEFAULT_MODEL
from autonav.exceptions import AutonavError
from autonav.logging import setup_logging


def _success(msg: str) -> str:
    """Format success message with green checkmark."""
    return click.style("✓", fg="green") + " " + msg


def _error(msg: str) -> str:
    """Format error message with red X."""
    return click.style("✗", fg="red") + " " + msg


def _info(msg: str) -> str:
    """Format info message with blue arrow."""
    return click.style("→", fg="blue") + " " + msg


def _fail(ctx: click.Context, error: Exception) -> None:
    if ctx.obj.get("verbose", False):
        import traceback

        click.echo(traceback.format_exc(), err=True)
    click.echo(_error(str(error)), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="autonav")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """autonav - grounded answers from navigator knowledge bases."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(logging.DEBUG if verbose else logging.WARNING, include_timestamp=verbose)


@cli.command()
@click.argument("navigator_path", type=click.Path(file_okay=False))
@click.argument("question")
@click.option("--timeout", "-t", default=None, help="Per-call timeout (e.g. 30s, 1m30s, 5000)")
@click.option("--confidence", "-c", default=None, help="Confidence floor: high, medium, low or 0-1")
@click.option("--model", default=DEFAULT_MODEL, show_default=True, help="Model identifier")
@click.option("--max-turns", default=DEFAULT_MAX_TURNS, show_default=True, type=click.IntRange(min=1))
@click.option(
    "--provider",
    type=click.Choice(["http", "anthropic"]),
    default="http",
    show_default=True,
    help="Model client",
)
@click.option("--no-validate", is_flag=True, help="Skip source existence checks")
@click.option("--json", "as_json", is_flag=True, help="Print the raw answer JSON")
@click.pass_context
def query(
    ctx: click.Context,
    navigator_path: str,
    question: str,
    timeout: str | None,
    confidence: str | None,
    model: str,
    max_turns: int,
    provider: str,
    no_validate: bool,
    as_json: bool,
) -> None:
    """Ask NAVIGATOR_PATH a QUESTION."""
    from autonav.adapter import ChatAdapter
    from autonav.llm import create_model_client
    from autonav.models import NavigatorResponse
    from autonav.navigator import load_navigator
    from autonav.query import QueryEngine, QueryOptions

    if not question.strip():
        click.echo(_error("Question must not be empty"), err=True)
        sys.exit(2)

    try:
        threshold: str | float | None = confidence
        if confidence is not None:
            try:
                threshold = float(confidence)
            except ValueError:
                threshold = confidence
        options = QueryOptions(
            timeout=timeout,
            confidence_threshold=threshold,
            validate_sources=not no_validate,
        )
    except PydanticValidationError as e:
        click.echo(_error(f"Invalid option: {e.errors()[0]['msg']}"), err=True)
        sys.exit(2)

    async def run_query() -> NavigatorResponse:
        client = create_model_client(provider)
        navigator = await load_navigator(navigator_path, load_plugins=False)
        try:
            engine = QueryEngine(ChatAdapter(client, model=model, max_turns=max_turns))
            return await engine.query(navigator, question, options)
        finally:
            await navigator.shutdown()
            await client.close()

    try:
        answer = asyncio.run(run_query())
    except AutonavError as e:
        _fail(ctx, e)
        return

    if as_json:
        click.echo(answer.to_json())
        return

    click.echo(answer.answer)
    click.echo()
    if answer.sources:
        click.echo(click.style("Sources:", bold=True))
        for source in answer.sources:
            section = f" ({source.section})" if source.section else ""
            click.echo(f"  - {source.file}{section}")
    else:
        click.echo(_info("No sources cited"))
    click.echo(click.style(f"Confidence: {answer.confidence:.2f}", fg="cyan"))


@cli.group()
@click.pass_context
def plugins(ctx: click.Context) -> None:
    """Inspect a navigator's plugins."""
    pass


@plugins.command()
@click.argument("navigator_path", type=click.Path(file_okay=False))
@click.pass_context
def health(ctx: click.Context, navigator_path: str) -> None:
    """Check every plugin configured for NAVIGATOR_PATH."""
    from autonav.navigator import load_navigator
    from autonav.plugins.base import PluginHealthStatus

    async def run_health_checks() -> dict[str, PluginHealthStatus]:
        navigator = await load_navigator(navigator_path)
        try:
            if navigator.plugin_manager is None:
                return {}
            return await navigator.plugin_manager.health_check_all()
        finally:
            await navigator.shutdown()

    try:
        results = asyncio.run(run_health_checks())
    except AutonavError as e:
        _fail(ctx, e)
        return

    if not results:
        click.echo(_info("No plugins configured"))
        return

    click.echo()
    click.echo(click.style("Plugin Status", bold=True))
    click.echo()
    for name, status in results.items():
        if status.healthy:
            click.echo("  " + _success(name))
        else:
            click.echo("  " + _error(f"{name}: {status.message or 'unhealthy'}"))
    click.echo()

    if not all(status.healthy for status in results.values()):
        sys.exit(1)


@plugins.command()
@click.argument("navigator_path", type=click.Path(file_okay=False))
@click.pass_context
def poll(ctx: click.Context, navigator_path: str) -> None:
    """Collect one round of events from NAVIGATOR_PATH's plugins, as JSON lines."""
    from autonav.navigator import load_navigator
    from autonav.plugins.base import PluginEventBase

    async def run_poll() -> list[PluginEventBase]:
        navigator = await load_navigator(navigator_path)
        try:
            if navigator.plugin_manager is None:
                return []
            return await navigator.plugin_manager.listen_all()
        finally:
            await navigator.shutdown()

    try:
        events = asyncio.run(run_poll())
    except AutonavError as e:
        _fail(ctx, e)
        return

    for event in events:
        click.echo(json.dumps({"plugin": event.plugin_name, **event.model_dump(mode="json")}))
    if ctx.obj.get("verbose", False):
        click.echo(_info(f"{len(events)} event(s)"), err=True)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
