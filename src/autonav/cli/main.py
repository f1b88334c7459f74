"""CLI entry point for autonav."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from autonav.cli.output import print_event

if TYPE_CHECKING:
    from autonav.types.memento import MementoOptions, MementoResult

HARNESS_CHOICES = ("claude-code", "chibi", "opencode")


def _configure_logging(verbose: bool) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


@click.group()
@click.version_option(package_name="autonav")
def cli() -> None:
    """autonav -- drive navigators across agent runtimes.

    \b
    Usage:
      autonav memento ./app ./my-nav --task "Add login page"
      autonav query ./my-nav "How is auth wired?"
      autonav navigators list
    """


@cli.command("memento")
@click.argument("code_dir", type=click.Path(file_okay=False))
@click.argument("nav_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--task", "-t", default=None, help="What the loop should accomplish")
@click.option("--task-file", type=click.Path(exists=True, dir_okay=False), default=None, help="Read the task from a file")
@click.option("--max-iterations", "-n", default=0, show_default=True, help="Iteration cap (0 = unlimited)")
@click.option("--branch", "-b", default=None, help="Branch to work on (created if missing)")
@click.option("--model", "-m", default=None, help="Implementer model")
@click.option("--nav-model", default=None, help="Navigator model")
@click.option("--max-turns", type=int, default=None, help="Maximum turns per agent session")
@click.option("--max-retries", type=int, default=None, help="Rate-limit / connection retries per session")
@click.option("--pr", is_flag=True, help="Push the branch and open a pull request when done")
@click.option("--harness", type=click.Choice(HARNESS_CHOICES), default=None, help="Agent runtime")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def memento_cmd(
    code_dir: str,
    nav_dir: str,
    task: str | None,
    task_file: str | None,
    max_iterations: int,
    branch: str | None,
    model: str | None,
    nav_model: str | None,
    max_turns: int | None,
    max_retries: int | None,
    pr: bool,
    harness: str | None,
    verbose: bool,
) -> None:
    """Run the plan/implement/commit loop on CODE_DIR guided by NAV_DIR."""
    from autonav.core.config import load_memento_defaults
    from autonav.types.memento import MementoOptions

    _configure_logging(verbose)

    if task_file:
        task = Path(task_file).read_text().strip()
    if not task:
        raise click.UsageError("Provide --task or --task-file")
    if pr and not branch:
        raise click.UsageError("--pr requires --branch")

    defaults = load_memento_defaults()
    options = MementoOptions(task=task, code_dir=code_dir, nav_dir=nav_dir, max_iterations=max_iterations, branch=branch, pr=pr)
    if model or defaults.get("model"):
        options.model = model or defaults["model"]
    if nav_model or defaults.get("nav_model"):
        options.nav_model = nav_model or defaults["nav_model"]
    if max_turns is not None or "max_turns" in defaults:
        options.max_turns = max_turns if max_turns is not None else int(defaults["max_turns"])
    if max_retries is not None or "max_retries" in defaults:
        options.max_retries = max_retries if max_retries is not None else int(defaults["max_retries"])

    result = asyncio.run(_run_memento(options, harness, verbose))
    if not result.success:
        sys.exit(1)


async def _run_memento(options: MementoOptions, harness_type: str | None, verbose: bool) -> MementoResult:
    from autonav.cli.terminal import RichMementoObserver, print_memento_result
    from autonav.core.config import load_harness_default
    from autonav.core.navigator import NavigatorLoadError, read_navigator_config
    from autonav.harnesses.factory import resolve_and_create_harness
    from autonav.memento.loop import MementoError, MementoLoop

    try:
        nav_config = read_navigator_config(Path(options.nav_dir))
    except NavigatorLoadError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        harness = resolve_and_create_harness(harness_type or load_harness_default(), nav_config)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        loop = MementoLoop(options, harness, observer=RichMementoObserver(verbose=verbose))
        result = await loop.run()
    except (MementoError, NavigatorLoadError) as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        await harness.close()

    print_memento_result(result)
    return result


@cli.command("query")
@click.argument("nav_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("question")
@click.option("--harness", type=click.Choice(HARNESS_CHOICES), default=None, help="Agent runtime")
@click.option("--model", "-m", default=None, help="Model to answer with")
@click.option("--max-turns", type=int, default=None, help="Maximum agent turns")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def query_cmd(
    nav_dir: str,
    question: str,
    harness: str | None,
    model: str | None,
    max_turns: int | None,
    verbose: bool,
) -> None:
    """Ask the navigator in NAV_DIR a QUESTION."""
    _configure_logging(verbose)
    ok = asyncio.run(_run_query(nav_dir, question, harness, model, max_turns, verbose))
    if not ok:
        sys.exit(1)


async def _run_query(
    nav_dir: str,
    question: str,
    harness_type: str | None,
    model: str | None,
    max_turns: int | None,
    verbose: bool,
) -> bool:
    from autonav.core.config import load_harness_default, query_depth
    from autonav.core.navigator import NavigatorLoadError, load_navigator
    from autonav.harnesses.base import HarnessError
    from autonav.harnesses.factory import resolve_and_create_harness
    from autonav.tools.peers import (
        CROSS_NAV_SERVER,
        RELATED_NAVS_SERVER,
        create_query_navigator_tool,
        create_related_navigator_tools,
    )
    from autonav.types.config import AgentConfig
    from autonav.types.events import ResultEvent, TextEvent

    try:
        navigator = load_navigator(nav_dir)
        harness = resolve_and_create_harness(harness_type or load_harness_default(), navigator.config)
    except (NavigatorLoadError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    depth = query_depth()
    config = AgentConfig(
        model=model,
        max_turns=max_turns,
        system_prompt=navigator.system_prompt,
        cwd=str(navigator.path),
    )
    config.mcp_servers[CROSS_NAV_SERVER] = harness.create_tool_server(
        CROSS_NAV_SERVER, [create_query_navigator_tool(harness, depth, cwd=navigator.path)]
    )
    if related := create_related_navigator_tools(harness, navigator.related, depth):
        config.mcp_servers[RELATED_NAVS_SERVER] = harness.create_tool_server(RELATED_NAVS_SERVER, related)

    success = False
    answer = ""
    session = harness.run(config, question)
    try:
        async for event in session:
            if isinstance(event, TextEvent):
                answer = event.text
                if not verbose:
                    continue
            elif isinstance(event, ResultEvent):
                success = event.success
                answer = answer or event.text or ""
            print_event(event)
        if answer and not verbose:
            click.echo(answer)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        await session.close()
        await harness.close()
    return success


def _register_subcommands() -> None:
    """Register CLI subcommands."""
    from autonav.cli.commands import navigators_cmd

    cli.add_command(navigators_cmd, "navigators")


_register_subcommands()


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
