"""CLI subcommands for managing the navigator registry."""

from __future__ import annotations

import click


@click.group()
def navigators_cmd() -> None:
    """Manage registered navigators."""


@navigators_cmd.command("list")
def navigators_list() -> None:
    """Show registered navigators."""
    from autonav.core.registry import NavigatorRegistry

    registry = NavigatorRegistry()
    entries = registry.list()
    if not entries:
        click.echo(f"No navigators registered ({registry.path})")
        return
    width = max(len(name) for name in entries)
    for name, path in entries.items():
        click.echo(f"  {name:<{width}}  {path}")


@navigators_cmd.command("register")
@click.argument("name")
@click.argument("nav_path", type=click.Path(exists=True, file_okay=False))
def navigators_register(name: str, nav_path: str) -> None:
    """Register the navigator at NAV_PATH under NAME."""
    from autonav.core.navigator import NavigatorLoadError, load_navigator
    from autonav.core.registry import NavigatorRegistry

    try:
        load_navigator(nav_path)
    except NavigatorLoadError as exc:
        raise click.ClickException(str(exc)) from exc
    resolved = NavigatorRegistry().register(name, nav_path)
    click.echo(f"Registered {name} -> {resolved}")


@navigators_cmd.command("unregister")
@click.argument("name")
def navigators_unregister(name: str) -> None:
    """Remove NAME from the registry."""
    from autonav.core.registry import NavigatorRegistry

    if not NavigatorRegistry().unregister(name):
        raise click.ClickException(f"Navigator not registered: {name}")
    click.echo(f"Unregistered {name}")
