"""
Persona Registry CLI

Command-line interface for the persona registry: the stdio JSON-RPC
server plus a few operator commands that work on the storage file directly.
"""

import sys
import json
from pathlib import Path
from typing import Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .config import (
    AppConfig, RegistryConfig,
    load_config, config_from_env, create_default_config, build_storage,
)
from .personas import PersonaRegistry, PersonaRegistryError
from .rpc.server import configure_logging, run as run_rpc


console = Console()


@click.group()
@click.version_option(__version__, prog_name="persona-registry")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config file")
@click.option("--storage", "-s", "storage_path", type=click.Path(), help="Persona JSON file")
@click.option("--log-level", help="Log level (DEBUG, INFO, WARNING, ...)")
@click.pass_context
def cli(ctx, config_path: str, storage_path: str, log_level: str):
    """Persona Registry - named personas with debounced JSON persistence"""
    ctx.ensure_object(dict)

    config = AppConfig()
    if config_path:
        if not Path(config_path).exists():
            raise click.BadParameter(f"Config file not found: {config_path}", param_hint="--config")
        config = load_config(config_path)
    config = config_from_env(config)

    if storage_path:
        config.storage.path = storage_path
    if log_level:
        config.server.log_level = log_level.upper()

    ctx.obj["config"] = config


def _open_registry(ctx) -> PersonaRegistry:
    """Registry over the configured storage; commands flush explicitly."""
    config: AppConfig = ctx.obj["config"]
    configure_logging(config.server.log_level)
    return PersonaRegistry.create(
        build_storage(config.storage),
        RegistryConfig(
            debounce_interval_ms=config.registry.debounce_interval_ms,
            auto_save_enabled=False,
        ),
    )


def _fail(message: str):
    console.print(f"[red]✗[/red] {message}")
    sys.exit(1)


def _parse_settings(settings: Tuple[str, ...]) -> dict:
    parsed = {}
    for item in settings:
        if "=" not in item:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--setting")
        key, value = item.split("=", 1)
        try:
            parsed[key] = json.loads(value)
        except json.JSONDecodeError:
            parsed[key] = value
    return parsed


def _persona_table(title: str, personas) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Tags", style="green")
    table.add_column("Updated")

    for p in personas:
        table.add_row(
            p.id[:8],
            p.name,
            ", ".join(p.tags or []),
            p.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


# =============================================================================
# Server Commands
# =============================================================================

@cli.command()
@click.pass_context
def rpc(ctx):
    """Handle one JSON-RPC request from stdin and exit."""
    config: AppConfig = ctx.obj["config"]
    configure_logging(config.server.log_level)
    ctx.exit(run_rpc(config))


@cli.command()
@click.option("--output", "-o", default="persona-registry.yaml", type=click.Path(), help="Output file")
def init(output: str):
    """Initialize a new configuration file."""
    config_path = Path(output)

    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    config_path.write_text(create_default_config())
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("\nThen run, for example:")
    console.print(f"  [cyan]persona-registry -c {config_path} list[/cyan]")


# =============================================================================
# Persona Commands
# =============================================================================

@cli.command("list")
@click.option("--archived", is_flag=True, help="List archived personas instead")
@click.option("--tag", "-t", help="Only personas with this tag")
@click.pass_context
def list_personas(ctx, archived: bool, tag: str):
    """List personas."""
    registry = _open_registry(ctx)

    if archived:
        personas = registry.list_archived()
        if tag:
            personas = [p for p in personas if p.has_tag(tag)]
    elif tag:
        personas = registry.find_by_tag(tag)
    else:
        personas = registry.list_personas()

    if not personas:
        console.print("[yellow]No personas found[/yellow]")
        return

    console.print(_persona_table("Archived Personas" if archived else "Personas", personas))


@cli.command()
@click.argument("persona_id")
@click.pass_context
def show(ctx, persona_id: str):
    """Show a single active persona."""
    registry = _open_registry(ctx)
    persona = registry.get_persona(persona_id)
    if persona is None:
        _fail(f"Persona {persona_id} not found")

    console.print(Panel(f"[bold]{persona.name}[/bold]\n{persona.id}", title="Persona"))
    console.print_json(json.dumps(persona.to_dict()))


@cli.command()
@click.argument("name")
@click.option("--description", "-d", help="Short summary")
@click.option("--instructions", "-i", help="Core instructions / prompt")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--setting", "settings", multiple=True, help="Setting KEY=VALUE (repeatable)")
@click.pass_context
def create(ctx, name: str, description: str, instructions: str, tags: tuple, settings: tuple):
    """Create a persona."""
    registry = _open_registry(ctx)
    try:
        persona = registry.create_persona({
            "name": name,
            "description": description,
            "instructions": instructions,
            "tags": list(tags) or None,
            "settings": _parse_settings(settings) or None,
        })
        registry.flush()
    except PersonaRegistryError as e:
        _fail(e.message)

    console.print(f"[green]✓[/green] Created {persona.name} ({persona.id})")


@cli.command()
@click.argument("persona_id")
@click.option("--name", "-n", help="New name")
@click.option("--description", "-d", help="New description")
@click.option("--instructions", "-i", help="New instructions")
@click.option("--tag", "-t", "tags", multiple=True, help="Replace tags (repeatable)")
@click.pass_context
def update(ctx, persona_id: str, name: str, description: str, instructions: str, tags: tuple):
    """Update fields of an active persona."""
    updates = {}
    if name is not None:
        updates["name"] = name
    if description is not None:
        updates["description"] = description
    if instructions is not None:
        updates["instructions"] = instructions
    if tags:
        updates["tags"] = list(tags)

    registry = _open_registry(ctx)
    try:
        before = registry.get_persona(persona_id)
        persona = registry.update_persona(persona_id, updates)
        if registry.is_dirty:
            registry.flush()
    except PersonaRegistryError as e:
        _fail(e.message)

    if persona is before:
        console.print("[yellow]No changes[/yellow]")
    else:
        console.print(f"[green]✓[/green] Updated {persona.name}: {persona.changelog[-1].details}")


@cli.command()
@click.argument("persona_id")
@click.pass_context
def duplicate(ctx, persona_id: str):
    """Duplicate an active persona."""
    registry = _open_registry(ctx)
    try:
        persona = registry.duplicate_persona(persona_id)
        registry.flush()
    except PersonaRegistryError as e:
        _fail(e.message)

    console.print(f"[green]✓[/green] Created {persona.name} ({persona.id})")


@cli.command()
@click.argument("persona_id")
@click.pass_context
def archive(ctx, persona_id: str):
    """Archive an active persona."""
    registry = _open_registry(ctx)
    try:
        archived = registry.archive_persona(persona_id)
        if archived:
            registry.flush()
    except PersonaRegistryError as e:
        _fail(e.message)

    if not archived:
        _fail(f"Persona {persona_id} is not active")
    console.print(f"[green]✓[/green] Archived {persona_id}")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show registry statistics."""
    registry = _open_registry(ctx)
    data = registry.stats()
    config: AppConfig = ctx.obj["config"]

    console.print(Panel(
        f"Storage: {config.storage.backend} ({config.storage.path})\n"
        f"Active: {data['active']}\n"
        f"Archived: {data['archived']}",
        title="📊 Persona Registry"
    ))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
