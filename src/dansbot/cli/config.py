"""CLI: dansbot config|blocklist|features"""

import json
from typing import Any

import click
from rich.console import Console
from rich.table import Table

console = Console()


def _settings():
    from dansbot.cli.main import _settings
    return _settings()


def _read_json_file(path, default):
    from dansbot.cli.main import _read_json_file
    return _read_json_file(path, default)


def _write_json_file(path, data):
    from dansbot.cli.main import _write_json_file
    _write_json_file(path, data)


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group()
def config():
    """Settings file commands."""


@config.command("show")
def config_show():
    """Print the effective settings."""
    from dansbot.config import config_path

    console.print(f"[dim]{config_path()}[/dim]")
    click.echo(_settings().model_dump_json(indent=2))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set KEY (dotted, e.g. backoff.max_delay) to VALUE."""
    from pydantic import ValidationError
    from dansbot.config import save_settings, update_setting

    try:
        updated = update_setting(_settings(), key, _parse_value(value))
    except KeyError:
        raise click.BadParameter(f"Unknown setting: {key}", param_hint="KEY")
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="VALUE")
    path = save_settings(updated)
    console.print(f"[green]{key} updated in {path}[/green]")


@click.group()
def blocklist():
    """Senders the bot never answers."""


@blocklist.command("list")
def blocklist_list():
    entries = _read_json_file(_settings().blocklist_file, [])
    if not entries:
        console.print("[dim]Blocklist is empty.[/dim]")
        return
    for entry in entries:
        console.print(entry)


@blocklist.command("add")
@click.argument("sender")
def blocklist_add(sender: str):
    path = _settings().blocklist_file
    entries = _read_json_file(path, [])
    if sender not in entries:
        entries.append(sender)
        _write_json_file(path, entries)
    console.print(f"[green]{sender} blocked.[/green] Send SIGHUP to a running bot to reload.")


@blocklist.command("remove")
@click.argument("sender")
def blocklist_remove(sender: str):
    path = _settings().blocklist_file
    entries = _read_json_file(path, [])
    if sender in entries:
        entries.remove(sender)
        _write_json_file(path, entries)
        console.print(f"[green]{sender} unblocked.[/green]")
    else:
        console.print(f"[yellow]{sender} was not blocked.[/yellow]")


@click.group()
def features():
    """Feature flags (auto_read, auto_typing)."""


@features.command("list")
def features_list():
    flags = _read_json_file(_settings().features_file, {})
    table = Table(title="Feature flags")
    table.add_column("Name", style="bold")
    table.add_column("Enabled")
    for name, enabled in sorted(flags.items()):
        table.add_row(name, "[green]on[/green]" if enabled else "[red]off[/red]")
    console.print(table)


@features.command("set")
@click.argument("name")
@click.argument("state", type=click.Choice(["on", "off"]))
def features_set(name: str, state: str):
    path = _settings().features_file
    flags = _read_json_file(path, {})
    flags[name] = state == "on"
    _write_json_file(path, flags)
    console.print(f"[green]{name} turned {state}.[/green]")
