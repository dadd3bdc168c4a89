"""
dansbot CLI — `dansbot` command.

Commands:
  dansbot run [--session] [--phone]   Start a session and follow its status
  dansbot logout [--session]          Delete stored credentials
  dansbot config show|set             Settings file
  dansbot blocklist list|add|remove   Senders the bot ignores
  dansbot features list|set           Feature flags
"""

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install dansbot[cli]")

from dansbot.config import Settings, load_settings

console = Console()


def _settings() -> Settings:
    return load_settings()


def _run(coro):
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # socket.io/engine.io are chatty at INFO
    for name in ("socketio", "engineio", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _read_json_file(path: Path, default: Any) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def _write_json_file(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


STATE_STYLES = {
    "open": "green",
    "connecting": "dark_orange",
    "awaiting_qr": "dark_orange",
    "awaiting_pairing": "dark_orange",
    "reconnecting": "yellow",
    "disconnected": "red",
    "logged_out": "red",
    "idle": "grey50",
}


@click.group()
@click.version_option("0.2.0")
def main():
    """DansBot — messaging bot session manager."""


@main.command("run")
@click.option("-s", "--session", "session_id", default="main", show_default=True)
@click.option("--phone", default=None, help="Log in with a pairing code for this number instead of a QR code")
@click.option("-v", "--verbose", is_flag=True)
def run_cmd(session_id: str, phone: Optional[str], verbose: bool):
    """Start a session and print status changes until interrupted."""
    from dansbot.bot import AsyncDansBot
    from dansbot.errors import HandshakeError
    from dansbot.models.status import SessionState

    _setup_logging(verbose)

    async def _serve():
        bot = AsyncDansBot(_settings())

        def on_status(sid: str, snapshot) -> None:
            style = STATE_STYLES.get(snapshot.state.value, "white")
            line = f"[bold]{sid}[/bold]: [{style}]{snapshot.state.value.upper()}[/{style}]"
            if snapshot.last_error:
                line += f" [dim]({snapshot.last_error})[/dim]"
            console.print(line)
            if snapshot.state == SessionState.AWAITING_QR:
                console.print(f"[cyan]Scan the QR code at {bot.artifacts.qr_path(sid)}[/cyan]")
            elif snapshot.state == SessionState.AWAITING_PAIRING:
                code = bot.artifacts.read_pairing_code(sid)
                console.print(f"[green]Pairing code: {code}[/green]")

        bot.status_board.add_listener(on_status)
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGHUP, bot.reload_config)
        except (NotImplementedError, AttributeError):
            pass

        try:
            try:
                await bot.start(session_id, phone)
            except HandshakeError as e:
                console.print(f"[red]{e}[/red] Run again to request a new code.")
                return
            await asyncio.Event().wait()
        finally:
            await bot.close()

    try:
        _run(_serve())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@main.command("logout")
@click.option("-s", "--session", "session_id", default="main", show_default=True)
def logout_cmd(session_id: str):
    """Delete stored credentials; the next run starts a fresh login."""
    from dansbot.credentials import FileCredentialStore

    store = FileCredentialStore(_settings().data_dir)
    _run(store.delete(session_id))
    console.print(f"[green]Credentials for {session_id} removed.[/green]")


# Register subcommands from separate modules
from dansbot.cli.config import blocklist, config, features

main.add_command(config)
main.add_command(blocklist)
main.add_command(features)


if __name__ == "__main__":
    main()
