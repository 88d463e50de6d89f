"""
eventsub-bridge command line entry point.

Usage:
    eventsub-bridge run [--dev]       listen for redemptions and drive OBS
    eventsub-bridge validate          validate (and refresh) the access token
    eventsub-bridge whoami [--login]  look up a user; stores channel_id for yourself
    eventsub-bridge stream-status     is the configured channel live?
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from rich.console import Console
from rich.panel import Panel
from rich.status import Status
from rich.table import Table

from eventsub_bridge.api.gateway import RestGateway
from eventsub_bridge.auth.credentials import CredentialStore
from eventsub_bridge.automation.obs import OBSClient
from eventsub_bridge.core.config import BridgeConfig, reload_config
from eventsub_bridge.core.errors import AuthError, BridgeError, ReconnectExhausted
from eventsub_bridge.core.logging import setup_logging
from eventsub_bridge.core.settings import OBS_KEYS, TWITCH_KEYS, SettingsStore
from eventsub_bridge.eventsub.dispatcher import NotificationDispatcher
from eventsub_bridge.eventsub.session import SessionManager
from eventsub_bridge.eventsub.subscriptions import default_subscriptions
from eventsub_bridge.handlers.chat import ChatCommandHandler
from eventsub_bridge.handlers.redemption import RedemptionHandler, format_remaining

logger = logging.getLogger(__name__)


class CountdownDisplay:
    """Live "remaining time" spinner for the voice ban countdown."""

    def __init__(self, console: Console):
        self._console = console
        self._status: Status | None = None

    def update(self, remaining: float) -> None:
        if remaining <= 0:
            self.stop()
            return
        text = f"[bold yellow]Remaining time: {format_remaining(remaining)}[/]"
        if self._status is None:
            self._status = self._console.status(text)
            self._status.start()
        else:
            self._status.update(text)

    def stop(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


def report_fatal(console: Console, error: BridgeError) -> None:
    """Fatal errors get a panel so they stand out from transient log lines."""
    if isinstance(error, ReconnectExhausted):
        hint = "The EventSub connection could not be restored. Check the network and restart."
    elif isinstance(error, AuthError):
        hint = "Twitch rejected the stored credentials. Re-authorize the application."
    else:
        hint = "Manual intervention required."
    console.print(
        Panel(
            f"[bold red]{error}[/]\n\n{hint}",
            title="[bold red]Fatal error[/]",
            border_style="red",
        )
    )


async def run_bridge(cfg: BridgeConfig, store: SettingsStore, console: Console) -> int:
    missing = store.missing(TWITCH_KEYS + OBS_KEYS)
    if missing:
        console.print(f"[bold red]Configuration is incomplete. Missing: {', '.join(missing)}[/]")
        return 2

    stop = asyncio.Event()
    credentials = CredentialStore(store, cfg.api)
    gateway = RestGateway(credentials, cfg.api)
    source_name = store.get_value("obs_source_name") or ""
    obs = OBSClient(
        host=store.get_value("obs_host") or "localhost",
        port=store.get_value("obs_port") or "4455",
        password=store.get_value("obs_password") or "",
        scene=store.get_value("obs_scene") or "",
        mic_name=store.get_value("obs_mic_name") or "",
        request_timeout=cfg.obs.request_timeout,
    )
    display = CountdownDisplay(console)
    redemptions = RedemptionHandler(
        obs, source_name, cfg.redeem, stop=stop, on_tick=display.update
    )
    chat = None
    if cfg.dev_mode:
        chat = ChatCommandHandler(obs, redemptions, source_name, cfg.redeem.dev_chatters)
    manager = SessionManager(
        credentials,
        gateway,
        broadcaster_id=store.get_value("channel_id") or "",
        subscriptions=default_subscriptions(cfg.dev_mode),
        config=cfg.eventsub,
        stop=stop,
    )
    dispatcher = NotificationDispatcher(manager, redemptions=redemptions, chat=chat)

    loop = asyncio.get_running_loop()
    shutdowns: list[asyncio.Task] = []

    def request_shutdown() -> None:
        shutdowns.append(loop.create_task(manager.shutdown()))

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            # Windows: Ctrl-C arrives as KeyboardInterrupt instead
            continue
        installed.append(sig)

    try:
        await obs.connect_with_retry(cfg.obs.connect_attempts, cfg.obs.connect_delay)
        console.print("[bold green]Listening for channel point redemptions...[/]")
        await manager.run(dispatcher)
    except BridgeError as e:
        if not e.fatal:
            raise
        report_fatal(console, e)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        for result in await asyncio.gather(*shutdowns, return_exceptions=True):
            if isinstance(result, Exception):
                logger.error("Shutdown request failed: %s", result)
        display.stop()
        await obs.close()
        await gateway.aclose()
        await credentials.aclose()
    console.print("[bold yellow]Stopped.[/]")
    return 0


async def validate_token(cfg: BridgeConfig, store: SettingsStore, console: Console) -> int:
    credentials = CredentialStore(store, cfg.api)
    try:
        await credentials.ensure_valid()
    except AuthError as e:
        report_fatal(console, e)
        return 1
    finally:
        await credentials.aclose()
    console.print("[bold green]Access token is valid.[/]")
    return 0


async def whoami(
    cfg: BridgeConfig, store: SettingsStore, console: Console, login: str | None
) -> int:
    credentials = CredentialStore(store, cfg.api)
    gateway = RestGateway(credentials, cfg.api)
    try:
        user = await gateway.lookup_user(login)
    except AuthError as e:
        report_fatal(console, e)
        return 1
    finally:
        await gateway.aclose()
        await credentials.aclose()
    if user is None:
        console.print(f"[bold red]No such user: {login}[/]")
        return 1

    table = Table(title="Twitch user", border_style="green")
    table.add_column("Field")
    table.add_column("Value")
    for key in ("id", "login", "display_name", "broadcaster_type"):
        table.add_row(key, str(user.get(key, "")))
    console.print(table)

    if login is None:
        store.set_value("channel_id", user["id"])
        console.print(f"[green]Stored channel_id {user['id']}[/]")
    return 0


async def stream_status(cfg: BridgeConfig, store: SettingsStore, console: Console) -> int:
    channel_id = store.get_value("channel_id")
    if not channel_id:
        console.print("[bold red]channel_id is not configured. Run `eventsub-bridge whoami`.[/]")
        return 2
    credentials = CredentialStore(store, cfg.api)
    gateway = RestGateway(credentials, cfg.api)
    try:
        stream = await gateway.stream_status(channel_id)
    except AuthError as e:
        report_fatal(console, e)
        return 1
    finally:
        await gateway.aclose()
        await credentials.aclose()
    if stream is None:
        console.print("[yellow]Channel is offline.[/]")
    else:
        console.print(
            f"[bold green]Live:[/] {stream.get('title', '')} "
            f"({stream.get('game_name', '')}, {stream.get('viewer_count', 0)} viewers)"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--dev", action="store_true", help="Dev mode settings and chat commands")
    common.add_argument("--settings", help="Path to the settings JSON file")

    parser = argparse.ArgumentParser(
        prog="eventsub-bridge",
        description="Twitch EventSub listener that drives OBS automations",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("run", parents=[common], help="Listen for redemptions")
    commands.add_parser("validate", parents=[common], help="Validate and refresh the access token")
    who = commands.add_parser("whoami", parents=[common], help="Look up a Twitch user")
    who.add_argument("--login", help="Login to look up (default: token owner)")
    commands.add_parser("stream-status", parents=[common], help="Show whether the channel is live")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    console = Console()
    setup_logging(console)
    cfg = reload_config(dev_mode=True if args.dev else None)
    store = SettingsStore(args.settings or cfg.settings_path)

    if args.command == "run":
        job = run_bridge(cfg, store, console)
    elif args.command == "validate":
        job = validate_token(cfg, store, console)
    elif args.command == "whoami":
        job = whoami(cfg, store, console, args.login)
    else:
        job = stream_status(cfg, store, console)

    try:
        code = asyncio.run(job)
    except KeyboardInterrupt:
        code = 130
    except BridgeError as e:
        logger.error("%s", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
