"""Application entry point for the safesend reminder sender."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from rich.text import Text

from safesend import __version__, settings
from safesend.adapters.qr_render import render_ascii, render_data_url
from safesend.client import build_credential_store, build_transport
from safesend.core.errors import DeliveryError
from safesend.core.models import ConnectionState, InboundMessage, OutboundMessage
from safesend.core.service import MessagingService
from safesend.core.validation import mask_recipient

NAME = "SAFESEND"

console = Console()

# Full recipient ids that slipped into a log line (exceptions, library messages).
_RECIPIENT_RE = re.compile(r"(?<![\w+])\+\d{7,15}\b|\bchat_id:-?\d+")


def _print_banner() -> None:
    console.print(Text(NAME, style="bold cyan"), Text(f"v{__version__}", style="dim"))


class _RedactingFormatter(logging.Formatter):
    """Masks configured secrets and, optionally, recipient phone numbers and chat ids."""

    def __init__(
        self,
        secrets: list[str],
        fmt: str,
        datefmt: Optional[str] = None,
        mask_recipients: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]
        self._mask_recipients = mask_recipients

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        if self._mask_recipients:
            message = _RECIPIENT_RE.sub(lambda match: mask_recipient(match.group(0)), message)
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(
        _collect_redaction_values(config),
        fmt=fmt,
        datefmt=datefmt,
        mask_recipients=bool(config.get("redact", {}).get("recipients", False)),
    )

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/safesend.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_service(qr_format: str = "ascii") -> MessagingService:
    config = settings.MESSAGING
    render = render_data_url if qr_format == "data-url" else None
    service = MessagingService(
        config,
        build_transport(pairing_window=config.pairing_timeout),
        build_credential_store(settings.SESSION_DIR),
        render_pairing=render,
    )
    service.events.on_security_alert(lambda alert: console.print(f"[yellow]Security alert:[/yellow] {alert}"))
    return service


async def _wait_for_open(service: MessagingService, timeout: float) -> bool:
    """Wait until the connection opens, or give up after ``timeout``."""

    opened = asyncio.Event()

    def on_state(state: ConnectionState) -> None:
        if state is ConnectionState.OPEN:
            opened.set()

    unsubscribe = service.events.on_connection_state(on_state)
    try:
        if service.get_connection_state() is ConnectionState.OPEN:
            return True
        await asyncio.wait_for(opened.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        unsubscribe()


async def _open_stored_session(service: MessagingService) -> bool:
    if not await service.restore_session():
        console.print("[red]No stored session.[/red] Run 'safesend run' first to pair this device.")
        return False
    if not await _wait_for_open(service, service.config.connect_timeout):
        console.print("[red]Could not connect with the stored session.[/red]")
        await service.disconnect()
        return False
    return True


def _print_status(service: MessagingService) -> None:
    status = service.status()
    reconnect = service.get_reconnect_state()
    table = Table(title="safesend status")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Connection", status.connection_state.value)
    table.add_row("Ready", "yes" if status.ready else "no")
    table.add_row("Secure", "yes" if status.is_secure else "no")
    table.add_row("Stability", status.connection_stability)
    table.add_row("Messages this hour", str(status.messages_this_hour))
    table.add_row("Pending messages", str(status.pending_messages))
    table.add_row("Reconnect attempts", str(reconnect.attempt_count))
    table.add_row("Awaiting pairing", "yes" if status.pairing_payload else "no")
    console.print(table)


async def _run(qr_format: str) -> None:
    logger = logging.getLogger(__name__)
    service = _build_service(qr_format)

    def on_pairing(payload: Optional[str]) -> None:
        if payload is None:
            return
        console.print("Scan this code in Telegram (Settings > Devices > Link Desktop Device):")
        console.print(render_ascii(payload) if qr_format == "ascii" else payload)

    def on_message(message: InboundMessage) -> None:
        logger.info("Inbound message from %s", mask_recipient(message.sender_id))

    service.events.on_pairing_payload(on_pairing)
    service.events.on_message(on_message)
    service.events.on_connection_state(lambda state: logger.info("Connection state: %s", state.value))

    logger.info("Starting safesend")
    if not await service.restore_session():
        await service.initialize()

    try:
        # Keep the process alive; the connection manager reconnects on its own.
        while True:
            await asyncio.sleep(3600)
    finally:
        await service.disconnect()


async def _send(recipient_id: str, body: str) -> int:
    service = _build_service()
    if not await _open_stored_session(service):
        return 1
    try:
        item = await service.send_message(recipient_id, body)
        delivered = await item.outcome
    except DeliveryError as exc:
        console.print(f"[red]Rejected:[/red] {exc}")
        return 1
    finally:
        await service.disconnect()
    if delivered:
        console.print(f"[green]Delivered[/green] to {mask_recipient(item.recipient_id)}")
        return 0
    console.print(f"[red]Delivery failed[/red] for {mask_recipient(item.recipient_id)}")
    return 1


def _load_reminders(path: str) -> list[OutboundMessage]:
    """Read a JSON list of {"recipient_id", "body"} objects."""

    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, list):
        raise ValueError("Reminder file must contain a JSON list")
    messages = []
    for entry in raw:
        if not isinstance(entry, dict) or "recipient_id" not in entry or "body" not in entry:
            raise ValueError("Each reminder needs recipient_id and body")
        messages.append(OutboundMessage(recipient_id=str(entry["recipient_id"]), body=str(entry["body"])))
    return messages


async def _broadcast(path: str) -> int:
    messages = _load_reminders(path)
    service = _build_service()
    if not await _open_stored_session(service):
        return 1
    try:
        console.print(f"Sending {len(messages)} reminders...", style="dim")
        result = await service.send_batch(messages)
    except DeliveryError as exc:
        console.print(f"[red]Broadcast rejected:[/red] {exc}")
        return 1
    finally:
        await service.disconnect()
    console.print(
        f"Sent {result.success_count}, failed {result.failed_count} "
        f"({result.success_rate}% success)"
    )
    return 0 if result.failed_count == 0 else 1


async def _status() -> int:
    service = _build_service()
    connected = await _open_stored_session(service)
    _print_status(service)
    if connected:
        await service.disconnect()
    return 0


async def _logout() -> int:
    service = _build_service()
    # Local credentials are dropped even when the server cannot be reached.
    await _open_stored_session(service)
    await service.logout()
    console.print("Logged out; stored session removed.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="safesend")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Connect, pair if needed, and stay online")
    run_parser.add_argument("--qr-format", choices=["ascii", "data-url"], default="ascii")

    send_parser = subparsers.add_parser("send", help="Send one reminder")
    send_parser.add_argument("recipient_id", help="@username, +phone or chat_id:<id>")
    send_parser.add_argument("body")

    broadcast_parser = subparsers.add_parser("broadcast", help="Send reminders from a JSON file in batches")
    broadcast_parser.add_argument("file")

    subparsers.add_parser("status", help="Show connection and security status")
    subparsers.add_parser("logout", help="Log out and remove the stored session")

    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging()

    if args.command == "send":
        return asyncio.run(_send(args.recipient_id, args.body))
    if args.command == "broadcast":
        return asyncio.run(_broadcast(args.file))
    if args.command == "status":
        return asyncio.run(_status())
    if args.command == "logout":
        return asyncio.run(_logout())
    try:
        asyncio.run(_run(getattr(args, "qr_format", "ascii")))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
