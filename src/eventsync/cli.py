"""
Command-line interface for the eventsync system.

Commands:
- listen: Connect to the push stream and print events as JSON lines
- queue: Inspect, drain or clear the durable offline action queue
- config: Configuration management
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

from . import __version__
from .action_store import DurableActionStore
from .audit_logger import AuditLogger
from .auth import StaticTokenProvider
from .client import SyncClient
from .config import (
    ActionEndpointConfig,
    HeartbeatConfig,
    LoggingConfig,
    QueueConfig,
    ReconnectConfig,
    SyncConfig,
    TransportConfig,
)
from .enums import LogLevel, SessionState
from .events import ActionSettled, ConnectionStatusChanged, ServerEvent
from .exceptions import PersistenceError
from .i18n import SUPPORTED_LANGUAGES
from .offline_queue import OfflineActionQueue
from .senders import HttpActionSender
from .storage import FileStorage

DEFAULT_CONFIG_PATH = Path.home() / ".eventsync" / "config.json"
DEFAULT_ENDPOINT = "ws://localhost:5000/ws"
TOKEN_ENV_VAR = "EVENTSYNC_TOKEN"


def create_default_config(
    endpoint: str = DEFAULT_ENDPOINT,
    storage_dir: Optional[Path] = None,
    language: str = "en",
    actions_base_url: Optional[str] = None,
) -> SyncConfig:
    """
    Create a default client configuration.

    Args:
        endpoint: Push stream endpoint
        storage_dir: Directory holding the offline queue
        language: Output language ('de' or 'en')
        actions_base_url: Optional REST base URL for action delivery

    Returns:
        SyncConfig with default settings
    """
    if storage_dir is None:
        storage_dir = Path.home() / ".eventsync" / "queue"

    return SyncConfig(
        transport=TransportConfig(endpoint=endpoint, query={"clientType": "python", "version": __version__}),
        queue=QueueConfig(storage_dir=storage_dir),
        reconnect=ReconnectConfig(),
        heartbeat=HeartbeatConfig(),
        logging=LoggingConfig(level="info", output_format="text"),
        actions=ActionEndpointConfig(base_url=actions_base_url) if actions_base_url else None,
        language=language,
    )


def load_config_from_file(config_path: Path) -> Optional[SyncConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SyncConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        transport_data = data["transport"]
        transport = TransportConfig(
            endpoint=transport_data["endpoint"],
            connect_timeout_seconds=float(transport_data.get("connect_timeout_seconds", 10.0)),
            send_timeout_seconds=float(transport_data.get("send_timeout_seconds", 10.0)),
            query=dict(transport_data.get("query") or {"clientType": "python", "version": __version__}),
        )

        reconnect_data = data.get("reconnect", {})
        reconnect = ReconnectConfig(
            base_delay_seconds=float(reconnect_data.get("base_delay_seconds", 1.0)),
            max_delay_seconds=float(reconnect_data.get("max_delay_seconds", 30.0)),
            max_jitter_seconds=float(reconnect_data.get("max_jitter_seconds", 1.0)),
            max_attempts=int(reconnect_data.get("max_attempts", 10)),
        )

        heartbeat_data = data.get("heartbeat", {})
        heartbeat = HeartbeatConfig(
            interval_seconds=float(heartbeat_data.get("interval_seconds", 30.0)),
            timeout_seconds=float(heartbeat_data.get("timeout_seconds", 10.0)),
            max_missed=int(heartbeat_data.get("max_missed", 2)),
        )

        queue_data = data.get("queue", {})
        storage_dir = queue_data.get("storage_dir")
        max_attempts = queue_data.get("max_attempts")
        queue = QueueConfig(
            storage_dir=Path(storage_dir) if storage_dir else Path.home() / ".eventsync" / "queue",
            storage_key=queue_data.get("storage_key", "scanner_offline_queue_v1"),
            max_attempts=int(max_attempts) if max_attempts is not None else None,
        )

        # Optional REST endpoint for actions
        actions = None
        actions_data = data.get("actions")
        if actions_data and actions_data.get("base_url"):
            actions = ActionEndpointConfig(
                base_url=actions_data["base_url"],
                scan_path=actions_data.get("scan_path", "/api/tickets/scan"),
                timeout_seconds=float(actions_data.get("timeout_seconds", 15.0)),
            )

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SyncConfig(
            transport=transport,
            queue=queue,
            reconnect=reconnect,
            heartbeat=heartbeat,
            logging=logging_config,
            actions=actions,
            language=data.get("language", "en"),
        )

    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None
    except OSError as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return None


def save_config_to_file(config: SyncConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SyncConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "transport": {
                "endpoint": config.transport.endpoint,
                "connect_timeout_seconds": config.transport.connect_timeout_seconds,
                "send_timeout_seconds": config.transport.send_timeout_seconds,
                "query": config.transport.query,
            },
            "reconnect": {
                "base_delay_seconds": config.reconnect.base_delay_seconds,
                "max_delay_seconds": config.reconnect.max_delay_seconds,
                "max_jitter_seconds": config.reconnect.max_jitter_seconds,
                "max_attempts": config.reconnect.max_attempts,
            },
            "heartbeat": {
                "interval_seconds": config.heartbeat.interval_seconds,
                "timeout_seconds": config.heartbeat.timeout_seconds,
                "max_missed": config.heartbeat.max_missed,
            },
            "queue": {
                "storage_dir": str(config.queue.storage_dir),
                "storage_key": config.queue.storage_key,
                "max_attempts": config.queue.max_attempts,
            },
            "actions": {
                "base_url": config.actions.base_url,
                "scan_path": config.actions.scan_path,
                "timeout_seconds": config.actions.timeout_seconds,
            } if config.actions else None,
            "logging": {
                "level": config.logging.level,
                "output_format": config.logging.output_format,
            },
            "language": config.language,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def validate_config(config: SyncConfig) -> list[str]:
    """
    Check a configuration for values the client cannot work with.

    Returns:
        List of problems, empty if the configuration is usable
    """
    problems = []

    scheme = urlsplit(config.transport.endpoint).scheme.lower()
    if scheme not in ("ws", "wss", "http", "https"):
        problems.append(f"transport.endpoint has unsupported scheme: {scheme or '<none>'}")
    if config.transport.connect_timeout_seconds <= 0:
        problems.append("transport.connect_timeout_seconds must be positive")
    if config.transport.send_timeout_seconds <= 0:
        problems.append("transport.send_timeout_seconds must be positive")

    if config.reconnect.base_delay_seconds < 0:
        problems.append("reconnect.base_delay_seconds must not be negative")
    if config.reconnect.max_delay_seconds < config.reconnect.base_delay_seconds:
        problems.append("reconnect.max_delay_seconds must be >= base_delay_seconds")
    if config.reconnect.max_jitter_seconds < 0:
        problems.append("reconnect.max_jitter_seconds must not be negative")
    if config.reconnect.max_attempts < 1:
        problems.append("reconnect.max_attempts must be at least 1")

    if config.heartbeat.max_missed < 1:
        problems.append("heartbeat.max_missed must be at least 1")
    if config.queue.max_attempts is not None and config.queue.max_attempts < 1:
        problems.append("queue.max_attempts must be at least 1 or null")

    try:
        LogLevel(config.logging.level)
    except ValueError:
        problems.append(f"logging.level is unknown: {config.logging.level}")
    if config.logging.output_format not in ("json", "text", "both"):
        problems.append(f"logging.output_format is unknown: {config.logging.output_format}")
    if config.language not in SUPPORTED_LANGUAGES:
        problems.append(f"language is unsupported: {config.language}")

    return problems


def event_to_dict(event: ServerEvent) -> dict[str, Any]:
    """JSON-ready form of a dispatched event."""
    if isinstance(event, ConnectionStatusChanged) and event.status is not None:
        status = event.status
        return {
            "kind": "status",
            "status": status.status.value,
            "state": status.state.value,
            "reason": status.reason.value if status.reason else None,
            "message": status.message,
            "reconnect_attempt": status.reconnect_attempt,
            "timestamp": status.timestamp,
        }
    if isinstance(event, ActionSettled) and event.result is not None:
        result = event.result
        return {
            "kind": "action",
            "action_id": result.action_id,
            "action_type": result.action_type,
            "outcome": result.outcome.value,
            "error_code": result.error_code,
            "message": result.message,
        }
    return {
        "kind": "event",
        "channel": event.channel,
        "type": event.type,
        "body": event.body,
    }


def _make_logger(config: SyncConfig, verbose: bool) -> Optional[AuditLogger]:
    if not verbose:
        return None
    return AuditLogger.from_config(
        level=config.logging.level,
        output_format=config.logging.output_format,
        output_stream=sys.stderr,
    )


def _resolve_config(args: argparse.Namespace) -> Optional[SyncConfig]:
    config_path = getattr(args, "config", None)
    if config_path:
        config = load_config_from_file(Path(config_path))
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
        return config

    config = load_config_from_file(DEFAULT_CONFIG_PATH)
    if config is None:
        config = create_default_config()
    return config


async def listen(
    config: SyncConfig,
    token: Optional[str],
    channels: list[str],
    duration: Optional[float] = None,
    verbose: bool = False,
) -> int:
    """
    Connect and print every event until the duration elapses.

    Returns:
        Exit code (0 on a clean run, 1 if the session failed)
    """
    logger = _make_logger(config, verbose)

    def print_event(event: ServerEvent) -> None:
        print(json.dumps(event_to_dict(event), ensure_ascii=False, default=str), flush=True)

    async with SyncClient(config, auth=StaticTokenProvider(token), logger=logger) as client:
        client.on(ServerEvent, print_event)
        state = await client.connect(channels)
        if state in (SessionState.IDLE, SessionState.FAILED):
            return 1

        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()

        return 1 if client.state == SessionState.FAILED else 0


async def drain_queue(config: SyncConfig, token: Optional[str], verbose: bool = False) -> int:
    """
    Deliver the stored offline queue over the REST action endpoint.

    Returns:
        Exit code (0 if the queue is empty afterwards)
    """
    if config.actions is None:
        print("Error: No action endpoint configured (actions.base_url)", file=sys.stderr)
        return 1

    logger = _make_logger(config, verbose)
    store = DurableActionStore(
        FileStorage(config.queue.storage_dir),
        key=config.queue.storage_key,
        logger=logger,
    )
    async with HttpActionSender(
        base_url=config.actions.base_url,
        path=config.actions.scan_path,
        timeout=config.actions.timeout_seconds,
        token_provider=StaticTokenProvider(token),
        logger=logger,
    ) as sender:
        queue = OfflineActionQueue(
            store=store,
            sender=sender,
            max_attempts=config.queue.max_attempts,
            logger=logger,
            language=config.language,
        )
        result = await queue.drain()

    print(f"Flushed: {result.flushed}, remaining: {result.remaining}")
    for rejected in result.rejected:
        print(f"  Rejected {rejected.action_id}: {rejected.error_code} - {rejected.message}")
    for expired in result.expired:
        print(f"  Expired {expired.action_id}: {expired.message}")
    return 0 if result.remaining == 0 else 1


def cmd_listen(args: argparse.Namespace) -> int:
    """Handle the 'listen' command."""
    config = _resolve_config(args)
    if config is None:
        return 1
    if args.endpoint:
        config.transport.endpoint = args.endpoint
    if args.language:
        config.language = args.language

    token = args.token or os.environ.get(TOKEN_ENV_VAR)
    try:
        return asyncio.run(listen(
            config=config,
            token=token,
            channels=args.channel or [],
            duration=args.duration,
            verbose=args.verbose,
        ))
    except KeyboardInterrupt:
        return 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_queue(args: argparse.Namespace) -> int:
    """Handle the 'queue' command."""
    config = _resolve_config(args)
    if config is None:
        return 1

    store = DurableActionStore(FileStorage(config.queue.storage_dir), key=config.queue.storage_key)

    if args.action == "show":
        actions = store.load()
        if store.last_error is not None:
            print(f"Warning: {store.last_error.message}", file=sys.stderr)
        print(f"Queue at {config.queue.storage_dir} ({len(actions)} pending)")
        for action in actions:
            print(json.dumps(action.to_dict(), ensure_ascii=False, default=str))
        return 0

    elif args.action == "drain":
        token = args.token or os.environ.get(TOKEN_ENV_VAR)
        return asyncio.run(drain_queue(config, token, verbose=args.verbose))

    elif args.action == "clear":
        removed = len(store.load())
        try:
            store.clear()
        except PersistenceError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        print(f"Removed {removed} pending action(s)")
        return 0

    return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Endpoint: {config.transport.endpoint}")
        print(f"  Language: {config.language}")
        print(f"  Reconnect: base {config.reconnect.base_delay_seconds}s, "
              f"cap {config.reconnect.max_delay_seconds}s, {config.reconnect.max_attempts} attempts")
        print(f"  Heartbeat: every {config.heartbeat.interval_seconds}s")
        print(f"  Queue dir: {config.queue.storage_dir}")
        print(f"  Action endpoint: {config.actions.base_url if config.actions else '(session)'}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(language=args.language)
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        problems = validate_config(config)
        if problems:
            print(f"Configuration at {config_path} has {len(problems)} problem(s):", file=sys.stderr)
            for problem in problems:
                print(f"  - {problem}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="eventsync",
        description="Resilient real-time sync client with a durable offline action queue",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'listen' command
    listen_parser = subparsers.add_parser(
        "listen",
        help="Connect and print live events as JSON lines",
    )
    listen_parser.add_argument(
        "--endpoint", "-e",
        help="Push stream endpoint (overrides the config)",
    )
    listen_parser.add_argument(
        "--token", "-t",
        help=f"Auth token (default: ${TOKEN_ENV_VAR})",
    )
    listen_parser.add_argument(
        "--channel",
        action="append",
        help="Channel to join, e.g. poll-room:p1 (repeatable)",
    )
    listen_parser.add_argument(
        "--duration", "-d",
        type=float,
        help="Stop after this many seconds",
    )
    listen_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    listen_parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        help="Language for status messages",
    )
    listen_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Write log entries to stderr",
    )
    listen_parser.set_defaults(func=cmd_listen)

    # 'queue' command
    queue_parser = subparsers.add_parser(
        "queue",
        help="Offline action queue management",
    )
    queue_parser.add_argument(
        "action",
        choices=["show", "drain", "clear"],
        help="Queue action",
    )
    queue_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    queue_parser.add_argument(
        "--token", "-t",
        help=f"Auth token for drain (default: ${TOKEN_ENV_VAR})",
    )
    queue_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Write log entries to stderr",
    )
    queue_parser.set_defaults(func=cmd_queue)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.add_argument(
        "--language", "-l",
        choices=sorted(SUPPORTED_LANGUAGES),
        default="en",
        help="Default language for new configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
