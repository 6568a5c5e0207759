# src/session_app/main.py
"""
Command-line host for the authenticated request layer.

    python -m session_app verify
    python -m session_app status
    python -m session_app request GET /api/orders
    python -m session_app request POST /api/orders --json '{"total": 12.5}'

Configuration comes from .env files, SESSION_* environment variables and an
optional YAML file (--config). Credentials are obtained by exchanging
SESSION_REFRESH_TOKEN at SESSION_TOKEN_URL.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import colorlog
from dotenv import load_dotenv
from rich.console import Console

from session_guard import (
    AuthenticatedSession,
    ConfigLoadError,
    ConfigValidationError,
    RefreshTokenCredentialSource,
    RequestDescriptor,
    SessionConfig,
    SessionError,
)
from session_guard.failure_logger import configure_failure_logger
from session_guard.utils.paths import (
    get_credentials_dir,
    get_data_file,
    get_default_root,
    get_logs_dir,
)

_console = Console()


class SessionDebugFilter(logging.Filter):
    """Only DEBUG records from the session layer reach the debug file."""

    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("session_guard")


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    console_handler = colorlog.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    file_format = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    info_file_handler = logging.FileHandler(log_dir / "session.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(file_format)

    debug_file_handler = logging.FileHandler(log_dir / "session_debug.log", encoding="utf-8")
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(file_format)
    debug_file_handler.addFilter(SessionDebugFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(debug_file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def load_env_files(root: Path) -> List[str]:
    """Load .env first, then any other *.env files without overriding."""
    load_dotenv(root / ".env")
    found = sorted(root.glob("*.env"))
    for env_file in found:
        if env_file.name != ".env":
            load_dotenv(env_file, override=False)
    return [env_file.name for env_file in found]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="session_app", description="Authenticated API client with resilient sessions"
    )
    parser.add_argument("--config", type=str, help="YAML file with a 'session:' section.")
    parser.add_argument("--verbose", action="store_true", help="Show debug logs on the console.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("verify", help="Obtain a credential and verify it with the backend.")
    subparsers.add_parser("status", help="Show the stored session and connection status.")

    request_parser = subparsers.add_parser("request", help="Send one authenticated request.")
    request_parser.add_argument("method", type=str.upper, choices=["GET", "POST", "PUT", "PATCH", "DELETE"])
    request_parser.add_argument("path", type=str)
    request_parser.add_argument("--json", dest="body", type=str, help="JSON request body.")
    return parser


def build_session(config: SessionConfig) -> AuthenticatedSession:
    token_url = os.getenv("SESSION_TOKEN_URL")
    if not token_url:
        raise ConfigValidationError("SESSION_TOKEN_URL is not set")
    source = RefreshTokenCredentialSource(
        token_url=token_url,
        refresh_token=os.getenv("SESSION_REFRESH_TOKEN"),
        client_id=os.getenv("SESSION_CLIENT_ID"),
        client_secret=os.getenv("SESSION_CLIENT_SECRET"),
        timeout=config.request_timeout,
    )
    return AuthenticatedSession(source, config=config)


async def run_command(args: argparse.Namespace, config: SessionConfig) -> int:
    async with build_session(config) as session:
        if args.command == "verify":
            subject = await session.bootstrap()
            _console.print(f"[green]✓ Session verified[/green] role={subject.get('role')}")
            _console.print(f"Session expires in {session.session_time_remaining()} minute(s)")
            return 0

        if args.command == "status":
            _console.print_json(data=session.get_status())
            return 0

        body = json.loads(args.body) if args.body else None
        await session.token_manager.start()
        response = await session.dispatcher.send(
            RequestDescriptor(args.method, args.path, json=body), defer_when_offline=False
        )
        _console.print(f"[bold]HTTP {response.status_code}[/bold]")
        try:
            _console.print_json(data=response.json())
        except ValueError:
            _console.print(response.text)
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    root = get_default_root()
    env_files = load_env_files(root)
    setup_logging(get_logs_dir(root), verbose=args.verbose)
    configure_failure_logger(get_logs_dir(root))
    if env_files:
        logging.debug(f"Loaded {len(env_files)} .env file(s): {', '.join(env_files)}")

    yaml_path = args.config
    if yaml_path is None and get_data_file("session.yaml", root).exists():
        yaml_path = get_data_file("session.yaml", root)

    try:
        config = SessionConfig.load(yaml_path=yaml_path)
        if config.credential_file is None:
            # The CLI keeps its session between invocations
            config = config.merged(
                {"credential_file": str(get_credentials_dir(root) / "session.json")}
            )
    except (ConfigLoadError, ConfigValidationError) as e:
        _console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2

    try:
        return asyncio.run(run_command(args, config))
    except ConfigValidationError as e:
        _console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2
    except SessionError as e:
        _console.print(f"[bold red]✗ {type(e).__name__}:[/bold red] {e}")
        return 1
    except Exception as e:
        logging.debug("Request failed", exc_info=True)
        _console.print(f"[bold red]✗ Request failed:[/bold red] {e}")
        return 1
