"""Command line entry point for termail."""

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from termail import __version__
from termail.utils.config import AppConfig, ConfigManager
from termail.utils.errors import KeyStoreError, TermailError, format_error_message
from termail.utils.logging import get_logger, init_logging, log_call

logger = get_logger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def setup_argument_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""

    parser = argparse.ArgumentParser(
        prog="termail",
        description="Terminal email client with an offline-first local cache",
    )
    parser.add_argument(
        "--clear-keyring",
        action="store_true",
        help="Clear the stored credentials from the system keyring and exit",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="File logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


@log_call
async def clear_keyring(config: AppConfig, console: Console, err_console: Console) -> int:
    """Delete stored credentials; reports the outcome and always succeeds."""
    from termail.security.credentials import CredentialStore

    store = CredentialStore(
        service=config.account.keyring_service,
        username=config.account.keyring_username,
    )
    try:
        await store.clear()
    except KeyStoreError as e:
        err_console.print(
            f"Failed to delete credentials from keyring: {e.message}", highlight=False
        )
        return 0

    console.print("Credentials removed from keyring. Exiting.", highlight=False)
    return 0


def run_client(config: AppConfig, console: Console) -> int:
    """Build the store, client and engine and run the interactive client."""
    from termail.core.database.store import MailStore
    from termail.core.gmail.client import GmailClient
    from termail.core.sync.coordinator import FetchCoordinator
    from termail.core.sync.engine import SyncEngine
    from termail.core.sync.poller import RefreshPoller
    from termail.security.credentials import CredentialStore
    from termail.tui.app import TermailApp

    credentials = CredentialStore(
        service=config.account.keyring_service,
        username=config.account.keyring_username,
    )
    try:
        token = asyncio.run(credentials.get_token())
    except KeyStoreError as e:
        console.print(f"[red]{format_error_message(e)}[/red]")
        return 1

    if not token:
        console.print(
            "[red]No access token found.[/red] Store one in the keyring or set "
            "TERMAIL_TOKEN."
        )
        return 1

    store = MailStore(Path(config.database.database_path))
    client = GmailClient(
        credentials.get_token,
        base_url=config.account.api_base_url,
        timeout=config.account.network_timeout,
    )
    engine = SyncEngine(
        store,
        client,
        coordinator=FetchCoordinator(),
        config=config.sync,
    )

    app = TermailApp(engine, poller=RefreshPoller(engine))
    app.run()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code
    """
    console = Console()
    err_console = Console(stderr=True)

    parser = setup_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = ConfigManager().config
    except TermailError as e:
        if not args.clear_keyring:
            console.print(f"[red]Configuration error: {e.message}[/red]")
            return 1
        logger.warning(f"Using default configuration: {e.message}")
        config = AppConfig()

    init_logging(args.log_level or config.logging.log_level)

    try:
        if args.clear_keyring:
            return asyncio.run(clear_keyring(config, console, err_console))

        return run_client(config, console)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
