"""Main CLI application for BankBridge.

This module provides the unified entry point for all BankBridge CLI
operations, organizing commands into groups for storage, bank connections,
syncing and transaction review.
"""

import logging
from typing import Annotated

import typer
from dotenv import load_dotenv

from ..logging import setup_logging
from .commands import (
    accounts,
    connections,
    db,
    institutions,
    subscriptions,
    sync,
    transactions,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="bankbridge",
    help="BankBridge: bank account aggregation and transaction intelligence",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose debug logging",
        ),
    ] = False,
) -> None:
    """Global options for BankBridge CLI.

    Settings are read from BANKBRIDGE_* environment variables and a local
    .env file. The legacy GOCARDLESS_SECRET_ID and GOCARDLESS_SECRET_KEY
    variables are honoured as well.

    Examples:
      bankbridge db init
      bankbridge institutions search monzo --country GB
      bankbridge -v sync all --user alice
    """
    # Legacy GOCARDLESS_* variables are read from the process environment
    load_dotenv()

    setup_logging(cli_mode=True, verbose=verbose)


app.add_typer(db.app, name="db", help="Database setup commands")
app.add_typer(
    institutions.app, name="institutions", help="Browse the institution directory"
)
app.add_typer(connections.app, name="connections", help="Manage bank connections")
app.add_typer(accounts.app, name="accounts", help="Inspect linked bank accounts")
app.add_typer(sync.app, name="sync", help="Sync transactions from linked banks")
app.add_typer(
    transactions.app, name="transactions", help="Categorize and review transactions"
)
app.add_typer(
    subscriptions.app, name="subscriptions", help="Detect recurring payments"
)


def main() -> None:
    """Entry point for the BankBridge CLI application."""
    app()


if __name__ == "__main__":
    main()
