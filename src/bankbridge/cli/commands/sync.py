"""Transaction sync commands for BankBridge CLI.

This module pulls booked transactions and balances from the aggregator for
linked accounts, categorizing new transactions as they are stored.
"""

import logging

import typer

from bankbridge.errors import BankBridgeError, PartialSyncFailure, raise_for_failures
from bankbridge.models import SyncResult

from ..utils import UserOption, open_components

app = typer.Typer(help="Sync transactions from linked banks")
logger = logging.getLogger(__name__)


def _report(result: SyncResult) -> None:
    if result.failed:
        logger.error(f"❌ Account {result.account_id}: {'; '.join(result.errors)}")
        return
    logger.info(
        f"✅ Account {result.account_id}: {result.transactions_synced} transactions "
        f"({result.transactions_created} new, {result.transactions_updated} updated, "
        f"{result.transactions_categorized} categorized) "
        f"from {result.date_from} to {result.date_to}"
    )
    for error in result.errors:
        logger.warning(f"⚠️  {error}")


@app.command("account")
def sync_account(
    user: UserOption,
    account_id: str = typer.Argument(..., help="Account to sync"),
) -> None:
    """Sync one account's transactions and balance.

    Examples:
        bankbridge sync account 3f2a... --user alice
    """
    with open_components() as components:
        try:
            result = components.ingestor.sync_transactions(user, account_id)
        except BankBridgeError as e:
            logger.error(f"❌ Sync failed: {e}")
            raise typer.Exit(1) from e

    _report(result)


@app.command("all")
def sync_all(user: UserOption) -> None:
    """Sync every active account of a user.

    Accounts are synced one after another; a failing account does not stop
    the rest, but the command exits non-zero if any account failed.
    """
    with open_components() as components:
        results = components.ingestor.sync_all_accounts(user)

    if not results:
        logger.info("No active accounts to sync")
        return

    for result in results:
        _report(result)

    try:
        raise_for_failures(results)
    except PartialSyncFailure as e:
        logger.error(f"❌ {e}")
        raise typer.Exit(1) from e

    logger.info(f"🎉 Synced {len(results)} accounts")
