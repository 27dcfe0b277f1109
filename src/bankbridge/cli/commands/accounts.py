"""Bank account commands for BankBridge CLI."""

import logging

import typer

from bankbridge.errors import BankBridgeError

from ..utils import JsonOption, UserOption, open_components, print_json

app = typer.Typer(help="Inspect linked bank accounts")
logger = logging.getLogger(__name__)


@app.command("list")
def list_accounts(user: UserOption, as_json: JsonOption = False) -> None:
    """List a user's active accounts with their cached balances."""
    with open_components() as components:
        accounts = components.accounts.list_accounts(user)

    if as_json:
        print_json(accounts)
        return
    for account in accounts:
        balance = (
            f"{account.balance.amount} {account.balance.currency}"
            if account.balance
            else "not synced"
        )
        resync = " (resync queued)" if account.needs_resync else ""
        print(f"{account.id}  {account.institution_name:<30} {balance}{resync}")


@app.command("balance")
def account_balance(
    user: UserOption,
    account_id: str = typer.Argument(..., help="Account to show"),
) -> None:
    """Show the cached balance of one account."""
    with open_components() as components:
        try:
            balance = components.accounts.get_balance(account_id, user)
        except BankBridgeError as e:
            logger.error(f"❌ {e}")
            raise typer.Exit(1) from e

    if balance.message:
        logger.warning(f"⚠️  {balance.message}")
    print(f"{balance.amount} {balance.currency}")


@app.command("summary")
def accounts_summary(user: UserOption, as_json: JsonOption = False) -> None:
    """Totals per currency and account counts."""
    with open_components() as components:
        summary = components.accounts.get_summary(user)

    if as_json:
        print_json(summary)
        return
    print(f"Accounts: {summary.total_accounts}")
    for currency, total in sorted(summary.total_balance.items()):
        print(f"  {currency}: {total}")
    for institution, count in sorted(summary.accounts_by_institution.items()):
        print(f"  {institution}: {count} account(s)")


@app.command("deactivate")
def deactivate_account(
    user: UserOption,
    account_id: str = typer.Argument(..., help="Account to deactivate"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Hide an account from listings and bulk syncs."""
    if not yes:
        typer.confirm(f"Deactivate account {account_id}?", abort=True)

    with open_components() as components:
        try:
            components.accounts.deactivate_account(account_id, user)
        except BankBridgeError as e:
            logger.error(f"❌ Failed to deactivate account: {e}")
            raise typer.Exit(1) from e

    logger.info(f"⏸️  Account {account_id} deactivated")
