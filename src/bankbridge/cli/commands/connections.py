"""Bank connection commands for BankBridge CLI.

Linking a bank is a two-step flow: ``initiate`` prints a consent link for
the user to open, and the aggregator later redirects back with the
connection reference, which ``callback`` finalizes.
"""

import logging

import typer

from bankbridge.errors import BankBridgeError
from bankbridge.models import AccountType, ConnectionStatus

from ..utils import JsonOption, UserOption, open_components, print_json

app = typer.Typer(help="Manage bank connections")
logger = logging.getLogger(__name__)


@app.command("initiate")
def initiate_connection(
    user: UserOption,
    institution_id: str = typer.Option(
        ..., "--institution", "-i", help="Institution id from 'institutions list'"
    ),
    account_type: AccountType = typer.Option(
        AccountType.PERSONAL, "--account-type", "-t", help="How to classify the accounts"
    ),
    country: str | None = typer.Option(
        None, "--country", "-c", help="Directory country (default: from settings)"
    ),
) -> None:
    """Start linking a bank and print the consent link.

    Examples:
        bankbridge connections initiate -u alice -i SANDBOXFINANCE_SFIN0000
    """
    with open_components() as components:
        try:
            response = components.connections.initiate_connection(
                user, institution_id, account_type, country
            )
        except BankBridgeError as e:
            logger.error(f"❌ Failed to initiate connection: {e}")
            raise typer.Exit(1) from e

    logger.info(f"🔗 Connection {response.connection_id} created")
    logger.info(
        f"💡 Open the link below within {response.expires_in // 60} minutes "
        "to grant access"
    )
    print(response.auth_url)


@app.command("callback")
def complete_connection(
    reference: str = typer.Argument(..., help="Reference returned by the bank redirect"),
) -> None:
    """Finalize a connection after the user returned from the bank."""
    with open_components() as components:
        try:
            connection = components.connections.handle_callback(reference)
        except BankBridgeError as e:
            logger.error(f"❌ Failed to complete connection: {e}")
            raise typer.Exit(1) from e

    if connection.status != ConnectionStatus.LINKED:
        logger.error(
            f"❌ Connection {connection.id} is {connection.status.value}"
            + (f": {connection.error}" if connection.error else "")
        )
        raise typer.Exit(1)

    logger.info(f"✅ Connection {connection.id} linked to {connection.institution_name}")


@app.command("list")
def list_connections(user: UserOption, as_json: JsonOption = False) -> None:
    """List a user's bank connections."""
    with open_components() as components:
        connections = components.connections.list_connections(user)

    if as_json:
        print_json(connections)
        return
    if not connections:
        logger.info("No bank connections yet")
        return
    for connection in connections:
        print(
            f"{connection.id}  {connection.status.value:<8} "
            f"{connection.institution_name} (expires {connection.expires_at:%Y-%m-%d})"
        )


@app.command("refresh")
def refresh_connection(
    user: UserOption,
    connection_id: str = typer.Argument(..., help="Connection to refresh"),
) -> None:
    """Queue every account of a connection for resync."""
    with open_components() as components:
        try:
            result = components.connections.refresh_connection(connection_id, user)
        except BankBridgeError as e:
            logger.error(f"❌ Failed to refresh connection: {e}")
            raise typer.Exit(1) from e

    logger.info(f"🔄 {result.accounts_synced} accounts queued for resync")


@app.command("delete")
def delete_connection(
    user: UserOption,
    connection_id: str = typer.Argument(..., help="Connection to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a connection and its accounts, revoking the bank consent."""
    if not yes:
        typer.confirm(f"Delete connection {connection_id}?", abort=True)

    with open_components() as components:
        try:
            components.connections.delete_connection(connection_id, user)
        except BankBridgeError as e:
            logger.error(f"❌ Failed to delete connection: {e}")
            raise typer.Exit(1) from e

    logger.info(f"🗑️  Connection {connection_id} deleted")
