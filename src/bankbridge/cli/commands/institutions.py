"""Institution directory commands for BankBridge CLI."""

import logging

import typer

from bankbridge.aggregator import AggregatorClient
from bankbridge.aggregator.schemas import InstitutionSchema
from bankbridge.config import get_aggregator_config
from bankbridge.errors import BankBridgeError

from ..utils import JsonOption, print_json

app = typer.Typer(help="Browse the institution directory")
logger = logging.getLogger(__name__)

CountryOption = typer.Option(
    None,
    "--country",
    "-c",
    help="ISO 3166 country code (default: from settings)",
)


def _print_institutions(institutions: list[InstitutionSchema], as_json: bool) -> None:
    if as_json:
        print_json(institutions)
        return
    for institution in institutions:
        print(f"{institution.id:<40} {institution.name}")


@app.command("list")
def list_institutions(
    country: str | None = CountryOption,
    as_json: JsonOption = False,
) -> None:
    """List the banks available in a country."""
    config = get_aggregator_config()
    country = (country or config.country).upper()
    try:
        with AggregatorClient(config) as client:
            institutions = client.list_institutions(country)
    except BankBridgeError as e:
        logger.error(f"❌ Failed to list institutions: {e}")
        raise typer.Exit(1) from e

    logger.info(f"🏦 {len(institutions)} institutions in {country}")
    _print_institutions(institutions, as_json)


@app.command("search")
def search_institutions(
    query: str = typer.Argument(..., help="Name or id fragment to search for"),
    country: str | None = CountryOption,
    as_json: JsonOption = False,
) -> None:
    """Search institutions by name or id.

    Examples:
        bankbridge institutions search monzo
        bankbridge institutions search revolut --country DE
    """
    config = get_aggregator_config()
    country = (country or config.country).upper()
    try:
        with AggregatorClient(config) as client:
            institutions = client.search_institutions(query, country)
    except BankBridgeError as e:
        logger.error(f"❌ Institution search failed: {e}")
        raise typer.Exit(1) from e

    if not institutions:
        logger.warning(f"⚠️  No institutions match '{query}' in {country}")
        return
    _print_institutions(institutions, as_json)
