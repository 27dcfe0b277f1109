"""Shared helpers for BankBridge CLI commands."""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated, Any

import typer

from ..app import Components, build_components

logger = logging.getLogger(__name__)

UserOption = Annotated[
    str,
    typer.Option(
        "--user",
        "-u",
        help="User id whose data to operate on",
        envvar="BANKBRIDGE_USER_ID",
    ),
]

JsonOption = Annotated[
    bool, typer.Option("--json", help="Print machine-readable JSON output")
]


@contextmanager
def open_components() -> Iterator[Components]:
    """Build the application components for one command and close them after.

    Raises:
        typer.Exit: If the configuration is invalid
    """
    try:
        components = build_components()
    except ValueError as e:
        logger.error(f"❌ Configuration error: {e}")
        logger.info("💡 Check your .env file and BANKBRIDGE_* environment variables")
        raise typer.Exit(1) from e

    try:
        yield components
    finally:
        components.close()


def print_json(data: Any) -> None:
    """Print a model, or a list of models, as indented JSON."""
    if isinstance(data, list):
        payload = [item.model_dump(mode="json") for item in data]
    else:
        payload = data.model_dump(mode="json")
    print(json.dumps(payload, indent=2))
