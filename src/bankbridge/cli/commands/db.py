"""Database setup commands for BankBridge CLI."""

import logging
from pathlib import Path

import duckdb
import typer

from bankbridge.config import get_database_path
from bankbridge.storage import Database

app = typer.Typer(help="Database setup commands")
logger = logging.getLogger(__name__)


@app.command("init")
def init_database(
    database: Path | None = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to DuckDB database file (default: from settings)",
    ),
) -> None:
    """Create the database file and apply the BankBridge schema.

    Safe to run repeatedly: existing tables and rows are left untouched.

    Examples:
        bankbridge db init
        bankbridge db init --database data/duckdb/test.duckdb
    """
    if database is None:
        database = get_database_path()
        logger.info(f"Using database from settings: {database}")

    try:
        db = Database(database)
    except (duckdb.Error, OSError) as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        raise typer.Exit(1) from e

    try:
        counts = db.table_counts()
    finally:
        db.close()

    logger.info(f"✅ Database ready: {database}")
    for table, count in counts.items():
        print(f"{table:<24} {count:>8}")
