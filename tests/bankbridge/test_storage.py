# ruff: noqa: S101
"""Tests for the DuckDB wrapper and repository constraints."""

from pathlib import Path

import duckdb
import pytest
from conftest import make_transaction

from bankbridge.storage import Database, TransactionRepository

TABLES = {
    "bank_accounts",
    "bank_connections",
    "category_feedback",
    "connection_references",
    "subscriptions",
    "transactions",
}


@pytest.mark.unit
class TestDatabase:
    """Schema application and transactional helpers."""

    def test_schema_creates_all_tables(self, db: Database) -> None:
        counts = db.table_counts()
        assert set(counts) == TABLES
        assert all(count == 0 for count in counts.values())

    def test_file_database_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "bankbridge.duckdb"
        database = Database(path)
        database.close()

        assert path.exists()
        # Reopening applies the schema idempotently
        reopened = Database(path)
        assert set(reopened.table_counts()) == TABLES
        reopened.close()

    def test_transaction_rolls_back_on_error(self, db: Database) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                db.insert(
                    "connection_references",
                    {"reference": "ref-1", "connection_id": "c-1"},
                )
                raise RuntimeError("abort")

        assert db.fetch_value("SELECT COUNT(*) FROM connection_references") == 0

    def test_update_touches_only_given_columns(self, db: Database) -> None:
        db.insert("connection_references", {"reference": "ref-1", "connection_id": "c-1"})
        db.update("connection_references", {"reference": "ref-1"}, {"connection_id": "c-2"})
        assert db.fetch_all("SELECT * FROM connection_references") == [
            {"reference": "ref-1", "connection_id": "c-2"}
        ]


@pytest.mark.unit
class TestTransactionRepository:
    """Uniqueness and JSON columns of stored transactions."""

    def test_external_id_is_unique_per_account(self, db: Database) -> None:
        repo = TransactionRepository(db)
        first = make_transaction(transaction_id="a")
        repo.add(first)
        duplicate = make_transaction(transaction_id="b").model_copy(
            update={"external_transaction_id": first.external_transaction_id}
        )

        with pytest.raises(duckdb.ConstraintException):
            repo.add(duplicate)

        other_account = duplicate.model_copy(update={"account_id": "account-2"})
        repo.add(other_account)
        assert repo.count_for_account("account-2") == 1

    def test_save_keeps_identity_columns(self, db: Database) -> None:
        repo = TransactionRepository(db)
        tx = make_transaction(transaction_id="a")
        repo.add(tx)

        tx.metadata = tx.metadata.model_copy(update={"tags": ["travel", "q3"]})
        tx.category = "travel"
        repo.save(tx)

        stored = repo.get("a")
        assert stored is not None
        assert stored.category == "travel"
        assert stored.metadata.tags == ["travel", "q3"]
        assert stored.created_at == tx.created_at
        assert stored.external_transaction_id == tx.external_transaction_id
