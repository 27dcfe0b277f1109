"""Persistence for bank connections and the reference index."""

import json
from typing import Any

from ..models import BankConnection, dump_json_field
from .database import Database

_MUTABLE_COLUMNS = ("status", "expires_at", "last_synced_at", "error", "metadata")


def _to_row(connection: BankConnection) -> dict[str, Any]:
    return {
        "id": connection.id,
        "user_id": connection.user_id,
        "institution_id": connection.institution_id,
        "institution_name": connection.institution_name,
        "account_type": connection.account_type.value,
        "status": connection.status.value,
        "requisition_id": connection.requisition_id,
        "reference": connection.reference,
        "created_at": connection.created_at,
        "expires_at": connection.expires_at,
        "last_synced_at": connection.last_synced_at,
        "error": connection.error,
        "metadata": dump_json_field(connection.metadata),
    }


def _from_row(row: dict[str, Any]) -> BankConnection:
    row["metadata"] = json.loads(row["metadata"]) if row.get("metadata") else {}
    return BankConnection.model_validate(row)


class ConnectionRepository:
    """Stores BankConnection records keyed by id and by callback reference."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, connection: BankConnection) -> None:
        """Insert a connection together with its reference index entry."""
        with self.db.transaction():
            self.db.insert("bank_connections", _to_row(connection))
            self.db.insert(
                "connection_references",
                {"reference": connection.reference, "connection_id": connection.id},
            )

    def get(self, connection_id: str) -> BankConnection | None:
        row = self.db.fetch_one(
            "SELECT * FROM bank_connections WHERE id = ?", [connection_id]
        )
        return _from_row(row) if row else None

    def find_by_reference(self, reference: str) -> BankConnection | None:
        """Resolve a callback reference through the index."""
        connection_id = self.db.fetch_value(
            "SELECT connection_id FROM connection_references WHERE reference = ?",
            [reference],
        )
        return self.get(connection_id) if connection_id else None

    def list_for_user(self, user_id: str) -> list[BankConnection]:
        rows = self.db.fetch_all(
            """
            SELECT * FROM bank_connections
            WHERE user_id = ?
            ORDER BY created_at DESC
            """,
            [user_id],
        )
        return [_from_row(row) for row in rows]

    def save(self, connection: BankConnection) -> None:
        """Persist the mutable state of an existing connection."""
        row = _to_row(connection)
        self.db.update(
            "bank_connections",
            {"id": connection.id},
            {column: row[column] for column in _MUTABLE_COLUMNS},
        )

    def delete(self, connection_id: str) -> None:
        with self.db.transaction():
            self.db.execute(
                "DELETE FROM connection_references WHERE connection_id = ?",
                [connection_id],
            )
            self.db.execute(
                "DELETE FROM bank_connections WHERE id = ?", [connection_id]
            )
