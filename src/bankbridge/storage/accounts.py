"""Persistence for bank accounts."""

from typing import Any

from ..models import Balance, BankAccount
from .database import Database

_MUTABLE_COLUMNS = (
    "account_number",
    "iban",
    "currency",
    "account_type",
    "balance_amount",
    "balance_currency",
    "balance_updated_at",
    "institution_name",
    "is_active",
    "needs_resync",
    "last_synced_at",
)


def _to_row(account: BankAccount) -> dict[str, Any]:
    balance = account.balance
    return {
        "id": account.id,
        "user_id": account.user_id,
        "connection_id": account.connection_id,
        "external_account_id": account.external_account_id,
        "account_number": account.account_number,
        "iban": account.iban,
        "currency": account.currency,
        "account_type": account.account_type.value,
        "balance_amount": balance.amount if balance else None,
        "balance_currency": balance.currency if balance else None,
        "balance_updated_at": balance.last_updated if balance else None,
        "institution_name": account.institution_name,
        "is_active": account.is_active,
        "needs_resync": account.needs_resync,
        "created_at": account.created_at,
        "last_synced_at": account.last_synced_at,
    }


def _from_row(row: dict[str, Any]) -> BankAccount:
    amount = row.pop("balance_amount")
    currency = row.pop("balance_currency")
    updated = row.pop("balance_updated_at")
    row["balance"] = (
        Balance(amount=amount, currency=currency or row["currency"], last_updated=updated)
        if amount is not None and updated is not None
        else None
    )
    return BankAccount.model_validate(row)


class AccountRepository:
    """Stores BankAccount records."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, account: BankAccount) -> None:
        self.db.insert("bank_accounts", _to_row(account))

    def get(self, account_id: str) -> BankAccount | None:
        row = self.db.fetch_one("SELECT * FROM bank_accounts WHERE id = ?", [account_id])
        return _from_row(row) if row else None

    def list_for_user(self, user_id: str, active_only: bool = True) -> list[BankAccount]:
        sql = "SELECT * FROM bank_accounts WHERE user_id = ?"
        if active_only:
            sql += " AND is_active"
        rows = self.db.fetch_all(sql + " ORDER BY created_at, id", [user_id])
        return [_from_row(row) for row in rows]

    def list_for_connection(self, connection_id: str) -> list[BankAccount]:
        rows = self.db.fetch_all(
            "SELECT * FROM bank_accounts WHERE connection_id = ? ORDER BY created_at, id",
            [connection_id],
        )
        return [_from_row(row) for row in rows]

    def save(self, account: BankAccount) -> None:
        row = _to_row(account)
        self.db.update(
            "bank_accounts",
            {"id": account.id},
            {column: row[column] for column in _MUTABLE_COLUMNS},
        )

    def mark_needs_resync(self, connection_id: str) -> list[str]:
        """Flag every account of a connection for resync.

        Returns:
            list[str]: Ids of the flagged accounts
        """
        ids = [
            row["id"]
            for row in self.db.fetch_all(
                "SELECT id FROM bank_accounts WHERE connection_id = ? ORDER BY id",
                [connection_id],
            )
        ]
        if ids:
            self.db.execute(
                "UPDATE bank_accounts SET needs_resync = TRUE WHERE connection_id = ?",
                [connection_id],
            )
        return ids

    def delete(self, account_id: str) -> None:
        self.db.execute("DELETE FROM bank_accounts WHERE id = ?", [account_id])

    def delete_for_connection(self, connection_id: str) -> int:
        """Delete all accounts of a connection.

        Returns:
            int: Number of accounts removed
        """
        count = self.db.fetch_value(
            "SELECT COUNT(*) FROM bank_accounts WHERE connection_id = ?",
            [connection_id],
        )
        self.db.execute(
            "DELETE FROM bank_accounts WHERE connection_id = ?", [connection_id]
        )
        return int(count or 0)
