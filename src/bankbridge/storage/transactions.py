"""Persistence for transactions."""

import json
from datetime import date
from typing import Any

from ..models import (
    INVOICE_REQUIRED_ABOVE,
    UNCATEGORIZED,
    CategorizedBy,
    Direction,
    Transaction,
    TransactionFilter,
    dump_json_field,
)
from .database import Database

_KEY_COLUMNS = {"id", "user_id", "account_id", "external_transaction_id", "created_at"}


def _to_row(tx: Transaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "account_id": tx.account_id,
        "external_transaction_id": tx.external_transaction_id,
        "amount": tx.amount,
        "direction": tx.direction.value,
        "currency": tx.currency,
        "booking_date": tx.date,
        "value_date": tx.value_date,
        "merchant_name": tx.merchant_name,
        "description": tx.description,
        "category": tx.category,
        "subcategory": tx.subcategory,
        "confidence": tx.confidence,
        "is_business_expense": tx.is_business_expense,
        "categorized_by": tx.categorized_by.value if tx.categorized_by else None,
        "categorized_at": tx.categorized_at,
        "is_recurring": tx.is_recurring,
        "subscription_id": tx.subscription_id,
        "invoice_id": tx.invoice_id,
        "receipt_url": tx.receipt_url,
        "has_required_invoice": tx.has_required_invoice,
        "feedback_history": dump_json_field(tx.feedback_history),
        "metadata": dump_json_field(tx.metadata),
        "created_at": tx.created_at,
        "synced_at": tx.synced_at,
        "last_modified": tx.last_modified,
    }


def _from_row(row: dict[str, Any]) -> Transaction:
    row["date"] = row.pop("booking_date")
    row["feedback_history"] = json.loads(row["feedback_history"] or "[]")
    row["metadata"] = json.loads(row["metadata"] or "{}")
    return Transaction.model_validate(row)


def _filter_clause(user_id: str, filters: TransactionFilter) -> tuple[str, list[Any]]:
    conditions = ["user_id = ?"]
    params: list[Any] = [user_id]

    if filters.account_id:
        conditions.append("account_id = ?")
        params.append(filters.account_id)
    if filters.date_from:
        conditions.append("booking_date >= ?")
        params.append(filters.date_from)
    if filters.date_to:
        conditions.append("booking_date <= ?")
        params.append(filters.date_to)
    if filters.category:
        conditions.append("category = ?")
        params.append(filters.category)
    if filters.is_business_expense is not None:
        conditions.append("is_business_expense = ?")
        params.append(filters.is_business_expense)
    if filters.needs_invoice is not None:
        needs_invoice = (
            "(is_business_expense AND direction = 'debit' "
            "AND amount > ? AND invoice_id IS NULL)"
        )
        conditions.append(needs_invoice if filters.needs_invoice else f"NOT {needs_invoice}")
        params.append(INVOICE_REQUIRED_ABOVE)
    if filters.min_amount is not None:
        conditions.append("amount >= ?")
        params.append(filters.min_amount)
    if filters.merchant_name:
        conditions.append("contains(lower(coalesce(merchant_name, '')), ?)")
        params.append(filters.merchant_name.lower())

    return " AND ".join(conditions), params


class TransactionRepository:
    """Stores Transaction records, unique per (account_id, external_transaction_id)."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, tx: Transaction) -> None:
        self.db.insert("transactions", _to_row(tx))

    def save(self, tx: Transaction) -> None:
        row = _to_row(tx)
        self.db.update(
            "transactions",
            {"id": tx.id},
            {k: v for k, v in row.items() if k not in _KEY_COLUMNS},
        )

    def get(self, transaction_id: str) -> Transaction | None:
        row = self.db.fetch_one(
            "SELECT * FROM transactions WHERE id = ?", [transaction_id]
        )
        return _from_row(row) if row else None

    def get_by_external_id(
        self, account_id: str, external_transaction_id: str
    ) -> Transaction | None:
        row = self.db.fetch_one(
            """
            SELECT * FROM transactions
            WHERE account_id = ? AND external_transaction_id = ?
            """,
            [account_id, external_transaction_id],
        )
        return _from_row(row) if row else None

    def count_for_account(self, account_id: str) -> int:
        return int(
            self.db.fetch_value(
                "SELECT COUNT(*) FROM transactions WHERE account_id = ?", [account_id]
            )
        )

    def query(
        self, user_id: str, filters: TransactionFilter
    ) -> tuple[list[Transaction], int]:
        """Filtered page of a user's transactions, newest first.

        Returns:
            tuple: The page of transactions and the total match count
        """
        where, params = _filter_clause(user_id, filters)
        total = self.db.fetch_value(
            f"SELECT COUNT(*) FROM transactions WHERE {where}", params
        )

        sql = f"""
            SELECT * FROM transactions
            WHERE {where}
            ORDER BY booking_date DESC, created_at DESC, id
        """
        page_params = list(params)
        if filters.limit is not None:
            sql += " LIMIT ?"
            page_params.append(filters.limit)
        if filters.offset:
            sql += " OFFSET ?"
            page_params.append(filters.offset)

        rows = self.db.fetch_all(sql, page_params)
        return [_from_row(row) for row in rows], int(total or 0)

    def list_since(
        self,
        user_id: str,
        since: date,
        direction: Direction | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        """A user's transactions booked on or after ``since``, oldest first.

        With ``limit``, only the most recent ``limit`` transactions are kept.
        """
        sql = "SELECT * FROM transactions WHERE user_id = ? AND booking_date >= ?"
        params: list[Any] = [user_id, since]
        if direction:
            sql += " AND direction = ?"
            params.append(direction.value)
        if limit is not None:
            sql = f"""
                SELECT * FROM ({sql} ORDER BY booking_date DESC, id LIMIT ?)
                ORDER BY booking_date, id
            """
            params.append(limit)
        else:
            sql += " ORDER BY booking_date, id"
        return [_from_row(row) for row in self.db.fetch_all(sql, params)]

    def recent_labelled(self, user_id: str, limit: int) -> list[Transaction]:
        """Most recent transactions labelled by the user or the classifier."""
        rows = self.db.fetch_all(
            """
            SELECT * FROM transactions
            WHERE user_id = ? AND categorized_by IN (?, ?)
            ORDER BY booking_date DESC, id
            LIMIT ?
            """,
            [user_id, CategorizedBy.USER.value, CategorizedBy.ML.value, limit],
        )
        return [_from_row(row) for row in rows]

    def uncategorized_for_merchant(
        self, user_id: str, merchant_name: str
    ) -> list[Transaction]:
        rows = self.db.fetch_all(
            """
            SELECT * FROM transactions
            WHERE user_id = ? AND merchant_name = ? AND category = ?
              AND (categorized_by IS NULL OR categorized_by <> ?)
            ORDER BY booking_date, id
            """,
            [user_id, merchant_name, UNCATEGORIZED, CategorizedBy.USER.value],
        )
        return [_from_row(row) for row in rows]

    def mark_recurring(self, transaction_ids: list[str], subscription_id: str) -> None:
        if not transaction_ids:
            return
        placeholders = ", ".join("?" for _ in transaction_ids)
        self.db.execute(
            f"""
            UPDATE transactions
            SET is_recurring = TRUE, subscription_id = ?
            WHERE id IN ({placeholders})
            """,
            [subscription_id, *transaction_ids],
        )
