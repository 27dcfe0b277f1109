"""Persistence for detected subscriptions and the category feedback log."""

import json
from typing import Any

from ..models import CategoryFeedback, Subscription, SubscriptionStatus
from .database import Database

_SUBSCRIPTION_MUTABLE = (
    "amount",
    "currency",
    "frequency",
    "next_expected",
    "last_charged",
    "confidence",
    "transaction_ids",
    "status",
    "updated_at",
)


def _subscription_row(sub: Subscription) -> dict[str, Any]:
    row = sub.model_dump()
    row["frequency"] = sub.frequency.value
    row["status"] = sub.status.value
    row["transaction_ids"] = json.dumps(sub.transaction_ids)
    return row


def _subscription_from_row(row: dict[str, Any]) -> Subscription:
    row["transaction_ids"] = json.loads(row["transaction_ids"] or "[]")
    return Subscription.model_validate(row)


class SubscriptionRepository:
    """Stores Subscription records, unique per (user_id, merchant_name)."""

    def __init__(self, db: Database):
        self.db = db

    def get_by_merchant(self, user_id: str, merchant_name: str) -> Subscription | None:
        row = self.db.fetch_one(
            "SELECT * FROM subscriptions WHERE user_id = ? AND merchant_name = ?",
            [user_id, merchant_name],
        )
        return _subscription_from_row(row) if row else None

    def add(self, sub: Subscription) -> None:
        self.db.insert("subscriptions", _subscription_row(sub))

    def save(self, sub: Subscription) -> None:
        row = _subscription_row(sub)
        self.db.update(
            "subscriptions",
            {"id": sub.id},
            {column: row[column] for column in _SUBSCRIPTION_MUTABLE},
        )

    def list_for_user(
        self, user_id: str, status: SubscriptionStatus | None = None
    ) -> list[Subscription]:
        sql = "SELECT * FROM subscriptions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status:
            sql += " AND status = ?"
            params.append(status.value)
        rows = self.db.fetch_all(sql + " ORDER BY merchant_name", params)
        return [_subscription_from_row(row) for row in rows]


class FeedbackRepository:
    """Append-only log of user category corrections."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, feedback: CategoryFeedback) -> None:
        self.db.insert("category_feedback", feedback.model_dump())

    def list_for_user(self, user_id: str) -> list[CategoryFeedback]:
        rows = self.db.fetch_all(
            "SELECT * FROM category_feedback WHERE user_id = ? ORDER BY created_at, id",
            [user_id],
        )
        return [CategoryFeedback.model_validate(row) for row in rows]
