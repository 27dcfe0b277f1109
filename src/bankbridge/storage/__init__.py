"""DuckDB persistence for BankBridge entities."""

from .accounts import AccountRepository
from .connections import ConnectionRepository
from .database import Database
from .subscriptions import FeedbackRepository, SubscriptionRepository
from .transactions import TransactionRepository

__all__ = [
    "AccountRepository",
    "ConnectionRepository",
    "Database",
    "FeedbackRepository",
    "SubscriptionRepository",
    "TransactionRepository",
]
