"""BankBridge CLI package.

This package provides a command-line interface for operating BankBridge
locally: database setup, linking banks, syncing accounts and reviewing
categorized transactions and subscriptions.
"""

from .main import app, main

__all__ = ["app", "main"]
