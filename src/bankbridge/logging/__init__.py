"""Logging setup for BankBridge.

Call ``setup_logging()`` once at startup; modules then log through
``logging.getLogger(__name__)``.
"""

from .config import LoggingConfig, setup_logging

__all__ = ["LoggingConfig", "setup_logging"]
