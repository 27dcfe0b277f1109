"""Transaction categorization: classifier oracle, keyword rules and corrections."""

from .classifier import OpenAIClassifier, TransactionClassifier
from .engine import CategorizationEngine
from .rules import categorize_by_rules

__all__ = [
    "CategorizationEngine",
    "OpenAIClassifier",
    "TransactionClassifier",
    "categorize_by_rules",
]
