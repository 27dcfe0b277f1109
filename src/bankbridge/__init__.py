"""BankBridge: bank account aggregation and transaction intelligence.

This package links a user's bank accounts through an open-banking aggregator
and turns their transaction history into structured signal:
- Consent (requisition) lifecycle and account materialization
- Incremental, deduplicated transaction sync into DuckDB
- Categorization with a classifier oracle and a deterministic rule fallback
- Recurring payment (subscription) detection

External identifiers are envelope-encrypted before they are persisted.
"""

__version__ = "0.1.0"
