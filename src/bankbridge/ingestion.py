"""Transaction ingestion: fetch, normalize, deduplicate and upsert.

Each sync issues exactly one transaction fetch and one balance fetch for the
account. Booked records are keyed by the provider transaction id, or by a
deterministic hash of their booking fields when the provider omits one, so
overlapping sync windows never produce duplicates.
"""

import hashlib
import logging
import re
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

import polars as pl

from .accounts import AccountRegistry
from .aggregator import AggregatorClient
from .aggregator.schemas import TransactionSchema, select_current_balance
from .categorization import CategorizationEngine
from .config import AggregatorConfig
from .models import (
    Direction,
    MerchantSpend,
    SpendingInsights,
    SyncResult,
    Transaction,
    TransactionFilter,
    TransactionMetadata,
    TransactionPage,
    utcnow,
)
from .storage import TransactionRepository

logger = logging.getLogger(__name__)

INSIGHTS_PERIOD_DAYS = 30
TOP_MERCHANTS = 10
DEFAULT_DESCRIPTION = "Transaction"

_CARD_SUFFIX = re.compile(r"\*\d+")
_TRAILING_CARD_NUMBER = re.compile(r"\s+(?:x+|\*+)?\d{4,}$", re.IGNORECASE)
_LEADING_UPPER_WORDS = re.compile(r"^([A-Z][A-Z\s&]+?)(?:\s+\d|$)")


def normalize_merchant(
    counterparty: str | None, description: str | None
) -> str | None:
    """Clean a counterparty name, falling back to the description.

    Card suffixes such as ``*1234`` and trailing card-number noise are
    removed and whitespace is collapsed. Without a counterparty, the leading
    upper-case words of the description (or its first word) are used.
    """
    cleaned = _CARD_SUFFIX.sub("", counterparty or "")
    cleaned = " ".join(cleaned.split())
    cleaned = _TRAILING_CARD_NUMBER.sub("", cleaned).strip()
    if cleaned:
        return cleaned

    text = (description or "").strip()
    if not text:
        return None
    match = _LEADING_UPPER_WORDS.match(text)
    return match.group(1).strip() if match else text.split()[0]


def build_description(record: TransactionSchema) -> str:
    parts = [
        record.remittance_information_unstructured,
        record.additional_information,
        record.remittance_information_structured,
    ]
    return " - ".join(p for p in parts if p) or DEFAULT_DESCRIPTION


def dedup_key(record: TransactionSchema) -> str:
    """Provider transaction id, or a stable hash of the booking fields."""
    if record.transaction_id:
        return record.transaction_id
    data = "_".join(
        [
            record.booking_date.isoformat(),
            str(record.transaction_amount.amount),
            record.transaction_amount.currency,
            record.counterparty_name or "",
        ]
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


def provider_fields(record: TransactionSchema) -> dict[str, Any]:
    """Canonical transaction fields derived from an aggregator record."""
    amount = record.transaction_amount.amount
    return {
        "amount": abs(amount),
        "direction": Direction.DEBIT if amount < 0 else Direction.CREDIT,
        "currency": record.transaction_amount.currency,
        "date": record.booking_date,
        "value_date": record.value_date,
        "merchant_name": normalize_merchant(
            record.counterparty_name, record.remittance_information_unstructured
        ),
        "description": build_description(record),
        "metadata": TransactionMetadata(
            counterparty_name=record.counterparty_name,
            counterparty_account=record.counterparty_iban,
            reference=record.remittance_information_structured,
            bank_category=record.proprietary_bank_transaction_code,
        ),
    }


class TransactionIngestor:
    """Syncs accounts from the aggregator and serves transaction queries."""

    def __init__(
        self,
        repository: TransactionRepository,
        accounts: AccountRegistry,
        aggregator: AggregatorClient,
        engine: CategorizationEngine,
        config: AggregatorConfig,
    ):
        self.repository = repository
        self.accounts = accounts
        self.aggregator = aggregator
        self.engine = engine
        self.config = config
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _account_lock(self, account_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(account_id, threading.Lock())
        with lock:
            yield

    def sync_transactions(self, user_id: str, account_id: str) -> SyncResult:
        """Sync one account's booked transactions and balance.

        Concurrent syncs of the same account are serialized.

        Args:
            user_id: The caller
            account_id: Account to sync

        Returns:
            SyncResult: Counts, window and per-record errors

        Raises:
            AccountNotFound: If the account does not exist
            OwnershipViolation: If the account belongs to another user
            DecryptionFailure: If the external account id cannot be decrypted
            UpstreamUnavailable: If the aggregator fails
        """
        self.accounts.get_account(account_id, user_id)

        with self._account_lock(account_id):
            # Re-read under the lock so the watermark is current
            account = self.accounts.get_account(account_id, user_id)
            external_id = self.accounts.external_account_id(account)

            now = utcnow()
            start = account.last_synced_at or now - timedelta(
                days=self.config.history_days
            )
            result = SyncResult(
                account_id=account_id,
                date_from=start.date(),
                date_to=now.date(),
                last_synced_at=now,
            )

            response = self.aggregator.get_transactions(
                external_id, result.date_from, result.date_to
            )
            balances = self.aggregator.get_account_balances(external_id)

            failed_dates: list[date] = []
            for record in response.transactions.booked:
                try:
                    transaction, created = self._upsert(user_id, account_id, record)
                    result.transactions_synced += 1
                    if created:
                        result.transactions_created += 1
                    else:
                        result.transactions_updated += 1
                    if transaction.is_uncategorized and self.engine.auto_categorize(
                        transaction
                    ):
                        result.transactions_categorized += 1
                except Exception as e:
                    logger.error(
                        f"Failed to process transaction for account {account_id}: {e}"
                    )
                    result.errors.append(f"Failed to process transaction: {e}")
                    failed_dates.append(record.booking_date)

            if failed_dates:
                # Hold the watermark so the next window refetches failed records
                result.last_synced_at = max(
                    datetime.combine(min(failed_dates), time.min), start
                )
                logger.warning(
                    f"{len(failed_dates)} transactions failed for account "
                    f"{account_id}; next sync starts at {result.last_synced_at.date()}"
                )

            self.accounts.update_balance(account, select_current_balance(balances))
            self.accounts.mark_synced(account, result.last_synced_at)

        logger.info(
            f"Synced account {account_id}: {result.transactions_synced} transactions "
            f"({result.transactions_created} new) from {result.date_from} "
            f"to {result.date_to}"
        )
        return result

    def _upsert(
        self, user_id: str, account_id: str, record: TransactionSchema
    ) -> tuple[Transaction, bool]:
        external_id = dedup_key(record)
        fields = provider_fields(record)
        now = utcnow()

        existing = self.repository.get_by_external_id(account_id, external_id)
        if existing is None:
            transaction = Transaction(
                id=str(uuid.uuid4()),
                user_id=user_id,
                account_id=account_id,
                external_transaction_id=external_id,
                created_at=now,
                synced_at=now,
                last_modified=now,
                **fields,
            )
            self.repository.add(transaction)
            return transaction, True

        # Provider fields only; category fields are never touched here
        fields["metadata"] = fields["metadata"].model_copy(
            update={"tags": existing.metadata.tags}
        )
        for name, value in fields.items():
            setattr(existing, name, value)
        existing.synced_at = now
        existing.last_modified = now
        self.repository.save(existing)
        return existing, False

    def sync_all_accounts(self, user_id: str) -> list[SyncResult]:
        """Sync every active account of a user, one after another.

        A failing account is reported in its own result entry and does not
        stop the others.
        """
        results: list[SyncResult] = []
        for account in self.accounts.list_accounts(user_id):
            try:
                results.append(self.sync_transactions(user_id, account.id))
            except Exception as e:
                logger.error(f"Failed to sync account {account.id}: {e}")
                results.append(
                    SyncResult(
                        account_id=account.id,
                        last_synced_at=utcnow(),
                        failed=True,
                        errors=[f"Sync failed: {e}"],
                    )
                )

        failed = sum(1 for r in results if r.failed)
        logger.info(
            f"Synced {len(results) - failed} accounts for user ({failed} failed)"
        )
        return results

    def list_transactions(
        self, user_id: str, filters: TransactionFilter | None = None
    ) -> TransactionPage:
        transactions, total = self.repository.query(
            user_id, filters or TransactionFilter()
        )
        return TransactionPage(transactions=transactions, total=total)

    def get_transaction(self, transaction_id: str, user_id: str) -> Transaction:
        return self.engine.get_transaction(transaction_id, user_id)

    def link_invoice(
        self,
        transaction_id: str,
        user_id: str,
        invoice_id: str,
        invoice_url: str | None = None,
    ) -> Transaction:
        """Attach an invoice reference to a transaction."""
        transaction = self.get_transaction(transaction_id, user_id)
        transaction.invoice_id = invoice_id
        transaction.receipt_url = invoice_url
        transaction.has_required_invoice = True
        transaction.last_modified = utcnow()
        self.repository.save(transaction)
        logger.info(f"Invoice linked to transaction {transaction_id}")
        return transaction

    def get_insights(
        self, user_id: str, days: int = INSIGHTS_PERIOD_DAYS
    ) -> SpendingInsights:
        """Spending rollup of the last ``days`` days.

        Only debits count as spending. Amounts are aggregated in integer
        cents to keep the totals exact.
        """
        period_to = utcnow().date()
        period_from = period_to - timedelta(days=days)
        transactions = self.repository.list_since(user_id, period_from)
        insights = SpendingInsights(
            period_from=period_from,
            period_to=period_to,
            transaction_count=len(transactions),
        )

        expenses = [tx for tx in transactions if tx.is_expense]
        if not expenses:
            return insights

        frame = pl.DataFrame(
            {
                "category": [tx.category for tx in expenses],
                "merchant": [tx.merchant_name for tx in expenses],
                "cents": [_to_cents(tx.amount) for tx in expenses],
            },
            schema={"category": pl.String, "merchant": pl.String, "cents": pl.Int64},
        )

        by_category = frame.group_by("category").agg(
            pl.col("cents").sum().alias("total"), pl.len().alias("count")
        )
        top_merchants = (
            frame.filter(pl.col("merchant").is_not_null())
            .group_by("merchant")
            .agg(pl.col("cents").sum().alias("total"), pl.len().alias("count"))
            .sort(["total", "merchant"], descending=[True, False])
            .head(TOP_MERCHANTS)
        )

        total_cents = int(frame["cents"].sum())
        insights.total_spending = _from_cents(total_cents)
        insights.spending_by_category = {
            row["category"]: _from_cents(row["total"])
            for row in by_category.iter_rows(named=True)
        }
        insights.transactions_by_category = {
            row["category"]: row["count"] for row in by_category.iter_rows(named=True)
        }
        insights.top_merchants = [
            MerchantSpend(
                merchant=row["merchant"],
                amount=_from_cents(row["total"]),
                count=row["count"],
            )
            for row in top_merchants.iter_rows(named=True)
        ]
        insights.average_transaction_amount = (
            _from_cents(total_cents) / len(expenses)
        ).quantize(Decimal("0.01"))
        return insights


def _to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


def _from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2)

