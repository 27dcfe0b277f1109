"""Recurring payment detection and subscription reporting.

Expense history is grouped by merchant. A group qualifies as a subscription
when its average gap between charges falls in a frequency bucket and both
the amounts and the gaps are consistent.
"""

import logging
import re
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from statistics import fmean

from dateutil.relativedelta import relativedelta

from .config import SubscriptionConfig
from .models import (
    Direction,
    Frequency,
    Subscription,
    SubscriptionCost,
    SubscriptionStatus,
    SubscriptionSummary,
    Transaction,
    utcnow,
)
from .storage import SubscriptionRepository, TransactionRepository

logger = logging.getLogger(__name__)

UNKNOWN_MERCHANT = "Unknown"
MIN_GROUP_SIZE = 2

AMOUNT_TOLERANCE = 0.05
INTERVAL_TOLERANCE = 0.2
CONSISTENT_INTERVAL_SHARE = 0.8
SAMPLE_SIZE_SATURATION = 12

# (low, high) average gap in days, inclusive
FREQUENCY_BUCKETS: tuple[tuple[float, float, Frequency], ...] = (
    (0.8, 1.2, Frequency.DAILY),
    (6, 8, Frequency.WEEKLY),
    (13, 15, Frequency.WEEKLY),
    (28, 32, Frequency.MONTHLY),
    (88, 92, Frequency.MONTHLY),
    (360, 370, Frequency.YEARLY),
)

PERIODS = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.YEARLY: relativedelta(years=1),
}

MONTHLY_FACTORS = {
    Frequency.DAILY: Decimal("30"),
    Frequency.WEEKLY: Decimal("4.33"),
    Frequency.MONTHLY: Decimal("1"),
}

HIGH_MONTHLY_SPEND = Decimal("500")
MAX_ENTERTAINMENT_SUBSCRIPTIONS = 3
ANNUAL_PLAN_THRESHOLD = Decimal("20")
_ENTERTAINMENT = re.compile(r"netflix|hulu|disney|spotify|apple music")

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RecurringPattern:
    """A qualifying recurring charge pattern."""

    frequency: Frequency
    amount: Decimal
    currency: str
    next_expected: date
    last_charged: date
    confidence: float


def detect_frequency(average_gap: float) -> Frequency | None:
    for low, high, frequency in FREQUENCY_BUCKETS:
        if low <= average_gap <= high:
            return frequency
    return None


def _relative_deviations(values: list[float], mean: float) -> list[float]:
    if mean == 0:
        return [0.0 if v == 0 else 1.0 for v in values]
    return [abs(v - mean) / mean for v in values]


def analyze_pattern(transactions: list[Transaction]) -> RecurringPattern | None:
    """Classify one merchant's charges as recurring, or return None."""
    if len(transactions) < MIN_GROUP_SIZE:
        return None

    ordered = sorted(transactions, key=lambda tx: (tx.date, tx.id))
    gaps = [
        float((later.date - earlier.date).days)
        for earlier, later in zip(ordered, ordered[1:])
    ]
    average_gap = fmean(gaps)
    frequency = detect_frequency(average_gap)
    if frequency is None:
        return None

    amounts = [float(tx.amount) for tx in ordered]
    average_amount = fmean(amounts)
    amount_deviations = _relative_deviations(amounts, average_amount)
    if any(d > AMOUNT_TOLERANCE for d in amount_deviations):
        return None

    gap_deviations = _relative_deviations(gaps, average_gap)
    consistent = sum(1 for d in gap_deviations if d <= INTERVAL_TOLERANCE)
    if consistent / len(gaps) < CONSISTENT_INTERVAL_SHARE:
        return None

    interval_confidence = max(0.0, 1 - fmean(gap_deviations))
    amount_confidence = max(0.0, 1 - fmean(amount_deviations))
    data_confidence = min(1.0, len(ordered) / SAMPLE_SIZE_SATURATION)
    confidence = (
        interval_confidence * 0.4 + amount_confidence * 0.4 + data_confidence * 0.2
    )

    last = ordered[-1]
    mean_amount = sum((tx.amount for tx in ordered), Decimal("0")) / len(ordered)
    return RecurringPattern(
        frequency=frequency,
        amount=mean_amount.quantize(CENTS),
        currency=last.currency,
        next_expected=last.date + PERIODS[frequency],
        last_charged=last.date,
        confidence=round(min(1.0, confidence), 4),
    )


def monthly_amount(subscription: Subscription) -> Decimal:
    """Monthly-equivalent cost of a subscription."""
    if subscription.frequency == Frequency.YEARLY:
        return (subscription.amount / 12).quantize(CENTS)
    return (subscription.amount * MONTHLY_FACTORS[subscription.frequency]).quantize(
        CENTS
    )


def recommendations(
    subscriptions: list[Subscription], total_monthly: Decimal
) -> list[str]:
    tips: list[str] = []
    if total_monthly > HIGH_MONTHLY_SPEND:
        tips.append(
            "Your subscription spending is high. Consider reviewing and "
            "canceling unused services."
        )

    entertainment = [
        s for s in subscriptions if _ENTERTAINMENT.search(s.merchant_name.lower())
    ]
    if len(entertainment) > MAX_ENTERTAINMENT_SUBSCRIPTIONS:
        tips.append(
            "You have multiple entertainment subscriptions. Consider "
            "consolidating to save money."
        )

    if any(
        s.frequency == Frequency.MONTHLY and s.amount > ANNUAL_PLAN_THRESHOLD
        for s in subscriptions
    ):
        tips.append(
            "Some of your monthly subscriptions might offer annual discounts. "
            "Check for yearly payment options."
        )
    return tips


class SubscriptionDetector:
    """Maintains Subscription records from a user's expense history."""

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        transactions: TransactionRepository,
        config: SubscriptionConfig,
    ):
        self.subscriptions = subscriptions
        self.transactions = transactions
        self.config = config

    def _load_expenses(self, user_id: str) -> list[Transaction]:
        since = utcnow().date() - timedelta(days=self.config.lookback_days)
        expenses = self.transactions.list_since(
            user_id,
            since,
            direction=Direction.DEBIT,
            limit=self.config.max_transactions,
        )
        if len(expenses) >= self.config.max_transactions:
            logger.warning(
                f"Subscription scan capped at {self.config.max_transactions} "
                "most recent transactions"
            )
        return expenses

    def detect_subscriptions(self, user_id: str) -> list[Subscription]:
        """Detect recurring payments and upsert one Subscription per merchant.

        Contributing transactions are marked recurring and linked to their
        subscription.

        Returns:
            list[Subscription]: Subscriptions created or updated in this run
        """
        groups: dict[str, list[Transaction]] = defaultdict(list)
        for tx in self._load_expenses(user_id):
            groups[tx.merchant_name or UNKNOWN_MERCHANT].append(tx)

        detected: list[Subscription] = []
        for merchant, transactions in sorted(groups.items()):
            pattern = analyze_pattern(transactions)
            if pattern is None:
                continue
            subscription = self._upsert(user_id, merchant, pattern, transactions)
            self.transactions.mark_recurring(
                [tx.id for tx in transactions], subscription.id
            )
            detected.append(subscription)

        logger.info(
            f"Subscription detection completed: {len(detected)} found in "
            f"{len(groups)} merchant groups"
        )
        return detected

    def _upsert(
        self,
        user_id: str,
        merchant: str,
        pattern: RecurringPattern,
        transactions: list[Transaction],
    ) -> Subscription:
        now = utcnow()
        transaction_ids = [tx.id for tx in sorted(transactions, key=lambda t: t.date)]
        existing = self.subscriptions.get_by_merchant(user_id, merchant)

        if existing is not None:
            existing.amount = pattern.amount
            existing.currency = pattern.currency
            existing.frequency = pattern.frequency
            existing.next_expected = pattern.next_expected
            existing.last_charged = pattern.last_charged
            existing.confidence = pattern.confidence
            existing.transaction_ids = transaction_ids
            existing.updated_at = now
            self.subscriptions.save(existing)
            return existing

        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            merchant_name=merchant,
            amount=pattern.amount,
            currency=pattern.currency,
            frequency=pattern.frequency,
            next_expected=pattern.next_expected,
            last_charged=pattern.last_charged,
            confidence=pattern.confidence,
            transaction_ids=transaction_ids,
            status=SubscriptionStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        self.subscriptions.add(subscription)
        logger.info(f"Subscription created for {merchant} ({pattern.frequency.value})")
        return subscription

    def get_subscriptions(self, user_id: str) -> SubscriptionSummary:
        """Active subscriptions with monthly-equivalent costs and tips."""
        active = self.subscriptions.list_for_user(
            user_id, status=SubscriptionStatus.ACTIVE
        )
        costs = [
            SubscriptionCost(subscription=s, monthly_amount=monthly_amount(s))
            for s in active
        ]
        total_monthly = sum((c.monthly_amount for c in costs), Decimal("0"))
        return SubscriptionSummary(
            subscriptions=costs,
            total_monthly=total_monthly,
            total_yearly=total_monthly * 12,
            recommendations=recommendations(active, total_monthly),
        )
