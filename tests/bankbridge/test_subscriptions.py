# ruff: noqa: S101
"""Tests for recurring payment detection and subscription reporting."""

import logging
from datetime import date, timedelta
from decimal import Decimal

import pytest
from conftest import make_transaction
from dateutil.relativedelta import relativedelta

from bankbridge.config import SubscriptionConfig
from bankbridge.models import (
    Direction,
    Frequency,
    Subscription,
    SubscriptionStatus,
    Transaction,
    utcnow,
)
from bankbridge.storage import Database, SubscriptionRepository, TransactionRepository
from bankbridge.subscriptions import (
    SubscriptionDetector,
    analyze_pattern,
    detect_frequency,
    monthly_amount,
    recommendations,
)


def _series(
    merchant: str | None,
    amounts: list[str],
    gaps: list[int],
    last_days_ago: int = 3,
    user_id: str = "alice",
) -> list[Transaction]:
    """Charges ending ``last_days_ago`` days ago, separated by ``gaps`` days."""
    assert len(amounts) == len(gaps) + 1
    day = utcnow().date() - timedelta(days=last_days_ago + sum(gaps))
    dates = [day]
    for gap in gaps:
        day = day + timedelta(days=gap)
        dates.append(day)
    return [
        make_transaction(
            user_id=user_id, amount=amount, booked=booked, merchant_name=merchant
        )
        for amount, booked in zip(amounts, dates)
    ]


def _subscription(
    merchant: str,
    amount: str,
    frequency: Frequency,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
) -> Subscription:
    now = utcnow()
    return Subscription(
        id=f"sub-{merchant}",
        user_id="alice",
        merchant_name=merchant,
        amount=Decimal(amount),
        currency="GBP",
        frequency=frequency,
        next_expected=now.date(),
        confidence=0.9,
        status=status,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def repos(db: Database) -> tuple[TransactionRepository, SubscriptionRepository]:
    return TransactionRepository(db), SubscriptionRepository(db)


def _detector(
    repos: tuple[TransactionRepository, SubscriptionRepository], **config: int
) -> SubscriptionDetector:
    transactions, subscriptions = repos
    return SubscriptionDetector(subscriptions, transactions, SubscriptionConfig(**config))


@pytest.mark.unit
class TestPatternAnalysis:
    """Frequency bucketing and consistency checks."""

    @pytest.mark.parametrize(
        ("gap", "expected"),
        [
            (1.0, Frequency.DAILY),
            (7.0, Frequency.WEEKLY),
            (14.0, Frequency.WEEKLY),
            (30.2, Frequency.MONTHLY),
            (90.0, Frequency.MONTHLY),
            (365.0, Frequency.YEARLY),
            (10.0, None),
            (45.0, None),
            (200.0, None),
        ],
    )
    def test_detect_frequency(self, gap: float, expected: Frequency | None) -> None:
        assert detect_frequency(gap) == expected

    def test_monthly_netflix_charges(self) -> None:
        charges = _series("Netflix", ["9.99"] * 6, [30, 31, 29, 30, 31])

        pattern = analyze_pattern(charges)

        assert pattern is not None
        assert pattern.frequency == Frequency.MONTHLY
        assert pattern.amount == Decimal("9.99")
        assert pattern.confidence > 0.8
        last = max(tx.date for tx in charges)
        assert pattern.last_charged == last
        assert pattern.next_expected == last + relativedelta(months=1)

    def test_inconsistent_amounts_are_rejected(self) -> None:
        charges = _series("Gym", ["10.00", "14.00", "10.00", "14.00"], [30, 30, 30])
        assert analyze_pattern(charges) is None

    def test_small_amount_drift_is_tolerated(self) -> None:
        charges = _series("Spotify", ["10.99", "10.99", "11.49"], [30, 30])
        pattern = analyze_pattern(charges)
        assert pattern is not None
        assert pattern.amount == Decimal("11.16")

    def test_irregular_gaps_are_rejected(self) -> None:
        # Average gap is 30 but only one of three gaps is near it
        charges = _series("Shop", ["5.00"] * 4, [10, 30, 50])
        assert analyze_pattern(charges) is None

    def test_single_charge_is_not_a_pattern(self) -> None:
        assert analyze_pattern(_series("Once", ["5.00"], [])) is None

    def test_confidence_grows_with_history(self) -> None:
        short = analyze_pattern(_series("A", ["5.00"] * 3, [7, 7]))
        long = analyze_pattern(_series("A", ["5.00"] * 12, [7] * 11))
        assert short is not None and long is not None
        assert long.confidence > short.confidence
        assert long.confidence == pytest.approx(1.0)


@pytest.mark.unit
class TestMonthlyCost:
    """Monthly equivalents and recommendations."""

    @pytest.mark.parametrize(
        ("amount", "frequency", "expected"),
        [
            ("1.00", Frequency.DAILY, "30.00"),
            ("10.00", Frequency.WEEKLY, "43.30"),
            ("9.99", Frequency.MONTHLY, "9.99"),
            ("119.00", Frequency.YEARLY, "9.92"),
        ],
    )
    def test_monthly_amount(self, amount: str, frequency: Frequency, expected: str) -> None:
        subscription = _subscription("X", amount, frequency)
        assert monthly_amount(subscription) == Decimal(expected)

    def test_no_recommendations_for_modest_spend(self) -> None:
        subs = [_subscription("Netflix", "9.99", Frequency.MONTHLY)]
        assert recommendations(subs, Decimal("9.99")) == []

    def test_high_total_spend(self) -> None:
        tips = recommendations([], Decimal("500.01"))
        assert len(tips) == 1
        assert "spending is high" in tips[0]

    def test_many_entertainment_subscriptions(self) -> None:
        subs = [
            _subscription(name, "5.00", Frequency.MONTHLY)
            for name in ("Netflix", "Hulu", "Disney Plus", "Spotify")
        ]
        tips = recommendations(subs, Decimal("20.00"))
        assert any("entertainment" in tip for tip in tips)
        assert not any("annual" in tip for tip in tips)

    def test_expensive_monthly_plan_suggests_annual_billing(self) -> None:
        tips = recommendations(
            [_subscription("Adobe", "54.99", Frequency.MONTHLY)], Decimal("54.99")
        )
        assert any("annual discounts" in tip for tip in tips)


@pytest.mark.integration
class TestSubscriptionDetector:
    """Detection against stored transactions."""

    def test_detects_and_links_transactions(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, _ = repos
        charges = _series("Netflix", ["9.99"] * 6, [30, 31, 29, 30, 31])
        noise = _series("Tesco", ["23.10", "54.02", "8.75"], [3, 11])
        for tx in charges + noise:
            transactions.add(tx)

        [subscription] = _detector(repos).detect_subscriptions("alice")

        assert subscription.merchant_name == "Netflix"
        assert subscription.frequency == Frequency.MONTHLY
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.transaction_ids == [tx.id for tx in charges]
        for tx in charges:
            stored = transactions.get(tx.id)
            assert stored is not None
            assert stored.is_recurring
            assert stored.subscription_id == subscription.id
        for tx in noise:
            stored = transactions.get(tx.id)
            assert stored is not None and not stored.is_recurring

    def test_variable_amounts_produce_no_subscription(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, subscriptions = repos
        amounts = ["60.00", "80.00", "60.00", "80.00"]
        for tx in _series("Octopus Energy", amounts, [30, 30, 30]):
            transactions.add(tx)

        assert _detector(repos).detect_subscriptions("alice") == []
        assert subscriptions.list_for_user("alice") == []

    def test_only_debits_of_the_user_count(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, _ = repos
        for tx in _series("Employer", ["3000.00"] * 3, [30, 31]):
            tx.direction = Direction.CREDIT
            transactions.add(tx)
        for tx in _series("Netflix", ["9.99"] * 3, [30, 30], user_id="bob"):
            transactions.add(tx)

        assert _detector(repos).detect_subscriptions("alice") == []

    def test_missing_merchant_groups_as_unknown(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, _ = repos
        for tx in _series(None, ["4.00"] * 4, [7, 7, 7]):
            transactions.add(tx)

        [subscription] = _detector(repos).detect_subscriptions("alice")

        assert subscription.merchant_name == "Unknown"
        assert subscription.frequency == Frequency.WEEKLY

    def test_charges_outside_lookback_are_ignored(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, _ = repos
        for tx in _series("Amazon Prime", ["95.00", "95.00"], [365]):
            transactions.add(tx)

        assert _detector(repos).detect_subscriptions("alice") == []
        [yearly] = _detector(repos, lookback_days=730).detect_subscriptions("alice")
        assert yearly.frequency == Frequency.YEARLY

    def test_redetection_updates_in_place_and_keeps_status(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        transactions, subscriptions = repos
        charges = _series("Netflix", ["9.99"] * 3, [30, 30], last_days_ago=40)
        for tx in charges:
            transactions.add(tx)
        detector = _detector(repos)
        [first] = detector.detect_subscriptions("alice")
        first.status = SubscriptionStatus.PAUSED
        subscriptions.save(first)

        latest = make_transaction(
            amount="9.99",
            merchant_name="Netflix",
            booked=charges[-1].date + timedelta(days=30),
        )
        transactions.add(latest)
        [second] = detector.detect_subscriptions("alice")

        assert second.id == first.id
        assert second.status == SubscriptionStatus.PAUSED
        assert second.last_charged == latest.date
        assert len(second.transaction_ids) == 4
        assert len(subscriptions.list_for_user("alice")) == 1

    def test_scan_is_capped_at_most_recent_transactions(
        self,
        repos: tuple[TransactionRepository, SubscriptionRepository],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        transactions, _ = repos
        # Older charges are irregular; the newest ten are strictly weekly
        older = _series("Deliveroo", ["12.00"] * 4, [2, 9, 4], last_days_ago=80)
        recent = _series("Deliveroo", ["12.00"] * 10, [7] * 9)
        for tx in older + recent:
            transactions.add(tx)

        with caplog.at_level(logging.WARNING, logger="bankbridge.subscriptions"):
            [subscription] = _detector(repos, max_transactions=10).detect_subscriptions(
                "alice"
            )

        assert subscription.frequency == Frequency.WEEKLY
        assert len(subscription.transaction_ids) == 10
        assert "capped" in caplog.text

    def test_get_subscriptions_summarizes_active_only(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        _, subscriptions = repos
        subscriptions.add(_subscription("Netflix", "9.99", Frequency.MONTHLY))
        subscriptions.add(_subscription("The Times", "5.00", Frequency.WEEKLY))
        subscriptions.add(_subscription("Amazon Prime", "95.00", Frequency.YEARLY))
        subscriptions.add(
            _subscription(
                "Cancelled Gym", "40.00", Frequency.MONTHLY, SubscriptionStatus.CANCELLED
            )
        )

        summary = _detector(repos).get_subscriptions("alice")

        assert [c.subscription.merchant_name for c in summary.subscriptions] == [
            "Amazon Prime",
            "Netflix",
            "The Times",
        ]
        # 7.92 + 9.99 + 21.65
        assert summary.total_monthly == Decimal("39.56")
        assert summary.total_yearly == Decimal("474.72")
        assert summary.recommendations == []

    def test_user_without_history(
        self, repos: tuple[TransactionRepository, SubscriptionRepository]
    ) -> None:
        assert _detector(repos).detect_subscriptions("nobody") == []
        summary = _detector(repos).get_subscriptions("nobody")
        assert summary.subscriptions == []
        assert summary.total_monthly == Decimal("0")
