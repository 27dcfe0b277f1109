# ruff: noqa: S101
"""Tests for the account registry."""

from collections.abc import Callable
from decimal import Decimal

import pytest
from conftest import FakeAggregator

from bankbridge.app import Components
from bankbridge.errors import AccountNotFound, OwnershipViolation
from bankbridge.models import BankAccount


@pytest.mark.integration
class TestAccountRegistry:
    """Balances, summaries and ownership."""

    def test_balance_not_yet_synced(
        self,
        components: Components,
        aggregator: FakeAggregator,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        aggregator.add_account("ext-empty", balance=None)
        [account] = link_bank("alice", ("ext-empty",))

        balance = components.accounts.get_balance(account.id, "alice")

        assert balance.amount == Decimal("0")
        assert balance.message == "Balance not yet synced"

    def test_summary_groups_by_currency_type_and_institution(
        self,
        components: Components,
        aggregator: FakeAggregator,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        aggregator.add_account("ext-gbp-1", balance=Decimal("100.50"))
        aggregator.add_account("ext-gbp-2", balance=Decimal("-20.25"))
        aggregator.add_account("ext-eur", currency="EUR", balance=Decimal("7.00"))
        link_bank("alice", ("ext-gbp-1", "ext-gbp-2", "ext-eur"))
        link_bank("bob", ("ext-bob",))

        summary = components.accounts.get_summary("alice")

        assert summary.total_accounts == 3
        assert summary.total_balance == {
            "GBP": Decimal("80.25"),
            "EUR": Decimal("7.00"),
        }
        assert summary.accounts_by_type == {"personal": 3}
        assert summary.accounts_by_institution == {"Sandbox Finance": 3}

    def test_deactivated_accounts_are_hidden(
        self, components: Components, link_bank: Callable[..., list[BankAccount]]
    ) -> None:
        first, second = link_bank("alice", ("ext-1", "ext-2"))

        components.accounts.deactivate_account(first.id, "alice")

        assert [a.id for a in components.accounts.list_accounts("alice")] == [second.id]

    def test_ownership_and_missing_accounts(
        self, components: Components, link_bank: Callable[..., list[BankAccount]]
    ) -> None:
        [account] = link_bank("alice")

        with pytest.raises(OwnershipViolation):
            components.accounts.get_balance(account.id, "bob")
        with pytest.raises(AccountNotFound) as exc_info:
            components.accounts.get_account("missing", "alice")
        assert exc_info.value.status_code == 404
