# ruff: noqa: S101
"""Tests for bank connection and account CLI commands."""

import json
from collections.abc import Callable

import pytest
from conftest import INSTITUTION_ID, FakeAggregator
from typer.testing import CliRunner

from bankbridge.app import Components
from bankbridge.cli.main import app
from bankbridge.models import BankAccount, ConnectionStatus


@pytest.mark.integration
class TestConnectionCommands:
    """The two-step linking flow and connection management."""

    def test_initiate_then_callback_links_accounts(
        self,
        runner: CliRunner,
        cli_components: Components,
        aggregator: FakeAggregator,
    ) -> None:
        aggregator.add_account("ext-1")

        result = runner.invoke(
            app, ["connections", "initiate", "-u", "alice", "-i", INSTITUTION_ID]
        )
        assert result.exit_code == 0
        requisition = aggregator.last_requisition()
        assert requisition.link in result.stdout

        aggregator.link(requisition.id, ["ext-1"])
        result = runner.invoke(app, ["connections", "callback", requisition.reference])

        assert result.exit_code == 0
        [connection] = cli_components.connections.list_connections("alice")
        assert connection.status == ConnectionStatus.LINKED
        assert len(cli_components.accounts.list_accounts("alice")) == 1

    def test_initiate_unknown_institution(
        self, runner: CliRunner, cli_components: Components
    ) -> None:
        result = runner.invoke(
            app, ["connections", "initiate", "-u", "alice", "-i", "NOPE_BANK"]
        )
        assert result.exit_code == 1

    def test_rejected_callback_exits_non_zero(
        self,
        runner: CliRunner,
        cli_components: Components,
        aggregator: FakeAggregator,
    ) -> None:
        runner.invoke(
            app, ["connections", "initiate", "-u", "alice", "-i", INSTITUTION_ID]
        )
        requisition = aggregator.last_requisition()
        aggregator.reject(requisition.id)

        result = runner.invoke(app, ["connections", "callback", requisition.reference])

        assert result.exit_code == 1

    def test_unknown_reference(
        self, runner: CliRunner, cli_components: Components
    ) -> None:
        result = runner.invoke(app, ["connections", "callback", "no-such-reference"])
        assert result.exit_code == 1

    def test_list_json(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        link_bank("alice")

        result = runner.invoke(app, ["connections", "list", "-u", "alice", "--json"])

        assert result.exit_code == 0
        [connection] = json.loads(result.stdout)
        assert connection["status"] == "linked"
        assert connection["institution_name"] == "Sandbox Finance"

    def test_refresh_queues_accounts(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        [account] = link_bank("alice")

        result = runner.invoke(
            app, ["connections", "refresh", "-u", "alice", account.connection_id]
        )

        assert result.exit_code == 0
        assert cli_components.accounts.get_account(account.id, "alice").needs_resync

    def test_delete_requires_confirmation(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        [account] = link_bank("alice")

        declined = runner.invoke(
            app,
            ["connections", "delete", "-u", "alice", account.connection_id],
            input="n\n",
        )
        assert declined.exit_code == 1
        assert len(cli_components.connections.list_connections("alice")) == 1

        confirmed = runner.invoke(
            app, ["connections", "delete", "-u", "alice", "-y", account.connection_id]
        )
        assert confirmed.exit_code == 0
        assert cli_components.connections.list_connections("alice") == []

    def test_delete_other_users_connection(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        [account] = link_bank("alice")

        result = runner.invoke(
            app, ["connections", "delete", "-u", "bob", "-y", account.connection_id]
        )

        assert result.exit_code == 1
        assert len(cli_components.connections.list_connections("alice")) == 1


@pytest.mark.integration
class TestAccountCommands:
    """Account listing and balances."""

    def test_balance_and_summary(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        [account] = link_bank("alice")

        balance = runner.invoke(app, ["accounts", "balance", "-u", "alice", account.id])
        summary = runner.invoke(app, ["accounts", "summary", "-u", "alice"])

        assert balance.exit_code == 0
        assert "1250.00 GBP" in balance.stdout
        assert summary.exit_code == 0
        assert "Accounts: 1" in summary.stdout
        assert "GBP: 1250.00" in summary.stdout

    def test_balance_of_missing_account(
        self, runner: CliRunner, cli_components: Components
    ) -> None:
        result = runner.invoke(app, ["accounts", "balance", "-u", "alice", "missing"])
        assert result.exit_code == 1

    def test_deactivate_hides_account(
        self,
        runner: CliRunner,
        cli_components: Components,
        link_bank: Callable[..., list[BankAccount]],
    ) -> None:
        [account] = link_bank("alice")

        declined = runner.invoke(
            app, ["accounts", "deactivate", "-u", "alice", account.id], input="n\n"
        )
        assert declined.exit_code == 1
        assert len(cli_components.accounts.list_accounts("alice")) == 1

        confirmed = runner.invoke(
            app, ["accounts", "deactivate", "-u", "alice", "-y", account.id]
        )
        assert confirmed.exit_code == 0
        assert cli_components.accounts.list_accounts("alice") == []

        listed = runner.invoke(app, ["accounts", "list", "-u", "alice"])
        assert account.id not in listed.stdout

    def test_deactivate_missing_account(
        self, runner: CliRunner, cli_components: Components
    ) -> None:
        result = runner.invoke(
            app, ["accounts", "deactivate", "-u", "alice", "-y", "missing"]
        )
        assert result.exit_code == 1
