# ruff: noqa: S101
"""Tests for the top-level CLI application wiring."""

from unittest.mock import MagicMock

import pytest
from pytest_mock import MockerFixture
from typer.testing import CliRunner

from bankbridge.app import Components
from bankbridge.cli.main import app


@pytest.mark.unit
class TestMainApp:
    """Global options and command groups."""

    def test_help_lists_command_groups(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for group in ("db", "institutions", "connections", "sync", "subscriptions"):
            assert group in result.stdout

    def test_verbose_flag_configures_debug_logging(
        self,
        runner: CliRunner,
        cli_components: Components,
        mock_setup_logging: MagicMock,
    ) -> None:
        result = runner.invoke(app, ["-v", "accounts", "list", "--user", "alice"])

        assert result.exit_code == 0
        mock_setup_logging.assert_called_once_with(cli_mode=True, verbose=True)

    def test_default_logging_is_not_verbose(
        self,
        runner: CliRunner,
        cli_components: Components,
        mock_setup_logging: MagicMock,
    ) -> None:
        runner.invoke(app, ["accounts", "list", "--user", "alice"])

        mock_setup_logging.assert_called_once_with(cli_mode=True, verbose=False)

    def test_user_from_environment(
        self, runner: CliRunner, cli_components: Components, mocker: MockerFixture
    ) -> None:
        list_accounts = mocker.patch.object(
            cli_components.accounts, "list_accounts", return_value=[]
        )

        result = runner.invoke(
            app, ["accounts", "list"], env={"BANKBRIDGE_USER_ID": "carol"}
        )

        assert result.exit_code == 0
        list_accounts.assert_called_once_with("carol")

    def test_configuration_error_exits_non_zero(
        self,
        runner: CliRunner,
        mock_setup_logging: MagicMock,
        mocker: MockerFixture,
    ) -> None:
        mocker.patch(
            "bankbridge.cli.utils.build_components",
            side_effect=ValueError("Configuration error: bad database path"),
        )

        result = runner.invoke(app, ["accounts", "list", "--user", "alice"])

        assert result.exit_code == 1
