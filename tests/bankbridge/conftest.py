"""Shared pytest fixtures for bankbridge tests.

Provides an in-memory DuckDB database, a key-management stub, a scripted
aggregator that keeps requisitions, accounts and transactions in memory, and
fully wired components built from test settings.
"""

import uuid
from collections.abc import Callable, Generator
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from pytest_mock import MockerFixture
from typer.testing import CliRunner

from bankbridge.aggregator.schemas import (
    AccountDetailsSchema,
    AmountSchema,
    BalanceSchema,
    InstitutionSchema,
    RequisitionSchema,
    RequisitionStatus,
    TransactionBuckets,
    TransactionSchema,
    TransactionsResponse,
)
from bankbridge.app import Components, build_components
from bankbridge.config import (
    AggregatorConfig,
    BankBridgeSettings,
    DatabaseConfig,
    VaultConfig,
    clear_settings_cache,
)
from bankbridge.errors import Unauthorized, UpstreamUnavailable
from bankbridge.models import (
    BankAccount,
    Direction,
    Transaction,
    TransactionMetadata,
    utcnow,
)
from bankbridge.storage import Database

INSTITUTION_ID = "SANDBOXFINANCE_SFIN0000"


@pytest.fixture(autouse=True)
def clean_settings_state() -> Generator[None, None, None]:
    """Clear the settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


class InMemoryKMS:
    """Key management stub that tags data keys instead of encrypting them."""

    _PREFIX = b"wrapped:"

    def __init__(self, key_id: str = "test-key"):
        self.key_id = key_id

    def wrap_key(self, data_key: bytes) -> bytes:
        return self._PREFIX + data_key

    def unwrap_key(self, wrapped_key: bytes) -> bytes:
        if not wrapped_key.startswith(self._PREFIX):
            raise ValueError("not a wrapped key")
        return wrapped_key[len(self._PREFIX) :]


class FakeAggregator:
    """Scripted stand-in for AggregatorClient.

    Requisitions created through ``create_requisition`` stay in ``CR`` until a
    test calls :meth:`link` or :meth:`reject`. Booked transactions are
    filtered by the requested date window like the real API.
    """

    def __init__(self) -> None:
        self.institutions = [
            InstitutionSchema(
                id=INSTITUTION_ID,
                name="Sandbox Finance",
                bic="SFIN0000",
                countries=["GB"],
                logo="https://cdn.example.com/sfin.png",
            ),
            InstitutionSchema(id="MONZO_MONZGB2L", name="Monzo", countries=["GB"]),
        ]
        self.requisitions: dict[str, RequisitionSchema] = {}
        self.details: dict[str, AccountDetailsSchema] = {}
        self.balances: dict[str, list[BalanceSchema]] = {}
        self.transactions: dict[str, list[TransactionSchema]] = {}
        self.failing_accounts: set[str] = set()
        self.deleted_requisitions: list[str] = []
        self.calls: list[tuple[Any, ...]] = []
        self.closed = False

    # Test scripting helpers

    def add_account(
        self,
        external_id: str,
        currency: str = "GBP",
        balance: Decimal | None = Decimal("1250.00"),
        iban: str | None = "GB33BUKB20201555555555",
    ) -> None:
        self.details[external_id] = AccountDetailsSchema(
            resource_id=f"res-{external_id}", iban=iban, currency=currency
        )
        self.balances[external_id] = (
            [
                BalanceSchema(
                    balance_amount=AmountSchema(amount=balance, currency=currency),
                    balance_type="expected",
                )
            ]
            if balance is not None
            else []
        )
        self.transactions.setdefault(external_id, [])

    def link(self, requisition_id: str, accounts: list[str]) -> None:
        self.requisitions[requisition_id] = self.requisitions[
            requisition_id
        ].model_copy(
            update={"status": RequisitionStatus.LINKED.value, "accounts": accounts}
        )

    def reject(self, requisition_id: str) -> None:
        self.requisitions[requisition_id] = self.requisitions[
            requisition_id
        ].model_copy(update={"status": RequisitionStatus.REJECTED.value})

    def last_requisition(self) -> RequisitionSchema:
        return list(self.requisitions.values())[-1]

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    # AggregatorClient surface

    def close(self) -> None:
        self.closed = True

    def list_institutions(self, country: str) -> list[InstitutionSchema]:
        self.calls.append(("list_institutions", country))
        return [i for i in self.institutions if country in i.countries]

    def search_institutions(self, query: str, country: str) -> list[InstitutionSchema]:
        return [
            i
            for i in self.list_institutions(country)
            if query.lower() in i.name.lower() or query.lower() in i.id.lower()
        ]

    def create_requisition(
        self, institution_id: str, redirect_url: str, reference: str
    ) -> RequisitionSchema:
        self.calls.append(("create_requisition", institution_id, reference))
        requisition_id = f"req-{len(self.requisitions) + 1}"
        requisition = RequisitionSchema(
            id=requisition_id,
            redirect=redirect_url,
            status=RequisitionStatus.CREATED.value,
            institution_id=institution_id,
            reference=reference,
            link=f"https://ob.example.com/psd2/start/{requisition_id}",
        )
        self.requisitions[requisition_id] = requisition
        return requisition

    def get_requisition(self, requisition_id: str) -> RequisitionSchema:
        self.calls.append(("get_requisition", requisition_id))
        if requisition_id not in self.requisitions:
            raise UpstreamUnavailable("Aggregator API error: 404", 404)
        return self.requisitions[requisition_id]

    def delete_requisition(self, requisition_id: str) -> None:
        self.calls.append(("delete_requisition", requisition_id))
        if requisition_id not in self.requisitions:
            raise UpstreamUnavailable("Aggregator API error: 404", 404)
        self.deleted_requisitions.append(requisition_id)

    def get_account_details(self, account_id: str) -> AccountDetailsSchema:
        self.calls.append(("get_account_details", account_id))
        if account_id not in self.details:
            raise UpstreamUnavailable("Aggregator API error: 404", 404)
        return self.details[account_id]

    def get_account_balances(self, account_id: str) -> list[BalanceSchema]:
        self.calls.append(("get_account_balances", account_id))
        return self.balances.get(account_id, [])

    def get_transactions(
        self,
        account_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> TransactionsResponse:
        self.calls.append(("get_transactions", account_id, date_from, date_to))
        if account_id in self.failing_accounts:
            raise UpstreamUnavailable("Aggregator API error: 503", 503)
        booked = [
            tx
            for tx in self.transactions.get(account_id, [])
            if (date_from is None or tx.booking_date >= date_from)
            and (date_to is None or tx.booking_date <= date_to)
        ]
        return TransactionsResponse(transactions=TransactionBuckets(booked=booked))


class DictTokenVerifier:
    """Token verifier backed by a token to user-id mapping."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = tokens

    def verify(self, token: str) -> str:
        try:
            return self.tokens[token]
        except KeyError:
            raise Unauthorized("Invalid or expired token") from None


def make_record(
    amount: str = "-12.50",
    days_ago: int = 1,
    transaction_id: str | None = None,
    creditor_name: str | None = "Starbucks",
    debtor_name: str | None = None,
    remittance: str | None = "Card payment",
    currency: str = "GBP",
    **extra: Any,
) -> TransactionSchema:
    """Build a booked aggregator transaction record."""
    return TransactionSchema(
        transaction_id=transaction_id,
        booking_date=utcnow().date() - timedelta(days=days_ago),
        transaction_amount=AmountSchema(amount=Decimal(amount), currency=currency),
        creditor_name=creditor_name,
        debtor_name=debtor_name,
        remittance_information_unstructured=remittance,
        **extra,
    )


def make_transaction(
    user_id: str = "alice",
    account_id: str = "account-1",
    amount: str = "9.99",
    booked: date | None = None,
    merchant_name: str | None = "Netflix",
    direction: Direction = Direction.DEBIT,
    transaction_id: str | None = None,
    **fields: Any,
) -> Transaction:
    """Build a canonical transaction for direct storage."""
    now = utcnow()
    tx_id = transaction_id or str(uuid.uuid4())
    currency = fields.pop("currency", "GBP")
    description = fields.pop("description", f"{merchant_name} payment")
    return Transaction(
        id=tx_id,
        user_id=user_id,
        account_id=account_id,
        external_transaction_id=f"ext-{tx_id}",
        amount=Decimal(amount),
        direction=direction,
        currency=currency,
        date=booked or utcnow().date(),
        merchant_name=merchant_name,
        description=description,
        metadata=TransactionMetadata(counterparty_name=merchant_name),
        created_at=now,
        synced_at=now,
        last_modified=now,
        **fields,
    )


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """In-memory DuckDB database with the schema applied."""
    database = Database()
    yield database
    database.close()


@pytest.fixture
def kms() -> InMemoryKMS:
    return InMemoryKMS()


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def settings(tmp_path: Path) -> BankBridgeSettings:
    """Settings isolated from the developer's environment."""
    return BankBridgeSettings(
        database=DatabaseConfig(path=Path(":memory:")),
        aggregator=AggregatorConfig(
            secret_id="test-secret-id",
            secret_key="test-secret-key",
            environment="sandbox",
            country="GB",
            history_days=90,
        ),
        vault=VaultConfig(master_secret="test-master-secret"),
    )


@pytest.fixture
def components(
    settings: BankBridgeSettings,
    db: Database,
    aggregator: FakeAggregator,
    kms: InMemoryKMS,
) -> Components:
    """Components wired to the in-memory database and the fake aggregator."""
    return build_components(settings, db=db, aggregator=aggregator, kms=kms)  # type: ignore[arg-type]


@pytest.fixture
def link_bank(
    components: Components, aggregator: FakeAggregator
) -> Callable[..., list[BankAccount]]:
    """Return a helper that links a bank for a user and returns its accounts."""

    def _link(
        user_id: str = "alice", external_ids: tuple[str, ...] = ("ext-acc-1",)
    ) -> list[BankAccount]:
        for external_id in external_ids:
            if external_id not in aggregator.details:
                aggregator.add_account(external_id)
        components.connections.initiate_connection(user_id, INSTITUTION_ID)
        requisition = aggregator.last_requisition()
        aggregator.link(requisition.id, list(external_ids))
        connection = components.connections.handle_callback(requisition.reference)
        return components.accounts.repository.list_for_connection(connection.id)

    return _link


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI runner for testing."""
    return CliRunner()


@pytest.fixture
def mock_setup_logging(mocker: MockerFixture) -> MagicMock:
    """Keep CLI invocations from reconfiguring the root logger."""
    mocker.patch("bankbridge.cli.main.load_dotenv")
    return mocker.patch("bankbridge.cli.main.setup_logging")


@pytest.fixture
def cli_components(
    mocker: MockerFixture, components: Components, mock_setup_logging: MagicMock
) -> Components:
    """Serve the in-memory components to every CLI command.

    ``close`` is stubbed so several invocations can share one database.
    """
    mocker.patch.object(components, "close")
    mocker.patch("bankbridge.cli.utils.build_components", return_value=components)
    return components
