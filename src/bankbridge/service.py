"""Inbound banking surface.

Every operation except :meth:`BankingService.handle_callback` requires a
bearer token, which is resolved to a user id by the configured
:class:`~bankbridge.auth.TokenVerifier`. Ownership is then enforced by the
components themselves. An HTTP adapter maps ``BankBridgeError.status_code``
onto responses.
"""

from .aggregator.schemas import InstitutionSchema
from .app import Components
from .auth import TokenVerifier
from .errors import Unauthorized
from .models import (
    AccountBalance,
    AccountSummary,
    AccountType,
    BankAccount,
    BankConnection,
    BulkCategorization,
    BulkResult,
    Categorization,
    ConnectionResponse,
    RefreshResult,
    SpendingInsights,
    Subscription,
    SubscriptionSummary,
    SyncResult,
    Transaction,
    TransactionFilter,
    TransactionPage,
)


class BankingService:
    """Authenticated facade over the banking components."""

    def __init__(self, components: Components, verifier: TokenVerifier):
        self.components = components
        self.verifier = verifier

    def _user(self, token: str | None) -> str:
        if not token:
            raise Unauthorized("Authentication required")
        return self.verifier.verify(token)

    # Institutions

    def list_institutions(
        self, token: str, country: str | None = None
    ) -> list[InstitutionSchema]:
        self._user(token)
        return self.components.aggregator.list_institutions(
            country or self.components.settings.aggregator.country
        )

    def search_institutions(
        self, token: str, query: str, country: str | None = None
    ) -> list[InstitutionSchema]:
        self._user(token)
        return self.components.aggregator.search_institutions(
            query, country or self.components.settings.aggregator.country
        )

    # Connections

    def initiate_connection(
        self,
        token: str,
        institution_id: str,
        account_type: AccountType = AccountType.PERSONAL,
        country: str | None = None,
    ) -> ConnectionResponse:
        return self.components.connections.initiate_connection(
            self._user(token), institution_id, account_type, country
        )

    def handle_callback(self, reference: str) -> BankConnection:
        """Unauthenticated: only the opaque reference is trusted."""
        return self.components.connections.handle_callback(reference)

    def list_connections(self, token: str) -> list[BankConnection]:
        return self.components.connections.list_connections(self._user(token))

    def get_connection(self, token: str, connection_id: str) -> BankConnection:
        return self.components.connections.get_connection(
            connection_id, self._user(token)
        )

    def refresh_connection(self, token: str, connection_id: str) -> RefreshResult:
        return self.components.connections.refresh_connection(
            connection_id, self._user(token)
        )

    def delete_connection(self, token: str, connection_id: str) -> None:
        self.components.connections.delete_connection(connection_id, self._user(token))

    # Accounts

    def list_accounts(self, token: str) -> list[BankAccount]:
        return self.components.accounts.list_accounts(self._user(token))

    def get_account(self, token: str, account_id: str) -> BankAccount:
        return self.components.accounts.get_account(account_id, self._user(token))

    def get_account_balance(self, token: str, account_id: str) -> AccountBalance:
        return self.components.accounts.get_balance(account_id, self._user(token))

    def get_accounts_summary(self, token: str) -> AccountSummary:
        return self.components.accounts.get_summary(self._user(token))

    def deactivate_account(self, token: str, account_id: str) -> None:
        self.components.accounts.deactivate_account(account_id, self._user(token))

    def sync_account(self, token: str, account_id: str) -> SyncResult:
        return self.components.ingestor.sync_transactions(
            self._user(token), account_id
        )

    # Transactions

    def sync_all_accounts(self, token: str) -> list[SyncResult]:
        return self.components.ingestor.sync_all_accounts(self._user(token))

    def list_transactions(
        self, token: str, filters: TransactionFilter | None = None
    ) -> TransactionPage:
        return self.components.ingestor.list_transactions(self._user(token), filters)

    def get_transaction(self, token: str, transaction_id: str) -> Transaction:
        return self.components.ingestor.get_transaction(
            transaction_id, self._user(token)
        )

    def categorize_transaction(
        self, token: str, transaction_id: str, categorization: Categorization
    ) -> Transaction:
        return self.components.engine.categorize_transaction(
            transaction_id, self._user(token), categorization
        )

    def bulk_categorize(self, token: str, bulk: BulkCategorization) -> BulkResult:
        return self.components.engine.bulk_categorize(self._user(token), bulk)

    def link_invoice(
        self,
        token: str,
        transaction_id: str,
        invoice_id: str,
        invoice_url: str | None = None,
    ) -> Transaction:
        return self.components.ingestor.link_invoice(
            transaction_id, self._user(token), invoice_id, invoice_url
        )

    def get_insights(self, token: str) -> SpendingInsights:
        return self.components.ingestor.get_insights(self._user(token))

    # Subscriptions

    def list_subscriptions(self, token: str) -> SubscriptionSummary:
        return self.components.detector.get_subscriptions(self._user(token))

    def detect_subscriptions(self, token: str) -> list[Subscription]:
        return self.components.detector.detect_subscriptions(self._user(token))
