"""Bank connection lifecycle.

A connection moves ``pending -> linked`` or ``pending -> error`` when the
aggregator redirects the user back, and becomes ``expired`` once its lifetime
has passed. Expiry is applied lazily whenever a connection is read; an
expired connection is terminal and must be initiated again.
"""

import logging
import secrets
import uuid
from datetime import timedelta

from .accounts import AccountRegistry
from .aggregator import AggregatorClient
from .aggregator.schemas import InstitutionSchema, select_current_balance
from .config import AggregatorConfig
from .errors import (
    ConnectionExpired,
    ConnectionNotFound,
    DecryptionFailure,
    InvalidInstitution,
    OwnershipViolation,
    UpstreamUnavailable,
)
from .models import (
    AccountType,
    BankConnection,
    ConnectionMetadata,
    ConnectionResponse,
    ConnectionStatus,
    RefreshResult,
    utcnow,
)
from .storage import ConnectionRepository
from .vault import CredentialVault

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Owns the consent/link lifecycle and account materialization."""

    def __init__(
        self,
        repository: ConnectionRepository,
        accounts: AccountRegistry,
        aggregator: AggregatorClient,
        vault: CredentialVault,
        config: AggregatorConfig,
    ):
        self.repository = repository
        self.accounts = accounts
        self.aggregator = aggregator
        self.vault = vault
        self.config = config

    def _find_institution(self, institution_id: str, country: str) -> InstitutionSchema:
        for institution in self.aggregator.list_institutions(country):
            if institution.id == institution_id:
                return institution
        raise InvalidInstitution(institution_id)

    def initiate_connection(
        self,
        user_id: str,
        institution_id: str,
        account_type: AccountType = AccountType.PERSONAL,
        country: str | None = None,
    ) -> ConnectionResponse:
        """Start linking an institution for a user.

        The institution is validated against the live directory before any
        consent request is made.

        Args:
            user_id: The caller
            institution_id: Aggregator institution id
            account_type: How the user classifies the accounts
            country: Directory country, defaults to the configured one

        Returns:
            ConnectionResponse: Connection id plus the single-use consent link

        Raises:
            InvalidInstitution: If the institution is not in the directory
            UpstreamUnavailable: If the aggregator fails
            EncryptionFailure: If the requisition id cannot be protected
        """
        institution = self._find_institution(
            institution_id, (country or self.config.country).upper()
        )

        reference = secrets.token_urlsafe(24)
        requisition = self.aggregator.create_requisition(
            institution.id, self.config.redirect_url, reference
        )

        now = utcnow()
        connection = BankConnection(
            id=str(uuid.uuid4()),
            user_id=user_id,
            institution_id=institution.id,
            institution_name=institution.name,
            account_type=account_type,
            status=ConnectionStatus.PENDING,
            requisition_id=self.vault.encrypt(requisition.id),
            reference=reference,
            created_at=now,
            expires_at=now + timedelta(days=self.config.connection_lifetime_days),
            metadata=ConnectionMetadata(
                country=institution.countries[0] if institution.countries else None,
                logo=institution.logo,
            ),
        )
        self.repository.add(connection)

        logger.info(
            f"Bank connection {connection.id} initiated for institution "
            f"{institution.name}"
        )
        return ConnectionResponse(
            connection_id=connection.id,
            auth_url=requisition.link,
            expires_in=self.config.auth_link_ttl_seconds,
        )

    def handle_callback(self, reference: str) -> BankConnection:
        """Finalize a connection after the user returns from the bank.

        Only the opaque reference is trusted. It is resolved through the
        reference index and cross-checked against the upstream requisition.

        Raises:
            ConnectionNotFound: If no connection carries this reference
            UpstreamUnavailable: If the aggregator fails
        """
        connection = self.repository.find_by_reference(reference)
        if connection is None:
            raise ConnectionNotFound("Connection not found for reference")

        self._apply_expiry(connection)
        if connection.status != ConnectionStatus.PENDING:
            logger.info(
                f"Callback for connection {connection.id} ignored "
                f"(status {connection.status.value})"
            )
            return connection

        requisition = self.aggregator.get_requisition(
            self.vault.decrypt(connection.requisition_id)
        )

        if requisition.reference != reference:
            logger.warning(f"Reference mismatch for connection {connection.id}")
            connection.status = ConnectionStatus.ERROR
            connection.error = "Requisition reference mismatch"
            self.repository.save(connection)
            return connection

        if not requisition.is_linked:
            connection.status = ConnectionStatus.ERROR
            connection.error = f"Connection failed with status: {requisition.status}"
            self.repository.save(connection)
            logger.warning(
                f"Bank connection {connection.id} failed with status "
                f"{requisition.status}"
            )
            return connection

        try:
            for external_account_id in requisition.accounts:
                self._materialize_account(connection, external_account_id)
        except Exception as e:
            self.accounts.delete_for_connection(connection.id)
            connection.status = ConnectionStatus.ERROR
            connection.error = f"Account linking failed: {type(e).__name__}"
            self.repository.save(connection)
            logger.error(f"Failed to link accounts for connection {connection.id}")
            raise

        connection.status = ConnectionStatus.LINKED
        connection.last_synced_at = utcnow()
        connection.error = None
        self.repository.save(connection)

        logger.info(
            f"Bank connection {connection.id} completed with "
            f"{len(requisition.accounts)} accounts"
        )
        return connection

    def _materialize_account(
        self, connection: BankConnection, external_account_id: str
    ) -> None:
        details = self.aggregator.get_account_details(external_account_id)
        balances = self.aggregator.get_account_balances(external_account_id)
        self.accounts.create_account(
            connection, external_account_id, details, select_current_balance(balances)
        )

    def _apply_expiry(self, connection: BankConnection) -> None:
        if connection.status != ConnectionStatus.EXPIRED and connection.is_expired():
            connection.status = ConnectionStatus.EXPIRED
            self.repository.save(connection)
            logger.info(f"Connection {connection.id} expired")

    def list_connections(self, user_id: str) -> list[BankConnection]:
        connections = self.repository.list_for_user(user_id)
        for connection in connections:
            self._apply_expiry(connection)
        return connections

    def get_connection(self, connection_id: str, user_id: str) -> BankConnection:
        """Fetch a connection owned by the caller.

        Raises:
            ConnectionNotFound: If no such connection exists
            OwnershipViolation: If it belongs to another user
        """
        connection = self.repository.get(connection_id)
        if connection is None:
            raise ConnectionNotFound(f"Connection not found: {connection_id}")
        if connection.user_id != user_id:
            logger.warning(f"Rejected access to connection {connection_id}")
            raise OwnershipViolation("connection", connection_id)
        self._apply_expiry(connection)
        return connection

    def refresh_connection(self, connection_id: str, user_id: str) -> RefreshResult:
        """Queue every account of a connection for resync.

        Raises:
            ConnectionExpired: If the connection has expired
        """
        connection = self.get_connection(connection_id, user_id)
        if connection.status == ConnectionStatus.EXPIRED:
            raise ConnectionExpired(connection_id)

        queued = self.accounts.mark_for_resync(connection_id)
        connection.last_synced_at = utcnow()
        self.repository.save(connection)

        logger.info(
            f"Connection {connection_id} refreshed, {len(queued)} accounts queued"
        )
        return RefreshResult(connection_id=connection_id, accounts_queued=queued)

    def delete_connection(self, connection_id: str, user_id: str) -> None:
        """Delete a connection and its accounts.

        Upstream consent revocation is best effort; local deletion proceeds
        even when it fails.
        """
        connection = self.get_connection(connection_id, user_id)

        try:
            self.aggregator.delete_requisition(
                self.vault.decrypt(connection.requisition_id)
            )
        except (UpstreamUnavailable, DecryptionFailure) as e:
            logger.warning(
                f"Failed to revoke upstream consent for connection {connection_id}: "
                f"{type(e).__name__}"
            )

        deleted = self.accounts.delete_for_connection(connection_id)
        self.repository.delete(connection_id)
        logger.info(f"Connection {connection_id} deleted with {deleted} accounts")
