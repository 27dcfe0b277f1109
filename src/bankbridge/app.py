"""Wiring of the BankBridge components from settings."""

import logging
from dataclasses import dataclass

from .accounts import AccountRegistry
from .aggregator import AggregatorClient
from .categorization import CategorizationEngine, OpenAIClassifier, TransactionClassifier
from .config import BankBridgeSettings, get_settings
from .connections import ConnectionManager
from .ingestion import TransactionIngestor
from .storage import (
    AccountRepository,
    ConnectionRepository,
    Database,
    FeedbackRepository,
    SubscriptionRepository,
    TransactionRepository,
)
from .subscriptions import SubscriptionDetector
from .vault import CredentialVault, KeyManagementService, LocalKeyManagementService

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """The fully wired object graph."""

    settings: BankBridgeSettings
    db: Database
    aggregator: AggregatorClient
    vault: CredentialVault
    accounts: AccountRegistry
    connections: ConnectionManager
    engine: CategorizationEngine
    ingestor: TransactionIngestor
    detector: SubscriptionDetector

    def close(self) -> None:
        self.aggregator.close()
        self.db.close()


def build_components(
    settings: BankBridgeSettings | None = None,
    *,
    db: Database | None = None,
    aggregator: AggregatorClient | None = None,
    kms: KeyManagementService | None = None,
    classifier: TransactionClassifier | None = None,
) -> Components:
    """Build every component from settings.

    Collaborators can be injected, which is how tests substitute an
    in-memory database, a fake aggregator or a KMS stub.

    Args:
        settings: Application settings, defaults to the cached settings
        db: Database to use instead of opening the configured path
        aggregator: Aggregator client to use instead of a live one
        kms: Key management backend, defaults to the local master key
        classifier: Classifier oracle, defaults to OpenAI when enabled

    Returns:
        Components: The wired components
    """
    settings = settings or get_settings()

    db = db or Database(settings.database.path, settings.database.create_dirs)
    aggregator = aggregator or AggregatorClient(settings.aggregator)
    vault = CredentialVault(kms or LocalKeyManagementService.from_config(settings.vault))

    if classifier is None and settings.categorization.ml_enabled:
        classifier = OpenAIClassifier(model=settings.categorization.model)

    transactions = TransactionRepository(db)
    accounts = AccountRegistry(AccountRepository(db), vault)
    connections = ConnectionManager(
        ConnectionRepository(db), accounts, aggregator, vault, settings.aggregator
    )
    engine = CategorizationEngine(
        transactions, FeedbackRepository(db), settings.categorization, classifier
    )
    ingestor = TransactionIngestor(
        transactions, accounts, aggregator, engine, settings.aggregator
    )
    detector = SubscriptionDetector(
        SubscriptionRepository(db), transactions, settings.subscriptions
    )

    logger.debug("BankBridge components built")
    return Components(
        settings=settings,
        db=db,
        aggregator=aggregator,
        vault=vault,
        accounts=accounts,
        connections=connections,
        engine=engine,
        ingestor=ingestor,
        detector=detector,
    )
