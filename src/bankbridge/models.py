"""Canonical domain models for BankBridge.

These Pydantic models are the only shapes the core logic works with.
Aggregator payloads are validated into the DTOs in
``bankbridge.aggregator.schemas`` and converted once into these types.

Timestamps are naive UTC datetimes; monetary amounts are Decimals.
"""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UNCATEGORIZED = "uncategorized"

# Business expenses above this magnitude need a linked invoice
INVOICE_REQUIRED_ABOVE = Decimal("50")


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ConnectionStatus(str, Enum):
    """Lifecycle state of a bank connection."""

    PENDING = "pending"
    LINKED = "linked"
    EXPIRED = "expired"
    ERROR = "error"


class AccountType(str, Enum):
    """How the user classifies a linked account."""

    PERSONAL = "personal"
    BUSINESS = "business"
    SAVINGS = "savings"
    CREDIT = "credit"


class Direction(str, Enum):
    """Money flow of a transaction; amounts themselves are unsigned."""

    DEBIT = "debit"
    CREDIT = "credit"


class CategorizedBy(str, Enum):
    """Who assigned a transaction's category."""

    AUTO = "auto"
    ML = "ml"
    USER = "user"


class Frequency(str, Enum):
    """Billing frequency of a recurring payment."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class DomainModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(validate_assignment=True, from_attributes=True)


# Connections and accounts


class ConnectionMetadata(DomainModel):
    country: str | None = None
    logo: str | None = None


class BankConnection(DomainModel):
    """A user's consent to read one institution's accounts."""

    id: str
    user_id: str
    institution_id: str
    institution_name: str
    account_type: AccountType = AccountType.PERSONAL
    status: ConnectionStatus = ConnectionStatus.PENDING
    requisition_id: str = Field(..., description="Envelope-encrypted requisition id")
    reference: str = Field(..., description="Opaque reference echoed by the callback")
    created_at: datetime
    expires_at: datetime
    last_synced_at: datetime | None = None
    error: str | None = None
    metadata: ConnectionMetadata = Field(default_factory=ConnectionMetadata)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once the connection's lifetime has passed."""
        return (now or utcnow()) > self.expires_at


class Balance(DomainModel):
    amount: Decimal
    currency: str
    last_updated: datetime


class BankAccount(DomainModel):
    """A bank account materialized from a linked connection."""

    id: str
    user_id: str
    connection_id: str
    external_account_id: str = Field(
        ..., description="Envelope-encrypted aggregator account id"
    )
    account_number: str | None = None
    iban: str | None = None
    currency: str
    account_type: AccountType = AccountType.PERSONAL
    balance: Balance | None = None
    institution_name: str
    is_active: bool = True
    needs_resync: bool = False
    created_at: datetime
    last_synced_at: datetime | None = None


class AccountBalance(DomainModel):
    """Balance view returned to callers."""

    account_id: str
    amount: Decimal
    currency: str
    last_updated: datetime | None = None
    account_name: str | None = None
    institution_name: str | None = None
    message: str | None = None


class AccountSummary(DomainModel):
    total_balance: dict[str, Decimal] = Field(default_factory=dict)
    accounts_by_type: dict[str, int] = Field(default_factory=dict)
    accounts_by_institution: dict[str, int] = Field(default_factory=dict)
    total_accounts: int = 0
    last_updated: datetime


class ConnectionResponse(DomainModel):
    """Returned when a connection is initiated."""

    connection_id: str
    auth_url: str
    expires_in: int


class RefreshResult(DomainModel):
    connection_id: str
    accounts_queued: list[str] = Field(default_factory=list)

    @property
    def accounts_synced(self) -> int:
        return len(self.accounts_queued)


# Transactions


class TransactionMetadata(DomainModel):
    counterparty_name: str | None = None
    counterparty_account: str | None = None
    reference: str | None = None
    bank_category: str | None = None
    tags: list[str] = Field(default_factory=list)


class FeedbackEntry(DomainModel):
    timestamp: datetime
    original_category: str
    corrected_category: str
    corrected_by: str = "user"


class Transaction(DomainModel):
    """A booked bank transaction owned by one user and one account."""

    id: str
    user_id: str
    account_id: str
    external_transaction_id: str

    amount: Decimal = Field(..., ge=0, description="Unsigned magnitude")
    direction: Direction
    currency: str
    date: date
    value_date: date | None = None

    merchant_name: str | None = None
    description: str = "Transaction"

    category: str = UNCATEGORIZED
    subcategory: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_business_expense: bool = False
    categorized_by: CategorizedBy | None = None
    categorized_at: datetime | None = None

    is_recurring: bool = False
    subscription_id: str | None = None

    invoice_id: str | None = None
    receipt_url: str | None = None
    has_required_invoice: bool = False

    feedback_history: list[FeedbackEntry] = Field(default_factory=list)
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)

    created_at: datetime
    synced_at: datetime
    last_modified: datetime

    @property
    def is_expense(self) -> bool:
        return self.direction == Direction.DEBIT

    @property
    def signed_amount(self) -> Decimal:
        return -self.amount if self.is_expense else self.amount

    @property
    def needs_invoice(self) -> bool:
        return (
            self.is_business_expense
            and self.is_expense
            and self.amount > INVOICE_REQUIRED_ABOVE
            and not self.invoice_id
        )

    @property
    def is_user_categorized(self) -> bool:
        return self.categorized_by == CategorizedBy.USER

    @property
    def is_uncategorized(self) -> bool:
        return self.category == UNCATEGORIZED


class TransactionFilter(DomainModel):
    account_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    category: str | None = None
    is_business_expense: bool | None = None
    needs_invoice: bool | None = None
    min_amount: Decimal | None = None
    merchant_name: str | None = None
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class TransactionPage(DomainModel):
    transactions: list[Transaction]
    total: int


class SyncResult(DomainModel):
    """Outcome of syncing one account."""

    account_id: str
    transactions_synced: int = 0
    transactions_created: int = 0
    transactions_updated: int = 0
    transactions_categorized: int = 0
    date_from: date | None = None
    date_to: date | None = None
    last_synced_at: datetime
    failed: bool = False
    errors: list[str] = Field(default_factory=list)


# Categorization


class CategorizationResult(DomainModel):
    """A category decision from the classifier oracle or the rule table."""

    category: str
    subcategory: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    is_business_expense: bool = False
    is_recurring: bool = False
    reasoning: str = ""
    source: CategorizedBy = CategorizedBy.AUTO


class Categorization(DomainModel):
    """A user's correction for one transaction."""

    category: str = Field(..., min_length=1)
    subcategory: str | None = None
    is_business_expense: bool | None = None


class BulkCategorizationItem(Categorization):
    id: str


class BulkCategorization(DomainModel):
    transactions: list[BulkCategorizationItem] = Field(..., min_length=1)
    apply_to_similar: bool = False


class BulkResult(DomainModel):
    success: int = 0
    failed: int = 0
    relabeled: int = 0


class CategoryFeedback(DomainModel):
    """Append-only record of a user correction."""

    id: str
    transaction_id: str
    user_id: str
    original_category: str
    original_subcategory: str | None = None
    corrected_category: str
    corrected_subcategory: str | None = None
    merchant_name: str | None = None
    description: str | None = None
    amount: Decimal
    created_at: datetime


# Subscriptions


class Subscription(DomainModel):
    """A detected recurring payment, unique per (user_id, merchant_name)."""

    id: str
    user_id: str
    merchant_name: str
    amount: Decimal
    currency: str
    frequency: Frequency
    next_expected: date
    last_charged: date | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    transaction_ids: list[str] = Field(default_factory=list)
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime
    updated_at: datetime


class SubscriptionCost(DomainModel):
    subscription: Subscription
    monthly_amount: Decimal


class SubscriptionSummary(DomainModel):
    subscriptions: list[SubscriptionCost] = Field(default_factory=list)
    total_monthly: Decimal = Decimal("0")
    total_yearly: Decimal = Decimal("0")
    recommendations: list[str] = Field(default_factory=list)


# Insights


class MerchantSpend(DomainModel):
    merchant: str
    amount: Decimal
    count: int


class SpendingInsights(DomainModel):
    period_from: date
    period_to: date
    total_spending: Decimal = Decimal("0")
    spending_by_category: dict[str, Decimal] = Field(default_factory=dict)
    transactions_by_category: dict[str, int] = Field(default_factory=dict)
    top_merchants: list[MerchantSpend] = Field(default_factory=list)
    average_transaction_amount: Decimal = Decimal("0")
    transaction_count: int = 0


def dump_json_field(value: Any) -> str:
    """Serialize a nested model or list of models for a JSON text column."""
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    if isinstance(value, list):
        return json.dumps(
            [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
        )
    return json.dumps(value, default=str)
