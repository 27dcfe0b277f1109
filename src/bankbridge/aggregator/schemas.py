"""Pydantic schemas for GoCardless Bank Account Data API payloads.

Raw aggregator responses are validated into these DTOs at the client
boundary. The ingestion and connection layers convert them once into the
canonical models in ``bankbridge.models``; nothing past that point sees an
untyped payload.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RequisitionStatus(str, Enum):
    """Requisition status codes returned by the aggregator."""

    CREATED = "CR"
    GIVING_CONSENT = "GC"
    UNDERGOING_AUTHENTICATION = "UA"
    REJECTED = "RJ"
    SELECTING_ACCOUNTS = "SA"
    GRANTING_ACCESS = "GA"
    LINKED = "LN"
    EXPIRED = "EX"


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        extra="ignore",
        str_strip_whitespace=True,
        populate_by_name=True,
        frozen=True,
    )


class TokenResponse(BaseSchema):
    access: str
    access_expires: int = Field(..., gt=0, description="Lifetime in seconds")
    refresh: str | None = None
    refresh_expires: int | None = None


class InstitutionSchema(BaseSchema):
    id: str
    name: str
    bic: str | None = None
    transaction_total_days: int | None = None
    countries: list[str] = Field(default_factory=list)
    logo: str | None = None

    @field_validator("transaction_total_days", mode="before")
    @classmethod
    def coerce_total_days(cls, v: object) -> object:
        """The API sends this as a string for some institutions."""
        if isinstance(v, str):
            return int(v) if v.strip().isdigit() else None
        return v


class RequisitionSchema(BaseSchema):
    id: str
    created: datetime | None = None
    redirect: str | None = None
    status: str
    institution_id: str
    agreement: str | None = None
    reference: str
    accounts: list[str] = Field(default_factory=list)
    user_language: str | None = None
    link: str

    @property
    def is_linked(self) -> bool:
        return self.status == RequisitionStatus.LINKED.value


class AccountDetailsSchema(BaseSchema):
    resource_id: str | None = Field(None, alias="resourceId")
    iban: str | None = None
    currency: str = Field(..., min_length=3, max_length=3)
    owner_name: str | None = Field(None, alias="ownerName")
    name: str | None = None
    product: str | None = None
    cash_account_type: str | None = Field(None, alias="cashAccountType")


class AmountSchema(BaseSchema):
    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)


class BalanceSchema(BaseSchema):
    balance_amount: AmountSchema = Field(..., alias="balanceAmount")
    balance_type: str = Field(..., alias="balanceType")
    reference_date: date | None = Field(None, alias="referenceDate")


class CounterpartyAccountSchema(BaseSchema):
    iban: str | None = None


class TransactionSchema(BaseSchema):
    """A single booked or pending transaction from the aggregator."""

    transaction_id: str | None = Field(None, alias="transactionId")
    booking_date: date = Field(..., alias="bookingDate")
    value_date: date | None = Field(None, alias="valueDate")
    transaction_amount: AmountSchema = Field(..., alias="transactionAmount")
    creditor_name: str | None = Field(None, alias="creditorName")
    creditor_account: CounterpartyAccountSchema | None = Field(
        None, alias="creditorAccount"
    )
    debtor_name: str | None = Field(None, alias="debtorName")
    debtor_account: CounterpartyAccountSchema | None = Field(
        None, alias="debtorAccount"
    )
    remittance_information_unstructured: str | None = Field(
        None, alias="remittanceInformationUnstructured"
    )
    remittance_information_structured: str | None = Field(
        None, alias="remittanceInformationStructured"
    )
    additional_information: str | None = Field(None, alias="additionalInformation")
    proprietary_bank_transaction_code: str | None = Field(
        None, alias="proprietaryBankTransactionCode"
    )

    @field_validator("transaction_amount")
    @classmethod
    def validate_amount(cls, v: AmountSchema) -> AmountSchema:
        """Validate transaction amount is reasonable."""
        if abs(v.amount) > Decimal("10000000"):
            raise ValueError("Transaction amount exceeds reasonable limit")
        return v

    @property
    def counterparty_name(self) -> str | None:
        return self.creditor_name or self.debtor_name

    @property
    def counterparty_iban(self) -> str | None:
        for account in (self.creditor_account, self.debtor_account):
            if account and account.iban:
                return account.iban
        return None


class TransactionBuckets(BaseSchema):
    booked: list[TransactionSchema] = Field(default_factory=list)
    pending: list[TransactionSchema] = Field(default_factory=list)


class TransactionsResponse(BaseSchema):
    transactions: TransactionBuckets


def select_current_balance(balances: list[BalanceSchema]) -> BalanceSchema | None:
    """Pick the balance to cache: 'expected' when present, else the first."""
    for balance in balances:
        if balance.balance_type == "expected":
            return balance
    return balances[0] if balances else None
