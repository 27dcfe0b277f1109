"""Bank account registry: account records, balances and ownership checks."""

import logging
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from .aggregator.schemas import AccountDetailsSchema, BalanceSchema
from .errors import AccountNotFound, OwnershipViolation
from .models import (
    AccountBalance,
    AccountSummary,
    Balance,
    BankAccount,
    BankConnection,
    utcnow,
)
from .storage import AccountRepository
from .vault import CredentialVault

logger = logging.getLogger(__name__)


def balance_from_schema(balance: BalanceSchema | None) -> Balance | None:
    """Convert an aggregator balance into the cached balance."""
    if balance is None:
        return None
    return Balance(
        amount=balance.balance_amount.amount,
        currency=balance.balance_amount.currency,
        last_updated=utcnow(),
    )


class AccountRegistry:
    """Owns BankAccount records and enforces per-user ownership."""

    def __init__(self, repository: AccountRepository, vault: CredentialVault):
        self.repository = repository
        self.vault = vault

    def create_account(
        self,
        connection: BankConnection,
        external_account_id: str,
        details: AccountDetailsSchema,
        balance: BalanceSchema | None,
    ) -> BankAccount:
        """Materialize an account for a linked connection.

        Args:
            connection: The owning connection
            external_account_id: Plaintext aggregator account id (encrypted here)
            details: Account details from the aggregator
            balance: Balance to cache, if any

        Returns:
            BankAccount: The stored account
        """
        account = BankAccount(
            id=str(uuid.uuid4()),
            user_id=connection.user_id,
            connection_id=connection.id,
            external_account_id=self.vault.encrypt(external_account_id),
            account_number=details.resource_id,
            iban=details.iban,
            currency=details.currency,
            account_type=connection.account_type,
            balance=balance_from_schema(balance),
            institution_name=connection.institution_name,
            created_at=utcnow(),
        )
        self.repository.add(account)
        logger.info(
            f"Account {account.id} created for connection {connection.id} "
            f"({account.currency})"
        )
        return account

    def list_accounts(self, user_id: str) -> list[BankAccount]:
        """Active accounts of a user."""
        return self.repository.list_for_user(user_id)

    def get_account(self, account_id: str, user_id: str) -> BankAccount:
        """Fetch an account owned by the caller.

        Raises:
            AccountNotFound: If no such account exists
            OwnershipViolation: If the account belongs to another user
        """
        account = self.repository.get(account_id)
        if account is None:
            raise AccountNotFound(f"Account not found: {account_id}")
        if account.user_id != user_id:
            logger.warning(f"Rejected access to account {account_id}")
            raise OwnershipViolation("account", account_id)
        return account

    def external_account_id(self, account: BankAccount) -> str:
        """Decrypt an account's aggregator id. Never log the result."""
        return self.vault.decrypt(account.external_account_id)

    def get_balance(self, account_id: str, user_id: str) -> AccountBalance:
        account = self.get_account(account_id, user_id)
        if account.balance is None:
            return AccountBalance(
                account_id=account.id,
                amount=Decimal("0"),
                currency=account.currency,
                message="Balance not yet synced",
            )
        return AccountBalance(
            account_id=account.id,
            amount=account.balance.amount,
            currency=account.balance.currency,
            last_updated=account.balance.last_updated,
            account_name=account.iban or account.account_number,
            institution_name=account.institution_name,
        )

    def update_balance(self, account: BankAccount, balance: BalanceSchema | None) -> None:
        if balance is None:
            return
        account.balance = balance_from_schema(balance)
        self.repository.save(account)
        logger.debug(f"Balance updated for account {account.id}")

    def mark_synced(self, account: BankAccount, synced_at: datetime) -> None:
        """Set the sync watermark and clear any pending resync."""
        account.last_synced_at = synced_at
        account.needs_resync = False
        self.repository.save(account)

    def mark_for_resync(self, connection_id: str) -> list[str]:
        return self.repository.mark_needs_resync(connection_id)

    def get_summary(self, user_id: str) -> AccountSummary:
        """Totals per currency plus counts per account type and institution."""
        accounts = self.list_accounts(user_id)
        totals: dict[str, Decimal] = defaultdict(Decimal)
        by_type: dict[str, int] = defaultdict(int)
        by_institution: dict[str, int] = defaultdict(int)

        for account in accounts:
            if account.balance:
                totals[account.balance.currency] += account.balance.amount
            by_type[account.account_type.value] += 1
            by_institution[account.institution_name] += 1

        summary = AccountSummary(
            total_balance=dict(totals),
            accounts_by_type=dict(by_type),
            accounts_by_institution=dict(by_institution),
            total_accounts=len(accounts),
            last_updated=utcnow(),
        )
        logger.info(
            f"Generated accounts summary: {summary.total_accounts} accounts, "
            f"currencies {sorted(summary.total_balance)}"
        )
        return summary

    def deactivate_account(self, account_id: str, user_id: str) -> None:
        account = self.get_account(account_id, user_id)
        account.is_active = False
        self.repository.save(account)
        logger.info(f"Account {account_id} deactivated")

    def delete_for_connection(self, connection_id: str) -> int:
        deleted = self.repository.delete_for_connection(connection_id)
        logger.info(f"Deleted {deleted} accounts of connection {connection_id}")
        return deleted
