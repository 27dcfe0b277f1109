"""Categorization engine: classifier with confidence gating, rule fallback and
user corrections.

Automatic passes never touch a transaction whose category was set by the
user. ``categorize`` never raises: classifier errors and low-confidence
verdicts degrade to the rule table, which always yields a category.
"""

import logging
import uuid

from ..config import CategorizationConfig
from ..errors import OwnershipViolation, TransactionNotFound
from ..models import (
    UNCATEGORIZED,
    BulkCategorization,
    BulkResult,
    Categorization,
    CategorizationResult,
    CategorizedBy,
    CategoryFeedback,
    FeedbackEntry,
    Transaction,
    TransactionFilter,
    utcnow,
)
from ..storage import FeedbackRepository, TransactionRepository
from .classifier import TransactionClassifier
from .rules import categorize_by_rules
from .similarity import find_similar_transactions

logger = logging.getLogger(__name__)

SIMILAR_LABEL_CONFIDENCE = 0.85
USER_CONFIDENCE = 1.0


class CategorizationEngine:
    """Assigns categories to transactions."""

    def __init__(
        self,
        transactions: TransactionRepository,
        feedback: FeedbackRepository,
        config: CategorizationConfig,
        classifier: TransactionClassifier | None = None,
    ):
        self.transactions = transactions
        self.feedback = feedback
        self.config = config
        self.classifier = classifier

    @property
    def classifier_enabled(self) -> bool:
        return self.config.ml_enabled and self.classifier is not None

    def get_transaction(self, transaction_id: str, user_id: str) -> Transaction:
        """Fetch a transaction owned by the caller.

        Raises:
            TransactionNotFound: If no such transaction exists
            OwnershipViolation: If it belongs to another user
        """
        tx = self.transactions.get(transaction_id)
        if tx is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}")
        if tx.user_id != user_id:
            logger.warning(f"Rejected access to transaction {transaction_id}")
            raise OwnershipViolation("transaction", transaction_id)
        return tx

    def categorize(self, transaction: Transaction) -> CategorizationResult:
        """Decide a category for a transaction without persisting it."""
        if self.classifier_enabled:
            try:
                history = self.transactions.recent_labelled(
                    transaction.user_id, self.config.history_size
                )
                similar = find_similar_transactions(transaction, history)
                result = self.classifier.classify(transaction, similar)  # type: ignore[union-attr]
                if result.confidence >= self.config.confidence_threshold:
                    return result.model_copy(update={"source": CategorizedBy.ML})
                logger.info(
                    f"Classifier confidence {result.confidence:.2f} below threshold "
                    f"for {transaction.id}, using rules"
                )
            except Exception as e:
                logger.warning(
                    f"Classifier failed for {transaction.id}, falling back to rules: "
                    f"{type(e).__name__}"
                )

        return categorize_by_rules(transaction.merchant_name, transaction.description)

    def auto_categorize(self, transaction: Transaction) -> bool:
        """Categorize and persist a transaction unless the user labelled it.

        Returns:
            bool: True if a new category was applied
        """
        if transaction.is_user_categorized:
            return False

        result = self.categorize(transaction)
        now = utcnow()
        transaction.category = result.category
        transaction.subcategory = result.subcategory
        transaction.is_business_expense = result.is_business_expense
        transaction.confidence = result.confidence
        transaction.categorized_by = result.source
        transaction.categorized_at = now
        transaction.is_recurring = transaction.is_recurring or result.is_recurring
        transaction.last_modified = now
        self.transactions.save(transaction)

        logger.debug(
            f"Transaction {transaction.id} categorized as {result.category} "
            f"by {result.source.value}"
        )
        return True

    def _apply_correction(
        self, transaction: Transaction, correction: Categorization
    ) -> Transaction:
        now = utcnow()
        original_category = transaction.category
        original_subcategory = transaction.subcategory

        transaction.category = correction.category
        transaction.subcategory = correction.subcategory
        if correction.is_business_expense is not None:
            transaction.is_business_expense = correction.is_business_expense
        transaction.confidence = USER_CONFIDENCE
        transaction.categorized_by = CategorizedBy.USER
        transaction.categorized_at = now
        transaction.last_modified = now
        transaction.feedback_history = [
            *transaction.feedback_history,
            FeedbackEntry(
                timestamp=now,
                original_category=original_category,
                corrected_category=correction.category,
            ),
        ]
        self.transactions.save(transaction)

        self.feedback.append(
            CategoryFeedback(
                id=str(uuid.uuid4()),
                transaction_id=transaction.id,
                user_id=transaction.user_id,
                original_category=original_category,
                original_subcategory=original_subcategory,
                corrected_category=correction.category,
                corrected_subcategory=correction.subcategory,
                merchant_name=transaction.merchant_name,
                description=transaction.description,
                amount=transaction.amount,
                created_at=now,
            )
        )
        return transaction

    def categorize_transaction(
        self, transaction_id: str, user_id: str, correction: Categorization
    ) -> Transaction:
        """Apply a user's category correction.

        The user label is authoritative over every later automatic pass.

        Raises:
            TransactionNotFound: If no such transaction exists
            OwnershipViolation: If it belongs to another user
        """
        transaction = self.get_transaction(transaction_id, user_id)
        self._apply_correction(transaction, correction)
        logger.info(
            f"Transaction {transaction_id} categorized by user as {correction.category}"
        )
        return transaction

    def bulk_categorize(self, user_id: str, bulk: BulkCategorization) -> BulkResult:
        """Apply a batch of user corrections.

        Missing or foreign transaction ids are counted as failed. With
        ``apply_to_similar``, every other still-uncategorized transaction of
        the user with the same merchant name receives the label as an
        automatic categorization.
        """
        result = BulkResult()
        corrected: list[tuple[Transaction, Categorization]] = []

        for item in bulk.transactions:
            transaction = self.transactions.get(item.id)
            if transaction is None or transaction.user_id != user_id:
                result.failed += 1
                continue
            self._apply_correction(transaction, item)
            corrected.append((transaction, item))
            result.success += 1

        if bulk.apply_to_similar:
            for transaction, item in corrected:
                result.relabeled += self._label_similar(user_id, transaction, item)

        logger.info(
            f"Bulk categorization: {result.success} succeeded, {result.failed} failed, "
            f"{result.relabeled} similar relabeled"
        )
        return result

    def _label_similar(
        self, user_id: str, source: Transaction, label: Categorization
    ) -> int:
        if not source.merchant_name:
            return 0

        now = utcnow()
        similar = self.transactions.uncategorized_for_merchant(
            user_id, source.merchant_name
        )
        for transaction in similar:
            transaction.category = label.category
            transaction.subcategory = label.subcategory
            transaction.is_business_expense = bool(label.is_business_expense)
            transaction.confidence = SIMILAR_LABEL_CONFIDENCE
            transaction.categorized_by = CategorizedBy.AUTO
            transaction.categorized_at = now
            transaction.last_modified = now
            self.transactions.save(transaction)

        if similar:
            logger.info(
                f"Applied label from {source.id} to {len(similar)} similar transactions"
            )
        return len(similar)

    def categorize_pending(self, user_id: str) -> int:
        """Run automatic categorization over a user's uncategorized transactions.

        Returns:
            int: Number of transactions categorized
        """
        pending, _ = self.transactions.query(
            user_id, TransactionFilter(category=UNCATEGORIZED)
        )
        count = sum(1 for tx in pending if self.auto_categorize(tx))
        logger.info(f"Categorized {count} pending transactions")
        return count
