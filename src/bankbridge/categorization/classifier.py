"""External classification oracle.

The engine only depends on the :class:`TransactionClassifier` protocol. The
shipped implementation asks an OpenAI chat model for a JSON verdict; tests
and alternative backends provide their own ``classify``.
"""

import logging
from typing import Protocol

from openai import OpenAI
from pydantic import BaseModel, ConfigDict, Field

from ..models import CategorizationResult, CategorizedBy, Transaction

logger = logging.getLogger(__name__)

CATEGORIES = (
    "food",
    "transportation",
    "shopping",
    "utilities",
    "entertainment",
    "health",
    "business",
    "travel",
    "personal",
    "income",
    "transfer",
)

SYSTEM_PROMPT = """You are a financial transaction categorization expert.
Categorize the transaction using the user's own past categorizations as the
strongest signal. Respond with a single JSON object and nothing else:
{"category": str, "subcategory": str | null, "confidence": number 0-1,
 "is_business_expense": bool, "is_recurring": bool, "reasoning": str}"""

USER_TEMPLATE = """Transaction to categorize:
- Amount: {currency} {amount} ({direction})
- Merchant: {merchant}
- Description: {description}
- Date: {date}
- Bank category: {bank_category}

User's similar past transactions:
{context}

Available categories: {categories}

Consider whether this is likely a business expense, which category fits the
user's past behavior, and whether it looks like a recurring payment."""


class TransactionClassifier(Protocol):
    """Scores a transaction given a sample of the user's labelled history."""

    def classify(
        self, transaction: Transaction, similar: list[Transaction]
    ) -> CategorizationResult: ...


class ClassifierVerdict(BaseModel):
    """JSON document the model is asked to return."""

    model_config = ConfigDict(extra="ignore")

    category: str = Field(..., min_length=1)
    subcategory: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_business_expense: bool = False
    is_recurring: bool = False
    reasoning: str = ""


def build_context(similar: list[Transaction]) -> str:
    if not similar:
        return "No similar transactions found."
    lines = []
    for tx in similar:
        label = tx.category + (f"/{tx.subcategory}" if tx.subcategory else "")
        lines.append(
            f"- {tx.merchant_name or 'Unknown'}: {tx.currency} {tx.amount} -> "
            f"{label} (Business: {tx.is_business_expense})"
        )
    return "\n".join(lines)


def build_prompt(transaction: Transaction, similar: list[Transaction]) -> str:
    return USER_TEMPLATE.format(
        currency=transaction.currency,
        amount=transaction.amount,
        direction=transaction.direction.value,
        merchant=transaction.merchant_name or "Unknown",
        description=transaction.description,
        date=transaction.date.isoformat(),
        bank_category=transaction.metadata.bank_category or "None",
        context=build_context(similar),
        categories=", ".join(CATEGORIES),
    )


class OpenAIClassifier:
    """Classifier backed by an OpenAI chat completion returning JSON."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        client: OpenAI | None = None,
        temperature: float = 0.2,
    ):
        self.model = model
        self.client = client or OpenAI()
        self.temperature = temperature

    def classify(
        self, transaction: Transaction, similar: list[Transaction]
    ) -> CategorizationResult:
        """Ask the model for a category.

        Raises:
            openai.OpenAIError: If the API call fails
            pydantic.ValidationError: If the reply is not the expected JSON
        """
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(transaction, similar)},
            ],
        )
        content = response.choices[0].message.content or ""
        verdict = ClassifierVerdict.model_validate_json(content)

        logger.debug(
            f"Classifier verdict for {transaction.id}: {verdict.category} "
            f"({verdict.confidence:.2f})"
        )
        return CategorizationResult(
            category=verdict.category.lower(),
            subcategory=verdict.subcategory,
            confidence=verdict.confidence,
            is_business_expense=verdict.is_business_expense,
            is_recurring=verdict.is_recurring,
            reasoning=verdict.reasoning,
            source=CategorizedBy.ML,
        )
