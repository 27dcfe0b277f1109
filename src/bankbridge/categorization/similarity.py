"""Selection of a user's past transactions that resemble a new one."""

import re
from decimal import Decimal

from ..models import Transaction

MAX_SIMILAR = 10
MERCHANT_SIMILARITY_THRESHOLD = 0.8
AMOUNT_TOLERANCE = Decimal("0.1")
MIN_SHARED_KEYWORDS = 2

STOP_WORDS = frozenset({"the", "and", "or", "at", "in", "on", "for", "to", "of"})


def merchant_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the whitespace token sets of two names."""
    tokens_a = set(a.lower().split())
    tokens_b = set(b.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def extract_keywords(text: str) -> set[str]:
    return {
        word
        for word in re.split(r"\s+", text.lower())
        if len(word) > 3 and word not in STOP_WORDS
    }


def is_similar(candidate: Transaction, transaction: Transaction) -> bool:
    if candidate.merchant_name and transaction.merchant_name:
        similarity = merchant_similarity(candidate.merchant_name, transaction.merchant_name)
        if similarity > MERCHANT_SIMILARITY_THRESHOLD:
            return True

    if transaction.amount > 0:
        deviation = abs(candidate.amount - transaction.amount) / transaction.amount
        if deviation < AMOUNT_TOLERANCE:
            return True

    shared = extract_keywords(candidate.description) & extract_keywords(
        transaction.description
    )
    return len(shared) >= MIN_SHARED_KEYWORDS


def find_similar_transactions(
    transaction: Transaction, history: list[Transaction], limit: int = MAX_SIMILAR
) -> list[Transaction]:
    """Up to ``limit`` history entries resembling ``transaction``, in history order."""
    similar: list[Transaction] = []
    for candidate in history:
        if candidate.id == transaction.id:
            continue
        if is_similar(candidate, transaction):
            similar.append(candidate)
            if len(similar) >= limit:
                break
    return similar
