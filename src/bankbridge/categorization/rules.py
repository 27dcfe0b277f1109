"""Deterministic keyword rules used when the classifier is unavailable or unsure.

Rules are evaluated in order against ``"<merchant> <description>"`` in lower
case; the first match wins. Unmatched text falls into ``other``.
"""

import re
from dataclasses import dataclass, field

from ..models import CategorizationResult, CategorizedBy

DEFAULT_CATEGORY = "other"
DEFAULT_CONFIDENCE = 0.6

_RECURRING = re.compile(r"subscription|monthly|recurring|membership")


@dataclass(frozen=True)
class CategoryRule:
    """One keyword rule mapping matching text to a category."""

    pattern: re.Pattern[str]
    category: str
    confidence: float
    subcategory: str | None = None
    # (keyword pattern, subcategory) pairs checked before the default
    subcategories: tuple[tuple[re.Pattern[str], str], ...] = field(default=())
    is_business_expense: bool = False

    def resolve_subcategory(self, text: str) -> str | None:
        for keyword, subcategory in self.subcategories:
            if keyword.search(text):
                return subcategory
        return self.subcategory


def _rule(
    pattern: str,
    category: str,
    confidence: float,
    subcategory: str | None = None,
    subcategories: tuple[tuple[str, str], ...] = (),
    is_business_expense: bool = False,
) -> CategoryRule:
    return CategoryRule(
        pattern=re.compile(pattern),
        category=category,
        confidence=confidence,
        subcategory=subcategory,
        subcategories=tuple((re.compile(k), s) for k, s in subcategories),
        is_business_expense=is_business_expense,
    )


RULES: tuple[CategoryRule, ...] = (
    _rule(
        r"restaurant|cafe|coffee|food|eat|dine|lunch|dinner|breakfast"
        r"|starbucks|mcdonald|subway|pizza",
        "food",
        0.8,
        subcategory="restaurants",
        subcategories=((r"coffee|starbucks", "coffee"),),
    ),
    _rule(
        r"uber|lyft|taxi|transport|fuel|petrol|gas station|parking|transit|train|bus",
        "transportation",
        0.85,
        subcategory="public",
        subcategories=((r"fuel|gas", "fuel"), (r"uber|lyft", "rideshare")),
    ),
    _rule(
        r"amazon|store|shop|mart|retail|walmart|target|ebay",
        "shopping",
        0.75,
        subcategory="retail",
        subcategories=((r"amazon|ebay", "online"),),
    ),
    _rule(
        r"electric|water|gas|internet|phone|mobile|verizon|at&t|comcast|utility",
        "utilities",
        0.9,
        is_business_expense=True,
    ),
    _rule(
        r"netflix|spotify|hulu|disney|cinema|movie|music|game|steam|xbox|playstation",
        "entertainment",
        0.85,
        subcategory="subscriptions",
    ),
    _rule(
        r"gym|fitness|health|doctor|pharmacy|medical|hospital|cvs|walgreens",
        "health",
        0.8,
        subcategory="medical",
        subcategories=((r"gym|fitness", "fitness"),),
    ),
    _rule(
        r"hotel|airline|flight|airbnb|booking|expedia|travel",
        "travel",
        0.85,
        subcategory="transport",
        subcategories=((r"hotel|airbnb", "accommodation"),),
    ),
    _rule(
        r"office|supplies|software|subscription|adobe|microsoft|slack|zoom",
        "business",
        0.8,
        is_business_expense=True,
    ),
)


def categorize_by_rules(
    merchant_name: str | None, description: str | None
) -> CategorizationResult:
    """Categorize text with the rule table. Always returns a category."""
    text = f"{merchant_name or ''} {description or ''}".lower()
    is_recurring = _RECURRING.search(text) is not None

    for rule in RULES:
        if rule.pattern.search(text):
            return CategorizationResult(
                category=rule.category,
                subcategory=rule.resolve_subcategory(text),
                confidence=rule.confidence,
                is_business_expense=rule.is_business_expense,
                is_recurring=is_recurring,
                reasoning=f"Matched {rule.category} keyword rule",
                source=CategorizedBy.AUTO,
            )

    return CategorizationResult(
        category=DEFAULT_CATEGORY,
        confidence=DEFAULT_CONFIDENCE,
        is_recurring=is_recurring,
        reasoning="No keyword rule matched",
        source=CategorizedBy.AUTO,
    )
