"""
Transaction Classifier

Maps a free-text description plus an amount to a category, subcategory,
confidence, risk level and suggestions using the keyword tables in
`patterns`.

DESIGN DECISION: This is keyword matching, not ML. "Confidence" is the
keyword-match density of the winning category, not a probability.

Selection rules:
1. Every category that matches at least one keyword competes on
   base_confidence x matched / total. A category replaces the running
   best only with a strictly higher score, so ties keep the earlier
   category in CATEGORY_PATTERNS.
2. Nothing matched -> "other" with the fallback confidence.
3. Income override: "credited" / "salary" in the text, or an amount
   above the income threshold, forces "income" unconditionally.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from neowealth.errors import InvalidInputError
from neowealth.models.entities import format_inr, utcnow
from neowealth.models.results import (
    Classification,
    ExtractedTransaction,
    ProcessedMessage,
)
from neowealth.services.classifier import patterns
from neowealth.services.classifier.extraction import extract_transaction

logger = structlog.get_logger(__name__)


class TransactionClassifier:
    """
    Rule-based transaction classifier.

    Stateless; one instance can be shared by every flow.
    """

    def __init__(
        self,
        category_patterns: tuple[patterns.CategoryPattern, ...] = patterns.CATEGORY_PATTERNS,
    ):
        self._patterns = category_patterns

    def classify(
        self,
        text: str,
        amount,
        sender: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Classification:
        """
        Classify a transaction description.

        Args:
            text: Free-text description (merchant name, SMS body, note)
            amount: Transaction amount; the sign is ignored
            sender: Where the text came from (bank short code, "manual")

        Raises:
            InvalidInputError: Empty text or non-numeric amount
        """
        if text is None or not str(text).strip():
            raise InvalidInputError("Transaction text is required")

        value = self._parse_amount(amount)
        normalized = str(text).lower().strip()

        category, confidence = self._best_category(normalized)
        subcategory = self.determine_subcategory(normalized, category)

        if self._is_income(normalized, value):
            category = patterns.INCOME_CATEGORY
            subcategory = "salary" if "salary" in normalized else "other_income"
            confidence = patterns.INCOME_OVERRIDE_CONFIDENCE

        return Classification(
            category=category,
            subcategory=subcategory,
            confidence=round(confidence, 2),
            amount=value,
            description=self.describe(category, subcategory, value),
            tags=list(patterns.CATEGORY_TAGS.get(category, patterns.DEFAULT_TAGS)),
            risk_level=self.assess_risk(category, value),
            suggestions=self.suggestions(category, value),
            sender=sender or "unknown",
            timestamp=now or utcnow(),
        )

    def _parse_amount(self, amount) -> Decimal:
        if amount is None or isinstance(amount, bool):
            raise InvalidInputError("Transaction amount is required")
        try:
            value = Decimal(str(amount).replace(",", "").strip())
        except InvalidOperation:
            raise InvalidInputError(f"Invalid amount provided: {amount!r}")
        if not value.is_finite():
            raise InvalidInputError(f"Invalid amount provided: {amount!r}")
        return abs(value)

    def _best_category(self, text: str) -> tuple[str, float]:
        best_category, best_score = None, 0.0
        for pattern in self._patterns:
            score = pattern.match_confidence(text)
            if score > best_score:
                best_category, best_score = pattern.category, score

        if best_category is None:
            return patterns.FALLBACK_CATEGORY, patterns.FALLBACK_CONFIDENCE
        return best_category, best_score

    def _is_income(self, text: str, amount: Decimal) -> bool:
        return (
            any(keyword in text for keyword in patterns.INCOME_KEYWORDS)
            or amount > patterns.INCOME_AMOUNT_THRESHOLD
        )

    def determine_subcategory(self, text: str, category: str) -> Optional[str]:
        """First subcategory of `category` with a keyword in `text`."""
        for subcategory, keywords in patterns.SUBCATEGORY_PATTERNS.get(category, ()):
            if any(keyword in text for keyword in keywords):
                return subcategory
        return None

    def assess_risk(self, category: str, amount: Decimal):
        thresholds = patterns.RISK_THRESHOLDS.get(
            category, patterns.RISK_THRESHOLDS[patterns.FALLBACK_CATEGORY]
        )
        return thresholds.assess(amount)

    def suggestions(self, category: str, amount: Decimal) -> list[str]:
        items = list(patterns.CATEGORY_SUGGESTIONS.get(category, patterns.DEFAULT_SUGGESTIONS))
        if amount > patterns.HIGH_VALUE_THRESHOLD:
            items.append(patterns.HIGH_VALUE_SUGGESTION)
        return items[:patterns.MAX_SUGGESTIONS]

    def describe(self, category: str, subcategory: Optional[str], amount: Decimal) -> str:
        """e.g. "Food & Dining (delivery) of ₹450" """
        description = patterns.CATEGORY_LABELS.get(category, "Transaction")
        if subcategory:
            description += f" ({subcategory.replace('_', ' ', 1)})"
        return f"{description} of ₹{format_inr(amount)}"

    # -------------------------------------------------------------------------
    # Free text
    # -------------------------------------------------------------------------

    def extract_from_free_text(
        self,
        message: str,
        now: Optional[datetime] = None,
    ) -> Optional[ExtractedTransaction]:
        """Parse a bank message. None if no amount is found."""
        return extract_transaction(message, now=now)

    def process_message(
        self,
        message: str,
        sender: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ProcessedMessage]:
        """
        Extract and classify a bank message.

        The whole message is classified (not just the merchant) so that
        words like "salary credited" still drive the income override.

        Returns None when the message holds no transaction.
        """
        if not message or not message.strip():
            raise InvalidInputError("Message text is required")

        extracted = self.extract_from_free_text(message, now=now)
        if extracted is None:
            logger.debug("no_transaction_in_message", sender=sender)
            return None

        classification = self.classify(message, extracted.amount, sender=sender, now=now)
        return ProcessedMessage(
            extracted=extracted,
            classification=classification,
            sender=sender or "unknown",
        )
