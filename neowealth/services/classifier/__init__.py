"""Transaction classification package."""

from neowealth.services.classifier.classifier import TransactionClassifier
from neowealth.services.classifier.extraction import extract_transaction
from neowealth.services.classifier.patterns import (
    CATEGORY_PATTERNS,
    CategoryPattern,
    RiskThresholds,
)

__all__ = [
    "CATEGORY_PATTERNS",
    "CategoryPattern",
    "RiskThresholds",
    "TransactionClassifier",
    "extract_transaction",
]
