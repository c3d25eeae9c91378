"""
Free-Text Transaction Extraction

Best-effort parser for bank SMS / notification text.

CRITICAL: This is a heuristic, not a grammar. Partial or ambiguous
matches are expected. The result is PROPOSED data for the user to
confirm, never something to store blindly.

Amount patterns are tried in order and the first match wins; merchant
patterns likewise.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from neowealth.models.entities import utcnow
from neowealth.models.results import ExtractedTransaction, FlowDirection

_NUMBER = r"(\d+(?:,\d+)*(?:\.\d{1,2})?)"
_CURRENCY = r"(?:\brs\.?|\binr\b|₹)"

AMOUNT_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(_CURRENCY + r"\s*" + _NUMBER, re.IGNORECASE),
    re.compile(_NUMBER + r"\s*" + _CURRENCY, re.IGNORECASE),
    re.compile(r"\bamount\s*" + _CURRENCY + r"?\s*" + _NUMBER, re.IGNORECASE),
    re.compile(r"\bdebited\s*" + _CURRENCY + r"?\s*" + _NUMBER, re.IGNORECASE),
)

DEBIT_KEYWORDS = ("debited", "spent", "paid")
CREDIT_KEYWORDS = ("credited", "received", "deposited")

MERCHANT_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\bat\s+(\S+(?:\s+\S+)*?)\s+on\b", re.IGNORECASE),
    re.compile(r"\bto\s+(\S+(?:\s+\S+)*?)\s+on\b", re.IGNORECASE),
    re.compile(r"\bfor\s+(\S+(?:\s+\S+)*?)\s+on\b", re.IGNORECASE),
)

UPI_PATTERN = re.compile(r"upi|paytm|phonepe|googlepay|bhim", re.IGNORECASE)
CARD_PATTERN = re.compile(r"card\s*(?:ending\s*)?(?:no\.?\s*)?[x*]*(\d{4})", re.IGNORECASE)
BALANCE_PATTERN = re.compile(
    r"(?:balance|\bbal\b).*?" + _CURRENCY + r"\s*" + _NUMBER,
    re.IGNORECASE,
)

MAX_DESCRIPTION_LENGTH = 100


def _parse_number(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def find_amount(message: str) -> Optional[Decimal]:
    """First amount found by the ordered patterns, or None."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(message)
        if match:
            return _parse_number(match.group(1))
    return None


def find_merchant(message: str) -> Optional[str]:
    for pattern in MERCHANT_PATTERNS:
        match = pattern.search(message)
        if match:
            merchant = match.group(1).strip()
            if merchant:
                return merchant
    return None


def detect_direction(message: str) -> FlowDirection:
    """Credit if any credit keyword appears, otherwise debit."""
    text = message.lower()
    if any(keyword in text for keyword in CREDIT_KEYWORDS):
        return FlowDirection.CREDIT
    return FlowDirection.DEBIT


def detect_method(message: str) -> tuple[str, Optional[str]]:
    """Payment method and, for cards, the last four digits."""
    if UPI_PATTERN.search(message):
        return "UPI", None
    card = CARD_PATTERN.search(message)
    if card:
        return "Card", card.group(1)
    return "unknown", None


def find_balance(message: str) -> Optional[Decimal]:
    match = BALANCE_PATTERN.search(message)
    return _parse_number(match.group(1)) if match else None


def extract_transaction(
    message: str,
    now: Optional[datetime] = None,
) -> Optional[ExtractedTransaction]:
    """
    Parse one bank message.

    Returns None when no positive amount can be found.
    """
    if not message or not message.strip():
        return None

    amount = find_amount(message)
    if amount is None or amount <= 0:
        return None

    merchant = find_merchant(message)
    method, card_last4 = detect_method(message)
    description = merchant or message.strip()

    return ExtractedTransaction(
        amount=amount,
        description=description[:MAX_DESCRIPTION_LENGTH],
        type=detect_direction(message),
        date=now or utcnow(),
        merchant=merchant,
        method=method,
        card_last4=card_last4,
        balance=find_balance(message),
    )
