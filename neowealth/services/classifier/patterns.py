"""
Keyword Tables for the Transaction Classifier

DESIGN DECISION: Every table is an explicitly ordered tuple.
Earlier entries win ties, so the order here IS the tie-break and
must only be changed together with the tests that pin it.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from neowealth.models.entities import RiskLevel


class CategoryPattern(BaseModel):
    """Keywords of one category and the confidence of a full match."""
    model_config = ConfigDict(frozen=True)

    category: str
    keywords: tuple[str, ...]
    base_confidence: float

    def match_confidence(self, text: str) -> float:
        """base_confidence scaled by the share of keywords found in `text`."""
        matched = sum(1 for keyword in self.keywords if keyword in text)
        return self.base_confidence * matched / len(self.keywords)


class RiskThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    medium: Decimal
    high: Decimal

    def assess(self, amount: Decimal) -> RiskLevel:
        if amount >= self.high:
            return RiskLevel.HIGH
        if amount >= self.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


FALLBACK_CATEGORY = "other"
FALLBACK_CONFIDENCE = 0.6
INCOME_CATEGORY = "income"

# Income override
INCOME_KEYWORDS = ("credited", "salary")
INCOME_AMOUNT_THRESHOLD = Decimal("50000")
INCOME_OVERRIDE_CONFIDENCE = 0.85

HIGH_VALUE_THRESHOLD = Decimal("5000")
MAX_SUGGESTIONS = 3


CATEGORY_PATTERNS: tuple[CategoryPattern, ...] = (
    CategoryPattern(
        category="food",
        keywords=("zomato", "swiggy", "food", "restaurant", "cafe", "dominos",
                  "pizza", "burger", "kfc", "mcdonalds"),
        base_confidence=0.95,
    ),
    CategoryPattern(
        category="transport",
        keywords=("uber", "ola", "metro", "petrol", "fuel", "parking", "taxi", "bus", "train"),
        base_confidence=0.9,
    ),
    CategoryPattern(
        category="shopping",
        keywords=("amazon", "flipkart", "myntra", "shopping", "purchase", "buy", "order"),
        base_confidence=0.85,
    ),
    CategoryPattern(
        category="entertainment",
        keywords=("netflix", "spotify", "movie", "cinema", "game", "youtube", "prime"),
        base_confidence=0.9,
    ),
    CategoryPattern(
        category="utilities",
        keywords=("electricity", "water", "gas", "internet", "mobile", "recharge", "bill"),
        base_confidence=0.95,
    ),
    CategoryPattern(
        category="healthcare",
        keywords=("hospital", "medical", "pharmacy", "doctor", "medicine", "clinic"),
        base_confidence=0.9,
    ),
    CategoryPattern(
        category="investment",
        keywords=("sip", "mutual fund", "stock", "investment", "zerodha", "groww", "equity"),
        base_confidence=0.95,
    ),
    CategoryPattern(
        category="income",
        keywords=("salary", "credited", "bonus", "refund", "cashback"),
        base_confidence=0.8,
    ),
)


# category -> ordered (subcategory, keywords); first hit wins
SUBCATEGORY_PATTERNS: dict[str, tuple[tuple[str, tuple[str, ...]], ...]] = {
    "food": (
        ("delivery", ("zomato", "swiggy", "delivery")),
        ("dining", ("restaurant", "cafe", "dine")),
        ("groceries", ("grocery", "supermarket", "vegetables")),
    ),
    "transport": (
        ("rideshare", ("uber", "ola", "taxi")),
        ("fuel", ("petrol", "diesel", "fuel")),
        ("public", ("metro", "bus", "train")),
    ),
    "shopping": (
        ("online", ("amazon", "flipkart", "myntra")),
        ("clothing", ("clothes", "shirt", "dress")),
        ("electronics", ("mobile", "laptop", "gadget")),
    ),
    "entertainment": (
        ("streaming", ("netflix", "spotify", "prime")),
        ("movies", ("cinema", "movie", "film")),
        ("gaming", ("game", "gaming", "xbox")),
    ),
    "utilities": (
        ("electricity", ("electricity", "power")),
        ("internet", ("internet", "wifi", "broadband")),
        ("mobile", ("mobile", "phone", "recharge")),
    ),
}


RISK_THRESHOLDS: dict[str, RiskThresholds] = {
    "food": RiskThresholds(medium=Decimal("1500"), high=Decimal("3000")),
    "shopping": RiskThresholds(medium=Decimal("3000"), high=Decimal("8000")),
    "entertainment": RiskThresholds(medium=Decimal("1000"), high=Decimal("3000")),
    "transport": RiskThresholds(medium=Decimal("2000"), high=Decimal("5000")),
    "utilities": RiskThresholds(medium=Decimal("3000"), high=Decimal("6000")),
    "healthcare": RiskThresholds(medium=Decimal("5000"), high=Decimal("15000")),
    "other": RiskThresholds(medium=Decimal("2000"), high=Decimal("10000")),
}


CATEGORY_LABELS: dict[str, str] = {
    "food": "Food & Dining",
    "transport": "Transportation",
    "shopping": "Shopping",
    "entertainment": "Entertainment",
    "utilities": "Utilities",
    "healthcare": "Healthcare",
    "investment": "Investment",
    "income": "Income",
    "other": "Other",
}


CATEGORY_TAGS: dict[str, tuple[str, ...]] = {
    "food": ("dining", "meal", "hunger"),
    "transport": ("travel", "commute", "mobility"),
    "shopping": ("purchase", "retail", "goods"),
    "entertainment": ("leisure", "fun", "relaxation"),
    "utilities": ("essential", "bills", "services"),
    "healthcare": ("medical", "wellness", "health"),
    "investment": ("wealth", "growth", "future"),
    "income": ("earnings", "money", "salary"),
}
DEFAULT_TAGS = ("expense",)


CATEGORY_SUGGESTIONS: dict[str, tuple[str, ...]] = {
    "food": (
        "Cook at home 3 days this week to save ₹800+",
        "Use food delivery discount codes",
        "Try bulk cooking on weekends",
    ),
    "shopping": (
        "Wait 24 hours before buying items over ₹1000",
        "Compare prices on multiple platforms",
        "Check for cashback offers before purchasing",
    ),
    "entertainment": (
        "Share streaming subscriptions with family",
        "Look for free events in your city",
        "Set a monthly entertainment budget of ₹2000",
    ),
    "transport": (
        "Use public transport to save ₹500/week",
        "Carpool with colleagues",
        "Plan multiple errands in one trip",
    ),
    "utilities": (
        "Switch to energy-efficient appliances",
        "Monitor usage to avoid bill spikes",
        "Set up auto-pay to avoid late fees",
    ),
    "healthcare": (
        "Keep all medical receipts for tax benefits",
        "Consider health insurance coverage",
        "Use generic medicines when possible",
    ),
}
DEFAULT_SUGGESTIONS = ("Track this expense for better budgeting",)
HIGH_VALUE_SUGGESTION = (
    "This is a high-value transaction - consider if it aligns with your goals"
)
