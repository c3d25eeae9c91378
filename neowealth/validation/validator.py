"""
Two-Stage Input Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence
- Format validation (pydantic parses the payload into an input model)

STAGE 2 - SEMANTIC VALIDATION:
- Business logic checks
- Past / future date detection
- Absurd amount detection
- Reserved category detection
- Duplicate detection (transactions, needs storage)

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
Errors block the request; warnings are reported alongside success.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from neowealth.config import AppSettings, get_settings
from neowealth.errors import InvalidInputError
from neowealth.models.entities import as_utc, utcnow
from neowealth.models.requests import (
    GoalCreate,
    GoalUpdate,
    HiveCreate,
    RegistrationRequest,
    TransactionCreate,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
)
from neowealth.services.behavior import LEDGER_CATEGORIES
from neowealth.services.storage import FinanceStorageInterface, StorageError

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
Payload = Union[dict[str, Any], BaseModel]

MAX_TAGS = 20
MAX_GOAL_YEARS = 50
OLD_TRANSACTION_YEARS = 2


def _error(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field, issue_type=issue_type, message=message,
        severity="error", suggested_fix=fix,
    )


def _warning(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field, issue_type=issue_type, message=message,
        severity="warning", suggested_fix=fix,
    )


def _has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


class RequestValidator:
    """
    Validates incoming payloads through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (may need storage for duplicate checks)
    """

    def __init__(
        self,
        storage: Optional[FinanceStorageInterface] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            storage: Storage interface for duplicate checking.
                     If None, duplicate checking is skipped.
        """
        self._storage = storage
        self._settings = settings or get_settings().app

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_schema(
        model: type[ModelT],
        payload: Payload,
    ) -> tuple[Optional[ModelT], list[ValidationIssue]]:
        """Parse the payload into `model`, turning pydantic errors into issues."""
        if isinstance(payload, model):
            return payload, []
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        if not isinstance(payload, dict):
            return None, [_error("payload", "invalid_format", "Request body must be an object")]

        try:
            return model.model_validate(payload), []
        except ValidationError as e:
            issues = []
            for err in e.errors():
                field = ".".join(str(part) for part in err["loc"]) or "payload"
                issue_type = "missing" if err["type"] == "missing" else "invalid_value"
                issues.append(_error(field, issue_type, f"{field}: {err['msg']}"))
            return None, issues

    def _run(
        self,
        model: type[ModelT],
        entity_type: str,
        payload: Payload,
        semantic: Callable[[ModelT], list[ValidationIssue]],
        extra_issues: Optional[list[ValidationIssue]] = None,
    ) -> ValidationResult:
        value, issues = self._validate_schema(model, payload)
        schema_valid = not _has_errors(issues)

        semantic_valid = False
        if schema_valid:
            semantic_issues = semantic(value) + list(extra_issues or [])
            issues.extend(semantic_issues)
            semantic_valid = not _has_errors(semantic_issues)

        result = ValidationResult(
            entity_type=entity_type,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            value=value if schema_valid else None,
            issues=issues,
            warnings=[issue.message for issue in issues if issue.severity == "warning"],
        )
        if not result.is_valid:
            logger.info(
                "validation_failed",
                entity_type=entity_type,
                stage="schema" if not schema_valid else "semantic",
                errors=len(result.errors),
            )
        return result

    # -------------------------------------------------------------------------
    # Stage 2 checks
    # -------------------------------------------------------------------------

    def _check_amount(self, field: str, amount: Optional[Decimal]) -> list[ValidationIssue]:
        issues = []
        if amount is None:
            return issues
        if amount > self._settings.max_transaction_amount_inr:
            issues.append(_warning(
                field, "suspicious_value",
                f"Amount (₹{amount:,.2f}) seems unusually high",
                "Please verify this amount is correct",
            ))
        elif amount < Decimal("1"):
            issues.append(_warning(
                field, "suspicious_value",
                f"Amount (₹{amount}) seems unusually low",
                "Please verify this amount is correct",
            ))
        return issues

    def _check_transaction_date(self, value: Optional[datetime], now: datetime) -> list[ValidationIssue]:
        issues = []
        if value is None:
            return issues
        value = as_utc(value)
        if value > now + timedelta(days=self._settings.future_date_tolerance_days):
            issues.append(_warning(
                "date", "future_date",
                f"Transaction date ({value.date()}) is in the future",
                "Please verify the date is correct",
            ))
        if value < now - timedelta(days=365 * OLD_TRANSACTION_YEARS):
            issues.append(_warning(
                "date", "suspicious_date",
                f"Transaction date ({value.date()}) seems unusually old",
                "Please verify the date is correct",
            ))
        return issues

    @staticmethod
    def _check_category(category: Optional[str]) -> list[ValidationIssue]:
        if category is not None and category.lower() in LEDGER_CATEGORIES:
            return [_error(
                "category", "reserved",
                f"Category '{category}' is reserved for NeoCoin bookkeeping",
                "Pick a spending or income category",
            )]
        return []

    @staticmethod
    def _check_tags(tags: Optional[list[str]]) -> list[ValidationIssue]:
        if tags and len(tags) > MAX_TAGS:
            return [_error("tags", "too_many", f"At most {MAX_TAGS} tags are allowed")]
        return []

    @staticmethod
    def _check_future(field: str, value: datetime, now: datetime, label: str) -> list[ValidationIssue]:
        issues = []
        value = as_utc(value)
        if value <= now:
            issues.append(_error(
                field, "past_date",
                f"{label} must be in the future",
                "Pick a date after today",
            ))
        elif value > now + timedelta(days=365 * MAX_GOAL_YEARS):
            issues.append(_warning(
                field, "suspicious_date",
                f"{label} is more than {MAX_GOAL_YEARS} years away",
                "Please verify the date is correct",
            ))
        return issues

    @staticmethod
    def _require_changes(value: BaseModel) -> list[ValidationIssue]:
        if not value.model_dump(exclude_unset=True, exclude_none=True):
            return [_error("payload", "empty", "No changes were provided")]
        return []

    # -------------------------------------------------------------------------
    # Entity validators
    # -------------------------------------------------------------------------

    async def validate_registration(self, payload: Payload) -> ValidationResult:
        def semantic(value: RegistrationRequest) -> list[ValidationIssue]:
            issues = []
            local, _, domain = value.email.partition("@")
            if not local or "." not in domain or domain.startswith(".") or domain.endswith("."):
                issues.append(_error("email", "invalid_format", "Valid email is required"))
            if value.phone and sum(c.isdigit() for c in value.phone) < 10:
                issues.append(_warning(
                    "phone", "suspicious_value",
                    "Phone number looks too short",
                    "Include the full 10-digit number",
                ))
            issues.extend(self._check_amount("monthly_income", value.monthly_income or None))
            return issues

        return self._run(RegistrationRequest, "user", payload, semantic)

    async def validate_transaction(
        self,
        payload: Payload,
        user_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
        check_duplicates: bool = True,
    ) -> ValidationResult:
        """
        Validate a new transaction.

        Duplicate detection needs storage and a user id; without them
        it is skipped.
        """
        now = as_utc(now or utcnow())

        def semantic(value: TransactionCreate) -> list[ValidationIssue]:
            issues = []
            issues.extend(self._check_category(value.category))
            issues.extend(self._check_amount("amount", value.amount))
            issues.extend(self._check_transaction_date(value.date, now))
            issues.extend(self._check_tags(value.tags))
            if value.recurring_frequency and not value.is_recurring:
                issues.append(_error(
                    "recurring_frequency", "inconsistent",
                    "Recurring frequency set on a non-recurring transaction",
                ))
            if value.is_recurring and not value.recurring_frequency:
                issues.append(_error(
                    "recurring_frequency", "missing",
                    "Recurring transactions need a frequency",
                ))
            return issues

        duplicates = []
        if check_duplicates and user_id is not None:
            parsed, schema_issues = self._validate_schema(TransactionCreate, payload)
            if parsed is not None and not schema_issues:
                duplicates = await self._check_duplicates(user_id, parsed, now)
                payload = parsed

        return self._run(TransactionCreate, "transaction", payload, semantic, duplicates)

    async def _check_duplicates(
        self,
        user_id: UUID,
        value: TransactionCreate,
        now: datetime,
    ) -> list[ValidationIssue]:
        """
        Check for a potential duplicate transaction.

        Same type, category and amount on the same day counts as a
        potential duplicate. This requires storage access.
        """
        if self._storage is None:
            return []

        day = as_utc(value.date or now).replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            existing = await self._storage.list_transactions(
                user_id,
                transaction_type=value.type,
                category=value.category,
                date_from=day,
                date_to=day + timedelta(days=1, microseconds=-1),
            )
        except StorageError as e:
            # Storage trouble never fails validation
            logger.warning("duplicate_check_failed", error=str(e))
            return []

        amount = value.amount.quantize(Decimal("0.01"))
        if any(t.amount == amount for t in existing):
            return [_warning(
                "duplicate", "potential_duplicate",
                f"A {value.category} transaction of ₹{amount} on {day.date()} may already exist",
                "Please verify this isn't a duplicate entry",
            )]
        return []

    async def validate_transaction_update(
        self,
        payload: Payload,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        now = as_utc(now or utcnow())

        def semantic(value: TransactionUpdate) -> list[ValidationIssue]:
            issues = self._require_changes(value)
            issues.extend(self._check_category(value.category))
            issues.extend(self._check_amount("amount", value.amount))
            issues.extend(self._check_transaction_date(value.date, now))
            issues.extend(self._check_tags(value.tags))
            return issues

        return self._run(TransactionUpdate, "transaction", payload, semantic)

    async def validate_goal(
        self,
        payload: Payload,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        now = as_utc(now or utcnow())

        def semantic(value: GoalCreate) -> list[ValidationIssue]:
            issues = self._check_future("target_date", value.target_date, now, "Target date")
            if value.current_amount >= value.target_amount:
                issues.append(_warning(
                    "current_amount", "already_reached",
                    "Current amount already reaches the target; the goal will start completed",
                ))
            issues.extend(self._check_amount("target_amount", value.target_amount))
            return issues

        return self._run(GoalCreate, "goal", payload, semantic)

    async def validate_goal_update(
        self,
        payload: Payload,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        now = as_utc(now or utcnow())

        def semantic(value: GoalUpdate) -> list[ValidationIssue]:
            issues = self._require_changes(value)
            if value.target_date is not None:
                issues.extend(self._check_future("target_date", value.target_date, now, "Target date"))
            issues.extend(self._check_amount("target_amount", value.target_amount))
            return issues

        return self._run(GoalUpdate, "goal", payload, semantic)

    async def validate_hive(
        self,
        payload: Payload,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        now = as_utc(now or utcnow())

        def semantic(value: HiveCreate) -> list[ValidationIssue]:
            issues = self._check_future("end_date", value.end_date, now, "End date")
            if value.monthly_contribution > value.target_amount:
                issues.append(_warning(
                    "monthly_contribution", "inconsistent",
                    "Monthly contribution is larger than the whole target",
                    "Please verify both amounts",
                ))
            return issues

        return self._run(HiveCreate, "hive", payload, semantic)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def to_error(result: ValidationResult) -> InvalidInputError:
        """The InvalidInputError a flow returns for a failed validation."""
        errors = result.errors
        message = errors[0].message if len(errors) == 1 else "Validation failed"
        return InvalidInputError(
            message,
            details={
                "stage": "schema" if not result.schema_valid else "semantic",
                "issues": [issue.model_dump() for issue in errors],
            },
        )

    @staticmethod
    def get_user_friendly_summary(result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if not result.is_valid:
            lines.append("❌ Please fix the following:")
            for issue in result.errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
