"""
Tests for the two-stage request validator.
"""

import pytest
from datetime import timedelta

from conftest import NOW, make_transaction, registration, run, seed

from neowealth.errors import InvalidInputError
from neowealth.models.entities import REWARDS_CATEGORY
from neowealth.models.requests import RegistrationRequest
from neowealth.validation import RequestValidator


@pytest.fixture
def validator(storage) -> RequestValidator:
    return RequestValidator(storage)


def transaction_payload(**overrides) -> dict:
    payload = {"type": "expense", "category": "food", "amount": "500", "date": NOW}
    payload.update(overrides)
    return payload


class TestSchemaStage:
    """Tests for stage 1."""

    def test_valid_registration(self, validator):
        """Test a complete payload parses into the request model."""
        result = run(validator.validate_registration(registration()))

        assert result.is_valid is True
        assert isinstance(result.value, RegistrationRequest)
        assert result.warnings == []

    def test_missing_field(self, validator):
        """Test missing fields fail stage 1 and skip stage 2."""
        payload = registration()
        del payload["first_name"]
        result = run(validator.validate_registration(payload))

        assert result.schema_valid is False
        assert result.semantic_valid is False
        assert result.value is None
        [issue] = result.errors
        assert issue.field == "first_name"
        assert issue.issue_type == "missing"

    def test_payload_must_be_an_object(self, validator):
        """Test non-dict payloads are rejected."""
        result = run(validator.validate_goal("not a goal", now=NOW))
        assert result.errors[0].issue_type == "invalid_format"

    def test_model_instance_passes_through(self, validator):
        """Test an already parsed request is accepted as is."""
        request = RegistrationRequest(**registration())
        assert run(validator.validate_registration(request)).value is request


class TestSemanticStage:
    """Tests for stage 2."""

    def test_invalid_email(self, validator):
        """Test an email without a dotted domain."""
        result = run(validator.validate_registration(registration(email="asha@localhost")))

        assert result.schema_valid is True
        assert result.is_valid is False
        assert result.errors[0].message == "Valid email is required"

    def test_short_phone_is_a_warning(self, validator):
        """Test warnings do not block a request."""
        result = run(validator.validate_registration(registration(phone="12345")))
        assert result.is_valid is True
        assert result.warnings == ["Phone number looks too short"]

    def test_reserved_category(self, validator):
        """Test NeoCoin bookkeeping categories cannot be entered by hand."""
        result = run(validator.validate_transaction(transaction_payload(category=REWARDS_CATEGORY), now=NOW))

        assert result.is_valid is False
        assert result.errors[0].issue_type == "reserved"

    def test_future_date_warning(self, validator):
        """Test dates beyond the tolerance are flagged."""
        result = run(validator.validate_transaction(
            transaction_payload(date=NOW + timedelta(days=3)), now=NOW
        ))
        assert result.is_valid is True
        assert "is in the future" in result.warnings[0]

    def test_recurring_needs_frequency(self, validator):
        """Test a recurring transaction without a frequency."""
        result = run(validator.validate_transaction(transaction_payload(is_recurring=True), now=NOW))
        assert result.errors[0].message == "Recurring transactions need a frequency"

    def test_duplicate_warning(self, validator, storage, user):
        """Test the same amount, type and category on one day is flagged."""
        async def scenario():
            await seed(storage, make_transaction(user.id, date=NOW.replace(hour=8)))
            return await validator.validate_transaction(transaction_payload(), user_id=user.id, now=NOW)

        result = run(scenario())
        assert result.is_valid is True
        assert len(result.warnings) == 1
        assert "may already exist" in result.warnings[0]

    def test_duplicate_check_skipped_without_user(self, validator, storage, user):
        """Test no storage lookup happens without a user id."""
        async def scenario():
            await seed(storage, make_transaction(user.id))
            return await validator.validate_transaction(transaction_payload(), now=NOW)

        assert run(scenario()).warnings == []

    def test_goal_in_the_past(self, validator):
        """Test goal target dates must be in the future."""
        payload = {
            "title": "New Laptop",
            "target_amount": "80000",
            "target_date": NOW - timedelta(days=1),
            "category": "other",
        }
        result = run(validator.validate_goal(payload, now=NOW))
        assert result.errors[0].message == "Target date must be in the future"

    def test_goal_already_reached(self, validator):
        """Test a goal starting at its target is a warning."""
        payload = {
            "title": "New Laptop",
            "target_amount": "80000",
            "current_amount": "80000",
            "target_date": NOW + timedelta(days=30),
            "category": "other",
        }
        result = run(validator.validate_goal(payload, now=NOW))
        assert result.is_valid is True
        assert len(result.warnings) == 1

    def test_empty_goal_update(self, validator):
        """Test an update must change something."""
        result = run(validator.validate_goal_update({}, now=NOW))
        assert result.errors[0].message == "No changes were provided"

    def test_hive_end_date(self, validator):
        """Test hives must end in the future."""
        payload = {
            "name": "Goa Trip",
            "goal_type": "vacation",
            "target_amount": "120000",
            "monthly_contribution": "5000",
            "end_date": NOW,
        }
        result = run(validator.validate_hive(payload, now=NOW))
        assert result.errors[0].message == "End date must be in the future"


class TestReporting:
    """Tests for turning results into errors and summaries."""

    def test_single_error_message(self, validator):
        """Test one error keeps its own message."""
        result = run(validator.validate_goal_update({}, now=NOW))
        error = RequestValidator.to_error(result)

        assert isinstance(error, InvalidInputError)
        assert error.message == "No changes were provided"
        assert error.details["stage"] == "semantic"

    def test_several_errors(self, validator):
        """Test several errors are summarized."""
        result = run(validator.validate_transaction(
            transaction_payload(category=REWARDS_CATEGORY, is_recurring=True), now=NOW
        ))
        error = RequestValidator.to_error(result)
        assert error.message == "Validation failed"
        assert len(error.details["issues"]) == 2

    def test_friendly_summary(self, validator):
        """Test the summary shown to users."""
        ok = run(validator.validate_registration(registration()))
        assert RequestValidator.get_user_friendly_summary(ok) == "✅ All checks passed!"

        bad = run(validator.validate_goal_update({}, now=NOW))
        summary = RequestValidator.get_user_friendly_summary(bad)
        assert summary.startswith("❌ Please fix the following:")
        assert "No changes were provided" in summary
