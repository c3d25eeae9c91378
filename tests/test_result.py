"""
Tests for the error taxonomy and the result envelope.
"""

import pytest

from neowealth.errors import (
    AlreadyMemberError,
    ErrorKind,
    HiveFullError,
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
    WalletNotFoundError,
)
from neowealth.result import Result


class TestErrors:
    """Tests for error kinds and status codes."""

    @pytest.mark.parametrize(
        "error, kind, status",
        [
            (WalletNotFoundError(), ErrorKind.NOT_FOUND, 404),
            (InvalidAmountError(), ErrorKind.INVALID_INPUT, 400),
            (InsufficientBalanceError(1, 2), ErrorKind.INSUFFICIENT_BALANCE, 400),
            (AlreadyMemberError(), ErrorKind.ALREADY_MEMBER, 409),
            (HiveFullError(), ErrorKind.CONFLICT, 409),
        ],
    )
    def test_kinds(self, error, kind, status):
        """Test each error maps to its kind and status."""
        assert error.kind == kind
        assert error.http_status == status

    def test_default_message(self):
        """Test errors fall back to their default message."""
        assert str(WalletNotFoundError()) == "Wallet not found"
        assert NotFoundError("Goal not found").message == "Goal not found"


class TestResult:
    """Tests for the response envelope."""

    def test_ok_envelope(self):
        """Test a success omits the error key."""
        result = Result.ok({"balance": "100.00"}, message="Done")

        assert result.http_status == 200
        assert result.to_envelope() == {
            "success": True,
            "message": "Done",
            "data": {"balance": "100.00"},
        }

    def test_ok_without_data(self):
        """Test empty keys are left out."""
        assert Result.ok().to_envelope() == {"success": True}

    def test_fail_envelope(self):
        """Test a failure carries its kind and details."""
        result = Result.fail(InsufficientBalanceError(5, 10))

        assert result.http_status == 400
        envelope = result.to_envelope()
        assert envelope["success"] is False
        assert envelope["message"] == "Insufficient NeoCoins"
        assert envelope["error"] == {
            "kind": "insufficient_balance",
            "message": "Insufficient NeoCoins",
            "details": {"available": "5", "requested": "10"},
        }
        assert "data" not in envelope

    def test_fail_custom_message(self):
        """Test the top-level message can differ from the error's."""
        result = Result.fail(HiveFullError(), message="Try another hive")
        assert result.message == "Try another hive"
        assert result.error.message == "Hive is full"
        assert result.http_status == 409
