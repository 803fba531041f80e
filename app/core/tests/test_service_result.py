"""
Tests for ServiceResult and BaseService.
"""

from billing.ledger.exceptions import InsufficientBalance
from billing.services import ChargeService
from core.services import BaseService, ServiceResult


class TestServiceResult:
    """Tests for ServiceResult."""

    def test_success_is_truthy(self):
        """Should be truthy and carry data."""
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.data == {"id": 1}
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_is_falsy(self):
        """Should be falsy and carry error fields."""
        result = ServiceResult.failure("Nope", "NOPE", details={"x": 1})

        assert not result
        assert result.to_response() == {
            "success": False,
            "error": "Nope",
            "error_code": "NOPE",
            "details": {"x": 1},
        }

    def test_from_application_error(self):
        """Should keep code and details of application errors."""
        result = ServiceResult.from_exception(
            InsufficientBalance(user_id=1, required=10, available=5)
        )

        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert result.details["required"] == 10

    def test_from_other_exception(self):
        """Should use the class name as the code."""
        result = ServiceResult.from_exception(KeyError("k"))

        assert result.error_code == "KEYERROR"

    def test_error_code_override(self):
        """Should prefer an explicit error code."""
        result = ServiceResult.from_exception(ValueError("bad"), error_code="BAD_INPUT")

        assert result.error_code == "BAD_INPUT"


class TestBaseService:
    """Tests for BaseService."""

    def test_logger_named_after_service(self):
        """Should name the logger module.Class."""
        assert BaseService.get_logger().name == "core.services.BaseService"
        assert (
            ChargeService.get_logger().name
            == "billing.services.charge_service.ChargeService"
        )
