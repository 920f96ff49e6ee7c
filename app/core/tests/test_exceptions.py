"""
Tests for the application exception hierarchy.
"""

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
)


class TestBaseApplicationError:
    def test_defaults(self):
        error = BaseApplicationError("Something broke")

        assert error.message == "Something broke"
        assert error.error_code == "APPLICATION_ERROR"
        assert error.details == {}
        assert str(error) == "[APPLICATION_ERROR] Something broke"

    def test_to_dict_includes_details_when_present(self):
        error = NotFoundError(
            "Billing customer not found",
            error_code="CUSTOMER_NOT_FOUND",
            details={"stripe_customer_id": "cus_123"},
        )

        assert error.to_dict() == {
            "error": "Billing customer not found",
            "error_code": "CUSTOMER_NOT_FOUND",
            "details": {"stripe_customer_id": "cus_123"},
        }

    def test_to_dict_omits_empty_details(self):
        assert "details" not in ConflictError("Duplicate").to_dict()

    def test_subclass_codes(self):
        assert NotFoundError("x").error_code == "NOT_FOUND"
        assert ConflictError("x").error_code == "CONFLICT"
        assert ExternalServiceError("x").error_code == "EXTERNAL_SERVICE_ERROR"
