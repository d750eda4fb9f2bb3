from change_platform.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    TenantAccessError,
    UnauthorizedError,
    ValidationError,
)


def test_error_status_and_codes():
    assert (UnauthorizedError().status_code, UnauthorizedError().code) == (401, "UNAUTHORIZED")
    assert (ForbiddenError().status_code, ForbiddenError().code) == (403, "FORBIDDEN")
    assert TenantAccessError().code == "TENANT_ACCESS_DENIED"
    assert ConflictError("dup", code="ALREADY_EXISTS").code == "ALREADY_EXISTS"


def test_not_found_message():
    e = NotFoundError("Tenant", code="TENANT_NOT_FOUND")
    assert e.message == "Tenant not found"
    assert e.status_code == 404
    assert e.code == "TENANT_NOT_FOUND"


def test_validation_error_carries_field_errors():
    e = ValidationError("Invalid rule", validation_errors=[{"field": "key", "message": "bad"}])
    assert e.status_code == 400
    assert e.validation_errors[0]["field"] == "key"
    assert ValidationError("x").validation_errors == []


def test_invalid_transition_details():
    e = InvalidTransitionError("draft", "archived")
    assert e.status_code == 400
    assert e.code == "INVALID_TRANSITION"
    assert e.message == "Invalid transition from draft to archived"
    assert e.details == {"from": "draft", "to": "archived"}
