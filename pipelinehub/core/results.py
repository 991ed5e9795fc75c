"""
Typed command results.

Workflow commands never raise for expected refusals; they return a
ServiceResult the router turns into an HTTP response.
"""

from dataclasses import dataclass, field as dc_field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INVALID_STATE = "INVALID_STATE"
    ENTRY_CONFIRMED = "ENTRY_CONFIRMED"
    MONTH_LOCKED = "MONTH_LOCKED"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"


HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.ENTRY_CONFIRMED: 409,
    ErrorCode.MONTH_LOCKED: 423,
    ErrorCode.BUSINESS_RULE_VIOLATION: 409,
    ErrorCode.CONFIRMATION_REQUIRED: 428,
}


@dataclass
class ServiceError:
    code: ErrorCode
    message: str
    field: Optional[str] = None
    details: Dict[str, Any] = dc_field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 400)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "field": self.field,
            "details": self.details,
        }


TData = TypeVar("TData")


@dataclass
class ServiceResult(Generic[TData]):
    """
    Success/failure envelope.

    Attributes:
        is_success: Operation success indicator
        data: Result data (if successful)
        error: Error information (if failed)
        message: Human-readable status message
    """

    is_success: bool
    data: Optional[TData] = None
    error: Optional[ServiceError] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data: Optional[TData] = None, message: Optional[str] = None) -> "ServiceResult[TData]":
        return cls(is_success=True, data=data, message=message)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ServiceResult[TData]":
        return cls(
            is_success=False,
            error=ServiceError(code=code, message=message, field=field, details=details or {}),
            message=message,
        )

    @classmethod
    def validation_failure(cls, message: str, field: Optional[str] = None) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.VALIDATION_ERROR, message, field=field)

    @classmethod
    def not_found(cls, resource_type: str, resource_id: Optional[str] = None) -> "ServiceResult[TData]":
        message = f"{resource_type} not found"
        if resource_id:
            message += f" ({resource_id})"
        return cls.failure(
            ErrorCode.NOT_FOUND,
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )

    @classmethod
    def forbidden(cls, action: str) -> "ServiceResult[TData]":
        return cls.failure(ErrorCode.INSUFFICIENT_PERMISSIONS, f"Only admins may {action}")
