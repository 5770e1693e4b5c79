"""
Error Types Module

Typed error kinds raised by the core and mapped to responses by the API layer.
"""

from typing import Dict, Optional


class BankError(Exception):
    """Base class for all domain errors"""
    code = "INTERNAL"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict:
        return {"code": self.code, "message": self.message}


class ValidationError(BankError):
    """Malformed or out-of-policy input, with per-field detail"""
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, field_errors: Optional[Dict[str, str]] = None):
        self.field_errors = dict(field_errors or {})
        if not message and self.field_errors:
            # Surface the first failing field as the headline message
            message = next(iter(self.field_errors.values()))
        super().__init__(message)

    def to_dict(self) -> Dict:
        result = super().to_dict()
        if self.field_errors:
            result["field_errors"] = self.field_errors
        return result


class BadRequestError(BankError):
    """Well-formed request against an entity in the wrong state"""
    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(BankError):
    """Missing, expired or invalid session, or bad credentials"""
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Not authenticated"


class NotFoundError(BankError):
    """Entity absent or not owned by the caller"""
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class ConflictError(BankError):
    """Uniqueness violation"""
    code = "CONFLICT"
    status_code = 409
    default_message = "Conflict"


class InternalError(BankError):
    """Storage or crypto failure"""
