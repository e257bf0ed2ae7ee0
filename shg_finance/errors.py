"""
Error Taxonomy Module

Every rejection raised by the engine is an ShgError. They subclass ValueError so
callers that only know "bad input" keep working, while boundaries that need a
structured payload can use ``code`` and ``to_dict()``.
"""

from typing import Any, Dict, Optional


class ShgError(ValueError):
    """Base class for all domain errors"""
    
    code = "error"
    
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(ShgError):
    """Missing or malformed input, out-of-enum values, non-positive amounts"""
    code = "validation_error"


class NotFoundError(ShgError):
    """Referenced record does not exist"""
    code = "not_found"


class StateConflictError(ShgError):
    """Record is not in the state the requested transition requires"""
    code = "state_conflict"


class BusinessRuleError(ShgError):
    """Input is well formed but violates a financial or group rule"""
    code = "business_rule"


def parse_enum(enum_cls, value, field_name: str):
    """Accept an enum member or its (case-insensitive) value"""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            pass
    allowed = ", ".join(member.value for member in enum_cls)
    raise ValidationError(f"Invalid {field_name} '{value}'. Must be one of: {allowed}")
