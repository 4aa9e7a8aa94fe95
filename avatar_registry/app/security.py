"""
Security module for the Avatar Registry service.

Provides input validation and client identification for rate limiting.
"""

from typing import Dict

from ..types import Digest, Identity, to_digest, to_identity


class ValidationError(Exception):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


# ============================================================
# Input Validation
# ============================================================

def validate_identity(value: str, field_name: str = "identity") -> Identity:
    """
    Validate and decode a 0x-prefixed 20-byte identity.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, "cannot be empty")
    try:
        return to_identity(value)
    except ValueError:
        raise ValidationError(field_name, "must be 20 bytes of hexadecimal")


def validate_digest(value: str, field_name: str = "digest") -> Digest:
    """
    Validate and decode a 0x-prefixed 32-byte digest.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field_name, "cannot be empty")
    try:
        return to_digest(value)
    except ValueError:
        raise ValidationError(field_name, "must be 32 bytes of hexadecimal")


# ============================================================
# Rate Limiting Helpers
# ============================================================

def extract_client_id(headers: Dict[str, str]) -> str:
    """
    Extract a client identifier from request headers for rate limiting.
    Falls back to a default if no identifier is found.
    """
    api_key = headers.get("x-api-key", "")
    if api_key:
        return f"api:{api_key[:8]}"

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    return "anonymous"
