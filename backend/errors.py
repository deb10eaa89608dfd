"""Shared error classes for the gateway, pipeline, store and controller."""

from __future__ import annotations

from typing import Optional


class LeadScoutError(RuntimeError):
    """Base exception for all Lead Scout failures."""

    def __init__(self, message: str, code: str = "LEADSCOUT_ERROR") -> None:
        super().__init__(message)
        self.code = code


class BriefValidationError(LeadScoutError):
    """Raised when a research brief fails field validation.

    ``field_errors`` maps the persisted (camelCase) field name to a
    user-facing message. Raised before any AI call is attempted.
    """

    def __init__(self, field_errors: dict[str, str]) -> None:
        summary = "; ".join(f"{k}: {v}" for k, v in field_errors.items())
        super().__init__(f"Invalid research brief ({summary})", code="VALIDATION_ERROR")
        self.field_errors = field_errors


class GatewayError(LeadScoutError):
    """Base exception raised by the AI gateway."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        lead_name: Optional[str] = None,
        code: str = "GATEWAY_ERROR",
    ) -> None:
        super().__init__(message, code=code)
        self.operation = operation
        self.lead_name = lead_name


class AuthError(GatewayError):
    """Credential missing, invalid, expired or not permitted. Forces a credential reset."""

    def __init__(self, message: str, *, operation: str = "", lead_name: Optional[str] = None) -> None:
        super().__init__(message, operation=operation, lead_name=lead_name, code="AUTH_ERROR")


class NotInitializedError(AuthError):
    """Raised when a gateway operation runs without an active client."""


class TransientError(GatewayError):
    """Network / availability / rate-limit failure. Localized to one lead and stage."""

    def __init__(self, message: str, *, operation: str = "", lead_name: Optional[str] = None) -> None:
        super().__init__(message, operation=operation, lead_name=lead_name, code="TRANSIENT_ERROR")


class ParseError(GatewayError):
    """Raised when an AI response cannot be turned into the expected JSON value."""

    def __init__(
        self,
        message: str,
        *,
        context: str,
        raw_excerpt: str = "",
        isolated_excerpt: str = "",
        operation: str = "",
        lead_name: Optional[str] = None,
    ) -> None:
        super().__init__(message, operation=operation, lead_name=lead_name, code="PARSE_ERROR")
        self.context = context
        self.raw_excerpt = raw_excerpt
        self.isolated_excerpt = isolated_excerpt


class StorageError(LeadScoutError):
    """Raised when the local key/value store cannot be written."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="STORAGE_ERROR")


class InvalidTransitionError(LeadScoutError):
    """Raised when a lead status change would move backwards or skip a stage."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_TRANSITION")
