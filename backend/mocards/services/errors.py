"""
Card engine error taxonomy.

Every error carries a stable `code` for API clients and the HTTP status the
routes answer with. Business-rule errors (already activated, already claimed,
quota exceeded) are terminal outcomes; only RepositoryUnavailableError is
safe to retry.
"""

from __future__ import annotations


class CardError(Exception):
    """Base class for card engine errors."""
    code = "CARD_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(CardError):
    """Malformed or missing input; rejected before any write."""
    code = "VALIDATION_ERROR"


class DuplicateIdentifierError(CardError):
    """Unique identifier already taken. Retry with a freshly generated one."""
    code = "DUPLICATE_IDENTIFIER"
    http_status = 409


class CardNotFoundError(CardError):
    code = "CARD_NOT_FOUND"
    http_status = 404


class BatchNotFoundError(CardError):
    code = "BATCH_NOT_FOUND"
    http_status = 404


class ClinicNotFoundError(CardError):
    code = "CLINIC_NOT_FOUND"
    http_status = 404


class PerkNotFoundError(CardError):
    code = "PERK_NOT_FOUND"
    http_status = 404


class AlreadyAssignedError(CardError):
    code = "ALREADY_ASSIGNED"
    http_status = 409


class InvalidLocationCodeError(ValidationError):
    code = "INVALID_LOCATION_CODE"


class AlreadyActivatedError(CardError):
    code = "ALREADY_ACTIVATED"
    http_status = 409


class QuotaExceededError(CardError):
    code = "QUOTA_EXCEEDED"
    http_status = 409


class CardExpiredError(CardError):
    code = "CARD_EXPIRED"
    http_status = 409


class CardNotActivatedError(CardError):
    code = "CARD_NOT_ACTIVATED"
    http_status = 409


class PerkAlreadyClaimedError(CardError):
    code = "PERK_ALREADY_CLAIMED"
    http_status = 409


class ClinicMismatchError(CardError):
    code = "CLINIC_MISMATCH"
    http_status = 403


class ClinicInactiveError(CardError):
    code = "CLINIC_INACTIVE"
    http_status = 403


class BatchGenerationError(CardError):
    """
    A card insert failed part way through a batch.

    details carries batch_id and cards_generated (confirmed inserts only).
    """
    code = "BATCH_INCOMPLETE"
    http_status = 500


class RepositoryUnavailableError(CardError):
    """Transient storage failure (lock timeout, dropped connection)."""
    code = "REPOSITORY_UNAVAILABLE"
    http_status = 503
