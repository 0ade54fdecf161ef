"""Error taxonomy for the claim lifecycle."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(Enum):
    """Failure categories surfaced to callers, with their HTTP status."""

    VALIDATION = ("validation", 400)
    UNAUTHENTICATED = ("unauthenticated", 401)
    OWNERSHIP_VIOLATION = ("ownership_violation", 403)
    NOT_FOUND = ("not_found", 404)
    STATE_CONFLICT = ("state_conflict", 409)
    PAYLOAD_TOO_LARGE = ("payload_too_large", 413)
    UNSUPPORTED_MEDIA = ("unsupported_media", 415)

    def __init__(self, label: str, http_status: int):
        self.label = label
        self.http_status = http_status


@dataclass(frozen=True)
class FieldError:
    """A single validation problem."""

    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class ClaimError(Exception):
    """Base class for every failure raised by the claim core."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a response body."""
        return {"error": self.message, "kind": self.kind.label, "details": []}


class ValidationFailed(ClaimError):
    """One or more request fields are missing or invalid."""

    kind = ErrorKind.VALIDATION

    def __init__(self, errors: List[FieldError], message: Optional[str] = None):
        if message is None:
            message = errors[0].message if len(errors) == 1 else "Validation failed"
        super().__init__(message)
        self.errors = list(errors)

    @classmethod
    def single(cls, field_name: str, message: str) -> "ValidationFailed":
        return cls([FieldError(field_name, message)])

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["details"] = [e.to_dict() for e in self.errors]
        return body


class Unauthenticated(ClaimError):
    kind = ErrorKind.UNAUTHENTICATED


class OwnershipViolation(ClaimError):
    """Caller is authenticated but may not act on this claim."""

    kind = ErrorKind.OWNERSHIP_VIOLATION


class ClaimNotFound(ClaimError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, claim_id: Any):
        super().__init__("Claim not found")
        self.claim_id = claim_id


class ReceiptNotFound(ClaimError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, claim_id: Any):
        super().__init__("No receipt uploaded for this claim")
        self.claim_id = claim_id


class StateConflict(ClaimError):
    """Transition guard failed against the stored state."""

    kind = ErrorKind.STATE_CONFLICT


class UnsupportedMediaType(ClaimError):
    kind = ErrorKind.UNSUPPORTED_MEDIA


class PayloadTooLarge(ClaimError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
