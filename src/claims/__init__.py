"""
Reimbursement claim domain.

Schemas, validation, the error taxonomy and the authorization gate are
exported here. The lifecycle engine and listing service depend on storage
and are imported from their modules directly:

    from src.claims.lifecycle import ClaimLifecycleEngine
    from src.claims.listing import ListingService
"""

from .authorization import Actor, Operation, authorize, decide
from .errors import (
    ClaimError,
    ClaimNotFound,
    ErrorKind,
    FieldError,
    OwnershipViolation,
    PayloadTooLarge,
    ReceiptNotFound,
    StateConflict,
    Unauthenticated,
    UnsupportedMediaType,
    ValidationFailed,
)
from .schema import ClaimStatus, ClaimType, CurrencyCode, Role

__all__ = [
    "Actor",
    "Operation",
    "authorize",
    "decide",
    "ClaimError",
    "ClaimNotFound",
    "ErrorKind",
    "FieldError",
    "OwnershipViolation",
    "PayloadTooLarge",
    "ReceiptNotFound",
    "StateConflict",
    "Unauthenticated",
    "UnsupportedMediaType",
    "ValidationFailed",
    "ClaimStatus",
    "ClaimType",
    "CurrencyCode",
    "Role",
]
