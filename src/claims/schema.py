"""
Reimbursement claim schema.

Enums shared by every layer, plus the Pydantic request and response
models spoken over HTTP. Wire names are camelCase; Python attributes
stay snake_case.
"""

from datetime import date, datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ============================================================================
# Enums
# ============================================================================


class ClaimStatus(str, Enum):
    """Lifecycle state of a claim."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RECALLED = "RECALLED"


TERMINAL_STATUSES = frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED})


class ClaimType(str, Enum):
    """Expense category."""
    TRAVEL = "TRAVEL"
    PETROL_ALLOWANCE = "PETROL_ALLOWANCE"
    CAB_ALLOWANCE = "CAB_ALLOWANCE"
    MEAL = "MEAL"
    OFFICE_SUPPLY = "OFFICE_SUPPLY"
    POSTAGE = "POSTAGE"
    OTHER = "OTHER"


class CurrencyCode(str, Enum):
    """Supported reimbursement currencies."""
    INR = "INR"
    MYR = "MYR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class Role(str, Enum):
    """Roles understood by the authorization gate."""
    USER = "USER"
    ADMIN = "ADMIN"


class _WireModel(BaseModel):
    """Base for models exchanged over HTTP (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


# ============================================================================
# Requests
# ============================================================================
#
# Fields are optional here; required-ness and ranges are checked in
# src.claims.validation.


class CreateClaimRequest(_WireModel):
    """One item of a batch create."""
    title: Optional[str] = None
    amount_minor_units: Optional[int] = Field(None, description="Amount in cents/paise")
    currency_code: Optional[CurrencyCode] = None
    claim_type: Optional[ClaimType] = None
    description: Optional[str] = None
    claim_date: Optional[date] = Field(None, description="Defaults to today (local calendar)")
    receipt_url: Optional[str] = Field(None, description="External receipt link")


class UpdateClaimRequest(_WireModel):
    """Owner edit while a recall is active; every field is optional."""
    title: Optional[str] = None
    amount_minor_units: Optional[int] = None
    description: Optional[str] = None
    claim_date: Optional[date] = None
    currency_code: Optional[CurrencyCode] = None
    claim_type: Optional[ClaimType] = None


class ResubmitRequest(_WireModel):
    comment: Optional[str] = None


class ChangeRequest(_WireModel):
    message: Optional[str] = None


class RejectClaimRequest(_WireModel):
    admin_comment: Optional[str] = None


class RecallRequest(_WireModel):
    reason: Optional[str] = None
    require_attachment: bool = False


class AttachmentRequest(_WireModel):
    note: Optional[str] = None


# ============================================================================
# Responses
# ============================================================================


class ClaimResponse(_WireModel):
    """Claim as shown to its owner."""
    id: int
    owner_id: str
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    title: str
    amount_minor_units: int
    currency_code: CurrencyCode
    claim_type: ClaimType
    description: Optional[str] = None
    claim_date: date
    status: ClaimStatus
    admin_comment: Optional[str] = None
    external_receipt_url: Optional[str] = None
    receipt_present: bool = False
    receipt_filename: Optional[str] = None
    receipt_content_type: Optional[str] = None
    receipt_size_bytes: Optional[int] = None
    recall_active: bool = False
    recall_reason: Optional[str] = None
    recall_requires_attachment: bool = False
    recalled_at: Optional[datetime] = None
    resubmitted_at: Optional[datetime] = None
    resubmit_comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_stored(cls, claim) -> "ClaimResponse":
        """Build from a StoredClaim."""
        return cls(
            id=claim.id,
            owner_id=claim.owner_id,
            owner_name=claim.owner_name,
            owner_email=claim.owner_email,
            title=claim.title,
            amount_minor_units=claim.amount_minor_units,
            currency_code=claim.currency_code,
            claim_type=claim.claim_type,
            description=claim.description,
            claim_date=claim.claim_date,
            status=claim.status,
            admin_comment=claim.admin_comment,
            external_receipt_url=claim.external_receipt_url,
            receipt_present=claim.receipt_present,
            receipt_filename=claim.receipt_filename,
            receipt_content_type=claim.receipt_content_type,
            receipt_size_bytes=claim.receipt_size_bytes,
            recall_active=claim.recall_active,
            recall_reason=claim.recall_reason,
            recall_requires_attachment=claim.recall_requires_attachment,
            recalled_at=claim.recalled_at,
            resubmitted_at=claim.resubmitted_at,
            resubmit_comment=claim.resubmit_comment,
            created_at=claim.created_at,
            updated_at=claim.updated_at,
        )


class AdminClaimView(_WireModel):
    """Claim row in the admin dashboard."""
    id: int
    owner_id: str
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    title: str
    amount_minor_units: int
    currency_code: CurrencyCode
    claim_type: ClaimType
    description: Optional[str] = None
    admin_comment: Optional[str] = None
    external_receipt_url: Optional[str] = None
    receipt_present: bool = False
    status: ClaimStatus
    recall_active: bool = False
    recall_reason: Optional[str] = None
    resubmit_comment: Optional[str] = None
    claim_date: date
    created_at: datetime

    @classmethod
    def from_stored(cls, claim) -> "AdminClaimView":
        """Build from a StoredClaim."""
        return cls(
            id=claim.id,
            owner_id=claim.owner_id,
            owner_name=claim.owner_name,
            owner_email=claim.owner_email,
            title=claim.title,
            amount_minor_units=claim.amount_minor_units,
            currency_code=claim.currency_code,
            claim_type=claim.claim_type,
            description=claim.description,
            admin_comment=claim.admin_comment,
            external_receipt_url=claim.external_receipt_url,
            receipt_present=claim.receipt_present,
            status=claim.status,
            recall_active=claim.recall_active,
            recall_reason=claim.recall_reason,
            resubmit_comment=claim.resubmit_comment,
            claim_date=claim.claim_date,
            created_at=claim.created_at,
        )


T = TypeVar("T")


class Page(_WireModel, Generic[T]):
    """A page of results."""
    content: List[T] = Field(default_factory=list)
    page: int
    size: int
    total_elements: int
    total_pages: int
