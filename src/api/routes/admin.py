"""
Admin claim endpoints: adjudication, recall management and dashboards.
"""

from enum import Enum
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...claims.authorization import Actor
from ...claims.lifecycle import ClaimLifecycleEngine
from ...claims.listing import ListingService, parse_day
from ...claims.schema import (
    AdminClaimView,
    AttachmentRequest,
    ClaimResponse,
    ClaimStatus,
    Page,
    RecallRequest,
    RejectClaimRequest,
)
from ..deps import get_current_actor, get_engine, get_listing

router = APIRouter()


class AdminBucket(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECALLED = "recalled"


# =============================================================================
# Transitions
# =============================================================================


@router.patch("/{claim_id}/approve", response_model=ClaimResponse)
def approve_claim(
    claim_id: int,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    return ClaimResponse.from_stored(engine.approve(actor, claim_id))


@router.patch("/{claim_id}/reject", response_model=ClaimResponse)
def reject_claim(
    claim_id: int,
    body: Optional[RejectClaimRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Reject a pending claim; ``adminComment`` is required."""
    comment = body.admin_comment if body else None
    return ClaimResponse.from_stored(engine.reject(actor, claim_id, comment))


@router.patch("/{claim_id}/recall", response_model=ClaimResponse)
def recall_claim(
    claim_id: int,
    body: Optional[RecallRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Return a pending claim to its owner, optionally demanding a receipt."""
    body = body or RecallRequest()
    return ClaimResponse.from_stored(
        engine.start_recall(actor, claim_id, body.reason, require_attachment=body.require_attachment)
    )


@router.patch("/{claim_id}/recall/request-attachment", response_model=ClaimResponse)
def request_attachment(
    claim_id: int,
    body: Optional[AttachmentRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    note = body.note if body else None
    return ClaimResponse.from_stored(engine.request_attachment(actor, claim_id, note))


@router.patch("/{claim_id}/recall/cancel", response_model=ClaimResponse)
def cancel_recall(
    claim_id: int,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    return ClaimResponse.from_stored(engine.cancel_recall(actor, claim_id))


# =============================================================================
# Dashboards
# =============================================================================


@router.get("/{bucket}", response_model=Page[AdminClaimView])
def list_claims(
    bucket: AdminBucket,
    page: int = Query(0, description="0-based page index"),
    size: Optional[int] = Query(None, description="Page size (1-100)"),
    sort: Optional[List[str]] = Query(None, description="field,dir (id, createdAt, amountMinorUnits)"),
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD, inclusive"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD, inclusive"),
    email: Optional[str] = Query(None, description="Owner email contains"),
    q: Optional[str] = Query(None, description="Title, description or owner contains"),
    actor: Actor = Depends(get_current_actor),
    listing: ListingService = Depends(get_listing),
):
    """All claims in one status, newest id first unless sorted otherwise."""
    result = listing.admin_claims(
        actor,
        ClaimStatus(bucket.value.upper()),
        page=page,
        size=size,
        sort=sort,
        date_from=parse_day(date_from, "from"),
        date_to=parse_day(date_to, "to"),
        email=email,
        q=q,
    )
    return Page[AdminClaimView](
        content=[AdminClaimView.from_stored(c) for c in result.items],
        page=result.page,
        size=result.size,
        total_elements=result.total,
        total_pages=result.total_pages,
    )
