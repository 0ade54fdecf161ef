"""
Owner-facing claim endpoints.

Batch create, the "my claims" listings, edits during a recall, resubmit,
change requests and the receipt endpoints.
"""

from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

from ...claims.authorization import Actor
from ...claims.errors import FieldError, ValidationFailed
from ...claims.lifecycle import ClaimLifecycleEngine
from ...claims.listing import ClaimPage, ListingService
from ...claims.schema import (
    ChangeRequest,
    ClaimResponse,
    CreateClaimRequest,
    Page,
    ResubmitRequest,
    UpdateClaimRequest,
)
from ...storage.receipt_vault import ReceiptUpload
from ..deps import get_current_actor, get_engine, get_listing


router = APIRouter()


def _page(result: ClaimPage) -> Page[ClaimResponse]:
    return Page[ClaimResponse](
        content=[ClaimResponse.from_stored(c) for c in result.items],
        page=result.page,
        size=result.size,
        total_elements=result.total,
        total_pages=result.total_pages,
    )


def _to_upload(file) -> Optional[ReceiptUpload]:
    if file is None:
        return None
    return ReceiptUpload(
        filename=file.filename,
        content_type=file.content_type,
        content=file.file.read(),
    )


# =============================================================================
# Create and list
# =============================================================================


@router.post("", response_model=List[ClaimResponse])
def create_claims(
    body: List[CreateClaimRequest],
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Create a batch of claims owned by the caller."""
    claims = engine.create(actor, body)
    return [ClaimResponse.from_stored(c) for c in claims]


@router.get("/me/recall", response_model=List[ClaimResponse])
def my_recalled_claims(
    actor: Actor = Depends(get_current_actor),
    listing: ListingService = Depends(get_listing),
):
    """Claims returned to the caller for correction (not paginated)."""
    return [ClaimResponse.from_stored(c) for c in listing.my_recall(actor)]


@router.get("/me/{bucket}", response_model=Page[ClaimResponse])
def my_claims(
    bucket: str,
    page: int = Query(1, description="1-based page index"),
    size: Optional[int] = Query(None, description="Page size (1-100)"),
    actor: Actor = Depends(get_current_actor),
    listing: ListingService = Depends(get_listing),
):
    """The caller's pending, approved, rejected or closed claims."""
    return _page(listing.my_claims(actor, bucket, page=page, size=size))


@router.get("/{claim_id}", response_model=ClaimResponse)
def get_claim(
    claim_id: int,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    return ClaimResponse.from_stored(engine.get(actor, claim_id))


# =============================================================================
# Recall responses
# =============================================================================


@router.put("/{claim_id}", response_model=ClaimResponse)
def update_claim(
    claim_id: int,
    body: UpdateClaimRequest,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Edit a claim while a recall is active."""
    return ClaimResponse.from_stored(engine.update_during_recall(actor, claim_id, body))


@router.patch("/{claim_id}/resubmit", response_model=ClaimResponse)
async def resubmit_claim(
    claim_id: int,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """
    Answer a recall.

    Accepts either JSON ``{"comment": ...}`` or multipart with an optional
    ``file`` part and an optional ``comment`` part.
    """
    content_type = request.headers.get("content-type", "").lower()
    upload = None

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        file = form.get("file")
        if isinstance(file, StarletteUploadFile):
            upload = await run_in_threadpool(_to_upload, file)
        comment = form.get("comment")
        if comment is not None and not isinstance(comment, str):
            comment = None
    else:
        raw = await request.body()
        try:
            body = ResubmitRequest.model_validate_json(raw) if raw.strip() else ResubmitRequest()
        except ValidationError as e:
            raise ValidationFailed(
                [FieldError("body", err["msg"]) for err in e.errors()],
                message="Malformed request body",
            )
        comment = body.comment

    claim = await run_in_threadpool(engine.resubmit, actor, claim_id, comment=comment, upload=upload)
    return ClaimResponse.from_stored(claim)


@router.post("/{claim_id}/change-request", response_model=ClaimResponse)
def create_change_request(
    claim_id: int,
    body: Optional[ChangeRequest] = None,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Leave a message for the admin without changing the claim status."""
    message = body.message if body else None
    return ClaimResponse.from_stored(engine.create_change_request(actor, claim_id, message))


# =============================================================================
# Receipts
# =============================================================================


@router.post("/{claim_id}/receipt", response_model=ClaimResponse)
def upload_receipt(
    claim_id: int,
    file: Optional[UploadFile] = File(None),
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """Store (or replace) the receipt of an open claim."""
    upload = _to_upload(file)
    return ClaimResponse.from_stored(engine.upload_receipt(actor, claim_id, upload))


@router.head("/{claim_id}/receipt")
def probe_receipt(
    claim_id: int,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    """200 when a receipt exists, 404 otherwise."""
    exists = engine.receipt_exists(actor, claim_id)
    return Response(status_code=200 if exists else 404)


@router.get("/{claim_id}/receipt")
def download_receipt(
    claim_id: int,
    actor: Actor = Depends(get_current_actor),
    engine: ClaimLifecycleEngine = Depends(get_engine),
):
    receipt = engine.download_receipt(actor, claim_id)
    return Response(
        content=receipt.content,
        media_type=receipt.content_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(receipt.filename)}"},
    )
