"""
Claim export endpoint.

Parameter errors are answered in plain text.
"""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse, Response

from ...claims.authorization import Actor, Operation, authorize
from ...claims.listing import ListingService
from ...export.params import ExportParamError, parse_export_request
from ...export.render import render_export
from ..deps import get_current_actor, get_listing

router = APIRouter()


@router.get("/export")
def export_claims(
    date_from: Optional[str] = Query(None, alias="from", description="YYYY-MM-DD, inclusive"),
    date_to: Optional[str] = Query(None, alias="to", description="YYYY-MM-DD, inclusive"),
    format: Optional[str] = Query("xlsx", description="xlsx (or excel) | pdf"),
    status: Optional[str] = Query(None, description="PENDING, APPROVED, REJECTED, RECALLED or CLOSED"),
    actor: Actor = Depends(get_current_actor),
    listing: ListingService = Depends(get_listing),
):
    """Download claims created in a local-day range as xlsx or pdf."""
    authorize(actor, Operation.EXPORT)
    try:
        request = parse_export_request(date_from, date_to, format, status)
    except ExportParamError as e:
        return PlainTextResponse(str(e), status_code=400)

    claims = listing.export_claims(actor, request.date_from, request.date_to, request.statuses)
    content = render_export(request, claims, listing.zone)
    return Response(
        content=content,
        media_type=request.format.media_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(request.filename)}"},
    )
