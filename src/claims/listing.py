"""
Read-only claim listings.

Owner buckets (page is 1-based), the admin dashboard (page is 0-based,
sortable, filterable) and the export scan. Listings never go through the
lifecycle engine; they only consult the authorization gate.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from ..storage.claim_store import ClaimQuery, ClaimStore, StoredClaim
from .authorization import Actor, Operation, authorize
from .errors import ValidationFailed
from .schema import ClaimStatus
from .validation import parse_iso_day

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
# Row offsets are bound as SQLite INTEGERs
MAX_OFFSET = 2**63 - 1

# Wire name -> column; anything else is dropped from a sort request
SORT_FIELDS: Dict[str, str] = {
    "id": "id",
    "createdAt": "created_at",
    "amountMinorUnits": "amount_minor_units",
}
DEFAULT_SORT: Tuple[Tuple[str, str], ...] = (("id", "DESC"),)

OWNER_BUCKETS: Dict[str, Tuple[ClaimStatus, ...]] = {
    "pending": (ClaimStatus.PENDING,),
    "approved": (ClaimStatus.APPROVED,),
    "rejected": (ClaimStatus.REJECTED,),
    "closed": (ClaimStatus.APPROVED, ClaimStatus.REJECTED),
}

_NEWEST_FIRST = (("created_at", "DESC"),)


@dataclass
class ClaimPage:
    """One window of a listing."""
    items: List[StoredClaim] = field(default_factory=list)
    page: int = 0
    size: int = 0
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0


def sanitize_sort(sort: Optional[Sequence[str]]) -> Tuple[Tuple[str, str], ...]:
    """
    Turn ``["createdAt,desc", "amountMinorUnits"]`` into column orderings.

    Unknown fields are dropped silently; when nothing survives the
    default (id descending) applies. A missing direction means ascending.
    """
    order = []
    for entry in sort or ():
        parts = [p.strip() for p in entry.split(",")]
        column = SORT_FIELDS.get(parts[0])
        if column is None:
            logger.debug(f"Ignoring sort field {parts[0]!r}")
            continue
        direction = "DESC" if len(parts) > 1 and parts[1].lower() == "desc" else "ASC"
        order.append((column, direction))
    return tuple(order) or DEFAULT_SORT


def clamp_size(size: Optional[int], default: int) -> int:
    if size is None:
        size = default
    return max(1, min(MAX_PAGE_SIZE, size))


def parse_day(value: Optional[str], field_name: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD query value."""
    if value is None or not value.strip():
        return None
    try:
        return parse_iso_day(value)
    except ValueError:
        raise ValidationFailed.single(field_name, "Invalid date. Use YYYY-MM-DD")


def local_day_bounds(
    date_from: Optional[date],
    date_to: Optional[date],
    zone: ZoneInfo,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive [start of from, end of to] in the local calendar, as aware datetimes.
    """
    start = datetime.combine(date_from, time.min, tzinfo=zone) if date_from else None
    end = None
    if date_to:
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=zone) - timedelta(microseconds=1)
    return start, end


class ListingService:
    """
    Paginated, sort-safe claim queries.

    Usage:
        listing = ListingService(store, zone=ZoneInfo("Asia/Kolkata"))
        page = listing.my_claims(actor, "closed", page=1)
        page = listing.admin_claims(admin, ClaimStatus.PENDING, sort=["amountMinorUnits,desc"])
    """

    def __init__(self, store: ClaimStore, zone: ZoneInfo = ZoneInfo("UTC"),
                 default_page_size: int = 10, admin_page_size: int = 20):
        self.store = store
        self.zone = zone
        self.default_page_size = default_page_size
        self.admin_page_size = admin_page_size

    # =========================================================================
    # Owner views
    # =========================================================================

    def my_claims(self, actor: Actor, bucket: str, page: int = 1, size: Optional[int] = None) -> ClaimPage:
        """
        The actor's own claims in one bucket, newest first.

        ``closed`` merges approved and rejected claims.
        """
        authorize(actor, Operation.LIST_OWN)
        statuses = OWNER_BUCKETS.get(bucket)
        if statuses is None:
            raise ValidationFailed.single("status", f"Unknown claim list: {bucket}")

        size = clamp_size(size, self.default_page_size)
        page = max(1, min(page, MAX_OFFSET // size + 1))
        claims, total = self.store.find(ClaimQuery(
            owner_id=actor.user_id,
            statuses=statuses,
            order_by=_NEWEST_FIRST,
            limit=size,
            offset=(page - 1) * size,
        ))
        return ClaimPage(claims, page, size, total)

    def my_recall(self, actor: Actor) -> List[StoredClaim]:
        """Claims currently returned to the actor for correction."""
        authorize(actor, Operation.LIST_OWN)
        claims, _ = self.store.find(ClaimQuery(
            owner_id=actor.user_id,
            recall_active=True,
            order_by=_NEWEST_FIRST,
        ))
        return claims

    # =========================================================================
    # Admin views
    # =========================================================================

    def admin_claims(
        self,
        actor: Actor,
        status: ClaimStatus,
        page: int = 0,
        size: Optional[int] = None,
        sort: Optional[Sequence[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        email: Optional[str] = None,
        q: Optional[str] = None,
    ) -> ClaimPage:
        """All claims in a status, filtered by creation day, owner email and free text."""
        authorize(actor, Operation.ADMIN_LIST)
        if date_from and date_to and date_to < date_from:
            raise ValidationFailed.single("to", "'to' must be >= 'from'")

        size = clamp_size(size, self.admin_page_size)
        page = max(0, min(page, MAX_OFFSET // size))
        created_from, created_to = local_day_bounds(date_from, date_to, self.zone)
        claims, total = self.store.find(ClaimQuery(
            statuses=(status,),
            created_from=created_from,
            created_to=created_to,
            owner_email_contains=(email or "").strip() or None,
            text=(q or "").strip() or None,
            order_by=sanitize_sort(sort),
            limit=size,
            offset=page * size,
        ))
        return ClaimPage(claims, page, size, total)

    def export_claims(
        self,
        actor: Actor,
        date_from: date,
        date_to: date,
        statuses: Sequence[ClaimStatus] = (),
    ) -> List[StoredClaim]:
        """Every claim created within the local-day range, newest first."""
        authorize(actor, Operation.EXPORT)
        created_from, created_to = local_day_bounds(date_from, date_to, self.zone)
        claims, _ = self.store.find(ClaimQuery(
            statuses=tuple(statuses),
            created_from=created_from,
            created_to=created_to,
            order_by=_NEWEST_FIRST,
        ))
        return claims
