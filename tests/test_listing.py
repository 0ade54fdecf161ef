"""
Tests for the listing service: owner buckets, admin dashboard, sorting,
clamping and local-day date ranges.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from src.claims.errors import OwnershipViolation, ValidationFailed
from src.claims.listing import (
    DEFAULT_SORT,
    MAX_OFFSET,
    MAX_PAGE_SIZE,
    clamp_size,
    local_day_bounds,
    parse_day,
    sanitize_sort,
)
from src.claims.schema import ClaimStatus


# ============================================================================
# Helpers
# ============================================================================


class TestSortAndSize:

    def test_unknown_sort_field_falls_back_to_default(self):
        assert sanitize_sort(["title,asc"]) == DEFAULT_SORT
        assert sanitize_sort(None) == DEFAULT_SORT
        assert sanitize_sort([]) == DEFAULT_SORT

    def test_known_fields_are_mapped(self):
        assert sanitize_sort(["createdAt,desc", "bogus", "amountMinorUnits"]) == (
            ("created_at", "DESC"),
            ("amount_minor_units", "ASC"),
        )

    def test_direction_is_case_insensitive(self):
        assert sanitize_sort(["id,DESC"]) == (("id", "DESC"),)

    @pytest.mark.parametrize("requested, expected", [
        (500, MAX_PAGE_SIZE),
        (100, 100),
        (1, 1),
        (0, 1),
        (-3, 1),
        (None, 20),
    ])
    def test_clamp_size(self, requested, expected):
        assert clamp_size(requested, default=20) == expected

    def test_parse_day(self):
        assert parse_day("2024-03-01", "from") == date(2024, 3, 1)
        assert parse_day(None, "from") is None
        assert parse_day("  ", "from") is None
        with pytest.raises(ValidationFailed):
            parse_day("03/01/2024", "from")

    @pytest.mark.parametrize("value", ["20240301", "2024-W09-5", "2024-3-1", "2024-02-30"])
    def test_parse_day_accepts_only_calendar_dates(self, value):
        with pytest.raises(ValidationFailed):
            parse_day(value, "from")

    def test_local_day_bounds_are_inclusive(self):
        zone = ZoneInfo("Asia/Kolkata")

        start, end = local_day_bounds(date(2024, 3, 1), date(2024, 3, 1), zone)

        assert start.astimezone(timezone.utc) == datetime(2024, 2, 29, 18, 30, tzinfo=timezone.utc)
        assert end.astimezone(timezone.utc) == datetime(2024, 3, 1, 18, 29, 59, 999999, tzinfo=timezone.utc)

    def test_open_ended_bounds(self):
        assert local_day_bounds(None, None, ZoneInfo("UTC")) == (None, None)


# ============================================================================
# Owner listings
# ============================================================================


class TestOwnerListings:

    def test_pending_pagination_is_one_based(self, listing, alice, create_claim):
        ids = [create_claim().id for _ in range(3)]

        first = listing.my_claims(alice, "pending", page=1, size=2)
        second = listing.my_claims(alice, "pending", page=2, size=2)

        assert [c.id for c in first.items] == [ids[2], ids[1]]
        assert [c.id for c in second.items] == [ids[0]]
        assert first.total == 3
        assert first.total_pages == 2

    def test_page_zero_is_clamped_to_first(self, listing, alice, create_claim):
        create_claim()

        result = listing.my_claims(alice, "pending", page=0)

        assert result.page == 1
        assert len(result.items) == 1

    def test_closed_merges_approved_and_rejected(self, engine, listing, admin, alice, create_claim):
        approved = create_claim()
        rejected = create_claim()
        create_claim()
        engine.approve(admin, approved.id)
        engine.reject(admin, rejected.id, "no receipt")

        closed = listing.my_claims(alice, "closed")

        assert [c.id for c in closed.items] == [rejected.id, approved.id]
        assert {c.status for c in closed.items} == {ClaimStatus.APPROVED, ClaimStatus.REJECTED}

    def test_huge_page_is_clamped(self, listing, alice, create_claim):
        create_claim()

        result = listing.my_claims(alice, "pending", page=10**18, size=10)

        assert result.items == []
        assert result.total == 1
        assert (result.page - 1) * result.size <= MAX_OFFSET

    def test_only_own_claims(self, listing, alice, bob, create_claim):
        create_claim(actor=bob)

        assert listing.my_claims(alice, "pending").items == []

    def test_unknown_bucket(self, listing, alice):
        with pytest.raises(ValidationFailed):
            listing.my_claims(alice, "archived")

    def test_recall_lists_active_recalls(self, engine, listing, admin, alice, create_claim):
        recalled = create_claim()
        cancelled = create_claim()
        create_claim()
        engine.start_recall(admin, recalled.id, "fix")
        engine.start_recall(admin, cancelled.id, "fix")
        engine.cancel_recall(admin, cancelled.id)

        assert [c.id for c in listing.my_recall(alice)] == [recalled.id]


# ============================================================================
# Admin listings
# ============================================================================


class TestAdminListings:

    def test_size_is_clamped(self, listing, admin, create_claim):
        create_claim()

        result = listing.admin_claims(admin, ClaimStatus.PENDING, size=500)

        assert result.size == MAX_PAGE_SIZE
        assert result.page == 0

    def test_unknown_sort_falls_back_to_id_desc(self, listing, admin, create_claim):
        ids = [create_claim(amount_minor_units=amount).id for amount in (300, 100, 200)]

        result = listing.admin_claims(admin, ClaimStatus.PENDING, sort=["title,asc"])

        assert [c.id for c in result.items] == sorted(ids, reverse=True)

    def test_sort_by_amount(self, listing, admin, create_claim):
        for amount in (300, 100, 200):
            create_claim(amount_minor_units=amount)

        result = listing.admin_claims(admin, ClaimStatus.PENDING, sort=["amountMinorUnits,asc"])

        assert [c.amount_minor_units for c in result.items] == [100, 200, 300]

    def test_zero_based_pages(self, listing, admin, create_claim):
        ids = [create_claim().id for _ in range(3)]

        result = listing.admin_claims(admin, ClaimStatus.PENDING, page=1, size=2)

        assert [c.id for c in result.items] == [ids[0]]
        assert result.total == 3

    def test_huge_page_is_clamped(self, listing, admin, create_claim):
        create_claim()

        result = listing.admin_claims(admin, ClaimStatus.PENDING, page=10**18)

        assert result.items == []
        assert result.total == 1
        assert result.page * result.size <= MAX_OFFSET

    def test_email_and_text_filters(self, listing, admin, bob, create_claim):
        create_claim(title="Flight to Goa")
        create_claim(actor=bob, title="Printer toner")

        by_email = listing.admin_claims(admin, ClaimStatus.PENDING, email="BOB@example")
        by_text = listing.admin_claims(admin, ClaimStatus.PENDING, q="goa")

        assert [c.owner_id for c in by_email.items] == ["bob"]
        assert [c.title for c in by_text.items] == ["Flight to Goa"]

    def test_date_range(self, listing, admin, create_claim):
        create_claim()
        today = datetime.now(timezone.utc).date()

        inside = listing.admin_claims(admin, ClaimStatus.PENDING,
                                      date_from=today - timedelta(days=1), date_to=today + timedelta(days=1))
        before = listing.admin_claims(admin, ClaimStatus.PENDING, date_to=today - timedelta(days=2))

        assert inside.total == 1
        assert before.total == 0

    def test_inverted_range(self, listing, admin):
        with pytest.raises(ValidationFailed):
            listing.admin_claims(admin, ClaimStatus.PENDING,
                                 date_from=date(2024, 2, 1), date_to=date(2024, 1, 1))

    def test_user_cannot_list_all(self, listing, alice):
        with pytest.raises(OwnershipViolation):
            listing.admin_claims(alice, ClaimStatus.PENDING)

    def test_export_scan(self, engine, listing, admin, alice, create_claim):
        approved = create_claim()
        create_claim()
        engine.approve(admin, approved.id)
        today = datetime.now(timezone.utc).date()

        closed = listing.export_claims(admin, today, today, (ClaimStatus.APPROVED, ClaimStatus.REJECTED))
        everything = listing.export_claims(admin, today, today)

        assert [c.id for c in closed] == [approved.id]
        assert len(everything) == 2
        with pytest.raises(OwnershipViolation):
            listing.export_claims(alice, today, today)
