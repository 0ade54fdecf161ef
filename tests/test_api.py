"""
End-to-end tests of the HTTP surface.

The app is built with create_app() against a temporary database and a
recording mail sender; identities arrive as gateway headers.
"""

import asyncio
import io
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from src.api.app import create_app
from src.api.routes import export as export_routes
from src.events.notifier import LoggingMailSender
from src.utils.config import Settings

ALICE = {"X-User-Id": "alice", "X-User-Roles": "ROLE_USER", "X-User-Email": "alice@example.com"}
BOB = {"X-User-Id": "bob", "X-User-Roles": '["USER"]', "X-User-Email": "bob@example.com"}
ADMIN = {"X-User-Id": "root", "X-User-Roles": "ADMIN"}

PDF = ("receipt.pdf", b"%PDF-1.4\n% receipt\n", "application/pdf")


# ============================================================================
# Fixtures and helpers
# ============================================================================


@pytest.fixture
def mail():
    return LoggingMailSender()


@pytest.fixture
def client(tmp_path, mail):
    settings = Settings(
        database_path=tmp_path / "api.db",
        local_timezone="UTC",
        max_receipt_bytes=1024,
        admin_email="admin@example.com",
    )
    app = create_app(settings=settings, mail_sender=mail)
    with TestClient(app) as test_client:
        yield test_client


def create(client, headers=ALICE, **overrides):
    item = {
        "title": "Taxi to airport",
        "amountMinorUnits": 5000,
        "currencyCode": "USD",
        "claimType": "TRAVEL",
    }
    item.update(overrides)
    response = client.post("/claims", json=[item], headers=headers)
    assert response.status_code == 200, response.text
    return response.json()[0]


def today():
    return datetime.now(timezone.utc).date()


# ============================================================================
# Basics
# ============================================================================


class TestBasics:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["eventWorker"] is True

    def test_missing_identity(self, client):
        response = client.get("/claims/me/pending")

        assert response.status_code == 401
        assert response.json()["kind"] == "unauthenticated"

    def test_unrecognized_role(self, client):
        response = client.get("/claims/me/pending", headers={"X-User-Id": "eve", "X-User-Roles": "GUEST"})

        assert response.status_code == 401

    def test_get_claim(self, client):
        claim = create(client)

        own = client.get(f"/claims/{claim['id']}", headers=ALICE)
        as_admin = client.get(f"/claims/{claim['id']}", headers=ADMIN)
        foreign = client.get(f"/claims/{claim['id']}", headers=BOB)
        missing = client.get("/claims/999", headers=BOB)

        assert own.status_code == 200
        assert own.json() == claim
        assert as_admin.status_code == 200
        assert foreign.status_code == 403
        assert foreign.json()["error"] == "Not your claim"
        assert missing.status_code == 404


# ============================================================================
# Create
# ============================================================================


class TestCreate:

    def test_batch_create(self, client):
        response = client.post("/claims", headers=ALICE, json=[
            {"title": "Taxi", "amountMinorUnits": 5000, "currencyCode": "USD", "claimType": "TRAVEL"},
            {"title": "Stamps", "amountMinorUnits": 250, "currencyCode": "GBP", "claimType": "POSTAGE",
             "receiptUrl": "https://files.example.com/r/1", "claimDate": "2024-06-01"},
        ])

        assert response.status_code == 200
        body = response.json()
        assert [c["status"] for c in body] == ["PENDING", "PENDING"]
        assert body[0]["ownerId"] == "alice"
        assert body[0]["ownerEmail"] == "alice@example.com"
        assert body[0]["receiptPresent"] is False
        assert body[1]["receiptPresent"] is True
        assert body[1]["externalReceiptUrl"] == "https://files.example.com/r/1"
        assert body[1]["claimDate"] == "2024-06-01"
        assert body[0]["claimDate"] == today().isoformat()

    def test_empty_batch(self, client):
        response = client.post("/claims", headers=ALICE, json=[])

        assert response.status_code == 400
        assert response.json()["error"] == "No claims provided"

    def test_per_item_errors(self, client):
        response = client.post("/claims", headers=ALICE, json=[
            {"title": "Ok", "amountMinorUnits": 100, "currencyCode": "USD", "claimType": "MEAL"},
            {"title": "", "amountMinorUnits": 0, "currencyCode": "USD", "claimType": "MEAL"},
        ])

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "validation"
        assert [d["field"] for d in body["details"]] == ["[1].title", "[1].amountMinorUnits"]

    def test_amount_beyond_storage_range(self, client):
        response = client.post("/claims", headers=ALICE, json=[
            {"title": "Yacht", "amountMinorUnits": 2**63, "currencyCode": "USD", "claimType": "OTHER"},
        ])

        assert response.status_code == 400
        assert response.json()["kind"] == "validation"
        assert response.json()["details"][0]["field"] == "[0].amountMinorUnits"

    def test_unknown_enum_value(self, client):
        response = client.post("/claims", headers=ALICE, json=[
            {"title": "Yen", "amountMinorUnits": 100, "currencyCode": "JPY", "claimType": "MEAL"},
        ])

        assert response.status_code == 400
        assert response.json()["kind"] == "validation"
        assert response.json()["details"][0]["field"] == "[0].currencyCode"


# ============================================================================
# Adjudication
# ============================================================================


class TestAdjudication:

    def test_reject_then_approve_conflicts(self, client, mail):
        claim = create(client)

        rejected = client.patch(f"/admin/claims/{claim['id']}/reject", headers=ADMIN,
                                json={"adminComment": "missing receipt"})
        again = client.patch(f"/admin/claims/{claim['id']}/approve", headers=ADMIN)

        assert rejected.status_code == 200
        assert rejected.json()["status"] == "REJECTED"
        assert rejected.json()["adminComment"] == "missing receipt"
        assert again.status_code == 409
        assert again.json()["kind"] == "state_conflict"

        client.app.state.events.join()
        subjects = [subject for _, subject, _ in mail.sent]
        assert f"Claim submitted: #{claim['id']}" in subjects
        assert f"New claim submitted: #{claim['id']}" in subjects
        assert f"Claim rejected: #{claim['id']}" in subjects

    def test_reject_requires_comment(self, client):
        claim = create(client)

        response = client.patch(f"/admin/claims/{claim['id']}/reject", headers=ADMIN)

        assert response.status_code == 400
        assert response.json()["error"] == "Admin comment required"

    def test_user_cannot_approve(self, client):
        claim = create(client)

        response = client.patch(f"/admin/claims/{claim['id']}/approve", headers=ALICE)

        assert response.status_code == 403
        assert response.json()["kind"] == "ownership_violation"

    def test_approve_missing_claim(self, client):
        response = client.patch("/admin/claims/999/approve", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"] == "Claim not found"


# ============================================================================
# Recall flow
# ============================================================================


class TestRecallFlow:

    def test_recall_and_resubmit_with_receipt(self, client):
        claim = create(client)

        recalled = client.patch(f"/admin/claims/{claim['id']}/recall", headers=ADMIN,
                                json={"reason": "need original bill", "requireAttachment": True})
        assert recalled.status_code == 200
        assert recalled.json()["status"] == "RECALLED"
        assert recalled.json()["recallActive"] is True
        assert recalled.json()["recallRequiresAttachment"] is True

        inbox = client.get("/claims/me/recall", headers=ALICE)
        assert [c["id"] for c in inbox.json()] == [claim["id"]]

        resubmitted = client.patch(f"/claims/{claim['id']}/resubmit", headers=ALICE,
                                   files={"file": PDF}, data={"comment": "attached"})
        assert resubmitted.status_code == 200, resubmitted.text
        body = resubmitted.json()
        assert body["status"] == "PENDING"
        assert body["recallActive"] is False
        assert body["resubmitComment"] == "attached"
        assert body["receiptPresent"] is True

        download = client.get(f"/claims/{claim['id']}/receipt", headers=ALICE)
        assert download.status_code == 200
        assert download.content == PDF[1]
        assert download.headers["content-type"].startswith("application/pdf")
        assert "filename*=UTF-8''receipt.pdf" in download.headers["content-disposition"]

    def test_json_resubmit_without_recall_is_noop(self, client):
        claim = create(client)

        response = client.patch(f"/claims/{claim['id']}/resubmit", headers=ALICE, json={"comment": "hi"})

        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"
        assert response.json()["resubmitComment"] is None
        assert response.json()["updatedAt"] == claim["updatedAt"]

    def test_json_resubmit_resolves_recall(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/recall", headers=ADMIN, json={"reason": "typo"})

        response = client.patch(f"/claims/{claim['id']}/resubmit", headers=ALICE, json={"comment": "fixed"})

        assert response.json()["status"] == "PENDING"
        assert response.json()["resubmitComment"] == "fixed"

    def test_request_attachment_and_cancel(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/recall", headers=ADMIN, json={"reason": "amount"})

        tightened = client.patch(f"/admin/claims/{claim['id']}/recall/request-attachment",
                                 headers=ADMIN, json={"note": "attach the bill"})
        cancelled = client.patch(f"/admin/claims/{claim['id']}/recall/cancel", headers=ADMIN)

        assert tightened.json()["recallRequiresAttachment"] is True
        assert tightened.json()["adminComment"] == "attach the bill"
        assert cancelled.json()["status"] == "PENDING"
        assert cancelled.json()["recallActive"] is False
        assert cancelled.json()["recallReason"] is None

    def test_edit_during_recall(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/recall", headers=ADMIN, json={"reason": "wrong amount"})

        response = client.put(f"/claims/{claim['id']}", headers=ALICE,
                              json={"amountMinorUnits": 4500, "title": "Taxi (fixed)"})

        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"
        assert response.json()["amountMinorUnits"] == 4500

    def test_edit_outside_recall(self, client):
        claim = create(client)

        response = client.put(f"/claims/{claim['id']}", headers=ALICE, json={"title": "New"})

        assert response.status_code == 409
        assert response.json()["error"] == "Claim not editable in current state"

    def test_change_request(self, client):
        claim = create(client)

        response = client.post(f"/claims/{claim['id']}/change-request", headers=ALICE,
                               json={"message": "wrong currency"})

        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"
        assert response.json()["resubmitComment"] == "wrong currency"

    def test_change_request_on_someone_elses_claim(self, client):
        claim = create(client)

        response = client.post(f"/claims/{claim['id']}/change-request", headers=BOB,
                               json={"message": "mine?"})

        assert response.status_code == 403


# ============================================================================
# Receipts
# ============================================================================


class TestReceipts:

    def test_probe_and_upload(self, client):
        claim = create(client)
        url = f"/claims/{claim['id']}/receipt"

        assert client.head(url, headers=ALICE).status_code == 404

        uploaded = client.post(url, headers=ALICE, files={"file": PDF})

        assert uploaded.status_code == 200
        assert uploaded.json()["receiptSizeBytes"] == len(PDF[1])
        assert client.head(url, headers=ALICE).status_code == 200

    def test_other_users_receipt_is_forbidden(self, client):
        claim = create(client)
        client.post(f"/claims/{claim['id']}/receipt", headers=ALICE, files={"file": PDF})

        forbidden = client.get(f"/claims/{claim['id']}/receipt", headers=BOB)
        missing = client.get("/claims/424242/receipt", headers=BOB)

        assert forbidden.status_code == 403
        assert missing.status_code == 404

    def test_download_without_receipt(self, client):
        claim = create(client)

        response = client.get(f"/claims/{claim['id']}/receipt", headers=ALICE)

        assert response.status_code == 404
        assert response.json()["error"] == "No receipt uploaded for this claim"

    def test_upload_limits(self, client):
        claim = create(client)
        url = f"/claims/{claim['id']}/receipt"

        empty = client.post(url, headers=ALICE, files={"file": ("e.pdf", b"", "application/pdf")})
        too_big = client.post(url, headers=ALICE, files={"file": ("b.pdf", b"x" * 1025, "application/pdf")})
        at_limit = client.post(url, headers=ALICE, files={"file": ("a.pdf", b"x" * 1024, "application/pdf")})
        wrong_type = client.post(url, headers=ALICE, files={"file": ("a.exe", b"MZ", "application/x-msdownload")})
        no_file = client.post(url, headers=ALICE)

        assert empty.status_code == 400
        assert too_big.status_code == 413
        assert too_big.json()["kind"] == "payload_too_large"
        assert at_limit.status_code == 200
        assert wrong_type.status_code == 415
        assert no_file.status_code == 400

    def test_upload_on_closed_claim(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/approve", headers=ADMIN)

        response = client.post(f"/claims/{claim['id']}/receipt", headers=ALICE, files={"file": PDF})

        assert response.status_code == 409


# ============================================================================
# Listings
# ============================================================================


class TestListings:

    def test_my_pending_is_paginated(self, client):
        ids = [create(client)["id"] for _ in range(3)]

        response = client.get("/claims/me/pending", headers=ALICE, params={"page": 1, "size": 2})

        body = response.json()
        assert [c["id"] for c in body["content"]] == [ids[2], ids[1]]
        assert body["page"] == 1
        assert body["totalElements"] == 3
        assert body["totalPages"] == 2

    def test_my_closed(self, client):
        approved = create(client)
        create(client)
        client.patch(f"/admin/claims/{approved['id']}/approve", headers=ADMIN)

        response = client.get("/claims/me/closed", headers=ALICE)

        assert [c["id"] for c in response.json()["content"]] == [approved["id"]]

    def test_admin_list_clamps_and_sorts(self, client):
        ids = [create(client, amountMinorUnits=amount)["id"] for amount in (300, 100, 200)]

        clamped = client.get("/admin/claims/pending", headers=ADMIN, params={"size": 500})
        fallback = client.get("/admin/claims/pending", headers=ADMIN, params={"sort": "title,asc"})
        by_amount = client.get("/admin/claims/pending", headers=ADMIN,
                               params=[("sort", "amountMinorUnits,desc")])

        assert clamped.json()["size"] == 100
        assert [c["id"] for c in fallback.json()["content"]] == sorted(ids, reverse=True)
        assert [c["amountMinorUnits"] for c in by_amount.json()["content"]] == [300, 200, 100]

    def test_admin_list_filters(self, client):
        create(client, title="Flight to Goa")
        create(client, headers=BOB, title="Toner")

        by_email = client.get("/admin/claims/pending", headers=ADMIN, params={"email": "bob@"})
        by_text = client.get("/admin/claims/pending", headers=ADMIN, params={"q": "goa"})
        by_date = client.get("/admin/claims/pending", headers=ADMIN,
                             params={"from": today().isoformat(), "to": today().isoformat()})

        assert [c["ownerId"] for c in by_email.json()["content"]] == ["bob"]
        assert [c["title"] for c in by_text.json()["content"]] == ["Flight to Goa"]
        assert by_date.json()["totalElements"] == 2

    def test_huge_page_index(self, client):
        create(client)

        mine = client.get("/claims/me/pending", headers=ALICE, params={"page": 10**18})
        dashboard = client.get("/admin/claims/pending", headers=ADMIN, params={"page": 10**18})

        assert mine.status_code == 200
        assert mine.json()["content"] == []
        assert dashboard.status_code == 200
        assert dashboard.json()["totalElements"] == 1

    def test_search_wildcards_are_literal(self, client):
        create(client, title="Taxi")

        percent = client.get("/admin/claims/pending", headers=ADMIN, params={"q": "%"})
        underscore = client.get("/admin/claims/pending", headers=ADMIN, params={"email": "_"})

        assert percent.json()["totalElements"] == 0
        assert underscore.json()["totalElements"] == 0

    @pytest.mark.parametrize("value", ["yesterday", "20240101", "2024-W02-1"])
    def test_admin_list_bad_date(self, client, value):
        response = client.get("/admin/claims/pending", headers=ADMIN, params={"from": value})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid date. Use YYYY-MM-DD"

    def test_admin_list_requires_admin(self, client):
        assert client.get("/admin/claims/pending", headers=ALICE).status_code == 403

    def test_admin_recalled_list(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/recall", headers=ADMIN, json={"reason": "fix"})

        response = client.get("/admin/claims/recalled", headers=ADMIN)

        assert [c["id"] for c in response.json()["content"]] == [claim["id"]]
        assert response.json()["content"][0]["recallReason"] == "fix"


# ============================================================================
# Export
# ============================================================================


class TestExport:

    def range_params(self, **extra):
        params = {
            "from": (today() - timedelta(days=1)).isoformat(),
            "to": (today() + timedelta(days=1)).isoformat(),
        }
        params.update(extra)
        return params

    def test_xlsx_export(self, client):
        create(client)
        create(client, headers=BOB)

        response = client.get("/admin/claims/export", headers=ADMIN, params=self.range_params())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        params = self.range_params()
        expected = f"claims_{params['from']}_to_{params['to']}.xlsx"
        assert response.headers["content-disposition"] == f"attachment; filename*=UTF-8''{expected}"
        sheet = load_workbook(io.BytesIO(response.content))["Claims"]
        assert sheet.max_row == 3

    def test_pdf_export_of_closed_claims(self, client):
        claim = create(client)
        client.patch(f"/admin/claims/{claim['id']}/approve", headers=ADMIN)

        response = client.get("/admin/claims/export", headers=ADMIN,
                              params=self.range_params(format="pdf", status="closed"))

        assert response.status_code == 200
        assert response.content.startswith(b"%PDF")
        assert response.headers["content-disposition"].endswith("_CLOSED.pdf")

    @pytest.mark.parametrize("params, message", [
        ({"from": "2024-01-01", "to": "01/31/2024"}, "Invalid date. Use YYYY-MM-DD for 'from' and 'to'."),
        ({"from": "20240101", "to": "2024-01-31"}, "Invalid date. Use YYYY-MM-DD for 'from' and 'to'."),
        ({"from": "2024-01-01", "to": "2024-W02-1"}, "Invalid date. Use YYYY-MM-DD for 'from' and 'to'."),
        ({"from": "2024-02-01", "to": "2024-01-01"}, "'to' must be >= 'from'."),
        ({"from": "2024-01-01", "to": "2024-01-31", "status": "open"},
         "Invalid status. Allowed: PENDING, APPROVED, REJECTED, RECALLED, CLOSED"),
        ({"from": "2024-01-01", "to": "2024-01-31", "format": "docx"}, "Invalid format. Allowed: xlsx, pdf"),
    ])
    def test_bad_parameters_are_plain_text(self, client, params, message):
        response = client.get("/admin/claims/export", headers=ADMIN, params=params)

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == message

    def test_export_requires_admin(self, client):
        response = client.get("/admin/claims/export", headers=ALICE, params=self.range_params())

        assert response.status_code == 403


# ============================================================================
# Threading
# ============================================================================


def record_thread(monkeypatch, target, name, seen):
    """Wrap target.name so each call records whether it ran on the event loop."""
    original = getattr(target, name)

    def wrapper(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            seen.append((name, "event loop"))
        except RuntimeError:
            seen.append((name, "worker"))
        return original(*args, **kwargs)

    monkeypatch.setattr(target, name, wrapper)


def test_storage_and_rendering_stay_off_the_event_loop(client, monkeypatch):
    seen = []
    state = client.app.state
    record_thread(monkeypatch, state.engine, "create", seen)
    record_thread(monkeypatch, state.engine, "upload_receipt", seen)
    record_thread(monkeypatch, state.engine, "resubmit", seen)
    record_thread(monkeypatch, state.engine, "approve", seen)
    record_thread(monkeypatch, state.listing, "admin_claims", seen)
    record_thread(monkeypatch, state.listing, "export_claims", seen)
    record_thread(monkeypatch, export_routes, "render_export", seen)

    claim = create(client)
    client.post(f"/claims/{claim['id']}/receipt", headers=ALICE, files={"file": PDF})
    client.patch(f"/claims/{claim['id']}/resubmit", headers=ALICE, files={"file": PDF})
    client.patch(f"/admin/claims/{claim['id']}/approve", headers=ADMIN)
    client.get("/admin/claims/approved", headers=ADMIN)
    client.get("/admin/claims/export", headers=ADMIN,
               params={"from": today().isoformat(), "to": today().isoformat(), "format": "pdf"})

    assert {name for name, _ in seen} == {
        "create", "upload_receipt", "resubmit", "approve",
        "admin_claims", "export_claims", "render_export",
    }
    assert [call for call in seen if call[1] == "event loop"] == []
