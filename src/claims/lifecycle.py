"""
Claim lifecycle engine.

The state machine behind every claim mutation:

    create ──> PENDING ──approve──> APPROVED
                  │ └────reject───> REJECTED
                  │
             startRecall
                  v
               RECALLED ──requestAttachment──> RECALLED
                  │
                  ├─cancelRecall──────────────> PENDING
                  ├─resubmit (owner)──────────> PENDING
                  ├─uploadReceipt (owner)─────> PENDING
                  └─updateDuringRecall (owner)> RECALLED, or PENDING when no
                                                attachment is required

createChangeRequest records a message for the admin without touching the
status. APPROVED and REJECTED are terminal.

Every operation is: authorize role -> validate input -> load claim (404 vs
403) -> check guard -> one conditional write -> publish event. The write
re-checks the row version (and the expected status), so two racing
transitions cannot both succeed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from ..events.bus import ClaimEvent, ClaimEventBus, ClaimEventKind
from ..storage.claim_store import ClaimStore, StoredClaim
from ..storage.receipt_vault import ReceiptFile, ReceiptUpload, ReceiptVault
from .authorization import Actor, Operation, authorize, authorize_role, requires_ownership
from .errors import ClaimNotFound, OwnershipViolation, StateConflict, ValidationFailed
from .owners import InMemoryOwnerDirectory, OwnerDirectory
from .schema import (
    TERMINAL_STATUSES,
    ClaimStatus,
    CreateClaimRequest,
    UpdateClaimRequest,
)
from .validation import check_text, validate_batch, validate_update

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaimLifecycleEngine:
    """
    Owns all claim transitions and their invariants.

    Usage:
        engine = ClaimLifecycleEngine(store, ReceiptVault(store), events=bus)

        [claim] = engine.create(actor, [CreateClaimRequest(...)])
        engine.start_recall(admin, claim.id, "need original bill", require_attachment=True)
        engine.resubmit(actor, claim.id, comment="attached", upload=ReceiptUpload(...))
    """

    def __init__(
        self,
        store: ClaimStore,
        vault: ReceiptVault,
        events: Optional[ClaimEventBus] = None,
        owners: Optional[OwnerDirectory] = None,
        zone: ZoneInfo = ZoneInfo("UTC"),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.vault = vault
        self.events = events
        self.owners = owners or InMemoryOwnerDirectory()
        self.zone = zone
        self.clock = clock

    # =========================================================================
    # Owner operations
    # =========================================================================

    def create(self, actor: Actor, items: Optional[List[CreateClaimRequest]]) -> List[StoredClaim]:
        """
        Create a batch of PENDING claims owned by the actor.

        Every item is validated before anything is written; the batch is
        inserted in one transaction.
        """
        authorize_role(actor, Operation.CREATE)
        errors = validate_batch(items)
        if errors:
            raise ValidationFailed(errors)

        profile = self.owners.lookup(actor.user_id)
        owner_email = (profile.email if profile and profile.email else None) or actor.email
        owner_name = (profile.name if profile and profile.name else None) or actor.name
        today = self.clock().astimezone(self.zone).date()

        records = []
        for item in items:
            records.append({
                "owner_id": actor.user_id,
                "owner_email": owner_email,
                "owner_name": owner_name,
                "title": item.title.strip(),
                "amount_minor_units": item.amount_minor_units,
                "currency_code": item.currency_code,
                "claim_type": item.claim_type,
                "description": item.description,
                "claim_date": item.claim_date or today,
                "external_receipt_url": (item.receipt_url or "").strip() or None,
                "status": ClaimStatus.PENDING,
            })

        ids = self.store.insert_many(records)
        created = [self.store.get(claim_id) for claim_id in ids]
        logger.info(f"User {actor.user_id} created {len(created)} claim(s): {ids}")
        for claim in created:
            self._publish(ClaimEventKind.CREATED, claim, actor=actor)
        return created

    def get(self, actor: Actor, claim_id: int) -> StoredClaim:
        """Read one claim (owner or admin)."""
        return self._load(actor, claim_id, Operation.VIEW)

    def update_during_recall(self, actor: Actor, claim_id: int, update: UpdateClaimRequest) -> StoredClaim:
        """
        Apply the owner's edits while a recall is active.

        Only supplied fields change. When the recall does not require an
        attachment the edit resolves it and the claim returns to PENDING;
        otherwise the claim stays RECALLED until a receipt arrives.
        """
        authorize_role(actor, Operation.UPDATE_DURING_RECALL)
        errors = validate_update(update)
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.UPDATE_DURING_RECALL)
        if claim.status != ClaimStatus.RECALLED or not claim.recall_active:
            raise StateConflict("Claim not editable in current state")

        changes: Dict[str, Any] = {}
        if update.title is not None:
            changes["title"] = update.title.strip()
        if update.amount_minor_units is not None:
            changes["amount_minor_units"] = update.amount_minor_units
        if update.description is not None:
            changes["description"] = update.description
        if update.claim_date is not None:
            changes["claim_date"] = update.claim_date
        if update.currency_code is not None:
            changes["currency_code"] = update.currency_code
        if update.claim_type is not None:
            changes["claim_type"] = update.claim_type

        resolved = not claim.recall_requires_attachment
        if resolved:
            changes.update(self._recall_cleared())

        updated = self._commit(claim, changes, expected_status=ClaimStatus.RECALLED)
        logger.info(
            f"Claim {claim_id} edited during recall by {actor.user_id}"
            + (" (recall resolved)" if resolved else "")
        )
        self._publish(ClaimEventKind.UPDATED, updated, actor=actor)
        return updated

    def resubmit(
        self,
        actor: Actor,
        claim_id: int,
        comment: Optional[str] = None,
        upload: Optional[ReceiptUpload] = None,
    ) -> StoredClaim:
        """
        Answer an active recall, optionally with a new receipt and a comment.

        A claim without an active recall is returned unchanged.
        """
        authorize_role(actor, Operation.RESUBMIT)
        errors = check_text(comment, "comment", "Comment", required=False)
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.RESUBMIT)
        if not claim.recall_active:
            logger.info(f"Resubmit on claim {claim_id} ignored: no active recall")
            return claim

        changes = self._recall_cleared()
        if upload is not None and not upload.is_empty:
            changes.update(self.vault.prepare(upload))
        if comment is not None and comment.strip():
            changes["resubmit_comment"] = comment.strip()

        updated = self._commit(claim, changes, expected_status=ClaimStatus.RECALLED)
        logger.info(f"Claim {claim_id} resubmitted by {actor.user_id}")
        self._publish(ClaimEventKind.RESUBMITTED, updated, comment=updated.resubmit_comment, actor=actor)
        return updated

    def create_change_request(self, actor: Actor, claim_id: int, message: Optional[str]) -> StoredClaim:
        """Leave a message for the admin; the status does not change."""
        authorize_role(actor, Operation.CHANGE_REQUEST)
        errors = check_text(message, "message", "Change request message")
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.CHANGE_REQUEST)
        updated = self._commit(claim, {
            "resubmit_comment": message.strip(),
            "resubmitted_at": self.clock(),
        })
        logger.info(f"Change request recorded on claim {claim_id} by {actor.user_id}")
        self._publish(ClaimEventKind.CHANGE_REQUESTED, updated, comment=message.strip(), actor=actor)
        return updated

    # =========================================================================
    # Receipts
    # =========================================================================

    def upload_receipt(self, actor: Actor, claim_id: int, upload: Optional[ReceiptUpload]) -> StoredClaim:
        """
        Store (or replace) the receipt of an open claim.

        Uploading into an active recall resolves it, as a resubmit would.
        """
        claim = self._load(actor, claim_id, Operation.UPLOAD_RECEIPT)
        if claim.status in TERMINAL_STATUSES:
            raise StateConflict("Receipt cannot be changed on a closed claim")

        changes = self.vault.prepare(upload)
        resolved = claim.status == ClaimStatus.RECALLED and claim.recall_active
        if resolved:
            changes.update(self._recall_cleared())

        updated = self._commit(claim, changes, expected_status=claim.status)
        logger.info(
            f"Receipt uploaded for claim {claim_id} by {actor.user_id} "
            f"({changes['receipt_size_bytes']} bytes, {changes['receipt_content_type']})"
        )
        self._publish(ClaimEventKind.RECEIPT_UPLOADED, updated, actor=actor)
        return updated

    def receipt_exists(self, actor: Actor, claim_id: int) -> bool:
        self._load(actor, claim_id, Operation.PROBE_RECEIPT)
        return self.vault.exists(claim_id)

    def download_receipt(self, actor: Actor, claim_id: int) -> ReceiptFile:
        self._load(actor, claim_id, Operation.DOWNLOAD_RECEIPT)
        return self.vault.fetch(claim_id)

    # =========================================================================
    # Admin operations
    # =========================================================================

    def approve(self, actor: Actor, claim_id: int) -> StoredClaim:
        authorize_role(actor, Operation.APPROVE)
        claim = self._load(actor, claim_id, Operation.APPROVE)
        self._require_pending(claim, "approved")

        updated = self._commit(
            claim,
            {"status": ClaimStatus.APPROVED},
            expected_status=ClaimStatus.PENDING,
            conflict_message="Only pending claims can be approved",
        )
        logger.info(f"Claim {claim_id} approved by {actor.user_id}")
        self._publish(ClaimEventKind.APPROVED, updated, actor=actor)
        return updated

    def reject(self, actor: Actor, claim_id: int, comment: Optional[str]) -> StoredClaim:
        authorize_role(actor, Operation.REJECT)
        errors = check_text(comment, "adminComment", "Admin comment")
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.REJECT)
        self._require_pending(claim, "rejected")

        updated = self._commit(
            claim,
            {"status": ClaimStatus.REJECTED, "admin_comment": comment.strip()},
            expected_status=ClaimStatus.PENDING,
            conflict_message="Only pending claims can be rejected",
        )
        logger.info(f"Claim {claim_id} rejected by {actor.user_id}")
        self._publish(ClaimEventKind.REJECTED, updated, comment=updated.admin_comment, actor=actor)
        return updated

    def start_recall(
        self,
        actor: Actor,
        claim_id: int,
        reason: Optional[str],
        require_attachment: bool = False,
    ) -> StoredClaim:
        """Send a pending claim back to its owner for correction."""
        authorize_role(actor, Operation.START_RECALL)
        errors = check_text(reason, "reason", "Recall reason")
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.START_RECALL)
        self._require_pending(claim, "recalled")

        updated = self._commit(
            claim,
            {
                "status": ClaimStatus.RECALLED,
                "recall_active": True,
                "recall_reason": reason.strip(),
                "recall_requires_attachment": bool(require_attachment),
                "recalled_at": self.clock(),
                "resubmit_comment": None,
            },
            expected_status=ClaimStatus.PENDING,
            conflict_message="Only pending claims can be recalled",
        )
        logger.info(
            f"Claim {claim_id} recalled by {actor.user_id} "
            f"(attachment required: {updated.recall_requires_attachment})"
        )
        self._publish(ClaimEventKind.RECALLED, updated, comment=updated.recall_reason, actor=actor)
        return updated

    def request_attachment(self, actor: Actor, claim_id: int, note: Optional[str]) -> StoredClaim:
        """Tighten an active recall so that the owner must attach a receipt."""
        authorize_role(actor, Operation.REQUEST_ATTACHMENT)
        errors = check_text(note, "note", "Attachment request note")
        if errors:
            raise ValidationFailed(errors)

        claim = self._load(actor, claim_id, Operation.REQUEST_ATTACHMENT)
        if claim.status != ClaimStatus.RECALLED or not claim.recall_active:
            raise StateConflict("Attachment can only be requested on a recalled claim")

        note = note.strip()
        updated = self._commit(
            claim,
            {
                "recall_requires_attachment": True,
                "recall_reason": note,
                "admin_comment": note,
            },
            expected_status=ClaimStatus.RECALLED,
            conflict_message="Attachment can only be requested on a recalled claim",
        )
        logger.info(f"Attachment requested on claim {claim_id} by {actor.user_id}")
        self._publish(ClaimEventKind.ATTACHMENT_REQUESTED, updated, comment=note, actor=actor)
        return updated

    def cancel_recall(self, actor: Actor, claim_id: int) -> StoredClaim:
        authorize_role(actor, Operation.CANCEL_RECALL)
        claim = self._load(actor, claim_id, Operation.CANCEL_RECALL)
        if claim.status != ClaimStatus.RECALLED:
            raise StateConflict("Only recalled claims can have their recall cancelled")

        updated = self._commit(
            claim,
            self._recall_cleared(),
            expected_status=ClaimStatus.RECALLED,
            conflict_message="Only recalled claims can have their recall cancelled",
        )
        logger.info(f"Recall on claim {claim_id} cancelled by {actor.user_id}")
        self._publish(ClaimEventKind.RECALL_CANCELLED, updated, actor=actor)
        return updated

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, actor: Actor, claim_id: int, operation: Operation) -> StoredClaim:
        """
        Fetch the target claim for actor.

        A caller limited to its own claims gets 404 when the id does not
        exist at all and 403 when it exists but belongs to someone else.
        """
        authorize_role(actor, operation)

        if requires_ownership(actor, operation):
            claim = self.store.get_owned(claim_id, actor.user_id)
            if claim is None:
                if self.store.exists(claim_id):
                    raise OwnershipViolation("Not your claim")
                raise ClaimNotFound(claim_id)
        else:
            claim = self.store.get(claim_id)
            if claim is None:
                raise ClaimNotFound(claim_id)

        authorize(actor, operation, claim.owner_id)
        return claim

    def _commit(
        self,
        claim: StoredClaim,
        changes: Dict[str, Any],
        expected_status: Optional[ClaimStatus] = None,
        conflict_message: str = "Claim was modified concurrently, reload and retry",
    ) -> StoredClaim:
        """Write changes if the row is still the one that was read."""
        applied = self.store.update(
            claim.id,
            changes,
            expected_version=claim.version,
            expected_status=expected_status,
        )
        current = self.store.get(claim.id)
        if current is None:
            raise ClaimNotFound(claim.id)
        if not applied:
            logger.warning(
                f"Conditional write on claim {claim.id} lost: read v{claim.version}, "
                f"now v{current.version} ({current.status.value})"
            )
            if expected_status is not None and current.status != expected_status:
                raise StateConflict(conflict_message)
            raise StateConflict("Claim was modified concurrently, reload and retry")
        return current

    def _require_pending(self, claim: StoredClaim, verb: str) -> None:
        if claim.status != ClaimStatus.PENDING:
            raise StateConflict(f"Only pending claims can be {verb}")

    def _recall_cleared(self) -> Dict[str, Any]:
        return {
            "status": ClaimStatus.PENDING,
            "recall_active": False,
            "recall_requires_attachment": False,
            "recall_reason": None,
            "resubmitted_at": self.clock(),
        }

    def _publish(self, kind: ClaimEventKind, claim: StoredClaim,
                 comment: Optional[str] = None, actor: Optional[Actor] = None) -> None:
        if self.events is None:
            return
        self.events.publish(ClaimEvent.from_claim(
            kind, claim, comment=comment, actor_id=actor.user_id if actor else None,
        ))
