"""
Authorization gate for claim operations.

One decision function answers, for an actor and an operation (and the
owner of the claim, when the operation targets one), whether the call may
proceed. The gate is pure: it reads nothing and remembers nothing, so it is
evaluated afresh on every request.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import OwnershipViolation
from .schema import Role


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as handed over by the authentication boundary."""
    user_id: str
    roles: FrozenSet[Role]
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles


class Operation(str, Enum):
    """Operations guarded by the gate."""
    CREATE = "create"
    LIST_OWN = "list_own"
    VIEW = "view"
    UPDATE_DURING_RECALL = "update_during_recall"
    RESUBMIT = "resubmit"
    CHANGE_REQUEST = "change_request"
    UPLOAD_RECEIPT = "upload_receipt"
    PROBE_RECEIPT = "probe_receipt"
    DOWNLOAD_RECEIPT = "download_receipt"
    APPROVE = "approve"
    REJECT = "reject"
    START_RECALL = "start_recall"
    REQUEST_ATTACHMENT = "request_attachment"
    CANCEL_RECALL = "cancel_recall"
    ADMIN_LIST = "admin_list"
    EXPORT = "export"


@dataclass(frozen=True)
class Policy:
    """Roles allowed to call an operation, and whether USERs must own the claim."""
    roles: FrozenSet[Role]
    owner_only_for_user: bool = False


_ANY_USER = frozenset({Role.USER, Role.ADMIN})
_ADMIN = frozenset({Role.ADMIN})

POLICIES: Dict[Operation, Policy] = {
    Operation.CREATE: Policy(_ANY_USER),
    Operation.LIST_OWN: Policy(_ANY_USER),
    Operation.VIEW: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.UPDATE_DURING_RECALL: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.RESUBMIT: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.CHANGE_REQUEST: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.UPLOAD_RECEIPT: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.PROBE_RECEIPT: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.DOWNLOAD_RECEIPT: Policy(_ANY_USER, owner_only_for_user=True),
    Operation.APPROVE: Policy(_ADMIN),
    Operation.REJECT: Policy(_ADMIN),
    Operation.START_RECALL: Policy(_ADMIN),
    Operation.REQUEST_ATTACHMENT: Policy(_ADMIN),
    Operation.CANCEL_RECALL: Policy(_ADMIN),
    Operation.ADMIN_LIST: Policy(_ADMIN),
    Operation.EXPORT: Policy(_ADMIN),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""


def decide(actor: Actor, operation: Operation, owner_id: Optional[str] = None) -> Decision:
    """
    Decide whether actor may perform operation.

    Args:
        actor: The authenticated caller
        operation: What the caller wants to do
        owner_id: Owner of the target claim, for claim-scoped operations

    Returns:
        Decision (allowed flag plus a human-readable reason when denied)
    """
    policy = POLICIES[operation]

    if not actor.roles & policy.roles:
        return Decision(False, "Insufficient role")

    # ADMIN acts on any claim; a plain USER only on its own
    if policy.owner_only_for_user and not actor.is_admin:
        if owner_id is None or owner_id != actor.user_id:
            return Decision(False, "Not your claim")

    return Decision(True)


def authorize(actor: Actor, operation: Operation, owner_id: Optional[str] = None) -> None:
    """Raise OwnershipViolation unless decide() allows the call."""
    decision = decide(actor, operation, owner_id)
    if not decision.allowed:
        raise OwnershipViolation(decision.reason)


def authorize_role(actor: Actor, operation: Operation) -> None:
    """Role half of the decision, checked before the target claim is looked up."""
    if not actor.roles & POLICIES[operation].roles:
        raise OwnershipViolation("Insufficient role")


def requires_ownership(actor: Actor, operation: Operation) -> bool:
    """Whether the claim lookup for this call must be scoped to the actor."""
    return POLICIES[operation].owner_only_for_user and not actor.is_admin
