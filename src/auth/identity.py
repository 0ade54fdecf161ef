"""
Authentication boundary.

Tokens are verified by the gateway in front of the service, which forwards
the identity in headers. This module turns those headers into an Actor and
normalizes the many shapes role claims arrive in, so that the core only
ever sees a canonical role set.
"""

import json
import logging
import re
from typing import Any, FrozenSet, Mapping, Set

from ..claims.authorization import Actor
from ..claims.errors import Unauthenticated
from ..claims.schema import Role

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
ROLES_HEADER = "X-User-Roles"
EMAIL_HEADER = "X-User-Email"
NAME_HEADER = "X-User-Name"

_SEPARATORS = re.compile(r"[,\s]+")


def _role_from_name(name: str):
    name = name.strip().upper()
    if name.startswith("ROLE_"):
        name = name[len("ROLE_"):]
    try:
        return Role(name)
    except ValueError:
        return None


def normalize_roles(raw: Any) -> FrozenSet[Role]:
    """
    Canonical role set from any supported claim shape.

    Accepts:
        "ADMIN", "ROLE_ADMIN", "USER,ADMIN", "USER ADMIN"
        ["USER", "ROLE_ADMIN"]
        '["USER", "ADMIN"]'                      (JSON encoded)
        {"realm_access": {"roles": [...]}} or {"roles": [...]}

    Unknown role names are ignored.
    """
    roles: Set[Role] = set()

    if raw is None:
        return frozenset()

    if isinstance(raw, Mapping):
        if "realm_access" in raw:
            return normalize_roles(raw["realm_access"])
        return normalize_roles(raw.get("roles"))

    if isinstance(raw, (list, tuple, set, frozenset)):
        for item in raw:
            roles |= normalize_roles(item)
        return frozenset(roles)

    if isinstance(raw, str):
        text = raw.strip()
        if text[:1] in ("[", "{"):
            try:
                return normalize_roles(json.loads(text))
            except json.JSONDecodeError:
                logger.debug(f"Role claim is not valid JSON: {text!r}")
        for token in _SEPARATORS.split(text.strip("[]{}")):
            role = _role_from_name(token.strip("\"'"))
            if role is not None:
                roles.add(role)
        return frozenset(roles)

    return frozenset()


def actor_from_headers(headers: Mapping[str, str]) -> Actor:
    """
    Build the Actor forwarded by the gateway.

    Raises:
        Unauthenticated: missing user id or no recognized role
    """
    user_id = (headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        raise Unauthenticated("Authentication required")

    roles = normalize_roles(headers.get(ROLES_HEADER))
    if not roles:
        logger.warning(f"Request from {user_id} carries no recognized role")
        raise Unauthenticated("No recognized role")

    return Actor(
        user_id=user_id,
        roles=roles,
        email=(headers.get(EMAIL_HEADER) or "").strip() or None,
        name=(headers.get(NAME_HEADER) or "").strip() or None,
    )
