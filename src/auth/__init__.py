"""Gateway identity headers -> Actor."""

from .identity import (
    EMAIL_HEADER,
    NAME_HEADER,
    ROLES_HEADER,
    USER_ID_HEADER,
    actor_from_headers,
    normalize_roles,
)

__all__ = [
    "EMAIL_HEADER",
    "NAME_HEADER",
    "ROLES_HEADER",
    "USER_ID_HEADER",
    "actor_from_headers",
    "normalize_roles",
]
