"""Owner display data lookup.

Claims keep only the owner id plus a snapshot of display fields taken at
creation; the snapshot is resolved through an OwnerDirectory.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol


@dataclass(frozen=True)
class OwnerProfile:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    designation: Optional[str] = None


class OwnerDirectory(Protocol):
    def lookup(self, user_id: str) -> Optional[OwnerProfile]:
        ...


class InMemoryOwnerDirectory:
    """Directory backed by a dict; the default when no user service is wired in."""

    def __init__(self, profiles: Optional[Dict[str, OwnerProfile]] = None):
        self._profiles = dict(profiles or {})

    def add(self, profile: OwnerProfile) -> None:
        self._profiles[profile.user_id] = profile

    def lookup(self, user_id: str) -> Optional[OwnerProfile]:
        return self._profiles.get(user_id)
