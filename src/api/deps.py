"""FastAPI dependencies: services from app.state and the calling actor."""

from fastapi import Request

from ..auth.identity import actor_from_headers
from ..claims.authorization import Actor
from ..claims.lifecycle import ClaimLifecycleEngine
from ..claims.listing import ListingService


def get_engine(request: Request) -> ClaimLifecycleEngine:
    return request.app.state.engine


def get_listing(request: Request) -> ListingService:
    return request.app.state.listing


def get_current_actor(request: Request) -> Actor:
    """Identity forwarded by the gateway; raises Unauthenticated (401)."""
    return actor_from_headers(request.headers)
