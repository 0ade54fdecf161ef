"""Shared fixtures: a throwaway SQLite store, the engine and a few actors."""

import pytest

from src.claims.authorization import Actor
from src.claims.lifecycle import ClaimLifecycleEngine
from src.claims.listing import ListingService
from src.claims.schema import ClaimType, CreateClaimRequest, CurrencyCode, Role
from src.events.bus import ClaimEventBus
from src.storage.claim_store import ClaimStore
from src.storage.receipt_vault import ReceiptUpload, ReceiptVault


# ============================================================================
# Actors
# ============================================================================


@pytest.fixture
def alice():
    return Actor("alice", frozenset({Role.USER}), email="alice@example.com", name="Alice")


@pytest.fixture
def bob():
    return Actor("bob", frozenset({Role.USER}), email="bob@example.com", name="Bob")


@pytest.fixture
def admin():
    return Actor("root", frozenset({Role.ADMIN}), email="admin@example.com", name="Admin")


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def store(tmp_path):
    return ClaimStore(tmp_path / "claims.db")


@pytest.fixture
def vault(store):
    return ReceiptVault(store)


@pytest.fixture
def bus():
    """Bus without a worker: published events stay queued."""
    return ClaimEventBus()


@pytest.fixture
def engine(store, vault, bus):
    return ClaimLifecycleEngine(store, vault, events=bus)


@pytest.fixture
def listing(store):
    return ListingService(store)


@pytest.fixture
def create_claim(engine, alice):
    """Factory: create one claim through the engine."""
    def _create(actor=None, **overrides):
        data = dict(
            title="Taxi to airport",
            amount_minor_units=5000,
            currency_code=CurrencyCode.USD,
            claim_type=ClaimType.TRAVEL,
        )
        data.update(overrides)
        [claim] = engine.create(actor or alice, [CreateClaimRequest(**data)])
        return claim
    return _create


@pytest.fixture
def pdf_upload():
    return ReceiptUpload("receipt.pdf", "application/pdf", b"%PDF-1.4\n% test receipt\n")
