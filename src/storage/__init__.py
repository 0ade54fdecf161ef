"""
Storage module for persisting claims and receipts.

Provides SQLite-based storage for:
- Reimbursement claims and their recall bookkeeping
- Inline receipt content with cheap existence probes
"""

from .claim_store import (
    ClaimQuery,
    ClaimStore,
    ReceiptMetadata,
    StoredClaim,
    get_claim_store,
)
from .receipt_vault import (
    ALLOWED_CONTENT_TYPES,
    MAX_RECEIPT_BYTES,
    ReceiptFile,
    ReceiptUpload,
    ReceiptVault,
)

__all__ = [
    "ClaimQuery",
    "ClaimStore",
    "ReceiptMetadata",
    "StoredClaim",
    "get_claim_store",
    "ALLOWED_CONTENT_TYPES",
    "MAX_RECEIPT_BYTES",
    "ReceiptFile",
    "ReceiptUpload",
    "ReceiptVault",
]
