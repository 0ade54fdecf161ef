"""
Receipt vault: validation and retrieval of inline receipt content.

Receipts live in the claim row itself (one receipt per claim). The vault
validates candidate uploads and turns them into column values that the
lifecycle engine writes together with the rest of the transition, so the
receipt and the claim update land in the same conditional write.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

from ..claims.errors import (
    ClaimNotFound,
    PayloadTooLarge,
    ReceiptNotFound,
    UnsupportedMediaType,
    ValidationFailed,
)
from .claim_store import ClaimStore

logger = logging.getLogger(__name__)

MAX_RECEIPT_BYTES = 10 * 1024 * 1024  # 10 MiB

ALLOWED_CONTENT_TYPES: FrozenSet[str] = frozenset({
    "image/jpeg", "image/png", "image/gif", "image/webp",
    "application/pdf",
    "application/msword", "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain", "text/csv",
})


@dataclass(frozen=True)
class ReceiptUpload:
    """A candidate receipt as received from the caller."""
    filename: Optional[str]
    content_type: Optional[str]
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def is_empty(self) -> bool:
        return not self.content


@dataclass(frozen=True)
class ReceiptFile:
    """A stored receipt ready for download."""
    filename: str
    content_type: str
    content: bytes


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """Strip parameters and case: 'Text/Plain; charset=utf-8' -> 'text/plain'."""
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


class ReceiptVault:
    """
    Owns receipt content, filename, content type and size.

    Usage:
        vault = ReceiptVault(store)
        columns = vault.prepare(upload)     # raises on empty/type/size
        vault.exists(claim_id)              # metadata only
        receipt = vault.fetch(claim_id)     # raises ReceiptNotFound
    """

    def __init__(
        self,
        store: ClaimStore,
        max_bytes: int = MAX_RECEIPT_BYTES,
        allowed_content_types: FrozenSet[str] = ALLOWED_CONTENT_TYPES,
    ):
        self.store = store
        self.max_bytes = max_bytes
        self.allowed_content_types = allowed_content_types

    def validate(self, upload: Optional[ReceiptUpload]) -> str:
        """
        Check an upload against the vault constraints.

        Returns:
            The normalized content type

        Raises:
            ValidationFailed: no file or an empty file
            UnsupportedMediaType: content type not allow-listed
            PayloadTooLarge: larger than the ceiling
        """
        if upload is None or upload.is_empty:
            raise ValidationFailed.single("file", "No file provided")

        content_type = normalize_content_type(upload.content_type)
        if content_type is None or content_type not in self.allowed_content_types:
            raise UnsupportedMediaType(f"Unsupported file type: {upload.content_type}")

        if upload.size_bytes > self.max_bytes:
            raise PayloadTooLarge(f"File too large (max {self.max_bytes} bytes)")

        return content_type

    def prepare(self, upload: Optional[ReceiptUpload]) -> Dict[str, Any]:
        """Validate an upload and return the claim columns it should set."""
        content_type = self.validate(upload)
        filename = (upload.filename or "").strip() or "receipt"
        return {
            "receipt_blob": upload.content,
            "receipt_filename": filename,
            "receipt_content_type": content_type,
            "receipt_size_bytes": upload.size_bytes,
        }

    def exists(self, claim_id: int) -> bool:
        """Whether the claim has a receipt, answered without loading the content."""
        metadata = self.store.receipt_metadata(claim_id)
        return metadata is not None and metadata.present

    def fetch(self, claim_id: int) -> ReceiptFile:
        """
        Load the stored receipt.

        Raises:
            ClaimNotFound: no such claim
            ReceiptNotFound: the claim has no stored content, whatever its status
        """
        metadata = self.store.receipt_metadata(claim_id)
        if metadata is None:
            raise ClaimNotFound(claim_id)
        if metadata.content_length == 0:
            raise ReceiptNotFound(claim_id)

        content = self.store.receipt_content(claim_id)
        if content is None:
            raise ReceiptNotFound(claim_id)

        return ReceiptFile(
            filename=metadata.filename or f"receipt-{claim_id}",
            content_type=metadata.content_type or "application/octet-stream",
            content=content,
        )
