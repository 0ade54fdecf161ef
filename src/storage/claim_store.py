"""
SQLite-based claim storage.

Stores reimbursement claims, their recall bookkeeping and inline receipt
content in a local SQLite database. No external database setup required.

Every mutation is a conditional write guarded by the row ``version`` (and
optionally the expected status), so a transition whose precondition went
stale between read and write changes nothing.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..claims.schema import ClaimStatus, ClaimType, CurrencyCode

logger = logging.getLogger(__name__)

# Columns every caller may read; the receipt blob is never part of a claim read.
CLAIM_COLUMNS = (
    "id", "owner_id", "owner_email", "owner_name",
    "title", "amount_minor_units", "currency_code", "claim_type",
    "description", "claim_date",
    "receipt_filename", "receipt_content_type", "receipt_size_bytes",
    "external_receipt_url",
    "status", "admin_comment",
    "recall_active", "recall_reason", "recall_requires_attachment",
    "recalled_at", "resubmitted_at", "resubmit_comment",
    "created_at", "updated_at", "version",
)

# Columns a transition may write (id, owner, created_at and version are not among them).
MUTABLE_COLUMNS = frozenset({
    "title", "amount_minor_units", "currency_code", "claim_type",
    "description", "claim_date",
    "receipt_blob", "receipt_filename", "receipt_content_type", "receipt_size_bytes",
    "status", "admin_comment",
    "recall_active", "recall_reason", "recall_requires_attachment",
    "recalled_at", "resubmitted_at", "resubmit_comment",
})

SORTABLE_COLUMNS = frozenset({"id", "created_at", "amount_minor_units"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Any) -> Any:
    """Convert a Python value to its SQLite representation."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        # Fixed-width UTC text so lexical order equals time order
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (ClaimStatus, ClaimType, CurrencyCode)):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _contains_pattern(text: str) -> str:
    """LIKE pattern matching text literally anywhere (escape character is a backslash)."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


@dataclass
class StoredClaim:
    """A claim record as stored in the database (receipt blob excluded)."""
    id: int
    owner_id: str
    title: str
    amount_minor_units: int
    currency_code: CurrencyCode
    claim_type: ClaimType
    claim_date: date
    status: ClaimStatus
    created_at: datetime
    updated_at: datetime
    version: int = 1

    # Owner snapshot taken at creation
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None

    description: Optional[str] = None
    admin_comment: Optional[str] = None

    # Receipt metadata
    receipt_filename: Optional[str] = None
    receipt_content_type: Optional[str] = None
    receipt_size_bytes: Optional[int] = None
    external_receipt_url: Optional[str] = None

    # Recall bookkeeping
    recall_active: bool = False
    recall_reason: Optional[str] = None
    recall_requires_attachment: bool = False
    recalled_at: Optional[datetime] = None
    resubmitted_at: Optional[datetime] = None
    resubmit_comment: Optional[str] = None

    @property
    def receipt_present(self) -> bool:
        """Whether a receipt exists, judged from metadata only."""
        if self.receipt_size_bytes is not None and self.receipt_size_bytes > 0:
            return True
        if self.receipt_filename and self.receipt_filename.strip():
            return True
        return bool(self.external_receipt_url and self.external_receipt_url.strip())


@dataclass(frozen=True)
class ReceiptMetadata:
    """Receipt columns of a claim, without the content."""
    claim_id: int
    owner_id: str
    filename: Optional[str]
    content_type: Optional[str]
    size_bytes: Optional[int]
    content_length: int
    external_url: Optional[str]

    @property
    def present(self) -> bool:
        if self.size_bytes is not None and self.size_bytes > 0:
            return True
        if self.content_length > 0:
            return True
        if self.filename and self.filename.strip():
            return True
        return bool(self.external_url and self.external_url.strip())


@dataclass
class ClaimQuery:
    """Filters, ordering and window for a claim scan."""
    owner_id: Optional[str] = None
    statuses: Sequence[ClaimStatus] = ()
    recall_active: Optional[bool] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    owner_email_contains: Optional[str] = None
    text: Optional[str] = None
    order_by: Sequence[Tuple[str, str]] = (("id", "DESC"),)
    limit: Optional[int] = None
    offset: int = 0


class ClaimStore:
    """
    SQLite-based storage for reimbursement claims.

    Usage:
        store = ClaimStore(Path("data/claims.db"))

        # Insert a batch in one transaction
        ids = store.insert_many([record, ...])

        # Retrieve
        claim = store.get(ids[0])

        # Conditional update: only applies if nobody changed the row meanwhile
        ok = store.update(claim.id, {"status": ClaimStatus.APPROVED},
                          expected_version=claim.version,
                          expected_status=ClaimStatus.PENDING)
    """

    def __init__(self, db_path: Path):
        """Initialize the claim store."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    owner_email TEXT,
                    owner_name TEXT,

                    title TEXT NOT NULL,
                    amount_minor_units INTEGER NOT NULL CHECK (amount_minor_units > 0),
                    currency_code TEXT NOT NULL,
                    claim_type TEXT NOT NULL,
                    description TEXT,
                    claim_date TEXT NOT NULL,

                    -- Receipt (inline)
                    receipt_blob BLOB,
                    receipt_filename TEXT,
                    receipt_content_type TEXT,
                    receipt_size_bytes INTEGER,
                    external_receipt_url TEXT,

                    status TEXT NOT NULL DEFAULT 'PENDING',
                    admin_comment TEXT,

                    -- Recall bookkeeping
                    recall_active INTEGER NOT NULL DEFAULT 0,
                    recall_reason TEXT,
                    recall_requires_attachment INTEGER NOT NULL DEFAULT 0,
                    recalled_at TEXT,
                    resubmitted_at TEXT,
                    resubmit_comment TEXT,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                )
            """)

            # Create indexes for common queries
            conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_owner_status ON claims(owner_id, status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_claims_created ON claims(created_at)")

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def insert_many(self, records: List[Dict[str, Any]]) -> List[int]:
        """
        Insert a batch of new claims in a single transaction.

        Args:
            records: Column dicts (owner, descriptive and financial fields).
                Status, timestamps and version are filled in here.

        Returns:
            The assigned claim ids, in input order
        """
        now = utcnow()
        ids: List[int] = []
        with self._get_connection() as conn:
            try:
                for record in records:
                    row = dict(record)
                    row.setdefault("status", ClaimStatus.PENDING)
                    row["created_at"] = now
                    row["updated_at"] = now
                    row["version"] = 1
                    columns = list(row)
                    cursor = conn.execute(
                        f"INSERT INTO claims ({', '.join(columns)}) "
                        f"VALUES ({', '.join('?' for _ in columns)})",
                        [_to_db(row[c]) for c in columns],
                    )
                    ids.append(cursor.lastrowid)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        return ids

    def update(
        self,
        claim_id: int,
        changes: Dict[str, Any],
        expected_version: int,
        expected_status: Optional[ClaimStatus] = None,
    ) -> bool:
        """
        Apply field changes only if the row still matches what the caller read.

        Args:
            claim_id: Claim ID
            changes: Column -> new value (must be mutable columns)
            expected_version: Version the caller based its decision on
            expected_status: Status the transition requires, re-checked at write time

        Returns:
            True if the row was updated, False if the precondition no longer holds
        """
        unknown = set(changes) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not writable: {sorted(unknown)}")

        updates = ["updated_at = ?", "version = version + 1"]
        params: List[Any] = [_to_db(utcnow())]
        for column, value in changes.items():
            updates.append(f"{column} = ?")
            params.append(_to_db(value))

        query = f"UPDATE claims SET {', '.join(updates)} WHERE id = ? AND version = ?"
        params.extend([claim_id, expected_version])
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._get_connection() as conn:
            result = conn.execute(query, params)
            conn.commit()
            return result.rowcount > 0

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, claim_id: int) -> Optional[StoredClaim]:
        """
        Retrieve a claim by ID.

        Returns:
            StoredClaim or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {', '.join(CLAIM_COLUMNS)} FROM claims WHERE id = ?",
                (claim_id,)
            ).fetchone()
            if row:
                return self._row_to_stored_claim(row)
        return None

    def get_owned(self, claim_id: int, owner_id: str) -> Optional[StoredClaim]:
        """Retrieve a claim only if it belongs to owner_id."""
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {', '.join(CLAIM_COLUMNS)} FROM claims WHERE id = ? AND owner_id = ?",
                (claim_id, owner_id)
            ).fetchone()
            if row:
                return self._row_to_stored_claim(row)
        return None

    def exists(self, claim_id: int) -> bool:
        """Check existence without reading the claim."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT 1 FROM claims WHERE id = ?", (claim_id,)).fetchone()
            return row is not None

    def find(self, query: ClaimQuery) -> Tuple[List[StoredClaim], int]:
        """
        Scan claims with filters, ordering and an optional window.

        Returns:
            (claims in the window, total number of matching claims)
        """
        where, params = self._where(query)
        order = []
        for column, direction in query.order_by:
            if column not in SORTABLE_COLUMNS:
                raise ValueError(f"Column not sortable: {column}")
            order.append(f"{column} {'ASC' if direction.upper() == 'ASC' else 'DESC'}")
        if not any(o.startswith("id ") for o in order):
            order.append("id DESC")

        sql = f"SELECT {', '.join(CLAIM_COLUMNS)} FROM claims WHERE {where} ORDER BY {', '.join(order)}"
        window: List[Any] = []
        if query.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            window = [query.limit, query.offset]

        with self._get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM claims WHERE {where}", params).fetchone()[0]
            rows = conn.execute(sql, params + window).fetchall()
            return [self._row_to_stored_claim(row) for row in rows], total

    def count(self, status: Optional[ClaimStatus] = None) -> int:
        """Count claims, optionally by status."""
        with self._get_connection() as conn:
            if status:
                row = conn.execute(
                    "SELECT COUNT(*) FROM claims WHERE status = ?",
                    (status.value,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM claims").fetchone()
            return row[0]

    # =========================================================================
    # Receipt columns
    # =========================================================================

    def receipt_metadata(self, claim_id: int) -> Optional[ReceiptMetadata]:
        """Read receipt metadata; the content length is computed by SQLite."""
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT id, owner_id, receipt_filename, receipt_content_type,
                       receipt_size_bytes, external_receipt_url,
                       COALESCE(length(receipt_blob), 0) AS content_length
                FROM claims WHERE id = ?
                """,
                (claim_id,)
            ).fetchone()
        if row is None:
            return None
        return ReceiptMetadata(
            claim_id=row["id"],
            owner_id=row["owner_id"],
            filename=row["receipt_filename"],
            content_type=row["receipt_content_type"],
            size_bytes=row["receipt_size_bytes"],
            content_length=row["content_length"],
            external_url=row["external_receipt_url"],
        )

    def receipt_content(self, claim_id: int) -> Optional[bytes]:
        """Read the receipt content of a claim (None when absent)."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT receipt_blob FROM claims WHERE id = ?",
                (claim_id,)
            ).fetchone()
        if row is None or row["receipt_blob"] is None:
            return None
        return bytes(row["receipt_blob"])

    # =========================================================================
    # Helpers
    # =========================================================================

    def _where(self, query: ClaimQuery) -> Tuple[str, List[Any]]:
        clauses = ["1=1"]
        params: List[Any] = []

        if query.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(query.owner_id)

        if query.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in query.statuses)})")
            params.extend(s.value for s in query.statuses)

        if query.recall_active is not None:
            clauses.append("recall_active = ?")
            params.append(int(query.recall_active))

        if query.created_from is not None:
            clauses.append("created_at >= ?")
            params.append(_to_db(query.created_from))

        if query.created_to is not None:
            clauses.append("created_at <= ?")
            params.append(_to_db(query.created_to))

        if query.owner_email_contains:
            clauses.append("LOWER(COALESCE(owner_email, '')) LIKE ? ESCAPE '\\'")
            params.append(_contains_pattern(query.owner_email_contains))

        if query.text:
            needle = _contains_pattern(query.text)
            clauses.append(
                "(LOWER(title) LIKE ? ESCAPE '\\'"
                " OR LOWER(COALESCE(description, '')) LIKE ? ESCAPE '\\'"
                " OR LOWER(COALESCE(owner_email, '')) LIKE ? ESCAPE '\\'"
                " OR LOWER(COALESCE(owner_name, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([needle] * 4)

        return " AND ".join(clauses), params

    def _row_to_stored_claim(self, row: sqlite3.Row) -> StoredClaim:
        """Convert a database row to StoredClaim."""
        return StoredClaim(
            id=row["id"],
            owner_id=row["owner_id"],
            owner_email=row["owner_email"],
            owner_name=row["owner_name"],
            title=row["title"],
            amount_minor_units=row["amount_minor_units"],
            currency_code=CurrencyCode(row["currency_code"]),
            claim_type=ClaimType(row["claim_type"]),
            description=row["description"],
            claim_date=date.fromisoformat(row["claim_date"]),
            receipt_filename=row["receipt_filename"],
            receipt_content_type=row["receipt_content_type"],
            receipt_size_bytes=row["receipt_size_bytes"],
            external_receipt_url=row["external_receipt_url"],
            status=ClaimStatus(row["status"]),
            admin_comment=row["admin_comment"],
            recall_active=bool(row["recall_active"]),
            recall_reason=row["recall_reason"],
            recall_requires_attachment=bool(row["recall_requires_attachment"]),
            recalled_at=_parse_ts(row["recalled_at"]),
            resubmitted_at=_parse_ts(row["resubmitted_at"]),
            resubmit_comment=row["resubmit_comment"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            version=row["version"],
        )


# =============================================================================
# Convenience Functions
# =============================================================================

@lru_cache
def get_claim_store() -> ClaimStore:
    """Get the default claim store (singleton)."""
    from ..utils.config import get_settings

    store = ClaimStore(get_settings().database_path)
    logger.info(f"Using claim database: {store.db_path.resolve()}")
    return store
