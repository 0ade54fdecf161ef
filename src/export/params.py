"""
Export query parameters.

Parameter problems are reported as plain text, so this module raises its
own ExportParamError rather than a ClaimError.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Tuple

from ..claims.schema import ClaimStatus
from ..claims.validation import parse_iso_day


class ExportParamError(ValueError):
    """Bad export query parameter; the message is the response body."""


class ExportFormat(str, Enum):
    XLSX = "xlsx"
    PDF = "pdf"

    @property
    def media_type(self) -> str:
        if self is ExportFormat.PDF:
            return "application/pdf"
        return "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


CLOSED = "CLOSED"

EXPORT_STATUSES = {
    "PENDING": (ClaimStatus.PENDING,),
    "APPROVED": (ClaimStatus.APPROVED,),
    "REJECTED": (ClaimStatus.REJECTED,),
    "RECALLED": (ClaimStatus.RECALLED,),
    CLOSED: (ClaimStatus.APPROVED, ClaimStatus.REJECTED),
}

_FORMAT_ALIASES = {"xlsx": ExportFormat.XLSX, "excel": ExportFormat.XLSX, "pdf": ExportFormat.PDF}


@dataclass(frozen=True)
class ExportRequest:
    date_from: date
    date_to: date
    format: ExportFormat = ExportFormat.XLSX
    status: Optional[str] = None

    @property
    def statuses(self) -> Tuple[ClaimStatus, ...]:
        """Status filter for the scan (empty means all)."""
        return EXPORT_STATUSES[self.status] if self.status else ()

    @property
    def filename(self) -> str:
        name = f"claims_{self.date_from.isoformat()}_to_{self.date_to.isoformat()}"
        if self.status:
            name += f"_{self.status}"
        return f"{name}.{self.format.value}"


def parse_export_request(
    date_from: Optional[str],
    date_to: Optional[str],
    fmt: Optional[str] = None,
    status: Optional[str] = None,
) -> ExportRequest:
    """
    Validate raw query values.

    Raises:
        ExportParamError: with the exact message to send back
    """
    try:
        start = parse_iso_day(date_from or "")
        end = parse_iso_day(date_to or "")
    except ValueError:
        raise ExportParamError("Invalid date. Use YYYY-MM-DD for 'from' and 'to'.")
    if end < start:
        raise ExportParamError("'to' must be >= 'from'.")

    status_key = None
    if status is not None and status.strip():
        status_key = status.strip().upper()
        if status_key not in EXPORT_STATUSES:
            raise ExportParamError(f"Invalid status. Allowed: {', '.join(EXPORT_STATUSES)}")

    export_format = _FORMAT_ALIASES.get((fmt or "xlsx").strip().lower())
    if export_format is None:
        raise ExportParamError("Invalid format. Allowed: xlsx, pdf")

    return ExportRequest(start, end, export_format, status_key)
