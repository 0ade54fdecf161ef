"""
Request validation for claim operations.

Each function returns a list of FieldError; an empty list means the input
is acceptable. The lifecycle engine raises ValidationFailed when a list
comes back non-empty, before anything is read from or written to storage.
"""

import re
from datetime import date, datetime
from typing import List, Optional

from .errors import FieldError
from .schema import CreateClaimRequest, UpdateClaimRequest

MAX_TITLE_LENGTH = 140
MAX_COMMENT_LENGTH = 2000
# Largest value an SQLite INTEGER column holds
MAX_AMOUNT_MINOR_UNITS = 2**63 - 1


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def check_title(title: Optional[str], field: str = "title") -> List[FieldError]:
    if _blank(title):
        return [FieldError(field, "Title is required")]
    if len(title.strip()) > MAX_TITLE_LENGTH:
        return [FieldError(field, f"Title must be at most {MAX_TITLE_LENGTH} characters")]
    return []


def check_amount(amount: Optional[int], field: str = "amountMinorUnits") -> List[FieldError]:
    if amount is None:
        return [FieldError(field, "amountMinorUnits is required")]
    if amount <= 0:
        return [FieldError(field, "amountMinorUnits must be > 0")]
    if amount > MAX_AMOUNT_MINOR_UNITS:
        return [FieldError(field, f"amountMinorUnits must be <= {MAX_AMOUNT_MINOR_UNITS}")]
    return []


def check_text(
    value: Optional[str],
    field: str,
    label: str,
    required: bool = True,
    max_length: int = MAX_COMMENT_LENGTH,
) -> List[FieldError]:
    """Free-text field: optionally required, always length-limited."""
    if _blank(value):
        return [FieldError(field, f"{label} required")] if required else []
    if len(value.strip()) > max_length:
        return [FieldError(field, f"{label} must be at most {max_length} characters")]
    return []


def validate_create(item: CreateClaimRequest, prefix: str = "") -> List[FieldError]:
    """Validate one item of a batch create."""
    errors = []
    errors += check_title(item.title, f"{prefix}title")
    errors += check_amount(item.amount_minor_units, f"{prefix}amountMinorUnits")
    if item.currency_code is None:
        errors.append(FieldError(f"{prefix}currencyCode", "currencyCode is required"))
    if item.claim_type is None:
        errors.append(FieldError(f"{prefix}claimType", "claimType is required"))
    errors += check_text(item.description, f"{prefix}description", "Description", required=False)
    return errors


def validate_batch(items: Optional[List[CreateClaimRequest]]) -> List[FieldError]:
    """Validate a whole batch; field names are prefixed with the item index."""
    if not items:
        return [FieldError("claims", "No claims provided")]
    errors = []
    for index, item in enumerate(items):
        errors += validate_create(item, prefix=f"[{index}].")
    return errors


def validate_update(update: UpdateClaimRequest) -> List[FieldError]:
    """Validate an owner edit; only supplied fields are checked."""
    errors = []
    if update.title is not None:
        errors += check_title(update.title)
    if update.amount_minor_units is not None:
        errors += check_amount(update.amount_minor_units)
    errors += check_text(update.description, "description", "Description", required=False)
    return errors


_ISO_DAY = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_iso_day(value: str) -> date:
    """Strict YYYY-MM-DD; compact and week-date forms raise ValueError."""
    text = value.strip()
    if not _ISO_DAY.fullmatch(text):
        raise ValueError(f"Not a YYYY-MM-DD date: {value!r}")
    return datetime.strptime(text, "%Y-%m-%d").date()
