"""Record access guard — per-record visibility check and its SQL twin.

The record-level check and the query predicate must agree on every record:
list endpoints filter with build_visibility_filter, single-record endpoints
check with can_access_record, and a record is visible in one path iff it is
visible in the other.
"""

from sqlalchemy import ColumnElement, or_, true
from sqlalchemy.orm import InstrumentedAttribute

from src.models.common import RecordVisibility


def can_access_record(
    visibility: RecordVisibility,
    user_id: str,
    owner_id: str | None,
) -> bool:
    """Return True if a caller with *visibility* may see a record owned by *owner_id*."""
    if visibility == RecordVisibility.OWN_ONLY:
        return owner_id == user_id
    if visibility == RecordVisibility.UNASSIGNED:
        return owner_id == user_id or owner_id is None
    return True


def build_visibility_filter(
    visibility: RecordVisibility,
    user_id: str,
    owner_column: InstrumentedAttribute | ColumnElement,
) -> ColumnElement[bool]:
    """Build the WHERE predicate equivalent to can_access_record."""
    if visibility == RecordVisibility.OWN_ONLY:
        return owner_column == user_id
    if visibility == RecordVisibility.UNASSIGNED:
        return or_(owner_column == user_id, owner_column.is_(None))
    return true()
