"""Field projection — view masking and edit-field validation."""

from collections.abc import Iterable, Mapping
from typing import Any

from src.access.errors import FieldPermissionDenied
from src.models.access import AllFields, FieldMask

# Sub-object stores a module owner may always touch structurally
RECORD_ALWAYS_ALLOWED: frozenset[str] = frozenset({"custom_fields", "documents"})


def filter_to_allowed_fields(record: dict[str, Any], mask: FieldMask) -> dict[str, Any]:
    """Project *record* onto the view mask.

    AllFields returns the record itself. A FieldSet keeps only allowed keys,
    plus ``id`` whenever the record has one.
    """
    if isinstance(mask, AllFields):
        return record
    return {
        key: value
        for key, value in record.items()
        if key == "id" or mask.allows(key)
    }


def filter_array_to_allowed_fields(
    records: Iterable[dict[str, Any]],
    mask: FieldMask,
) -> list[dict[str, Any]]:
    return [filter_to_allowed_fields(record, mask) for record in records]


def find_disallowed_fields(
    payload: Mapping[str, Any],
    mask: FieldMask,
    always_allowed: Iterable[str] = (),
) -> list[str]:
    """Sorted payload keys outside both the edit mask and *always_allowed*."""
    if isinstance(mask, AllFields):
        return []
    exempt = set(always_allowed)
    return sorted(
        key for key in payload if key not in exempt and not mask.allows(key)
    )


def validate_edit_fields(
    payload: Mapping[str, Any],
    mask: FieldMask,
    always_allowed: Iterable[str] = (),
) -> None:
    """Raise FieldPermissionDenied listing every disallowed key in *payload*."""
    disallowed = find_disallowed_fields(payload, mask, always_allowed)
    if disallowed:
        raise FieldPermissionDenied(disallowed)
