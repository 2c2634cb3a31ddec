"""Explicit partial-update values.

A patch field is either `UNSET` (leave the stored value alone) or
`Set(value)` (write `value`, which may be None for nullable columns).
Patches are applied field by field against the stored row, so "not sent"
and "sent as null" never collapse into the same thing.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class Set(Generic[T]):
    value: T


PatchField = Union[_Unset, Set[T]]


def is_set(field: PatchField[Any]) -> bool:
    return isinstance(field, Set)


# Defaults for a restriction row created by a patch
RESTRICTION_DEFAULTS: dict[str, Any] = {
    "min_los": None,
    "max_los": None,
    "closed_to_arrival": False,
    "closed_to_departure": False,
    "closed": False,
}


@dataclass(frozen=True)
class RestrictionPatch:
    min_los: PatchField[int | None] = UNSET
    max_los: PatchField[int | None] = UNSET
    closed_to_arrival: PatchField[bool] = UNSET
    closed_to_departure: PatchField[bool] = UNSET
    closed: PatchField[bool] = UNSET

    def changes(self) -> dict[str, Any]:
        """Only the fields that were explicitly set."""
        return {
            f.name: getattr(self, f.name).value
            for f in fields(self)
            if is_set(getattr(self, f.name))
        }

    def is_empty(self) -> bool:
        return not self.changes()

    def apply(self, current: dict[str, Any] | None) -> dict[str, Any]:
        """Return the row after applying this patch.

        On create (current is None) unspecified fields take the defaults:
        booleans false, LOS limits absent. On update they keep their value.
        """
        row = dict(RESTRICTION_DEFAULTS if current is None else current)
        for name, value in self.changes().items():
            # Booleans are never stored as null
            if name in ("closed_to_arrival", "closed_to_departure", "closed") and value is None:
                value = False
            row[name] = value
        return row


@dataclass(frozen=True)
class BulkFieldsPatch:
    """Fields a bulk ARI update may touch."""

    price_cents: PatchField[int] = UNSET
    available: PatchField[int] = UNSET
    min_los: PatchField[int | None] = UNSET
    max_los: PatchField[int | None] = UNSET
    closed_to_arrival: PatchField[bool] = UNSET
    closed_to_departure: PatchField[bool] = UNSET
    closed: PatchField[bool] = UNSET

    def restriction_patch(self) -> RestrictionPatch:
        return RestrictionPatch(
            min_los=self.min_los,
            max_los=self.max_los,
            closed_to_arrival=self.closed_to_arrival,
            closed_to_departure=self.closed_to_departure,
            closed=self.closed,
        )

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name).value
            for f in fields(self)
            if is_set(getattr(self, f.name))
        }

    def is_empty(self) -> bool:
        return not self.changes()

    @classmethod
    def from_changes(cls, changes: dict[str, Any]) -> BulkFieldsPatch:
        """Build a patch from a dict of explicitly provided fields."""
        known = {f.name for f in fields(cls)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"unknown patch fields: {sorted(unknown)}")
        return cls(**{name: Set(value) for name, value in changes.items()})
