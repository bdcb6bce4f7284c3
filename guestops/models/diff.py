from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .guest import CanonicalField, CanonicalRow, Guest

"""Diff models: the partition produced by comparing an import to the store.

ImportDiff is transient. It is recomputed for every preview and never persisted;
only the audit entries written by the apply step survive.
"""

__all__ = [
    "FieldChange",
    "ModifiedGuest",
    "RowError",
    "ImportDiff",
    "ApplyResult",
]


@dataclass(frozen=True)
class FieldChange:
    field: CanonicalField | str  # non-canonical columns (schedule_id, verified fields) as plain names
    old_value: Any
    new_value: Any
    field_type: str  # string / date / time / boolean / number / null

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field.value if isinstance(self.field, CanonicalField) else self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "field_type": self.field_type,
        }


@dataclass(frozen=True)
class ModifiedGuest:
    existing: Guest  # snapshot incl. version seen at diff time
    changes: list[FieldChange]
    row: CanonicalRow

    def merged_value(self, f: CanonicalField) -> Any:
        """Value of `f` once the pending changes are applied."""
        for c in self.changes:
            if c.field == f:
                return c.new_value
        return self.existing.get(f)


@dataclass(frozen=True)
class RowError:
    row_number: int
    email: str | None
    errors: list[str]


@dataclass(frozen=True)
class ImportDiff:
    added: list[CanonicalRow] = field(default_factory=list)
    modified: list[ModifiedGuest] = field(default_factory=list)
    removed: list[Guest] = field(default_factory=list)
    unchanged: list[Guest] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "removed": len(self.removed),
            "unchanged": len(self.unchanged),
            "errors": len(self.errors),
        }


@dataclass(frozen=True)
class ApplyResult:
    added: int
    modified: int
    removed: int
