from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .diff import FieldChange

"""Append-only audit record with field-level change provenance.

One record per create/update/delete of a guest or assignment. `changes` keeps
every FieldChange of the mutation; `import_session_id` correlates records
written by the same import apply.
"""

__all__ = [
    "AuditRecord",
    "ENTITY_GUEST",
    "ENTITY_ASSIGNMENT",
    "SOURCE_IMPORT",
    "SOURCE_MANUAL",
    "SOURCE_SYSTEM",
]

ENTITY_GUEST = "guest"
ENTITY_ASSIGNMENT = "assignment"

SOURCE_IMPORT = "import"
SOURCE_MANUAL = "manual"
SOURCE_SYSTEM = "system"


@dataclass(frozen=True)
class AuditRecord:
    id: str
    entity_type: str  # guest / assignment
    entity_id: str
    action: str  # create / update / delete
    changes: list[FieldChange] = field(default_factory=list)
    change_source: str = SOURCE_MANUAL  # import / manual / system
    import_session_id: str | None = None
    performed_by: str | None = None
    performed_at: str = ""  # ISO8601 UTC, 'Z'

    @staticmethod
    def create(
        entity_type: str,
        entity_id: str,
        action: str,
        changes: list[FieldChange],
        change_source: str,
        import_session_id: str | None = None,
        performed_by: str | None = None,
    ) -> AuditRecord:
        """Build a record stamped with the current UTC time and a fresh id."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return AuditRecord(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=list(changes),
            change_source=change_source,
            import_session_id=import_session_id,
            performed_by=performed_by,
            performed_at=ts,
        )

    def changes_json(self) -> str:
        return json.dumps([c.to_dict() for c in self.changes], ensure_ascii=False, default=str)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "changes": [c.to_dict() for c in self.changes],
            "change_source": self.change_source,
            "import_session_id": self.import_session_id,
            "performed_by": self.performed_by,
            "performed_at": self.performed_at,
        }
