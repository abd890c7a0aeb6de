"""Change events published after a transaction commits."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


PUBLISHED_TABLES = frozenset({"profiles", "teams", "team_members", "tasks"})


@dataclass(frozen=True)
class ChangeEvent:
    """One committed row change.

    ``audience`` holds every user allowed to read the row before or after the
    change; delivery is restricted to it.
    """

    table: str
    type: ChangeType
    record: dict[str, Any] | None
    old_record: dict[str, Any] | None
    team_id: UUID | None
    audience: frozenset[UUID] = field(default_factory=frozenset)
    commit_timestamp: datetime | None = None

    def visible_to(self, user_id: UUID) -> bool:
        return user_id in self.audience

    def to_message(self) -> dict[str, Any]:
        """JSON-ready payload for WebSocket delivery."""
        return jsonable_encoder(
            {
                "type": "change",
                "payload": {
                    "table": self.table,
                    "event": self.type.value,
                    "record": self.record,
                    "old_record": self.old_record,
                    "team_id": self.team_id,
                    "commit_timestamp": self.commit_timestamp,
                },
            }
        )
