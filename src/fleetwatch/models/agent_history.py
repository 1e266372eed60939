"""AgentHistory ORM model: audit trail of agent changes."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fleetwatch.constants import AgentChangeType
from fleetwatch.models.base import Base
from fleetwatch.timeutil import as_utc


class AgentHistory(Base):
    __tablename__ = "agent_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    agent_id: Mapped[str] = mapped_column(String(100), index=True)
    change_type: Mapped[str] = mapped_column(
        String(32), default=AgentChangeType.STATUS_CHANGE
    )
    from_value: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    to_value: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    meta: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "change_type": self.change_type,
            "from_value": self.from_value,
            "to_value": self.to_value,
            "metadata": self.meta,
            "created_at": as_utc(self.created_at).isoformat(),
        }
