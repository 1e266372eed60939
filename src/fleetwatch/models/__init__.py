"""SQLAlchemy ORM models."""

from fleetwatch.models.activity import Activity
from fleetwatch.models.agent import Agent
from fleetwatch.models.agent_history import AgentHistory
from fleetwatch.models.base import Base
from fleetwatch.models.heartbeat import Heartbeat
from fleetwatch.models.ticket import Ticket

__all__ = [
    "Activity",
    "Agent",
    "AgentHistory",
    "Base",
    "Heartbeat",
    "Ticket",
]
