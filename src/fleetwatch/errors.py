"""Exception hierarchy for the telemetry engine.

Three failure classes exist:

- persistence failures: the repository could not read or write; the
  operation did not happen and a ``PersistenceError`` reaches the caller.
- side-effect failures: a post-persist step (trace head, ticket
  counters, status notification) failed; logged, never raised.
- resolution fallbacks: unknown model names, missing token counts or
  an unavailable tokenizer; these are not errors at all.
"""

from __future__ import annotations


class FleetwatchError(Exception):
    """Base class for all engine errors."""


class PersistenceError(FleetwatchError):
    """The persistence layer failed; the operation did not happen."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        msg = f"{operation} failed"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class ActivityNotFoundError(FleetwatchError):
    def __init__(self, activity_id: str) -> None:
        self.activity_id = activity_id
        super().__init__(f"Activity not found: {activity_id}")


class AgentNotFoundError(FleetwatchError):
    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")


class TicketNotFoundError(FleetwatchError):
    def __init__(self, ticket_id: str) -> None:
        self.ticket_id = ticket_id
        super().__init__(f"Ticket not found: {ticket_id}")


class TicketTransitionError(FleetwatchError):
    """A ticket status change was rejected by the workflow policy."""
