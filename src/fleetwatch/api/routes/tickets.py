"""Kanban ticket routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fleetwatch.api.dependencies import get_ticket_service
from fleetwatch.api.schemas import APIResponse, TicketCreate, TicketUpdate
from fleetwatch.services.ticket_workflow import TicketService

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


@router.post("")
async def create_ticket(
    body: TicketCreate,
    service: TicketService = Depends(get_ticket_service),
) -> APIResponse:
    ticket = await service.create(
        body.title,
        description=body.description,
        priority=body.priority,
        assignee_id=body.assignee_id,
    )
    return APIResponse(success=True, data=ticket.to_dict())


@router.get("/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    service: TicketService = Depends(get_ticket_service),
) -> APIResponse:
    ticket = await service.get(ticket_id)
    return APIResponse(
        success=True,
        data=ticket.to_dict(),
        metadata={
            "valid_next_states": service.workflow.valid_next_states(
                ticket.status
            ),
        },
    )


@router.put("/{ticket_id}")
async def move_ticket(
    ticket_id: str,
    body: TicketUpdate,
    service: TicketService = Depends(get_ticket_service),
) -> APIResponse:
    """Move a ticket to another column, subject to the workflow."""
    ticket = await service.move(ticket_id, body.status, body.assignee_id)
    return APIResponse(success=True, data=ticket.to_dict())
