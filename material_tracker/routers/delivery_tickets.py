from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from material_tracker.db import get_db
from material_tracker.dependencies import get_actor, service_errors
from material_tracker.models import DeliveryTicket
from material_tracker.schemas import TicketAdvance, TicketCreate
from material_tracker.services.delivery_ticket_service import (
    advance_status,
    create_ticket,
    delete_ticket,
    list_ticket_items,
    list_tickets,
)
from material_tracker.services.material_ledger_service import material_snapshot

router = APIRouter(tags=['delivery-tickets'])


def _ticket(db: Session, ticket: DeliveryTicket) -> dict:
    return {
        'id': ticket.id,
        'job_id': ticket.job_id,
        'ticket_number': ticket.ticket_number,
        'status': ticket.status.value,
        'destination': ticket.destination.value,
        'requested_date': ticket.requested_date,
        'due_date': ticket.due_date,
        'due_time': ticket.due_time,
        'notes': ticket.notes,
        'created_by': ticket.created_by,
        'items': [
            {
                'id': item.id,
                'material_id': item.material_id,
                'product_name': item.product_name,
                'qty': item.qty,
                'unit': item.unit,
            }
            for item in list_ticket_items(db, ticket_id=ticket.id)
        ],
    }


@router.post('/jobs/{job_id}/delivery-tickets', status_code=status.HTTP_201_CREATED)
def create_delivery_ticket(
    job_id: str,
    payload: TicketCreate,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        ticket = create_ticket(
            db,
            job_id=job_id,
            destination=payload.destination,
            items=payload.item_inputs(),
            due_date=payload.due_date,
            due_time=payload.due_time,
            notes=payload.notes,
            status=payload.status,
            created_by=actor,
            ticket_number=payload.ticket_number,
            ticket_id=payload.id,
        )
    db.commit()
    return _ticket(db, ticket)


@router.post('/delivery-tickets/{ticket_id}/advance')
def advance_delivery_ticket(
    ticket_id: str,
    payload: TicketAdvance,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        result = advance_status(db, ticket_id=ticket_id, target_status=payload.status, actor=actor)
    db.commit()
    return {
        **_ticket(db, result.ticket),
        'previous_status': result.previous_status.value,
        'updated_materials': [material_snapshot(material) for material in result.updated_materials],
        'skipped_material_ids': result.skipped_material_ids,
    }


@router.delete('/delivery-tickets/{ticket_id}')
def delete_delivery_ticket(ticket_id: str, actor: str | None = Depends(get_actor), db: Session = Depends(get_db)):
    with service_errors(db):
        delete_ticket(db, ticket_id=ticket_id, actor=actor)
    db.commit()
    return {'deleted': ticket_id}


@router.get('/jobs/{job_id}/delivery-tickets')
def job_delivery_tickets(job_id: str, db: Session = Depends(get_db)):
    return [_ticket(db, ticket) for ticket in list_tickets(db, job_id=job_id)]
