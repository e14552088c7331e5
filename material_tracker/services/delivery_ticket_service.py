from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_tracker.errors import InvalidTransitionError, LedgerValidationError, RecordNotFoundError
from material_tracker.models import (
    DeliveryDestination,
    DeliveryTicket,
    DeliveryTicketItem,
    DeliveryTicketStatus,
    ProjectMaterial,
)
from material_tracker.services.area_directory_service import get_job
from material_tracker.services.audit_service import log_audit
from material_tracker.services.quantity_utils import to_decimal
from material_tracker.services.reconciliation_service import TransferLine, apply_transfer

logger = logging.getLogger(__name__)

STATUS_SEQUENCE: tuple[DeliveryTicketStatus, ...] = (
    DeliveryTicketStatus.DRAFT,
    DeliveryTicketStatus.PENDING_APPROVAL,
    DeliveryTicketStatus.SCHEDULED,
    DeliveryTicketStatus.IN_TRANSIT,
    DeliveryTicketStatus.RECEIVED,
)
INITIAL_STATUSES = (DeliveryTicketStatus.DRAFT, DeliveryTicketStatus.PENDING_APPROVAL)


@dataclass(frozen=True)
class TicketItemInput:
    material_id: str
    qty: Decimal
    product_name: str | None = None
    unit: str | None = None


@dataclass
class TicketAdvanceResult:
    ticket: DeliveryTicket
    previous_status: DeliveryTicketStatus
    updated_materials: list[ProjectMaterial] = field(default_factory=list)
    skipped_material_ids: list[str] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def next_status(current: DeliveryTicketStatus) -> DeliveryTicketStatus | None:
    idx = STATUS_SEQUENCE.index(current)
    if idx + 1 >= len(STATUS_SEQUENCE):
        return None
    return STATUS_SEQUENCE[idx + 1]


def get_ticket(db: Session, *, ticket_id: str) -> DeliveryTicket:
    ticket = db.get(DeliveryTicket, ticket_id)
    if ticket is None:
        raise RecordNotFoundError('Delivery ticket not found')
    return ticket


def list_ticket_items(db: Session, *, ticket_id: str) -> list[DeliveryTicketItem]:
    return db.execute(
        select(DeliveryTicketItem)
        .where(DeliveryTicketItem.ticket_id == ticket_id)
        .order_by(DeliveryTicketItem.position.asc(), DeliveryTicketItem.id.asc())
    ).scalars().all()


def _ticket_number(job_id: str, created: datetime) -> str:
    return f'DT-{created:%Y%m%d%H%M%S}-{job_id[:4].upper()}'


def create_ticket(
    db: Session,
    *,
    job_id: str,
    destination: DeliveryDestination,
    items: list[TicketItemInput],
    due_date: date | None = None,
    due_time: str | None = None,
    notes: str | None = None,
    status: DeliveryTicketStatus = DeliveryTicketStatus.DRAFT,
    created_by: str | None = None,
    ticket_number: str | None = None,
    ticket_id: str | None = None,
) -> DeliveryTicket:
    """Open a transfer ticket. Lines with no positive quantity are dropped."""
    if ticket_id is not None:
        existing = db.get(DeliveryTicket, ticket_id)
        if existing is not None:
            if existing.job_id != job_id:
                raise LedgerValidationError(f'Ticket {ticket_id} belongs to another job')
            return existing

    if status not in INITIAL_STATUSES:
        raise InvalidTransitionError('New tickets start as draft or pending approval')
    get_job(db, job_id=job_id)

    kept: list[TicketItemInput] = []
    for item in items:
        qty = to_decimal(item.qty, field='Quantity')
        if qty <= 0:
            continue
        if not (item.material_id or '').strip():
            raise LedgerValidationError('Each ticket item needs a material')
        kept.append(
            TicketItemInput(material_id=item.material_id.strip(), qty=qty, product_name=item.product_name, unit=item.unit)
        )
    if not kept:
        raise LedgerValidationError('Add at least one item with a quantity greater than zero')

    materials = {
        row.id: row
        for row in db.execute(
            select(ProjectMaterial).where(ProjectMaterial.id.in_(sorted({item.material_id for item in kept})))
        ).scalars().all()
    }
    missing = sorted({item.material_id for item in kept} - set(materials))
    if missing:
        raise RecordNotFoundError(f'Material not found: {", ".join(missing)}')

    created = _now()
    ticket = DeliveryTicket(
        job_id=job_id,
        ticket_number=(ticket_number or '').strip() or _ticket_number(job_id, created),
        status=status,
        destination=destination,
        requested_date=created.date(),
        due_date=due_date,
        due_time=(due_time or '').strip() or None,
        notes=(notes or '').strip() or None,
        created_by=created_by,
        created_at=created,
        updated_at=created,
    )
    if ticket_id is not None:
        ticket.id = ticket_id
    db.add(ticket)
    db.flush()

    for position, item in enumerate(kept):
        material = materials[item.material_id]
        db.add(
            DeliveryTicketItem(
                ticket_id=ticket.id,
                material_id=item.material_id,
                product_name=item.product_name or material.product_name,
                qty=item.qty,
                unit=item.unit or material.unit,
                position=position,
            )
        )
    db.flush()

    log_audit(
        db,
        actor=created_by,
        action='TICKET_CREATED',
        entity_type='delivery_ticket',
        entity_id=ticket.id,
        metadata={'destination': destination.value, 'status': status.value, 'item_count': len(kept)},
    )
    logger.info('Created delivery ticket %s (%s) with %s items', ticket.id, ticket.ticket_number, len(kept))
    return ticket


def advance_status(
    db: Session,
    *,
    ticket_id: str,
    target_status: DeliveryTicketStatus | None = None,
    actor: str | None = None,
) -> TicketAdvanceResult:
    """Move a ticket one step forward.

    ``target_status`` is optional and, when given, must be exactly the next
    step. Reaching ``received`` on an Inventory ticket moves every item's
    quantity out of transit and into the job; Shop tickets change no ledger
    quantities.
    """
    ticket = get_ticket(db, ticket_id=ticket_id)
    previous = ticket.status
    upcoming = next_status(previous)
    if upcoming is None:
        raise InvalidTransitionError('Ticket has already been received')
    if target_status is not None and target_status != upcoming:
        raise InvalidTransitionError(f'Ticket can only move from {previous.value} to {upcoming.value}')

    result = TicketAdvanceResult(ticket=ticket, previous_status=previous)
    if upcoming == DeliveryTicketStatus.RECEIVED and ticket.destination == DeliveryDestination.INVENTORY:
        transfer = apply_transfer(
            db,
            lines=[
                TransferLine(material_id=item.material_id, qty=item.qty)
                for item in list_ticket_items(db, ticket_id=ticket.id)
            ],
        )
        result.updated_materials = transfer.updated_materials
        result.skipped_material_ids = transfer.skipped_material_ids

    ticket.status = upcoming
    ticket.updated_at = _now()
    db.flush()

    log_audit(
        db,
        actor=actor,
        action='TICKET_ADVANCED',
        entity_type='delivery_ticket',
        entity_id=ticket.id,
        metadata={
            'from': previous.value,
            'to': upcoming.value,
            'skipped_material_ids': result.skipped_material_ids,
        },
    )
    logger.info('Delivery ticket %s advanced %s -> %s', ticket.ticket_number, previous.value, upcoming.value)
    return result


def delete_ticket(db: Session, *, ticket_id: str, actor: str | None = None) -> None:
    ticket = get_ticket(db, ticket_id=ticket_id)
    if ticket.status == DeliveryTicketStatus.RECEIVED:
        raise InvalidTransitionError('Received tickets cannot be deleted')
    for item in list_ticket_items(db, ticket_id=ticket.id):
        db.delete(item)
    db.delete(ticket)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action='TICKET_DELETED',
        entity_type='delivery_ticket',
        entity_id=ticket_id,
        metadata={'ticket_number': ticket.ticket_number},
    )
    logger.info('Deleted delivery ticket %s', ticket_id)


def list_tickets(db: Session, *, job_id: str) -> list[DeliveryTicket]:
    return db.execute(
        select(DeliveryTicket).where(DeliveryTicket.job_id == job_id).order_by(DeliveryTicket.created_at.desc())
    ).scalars().all()


def list_all_tickets(db: Session, *, limit: int = 200) -> list[DeliveryTicket]:
    return db.execute(select(DeliveryTicket).order_by(DeliveryTicket.created_at.desc()).limit(limit)).scalars().all()
