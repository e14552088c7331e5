from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_tracker.errors import InvalidTransitionError, LedgerValidationError, RecordNotFoundError
from material_tracker.models import (
    ProjectMaterial,
    PurchaseOrder,
    PurchaseOrderDiscrepancy,
    PurchaseOrderItem,
    PurchaseOrderStatus,
)
from material_tracker.services.area_directory_service import get_job
from material_tracker.services.audit_service import log_audit
from material_tracker.services.material_ledger_service import to_buy
from material_tracker.services.quantity_utils import ZERO, non_negative, or_zero, to_decimal
from material_tracker.services.receipt_math_service import (
    EditedField,
    LineGeometry,
    ReceiptCondition,
    ReceiptEntry,
    ReceiptMode,
    expected_pieces,
    resolve_entry,
)
from material_tracker.services.reconciliation_service import (
    ReceiptLine,
    apply_receipt,
    derive_po_status,
    list_discrepancies_for_po,
    snapshot_item,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.ORDERED)
PROCESSED_STATUSES = (PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.RECEIVED_WITH_DISCREPANCY)
BULK_CATEGORY_HINTS = ('tile', 'stone')


class ScheduleStatus(str, Enum):
    UNSCHEDULED = 'Unscheduled'
    OVERDUE = 'Overdue'
    EXPECTED = 'Expected'


@dataclass(frozen=True)
class LineItemInput:
    material_id: str
    quantity: Decimal
    unit_cost: Decimal | None = None
    pieces_per_crate: Decimal | None = None


@dataclass(frozen=True)
class ReceiptDescriptor:
    po_item_id: str
    qty_received: Decimal | None = None
    condition: ReceiptCondition = ReceiptCondition.VERIFIED
    notes: str | None = None
    photo_url: str | None = None
    receipt_mode: ReceiptMode = ReceiptMode.GRANULAR
    last_edited: EditedField | None = None
    pieces_received: int | None = None
    crates_received: Decimal | None = None
    pieces_per_crate_override: Decimal | None = None
    sqft_per_crate_override: Decimal | None = None
    pieces_ordered: int | None = None


@dataclass(frozen=True)
class OverBudgetWarning:
    material_id: str
    product_name: str
    projected_qty: Decimal
    budget_qty: Decimal

    @property
    def overage(self) -> Decimal:
        return self.projected_qty - self.budget_qty


@dataclass
class PurchaseOrderResult:
    purchase_order: PurchaseOrder
    items: list[PurchaseOrderItem] = field(default_factory=list)
    warnings: list[OverBudgetWarning] = field(default_factory=list)


@dataclass
class PurchaseOrderReceipt:
    purchase_order: PurchaseOrder
    updated_materials: list[ProjectMaterial] = field(default_factory=list)
    discrepancies: list[PurchaseOrderDiscrepancy] = field(default_factory=list)
    skipped_material_ids: list[str] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _today() -> date:
    return _now().date()


def get_po(db: Session, *, po_id: str) -> PurchaseOrder:
    po = db.get(PurchaseOrder, po_id)
    if po is None:
        raise RecordNotFoundError('Purchase order not found')
    return po


def list_items(db: Session, *, po_id: str) -> list[PurchaseOrderItem]:
    return db.execute(
        select(PurchaseOrderItem)
        .where(PurchaseOrderItem.po_id == po_id)
        .order_by(PurchaseOrderItem.created_at.asc(), PurchaseOrderItem.id.asc())
    ).scalars().all()


def suggested_order_qty(material: ProjectMaterial) -> Decimal:
    return to_buy(material)


def _clean_items(items: Iterable[LineItemInput]) -> list[LineItemInput]:
    cleaned: list[LineItemInput] = []
    for item in items:
        material_id = (item.material_id or '').strip()
        if not material_id:
            raise LedgerValidationError('Each line item needs a material')
        quantity = to_decimal(item.quantity, field='Quantity')
        if quantity <= 0:
            continue
        cleaned.append(
            LineItemInput(
                material_id=material_id,
                quantity=quantity,
                unit_cost=non_negative(item.unit_cost, field='Unit cost', default=None),
                pieces_per_crate=non_negative(item.pieces_per_crate, field='Pieces per crate', default=None),
            )
        )
    if not cleaned:
        raise LedgerValidationError('Add at least one line item with a quantity greater than zero')
    return cleaned


def _load_materials(db: Session, items: list[LineItemInput]) -> dict[str, ProjectMaterial]:
    ids = sorted({item.material_id for item in items})
    rows = db.execute(select(ProjectMaterial).where(ProjectMaterial.id.in_(ids))).scalars().all()
    materials = {row.id: row for row in rows}
    missing = [material_id for material_id in ids if material_id not in materials]
    if missing:
        raise RecordNotFoundError(f'Material not found: {", ".join(missing)}')
    return materials


def over_budget_warnings(
    db: Session,
    *,
    items: list[LineItemInput],
    materials: dict[str, ProjectMaterial] | None = None,
) -> list[OverBudgetWarning]:
    """Soft check: would these lines push any material past its budget?

    Never blocks a save. Several lines for the same material are summed.
    """
    if materials is None:
        materials = _load_materials(db, items)
    pending: dict[str, Decimal] = {}
    for item in items:
        pending[item.material_id] = pending.get(item.material_id, ZERO) + item.quantity

    warnings: list[OverBudgetWarning] = []
    for material_id, qty in pending.items():
        material = materials[material_id]
        projected = (
            or_zero(material.ordered_qty)
            + or_zero(material.shop_stock)
            + or_zero(material.received_at_job)
            + or_zero(material.in_transit)
            + qty
        )
        budget = or_zero(material.budget_qty)
        if projected > budget:
            warnings.append(
                OverBudgetWarning(
                    material_id=material_id,
                    product_name=material.product_name,
                    projected_qty=projected,
                    budget_qty=budget,
                )
            )
            logger.warning(
                'Order for %s (%s) exceeds budget: %s > %s', material.product_name, material_id, projected, budget
            )
    return warnings


def _put_in_transit(material: ProjectMaterial, *, quantity: Decimal, expected_date: date | None) -> None:
    material.in_transit = or_zero(material.in_transit) + quantity
    if expected_date is not None:
        material.expected_date = expected_date
    material.updated_at = _now()


def _add_lines(
    db: Session,
    *,
    po: PurchaseOrder,
    items: list[LineItemInput],
    materials: dict[str, ProjectMaterial],
) -> list[PurchaseOrderItem]:
    created: list[PurchaseOrderItem] = []
    for item in items:
        material = materials[item.material_id]
        line = snapshot_item(
            po_id=po.id,
            material=material,
            quantity=item.quantity,
            unit_cost=item.unit_cost,
            pieces_per_crate=item.pieces_per_crate,
        )
        db.add(line)
        created.append(line)
        # Draft orders carry no inventory effect until they are placed.
        if po.status == PurchaseOrderStatus.ORDERED:
            _put_in_transit(material, quantity=item.quantity, expected_date=po.expected_date)
    db.flush()
    return created


def create_po(
    db: Session,
    *,
    job_id: str,
    po_number: str,
    items: list[LineItemInput],
    vendor: str | None = None,
    expected_date: date | None = None,
    notes: str | None = None,
    ordered_by: str | None = None,
    po_id: str | None = None,
    today: date | None = None,
) -> PurchaseOrderResult:
    """Place a new order and put every line's quantity in transit."""
    if po_id is not None:
        existing = db.get(PurchaseOrder, po_id)
        if existing is not None:
            if existing.job_id != job_id:
                raise LedgerValidationError(f'PO {po_id} belongs to another job')
            return PurchaseOrderResult(purchase_order=existing, items=list_items(db, po_id=existing.id))

    clean_number = (po_number or '').strip()
    if not clean_number:
        raise LedgerValidationError('PO number is required')
    get_job(db, job_id=job_id)
    duplicate = db.execute(
        select(PurchaseOrder.id).where(PurchaseOrder.job_id == job_id, PurchaseOrder.po_number == clean_number)
    ).first()
    if duplicate:
        raise LedgerValidationError(f'PO number {clean_number} already exists for this job')
    clean_items = _clean_items(items)
    materials = _load_materials(db, clean_items)
    warnings = over_budget_warnings(db, items=clean_items, materials=materials)

    po = PurchaseOrder(
        job_id=job_id,
        po_number=clean_number,
        vendor=(vendor or '').strip() or None,
        status=PurchaseOrderStatus.ORDERED,
        order_date=today or _today(),
        expected_date=expected_date,
        ordered_by=ordered_by,
        notes=(notes or '').strip() or None,
    )
    if po_id is not None:
        po.id = po_id
    db.add(po)
    db.flush()
    lines = _add_lines(db, po=po, items=clean_items, materials=materials)

    log_audit(
        db,
        actor=ordered_by,
        action='PO_CREATED',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'po_number': po.po_number, 'line_count': len(lines), 'over_budget': len(warnings)},
    )
    logger.info('Created PO %s (%s) with %s lines', po.id, po.po_number, len(lines))
    return PurchaseOrderResult(purchase_order=po, items=lines, warnings=warnings)


def add_line_items_to_existing_po(
    db: Session,
    *,
    po_id: str | None,
    items: list[LineItemInput],
    actor: str | None = None,
) -> PurchaseOrderResult:
    if not (po_id or '').strip():
        raise LedgerValidationError('Select a purchase order to add to')
    po = get_po(db, po_id=po_id)
    if po.status not in ACTIVE_STATUSES:
        raise InvalidTransitionError('Only active purchase orders can take new line items')
    clean_items = _clean_items(items)
    materials = _load_materials(db, clean_items)
    warnings = over_budget_warnings(db, items=clean_items, materials=materials)
    lines = _add_lines(db, po=po, items=clean_items, materials=materials)
    po.updated_at = _now()
    db.flush()

    log_audit(
        db,
        actor=actor,
        action='PO_LINES_ADDED',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={'line_count': len(lines)},
    )
    logger.info('Added %s lines to PO %s', len(lines), po.po_number)
    return PurchaseOrderResult(purchase_order=po, items=lines, warnings=warnings)


def mark_ordered(db: Session, *, po_id: str, actor: str | None = None, today: date | None = None) -> PurchaseOrder:
    """Place a Draft order; its lines go in transit from this point."""
    po = get_po(db, po_id=po_id)
    if po.status != PurchaseOrderStatus.DRAFT:
        raise InvalidTransitionError('Only draft purchase orders can be marked as ordered')
    lines = list_items(db, po_id=po.id)
    materials = {
        row.id: row
        for row in db.execute(
            select(ProjectMaterial).where(ProjectMaterial.id.in_([line.material_id for line in lines]))
        ).scalars().all()
    }
    for line in lines:
        material = materials.get(line.material_id)
        if material is None:
            logger.warning('PO %s line %s references missing material %s', po.po_number, line.id, line.material_id)
            continue
        _put_in_transit(material, quantity=line.quantity_ordered, expected_date=po.expected_date)

    po.status = PurchaseOrderStatus.ORDERED
    po.order_date = today or _today()
    po.updated_at = _now()
    db.flush()
    log_audit(db, actor=actor, action='PO_ORDERED', entity_type='purchase_order', entity_id=po.id)
    logger.info('PO %s marked as ordered', po.po_number)
    return po


def _geometry(item: PurchaseOrderItem) -> LineGeometry:
    return LineGeometry(
        unit=item.unit,
        pcs_per_unit=item.pcs_per_unit,
        dim_length=item.dim_length,
        dim_width=item.dim_width,
        sqft_per_piece=item.sqft_per_piece,
        pieces_per_crate=item.pieces_per_crate,
    )


def default_receipts(items: list[PurchaseOrderItem]) -> list[ReceiptDescriptor]:
    """Pre-filled receipt for each line: everything arrived and verified."""
    descriptors: list[ReceiptDescriptor] = []
    for item in items:
        category = (item.material_category or '').lower()
        mode = ReceiptMode.BULK if any(hint in category for hint in BULK_CATEGORY_HINTS) else ReceiptMode.GRANULAR
        pieces = None
        if _geometry(item).is_area_unit:
            pieces = expected_pieces(item.quantity_ordered, item.pcs_per_unit)
        descriptors.append(
            ReceiptDescriptor(
                po_item_id=item.id,
                qty_received=item.quantity_ordered,
                receipt_mode=mode,
                pieces_received=pieces,
                pieces_ordered=pieces,
            )
        )
    return descriptors


def _receipt_line(item: PurchaseOrderItem, descriptor: ReceiptDescriptor) -> ReceiptLine:
    geometry = _geometry(item)
    resolved = resolve_entry(
        ReceiptEntry(
            mode=descriptor.receipt_mode,
            last_edited=descriptor.last_edited,
            qty_received=descriptor.qty_received,
            pieces_received=descriptor.pieces_received,
            crates_received=descriptor.crates_received,
            pieces_per_crate_override=descriptor.pieces_per_crate_override,
            sqft_per_crate_override=descriptor.sqft_per_crate_override,
        ),
        geometry,
    )
    pieces_ordered = descriptor.pieces_ordered
    pieces_received = None
    if geometry.is_area_unit:
        if pieces_ordered is None:
            pieces_ordered = expected_pieces(item.quantity_ordered, item.pcs_per_unit)
        pieces_received = resolved.pieces_received
    return ReceiptLine(
        material_id=item.material_id,
        qty_ordered=item.quantity_ordered,
        qty_received=resolved.qty_received,
        condition=descriptor.condition,
        notes=descriptor.notes,
        photo_url=descriptor.photo_url,
        pieces_ordered=pieces_ordered if pieces_received is not None else None,
        pieces_received=pieces_received,
        po_item_id=item.id,
    )


def receive_po(
    db: Session,
    *,
    po_id: str,
    receipts: list[ReceiptDescriptor],
    actor: str | None = None,
) -> PurchaseOrderReceipt:
    """Record the delivery of an order.

    Each line needs exactly one receipt descriptor. Quantities are resolved
    through the receipt math and posted to the ledger as one batch; the caller
    commits the ledger updates, discrepancies and status change together.
    """
    po = get_po(db, po_id=po_id)
    if po.status in PROCESSED_STATUSES:
        raise InvalidTransitionError(f'PO {po.po_number} has already been received')
    if po.status != PurchaseOrderStatus.ORDERED:
        raise InvalidTransitionError(f'PO {po.po_number} must be ordered before it can be received')

    items = list_items(db, po_id=po.id)
    items_by_id = {item.id: item for item in items}
    by_item: dict[str, ReceiptDescriptor] = {}
    for descriptor in receipts:
        if descriptor.po_item_id not in items_by_id:
            raise LedgerValidationError(f'Line item {descriptor.po_item_id} is not on PO {po.po_number}')
        if descriptor.po_item_id in by_item:
            raise LedgerValidationError(f'Line item {descriptor.po_item_id} was received twice')
        by_item[descriptor.po_item_id] = descriptor
    missing = [item.id for item in items if item.id not in by_item]
    if missing:
        raise LedgerValidationError(f'Missing receipt for line items: {", ".join(missing)}')

    lines = [_receipt_line(item, by_item[item.id]) for item in items]
    result = apply_receipt(db, po_id=po.id, lines=lines)

    po.status = derive_po_status(len(result.discrepancies))
    po.received_at = _now()
    po.updated_at = po.received_at
    db.flush()

    log_audit(
        db,
        actor=actor,
        action='PO_RECEIVED',
        entity_type='purchase_order',
        entity_id=po.id,
        metadata={
            'status': po.status.value,
            'discrepancy_count': len(result.discrepancies),
            'skipped_material_ids': result.skipped_material_ids,
        },
    )
    logger.info(
        'Received PO %s as %s with %s discrepancies', po.po_number, po.status.value, len(result.discrepancies)
    )
    return PurchaseOrderReceipt(
        purchase_order=po,
        updated_materials=result.updated_materials,
        discrepancies=result.discrepancies,
        skipped_material_ids=result.skipped_material_ids,
    )


def schedule_status(po: PurchaseOrder, *, today: date | None = None) -> ScheduleStatus:
    if po.expected_date is None:
        return ScheduleStatus.UNSCHEDULED
    if po.expected_date < (today or _today()):
        return ScheduleStatus.OVERDUE
    return ScheduleStatus.EXPECTED


def list_active(db: Session, *, job_id: str, today: date | None = None) -> list[dict]:
    rows = db.execute(
        select(PurchaseOrder)
        .where(PurchaseOrder.job_id == job_id, PurchaseOrder.status.in_(ACTIVE_STATUSES))
        .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.po_number.asc())
    ).scalars().all()
    return [
        {
            'purchase_order': po,
            'items': list_items(db, po_id=po.id),
            'schedule_status': schedule_status(po, today=today),
        }
        for po in rows
    ]


def list_processed(db: Session, *, job_id: str | None = None, limit: int = 100) -> list[dict]:
    query = (
        select(PurchaseOrder)
        .where(PurchaseOrder.status.in_(PROCESSED_STATUSES))
        .order_by(PurchaseOrder.received_at.desc(), PurchaseOrder.created_at.desc())
        .limit(limit)
    )
    if job_id is not None:
        query = query.where(PurchaseOrder.job_id == job_id)
    return [
        {
            'purchase_order': po,
            'items': list_items(db, po_id=po.id),
            'discrepancies': list_discrepancies_for_po(db, po_id=po.id),
        }
        for po in db.execute(query).scalars().all()
    ]


def list_discrepancies(db: Session, *, job_id: str | None = None, limit: int = 200) -> list[dict]:
    query = (
        select(PurchaseOrderDiscrepancy, PurchaseOrder.po_number, PurchaseOrderItem.product_name)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderDiscrepancy.po_id)
        .outerjoin(PurchaseOrderItem, PurchaseOrderItem.id == PurchaseOrderDiscrepancy.po_item_id)
        .order_by(PurchaseOrderDiscrepancy.created_at.desc())
        .limit(limit)
    )
    if job_id is not None:
        query = query.where(PurchaseOrder.job_id == job_id)
    return [
        {
            'discrepancy': discrepancy,
            'po_number': po_number,
            'product_name': product_name or 'Unknown Item',
        }
        for discrepancy, po_number, product_name in db.execute(query).all()
    ]
