from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from material_tracker.config import settings
from material_tracker.errors import InvalidTransitionError, LedgerValidationError, RecordNotFoundError
from material_tracker.models import (
    ConditionFlag,
    ProjectMaterial,
    PurchaseOrder,
    PurchaseOrderDiscrepancy,
    PurchaseOrderItem,
    PurchaseOrderStatus,
)
from material_tracker.services.audit_service import log_audit
from material_tracker.services.quantity_utils import clamp_zero, non_negative, or_zero
from material_tracker.services.receipt_math_service import ReceiptCondition

logger = logging.getLogger(__name__)

_CONDITION_FLAGS = {
    ReceiptCondition.DAMAGED: ConditionFlag.DAMAGED,
    ReceiptCondition.MISSING: ConditionFlag.MISSING,
}


@dataclass(frozen=True)
class ReceiptLine:
    material_id: str
    qty_ordered: Decimal
    qty_received: Decimal
    condition: ReceiptCondition = ReceiptCondition.VERIFIED
    notes: str | None = None
    photo_url: str | None = None
    pieces_ordered: int | None = None
    pieces_received: int | None = None
    po_item_id: str | None = None


@dataclass(frozen=True)
class TransferLine:
    material_id: str
    qty: Decimal


@dataclass
class ReceiptResult:
    updated_materials: list[ProjectMaterial] = field(default_factory=list)
    discrepancies: list[PurchaseOrderDiscrepancy] = field(default_factory=list)
    skipped_material_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ShortfallItem:
    material_id: str
    qty: Decimal
    po_item_id: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _materials_by_id(db: Session, material_ids: Iterable[str]) -> dict[str, ProjectMaterial]:
    ids = sorted(set(material_ids))
    if not ids:
        return {}
    rows = db.execute(select(ProjectMaterial).where(ProjectMaterial.id.in_(ids))).scalars().all()
    return {row.id: row for row in rows}


def _receive_into_job(material: ProjectMaterial, qty: Decimal) -> None:
    material.received_at_job = or_zero(material.received_at_job) + qty
    # Arrival always drains transit by what actually showed up, never below zero.
    material.in_transit = clamp_zero(or_zero(material.in_transit) - qty)
    material.updated_at = _now()


def condition_flag_for(condition: ReceiptCondition, difference: Decimal) -> ConditionFlag | None:
    flag = _CONDITION_FLAGS.get(condition)
    if flag is None and difference > 0:
        return ConditionFlag.MISSING
    return flag


def needs_discrepancy(line: ReceiptLine) -> bool:
    return (line.qty_ordered - line.qty_received) > 0 or line.condition != ReceiptCondition.VERIFIED


def derive_po_status(discrepancy_count: int) -> PurchaseOrderStatus:
    if discrepancy_count:
        return PurchaseOrderStatus.RECEIVED_WITH_DISCREPANCY
    return PurchaseOrderStatus.RECEIVED


def apply_receipt(db: Session, *, po_id: str, lines: list[ReceiptLine]) -> ReceiptResult:
    """Post one receipt event to the ledger.

    Every material update and discrepancy row is flushed in the caller's
    transaction; the caller commits or rolls back the batch as a whole. Lines
    pointing at a material that no longer exists are skipped and reported.
    """
    for line in lines:
        non_negative(line.qty_received, field='Quantity received')
        non_negative(line.qty_ordered, field='Quantity ordered')

    materials = _materials_by_id(db, (line.material_id for line in lines))
    result = ReceiptResult()
    for line in lines:
        material = materials.get(line.material_id)
        if material is None:
            logger.warning('Receipt for PO %s skipped missing material %s', po_id, line.material_id)
            result.skipped_material_ids.append(line.material_id)
            continue

        _receive_into_job(material, line.qty_received)
        if material not in result.updated_materials:
            result.updated_materials.append(material)

        if not needs_discrepancy(line):
            continue
        difference = line.qty_ordered - line.qty_received
        pieces_difference = None
        if line.pieces_ordered is not None and line.pieces_received is not None:
            pieces_difference = line.pieces_ordered - line.pieces_received
        discrepancy = PurchaseOrderDiscrepancy(
            po_id=po_id,
            po_item_id=line.po_item_id,
            material_id=line.material_id,
            condition_flag=condition_flag_for(line.condition, difference),
            quantity_ordered=line.qty_ordered,
            quantity_received=line.qty_received,
            difference=difference,
            pieces_difference=pieces_difference,
            notes=(line.notes or '').strip() or None,
            photo_url=(line.photo_url or '').strip() or None,
        )
        db.add(discrepancy)
        result.discrepancies.append(discrepancy)

    db.flush()
    return result


def apply_transfer(db: Session, *, lines: list[TransferLine]) -> ReceiptResult:
    """Move delivered ticket quantities from in-transit to received-at-job."""
    materials = _materials_by_id(db, (line.material_id for line in lines))
    result = ReceiptResult()
    for line in lines:
        qty = non_negative(line.qty, field='Quantity')
        material = materials.get(line.material_id)
        if material is None:
            logger.warning('Transfer skipped missing material %s', line.material_id)
            result.skipped_material_ids.append(line.material_id)
            continue
        _receive_into_job(material, qty)
        if material not in result.updated_materials:
            result.updated_materials.append(material)
    db.flush()
    return result


def list_discrepancies_for_po(db: Session, *, po_id: str) -> list[PurchaseOrderDiscrepancy]:
    return db.execute(
        select(PurchaseOrderDiscrepancy)
        .where(PurchaseOrderDiscrepancy.po_id == po_id)
        .order_by(PurchaseOrderDiscrepancy.created_at.asc(), PurchaseOrderDiscrepancy.id.asc())
    ).scalars().all()


def shortfalls_from_discrepancies(discrepancies: Iterable[PurchaseOrderDiscrepancy]) -> list[ShortfallItem]:
    # Zero-difference (damaged but complete) rows are not re-ordered.
    return [
        ShortfallItem(material_id=row.material_id, qty=Decimal(row.difference), po_item_id=row.po_item_id)
        for row in discrepancies
        if row.difference is not None and row.difference > 0
    ]


def snapshot_item(
    *,
    po_id: str,
    material: ProjectMaterial | None,
    quantity: Decimal,
    unit_cost: Decimal | None = None,
    pieces_per_crate: Decimal | None = None,
    template: PurchaseOrderItem | None = None,
    material_id: str | None = None,
) -> PurchaseOrderItem:
    """Build a PO line carrying a copy of the material's identity at order time."""
    source = material if material is not None else template
    if source is None:
        raise LedgerValidationError('A material is required for each line item')
    if unit_cost is None:
        unit_cost = or_zero(material.unit_cost if material is not None else template.unit_cost)
    if pieces_per_crate is None and template is not None:
        pieces_per_crate = template.pieces_per_crate
    return PurchaseOrderItem(
        po_id=po_id,
        material_id=material.id if material is not None else (material_id or template.material_id),
        quantity_ordered=quantity,
        unit=source.unit,
        unit_cost=unit_cost,
        pieces_per_crate=pieces_per_crate,
        product_code=source.product_code,
        product_name=source.product_name,
        material_category=material.category if material is not None else template.material_category,
        dim_length=source.dim_length,
        dim_width=source.dim_width,
        pcs_per_unit=source.pcs_per_unit,
        sqft_per_piece=source.sqft_per_piece,
    )


def _reorder_number(db: Session, source: PurchaseOrder) -> str:
    existing = db.execute(
        select(func.count(PurchaseOrder.id)).where(PurchaseOrder.source_po_id == source.id)
    ).scalar_one()
    return f'{source.po_number}-R{int(existing) + 1}'


def create_reorder(
    db: Session,
    *,
    source_po_id: str,
    shortfall_items: list[ShortfallItem] | None = None,
    ordered_by: str | None = None,
    po_number: str | None = None,
    new_po_id: str | None = None,
) -> PurchaseOrder:
    """Open a Draft PO for the shortfall of a received PO.

    Without explicit items the positive-difference discrepancies of the source
    PO are used. The draft is linked to its source and has no ledger effect.
    """
    source = db.get(PurchaseOrder, source_po_id)
    if source is None:
        raise RecordNotFoundError('Order not found')
    if source.status not in (PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.RECEIVED_WITH_DISCREPANCY):
        raise InvalidTransitionError('Only received orders can be re-ordered')

    if new_po_id is not None:
        existing = db.get(PurchaseOrder, new_po_id)
        if existing is not None:
            if existing.source_po_id != source.id:
                raise LedgerValidationError(f'PO {new_po_id} is not a re-order of PO #{source.po_number}')
            return existing

    if shortfall_items is None:
        shortfall_items = shortfalls_from_discrepancies(list_discrepancies_for_po(db, po_id=source.id))
    shortfall_items = [item for item in shortfall_items if item.qty is not None and item.qty > 0]
    if not shortfall_items:
        raise LedgerValidationError('No shortfalls found to re-order')

    source_items = {
        item.id: item
        for item in db.execute(select(PurchaseOrderItem).where(PurchaseOrderItem.po_id == source.id)).scalars().all()
    }
    source_items_by_material = {item.material_id: item for item in source_items.values()}
    materials = _materials_by_id(db, (item.material_id for item in shortfall_items))

    reorder = PurchaseOrder(
        job_id=source.job_id,
        po_number=(po_number or '').strip() or _reorder_number(db, source),
        vendor=source.vendor,
        status=PurchaseOrderStatus.DRAFT,
        expected_date=None,
        ordered_by=ordered_by or settings.reorder_ordered_by,
        source_po_id=source.id,
        notes=f'Re-order of PO #{source.po_number}',
    )
    if new_po_id is not None:
        reorder.id = new_po_id
    db.add(reorder)
    db.flush()

    for item in shortfall_items:
        template = source_items.get(item.po_item_id) if item.po_item_id else None
        template = template or source_items_by_material.get(item.material_id)
        material = materials.get(item.material_id)
        if material is None and template is None:
            raise RecordNotFoundError(f'Material {item.material_id} not found')
        db.add(
            snapshot_item(
                po_id=reorder.id,
                material=material,
                quantity=item.qty,
                unit_cost=template.unit_cost if template is not None else None,
                template=template,
                material_id=item.material_id,
            )
        )
    db.flush()

    log_audit(
        db,
        actor=ordered_by,
        action='PO_REORDER_CREATED',
        entity_type='purchase_order',
        entity_id=reorder.id,
        metadata={'source_po_id': source.id, 'line_count': len(shortfall_items)},
    )
    logger.info('Created re-order %s (%s) from PO %s', reorder.id, reorder.po_number, source.po_number)
    return reorder
