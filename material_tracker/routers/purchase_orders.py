from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from material_tracker.db import get_db
from material_tracker.dependencies import get_actor, service_errors
from material_tracker.models import PurchaseOrder, PurchaseOrderDiscrepancy, PurchaseOrderItem
from material_tracker.schemas import LineItemsAdd, PurchaseOrderCreate, ReceiveRequest, ReorderRequest
from material_tracker.services.material_ledger_service import material_snapshot
from material_tracker.services.purchase_order_service import (
    OverBudgetWarning,
    add_line_items_to_existing_po,
    create_po,
    default_receipts,
    get_po,
    list_active,
    list_discrepancies,
    list_items,
    list_processed,
    mark_ordered,
    receive_po,
)
from material_tracker.services.reconciliation_service import create_reorder

router = APIRouter(tags=['purchase-orders'])


def _po(po: PurchaseOrder) -> dict:
    return {
        'id': po.id,
        'job_id': po.job_id,
        'po_number': po.po_number,
        'vendor': po.vendor,
        'status': po.status.value,
        'order_date': po.order_date,
        'expected_date': po.expected_date,
        'ordered_by': po.ordered_by,
        'source_po_id': po.source_po_id,
        'notes': po.notes,
        'received_at': po.received_at,
    }


def _item(item: PurchaseOrderItem) -> dict:
    return {
        'id': item.id,
        'material_id': item.material_id,
        'quantity_ordered': item.quantity_ordered,
        'unit': item.unit,
        'unit_cost': item.unit_cost,
        'pieces_per_crate': item.pieces_per_crate,
        'product_code': item.product_code,
        'product_name': item.product_name,
        'material_category': item.material_category,
    }


def _discrepancy(row: PurchaseOrderDiscrepancy) -> dict:
    return {
        'id': row.id,
        'po_item_id': row.po_item_id,
        'material_id': row.material_id,
        'condition_flag': row.condition_flag.value if row.condition_flag else None,
        'quantity_ordered': row.quantity_ordered,
        'quantity_received': row.quantity_received,
        'difference': row.difference,
        'pieces_difference': row.pieces_difference,
        'notes': row.notes,
        'photo_url': row.photo_url,
    }


def _warning(warning: OverBudgetWarning) -> dict:
    return {
        'material_id': warning.material_id,
        'product_name': warning.product_name,
        'projected_qty': warning.projected_qty,
        'budget_qty': warning.budget_qty,
        'overage': warning.overage,
    }


@router.post('/jobs/{job_id}/purchase-orders', status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    job_id: str,
    payload: PurchaseOrderCreate,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        result = create_po(
            db,
            job_id=job_id,
            po_number=payload.po_number,
            items=[item.to_input() for item in payload.items],
            vendor=payload.vendor,
            expected_date=payload.expected_date,
            notes=payload.notes,
            ordered_by=actor,
            po_id=payload.id,
        )
    db.commit()
    return {
        **_po(result.purchase_order),
        'items': [_item(item) for item in result.items],
        'warnings': [_warning(warning) for warning in result.warnings],
    }


@router.post('/purchase-orders/{po_id}/lines')
def add_purchase_order_lines(
    po_id: str,
    payload: LineItemsAdd,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        result = add_line_items_to_existing_po(
            db,
            po_id=po_id,
            items=[item.to_input() for item in payload.items],
            actor=actor,
        )
    db.commit()
    return {
        **_po(result.purchase_order),
        'items': [_item(item) for item in result.items],
        'warnings': [_warning(warning) for warning in result.warnings],
    }


@router.post('/purchase-orders/{po_id}/order')
def place_purchase_order(po_id: str, actor: str | None = Depends(get_actor), db: Session = Depends(get_db)):
    with service_errors(db):
        po = mark_ordered(db, po_id=po_id, actor=actor)
    db.commit()
    return _po(po)


@router.post('/purchase-orders/{po_id}/receive')
def receive_purchase_order(
    po_id: str,
    payload: ReceiveRequest,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        if payload.receipts is None:
            get_po(db, po_id=po_id)
            receipts = default_receipts(list_items(db, po_id=po_id))
        else:
            receipts = [receipt.to_descriptor() for receipt in payload.receipts]
        result = receive_po(db, po_id=po_id, receipts=receipts, actor=actor)
    db.commit()
    return {
        **_po(result.purchase_order),
        'discrepancies': [_discrepancy(row) for row in result.discrepancies],
        'updated_materials': [material_snapshot(material) for material in result.updated_materials],
        'skipped_material_ids': result.skipped_material_ids,
    }


@router.post('/purchase-orders/{po_id}/reorder', status_code=status.HTTP_201_CREATED)
def reorder_purchase_order(
    po_id: str,
    payload: ReorderRequest,
    actor: str | None = Depends(get_actor),
    db: Session = Depends(get_db),
):
    with service_errors(db):
        reorder = create_reorder(
            db,
            source_po_id=po_id,
            shortfall_items=payload.shortfall_items(),
            ordered_by=actor,
            po_number=payload.po_number,
            new_po_id=payload.id,
        )
    db.commit()
    return {**_po(reorder), 'items': [_item(item) for item in list_items(db, po_id=reorder.id)]}


@router.get('/jobs/{job_id}/purchase-orders/active')
def active_purchase_orders(job_id: str, db: Session = Depends(get_db)):
    return [
        {
            **_po(row['purchase_order']),
            'schedule_status': row['schedule_status'].value,
            'items': [_item(item) for item in row['items']],
        }
        for row in list_active(db, job_id=job_id)
    ]


@router.get('/purchase-orders/processed')
def processed_purchase_orders(job_id: str | None = None, db: Session = Depends(get_db)):
    return [
        {
            **_po(row['purchase_order']),
            'items': [_item(item) for item in row['items']],
            'discrepancies': [_discrepancy(item) for item in row['discrepancies']],
        }
        for row in list_processed(db, job_id=job_id)
    ]


@router.get('/purchase-orders/discrepancies')
def discrepancy_history(job_id: str | None = None, db: Session = Depends(get_db)):
    return [
        {
            **_discrepancy(row['discrepancy']),
            'po_number': row['po_number'],
            'product_name': row['product_name'],
        }
        for row in list_discrepancies(db, job_id=job_id)
    ]
