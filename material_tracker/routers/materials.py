from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from material_tracker.db import get_db
from material_tracker.dependencies import get_actor, service_errors
from material_tracker.schemas import MaterialIn
from material_tracker.services.area_directory_service import get_job
from material_tracker.services.material_aggregation_service import (
    AggregatedMaterial,
    AreaBucket,
    active_purchase_orders_by_key,
    aggregate,
    group_by_category,
    piece_count,
)
from material_tracker.services.material_ledger_service import (
    delete_commitment,
    list_by_area,
    list_by_project,
    list_warehouse_inventory,
    material_snapshot,
    upsert_commitment,
)

router = APIRouter(tags=['materials'])


def _aggregated_row(row: AggregatedMaterial, active_pos: list[str]) -> dict:
    return {
        'category': row.category,
        'product_code': row.product_code,
        'product_name': row.product_name,
        'product_specs': row.product_specs,
        'unit': row.unit,
        'dim_length': row.dim_length,
        'dim_width': row.dim_width,
        'dim_thickness': row.dim_thickness,
        'supplier': row.supplier,
        'unit_cost': row.unit_cost,
        'net_qty': row.net_qty,
        'waste_qty': row.waste_qty,
        'budget_qty': row.budget_qty,
        'ordered_qty': row.ordered_qty,
        'shop_stock': row.shop_stock,
        'in_transit': row.in_transit,
        'received_at_job': row.received_at_job,
        'to_buy': row.to_buy,
        'budget_pieces': piece_count(row.budget_qty, row.pcs_per_unit),
        'total_value': row.total_value,
        'locations': sorted(row.locations),
        'zones': sorted(row.zones),
        'all_ids': sorted(row.all_ids),
        'active_pos': active_pos,
    }


def _area_bucket(bucket: AreaBucket) -> dict:
    return {
        'key': bucket.area.key,
        'name': bucket.area.name,
        'is_virtual': bucket.area.is_virtual,
        'materials': [material_snapshot(material) for material in bucket.materials],
    }


@router.post('/materials', status_code=status.HTTP_201_CREATED)
def save_material(payload: MaterialIn, actor: str | None = Depends(get_actor), db: Session = Depends(get_db)):
    with service_errors(db):
        material = upsert_commitment(
            db,
            data=payload.to_input(),
            new_area=payload.new_area.to_request() if payload.new_area else None,
            actor=actor,
        )
    db.commit()
    return material_snapshot(material)


@router.delete('/materials/{material_id}')
def delete_material(material_id: str, actor: str | None = Depends(get_actor), db: Session = Depends(get_db)):
    with service_errors(db):
        delete_commitment(db, material_id=material_id, actor=actor)
    db.commit()
    return {'deleted': material_id}


@router.get('/jobs/{job_id}/materials')
def job_materials(job_id: str, db: Session = Depends(get_db)):
    return [material_snapshot(material) for material in list_by_project(db, job_id=job_id)]


@router.get('/areas/{area_id}/materials')
def area_materials(area_id: str, db: Session = Depends(get_db)):
    return [material_snapshot(material) for material in list_by_area(db, area_id=area_id)]


@router.get('/jobs/{job_id}/materials/aggregate')
def job_materials_aggregate(job_id: str, db: Session = Depends(get_db)):
    with service_errors(db):
        get_job(db, job_id=job_id)
    result = aggregate(db, job_id=job_id)
    active = active_purchase_orders_by_key(db, materials=result.materials)
    return {
        'groups': [
            {
                'label': group.label,
                'total_value': group.total_value,
                'materials': [_aggregated_row(row, active.get(row.key, [])) for row in group.materials],
            }
            for group in group_by_category(result.materials)
        ],
        'areas': [_area_bucket(bucket) for bucket in result.areas],
    }


@router.get('/warehouse/inventory')
def warehouse_inventory(db: Session = Depends(get_db)):
    return [
        {
            **material_snapshot(row['material']),
            'job_name': row['job_name'],
            'job_number': row['job_number'],
        }
        for row in list_warehouse_inventory(db)
    ]
