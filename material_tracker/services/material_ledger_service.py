from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_tracker.config import settings
from material_tracker.errors import LedgerValidationError, RecordNotFoundError
from material_tracker.models import Job, ProjectMaterial
from material_tracker.services.area_directory_service import create_area, create_unit, first_floor_id, get_job
from material_tracker.services.audit_service import log_audit
from material_tracker.services.quantity_utils import ZERO, clamp_zero, non_negative, or_zero

logger = logging.getLogger(__name__)

_HUNDRED = Decimal('100')

QUANTITY_FIELDS = (
    'net_qty',
    'budget_qty',
    'ordered_qty',
    'shop_stock',
    'in_transit',
    'unit_cost',
)


@dataclass(frozen=True)
class NewAreaRequest:
    """Create the owning area (and optionally its unit) together with the material.

    ``area_id`` and ``new_unit_id`` may be generated by the caller so that a
    retried request finds the rows it created the first time instead of
    creating them again.
    """

    name: str
    unit_id: str | None = None
    new_unit_name: str | None = None
    description: str = ''
    area_id: str | None = None
    new_unit_id: str | None = None


@dataclass(frozen=True)
class MaterialInput:
    """One material budget line as sent by the caller.

    On update only supplied fields are written. ``fields_set`` names them
    explicitly (an explicit ``None`` then clears the column); without it every
    field that is not ``None`` counts as supplied.
    """

    product_name: str
    job_id: str | None = None
    id: str | None = None
    area_id: str | None = None
    sub_location: str | None = None
    zone: str | None = None
    category: str | None = None
    product_code: str | None = None
    product_specs: str | None = None
    supplier: str | None = None
    unit: str | None = None
    dim_length: Decimal | None = None
    dim_width: Decimal | None = None
    dim_thickness: str | None = None
    grout_info: str | None = None
    caulk_info: str | None = None
    net_qty: Decimal | None = None
    waste_percent: Decimal | None = None
    budget_qty: Decimal | None = None
    ordered_qty: Decimal | None = None
    shop_stock: Decimal | None = None
    in_transit: Decimal | None = None
    unit_cost: Decimal | None = None
    pcs_per_unit: Decimal | None = None
    sqft_per_piece: Decimal | None = None
    expected_date: date | None = None
    fields_set: frozenset[str] | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_text(value: str | None) -> str | None:
    return (value or '').strip() or None


def _clean_id(value: str | None) -> str | None:
    # Empty strings arrive from forms; they must never reach id columns.
    return (value or '').strip() or None


def compute_budget_qty(net_qty: Decimal, waste_percent: Decimal) -> Decimal:
    return net_qty * (Decimal('1') + waste_percent / _HUNDRED)


def waste_qty(material: ProjectMaterial) -> Decimal:
    return or_zero(material.net_qty) * (or_zero(material.waste_percent) / _HUNDRED)


def total_value(material: ProjectMaterial) -> Decimal:
    return or_zero(material.budget_qty) * or_zero(material.unit_cost)


def to_buy(material: ProjectMaterial) -> Decimal:
    covered = or_zero(material.shop_stock) + or_zero(material.in_transit) + or_zero(material.received_at_job)
    return clamp_zero(or_zero(material.budget_qty) - covered)


def _supplied_fields(data: MaterialInput) -> frozenset[str]:
    if data.fields_set is not None:
        return data.fields_set
    return frozenset(item.name for item in fields(data) if getattr(data, item.name) is not None)


def _validated_values(data: MaterialInput) -> dict:
    values: dict = {
        'product_name': (data.product_name or '').strip(),
        'sub_location': _clean_text(data.sub_location),
        'zone': _clean_text(data.zone),
        'category': _clean_text(data.category) or 'Generic',
        'product_code': _clean_text(data.product_code),
        'product_specs': _clean_text(data.product_specs),
        'supplier': _clean_text(data.supplier),
        'unit': _clean_text(data.unit) or settings.default_unit,
        'dim_thickness': _clean_text(data.dim_thickness),
        'grout_info': _clean_text(data.grout_info),
        'caulk_info': _clean_text(data.caulk_info),
        'expected_date': data.expected_date,
        'dim_length': non_negative(data.dim_length, field='Length', default=None),
        'dim_width': non_negative(data.dim_width, field='Width', default=None),
        'sqft_per_piece': non_negative(data.sqft_per_piece, field='Sqft per piece', default=None),
    }
    for name in QUANTITY_FIELDS:
        label = name.replace('_', ' ').capitalize()
        values[name] = non_negative(getattr(data, name), field=label)
    values['waste_percent'] = non_negative(
        data.waste_percent, field='Waste percent', default=settings.default_waste_percent
    )
    pcs_per_unit = non_negative(data.pcs_per_unit, field='Pieces per unit', default=None)
    values['pcs_per_unit'] = pcs_per_unit if pcs_per_unit else settings.default_pcs_per_unit
    return values


def _ensure_area(db: Session, *, job_id: str | None, request: NewAreaRequest) -> str:
    unit_id = _clean_id(request.unit_id)
    if _clean_text(request.new_unit_name):
        if not job_id:
            raise LedgerValidationError('Job is required to create a unit')
        floor_id = first_floor_id(db, job_id=job_id)
        if floor_id is None:
            raise LedgerValidationError('Job must have at least one floor to create a unit')
        unit_id = create_unit(db, floor_id=floor_id, name=request.new_unit_name, unit_id=_clean_id(request.new_unit_id))
    if not unit_id:
        raise LedgerValidationError('Select a unit or name a new one for the new area')
    return create_area(
        db,
        unit_id=unit_id,
        name=request.name,
        description=request.description,
        area_id=_clean_id(request.area_id),
    )


def upsert_commitment(
    db: Session,
    *,
    data: MaterialInput,
    new_area: NewAreaRequest | None = None,
    actor: str | None = None,
) -> ProjectMaterial:
    """Insert or update one material budget line.

    Everything is validated before the first write. With ``new_area`` the unit,
    area and material are written in that order inside the caller's
    transaction, so a failure at any step leaves nothing behind once the caller
    rolls back. ``received_at_job`` is never taken from the caller. Updating an
    existing line leaves every field the caller did not supply untouched.
    """
    material_id = _clean_id(data.id)
    material = db.get(ProjectMaterial, material_id) if material_id else None
    created = material is None

    values = _validated_values(data)
    supplied = _supplied_fields(data)
    if not created:
        values = {name: value for name, value in values.items() if name in supplied}
    if 'product_name' in values and not values['product_name']:
        raise LedgerValidationError('Product name is required')
    job_id = _clean_id(data.job_id)
    if job_id is not None:
        get_job(db, job_id=job_id)
    if new_area is not None and not (new_area.name or '').strip():
        raise LedgerValidationError('Area name is required')

    area_id = _clean_id(data.area_id)
    if new_area is not None:
        area_id = _ensure_area(db, job_id=job_id, request=new_area)
    elif not created and 'area_id' not in supplied:
        area_id = material.area_id

    if created:
        material = ProjectMaterial(received_at_job=ZERO)
        if material_id:
            material.id = material_id
        db.add(material)

    material.job_id = job_id if job_id is not None else material.job_id
    material.area_id = area_id
    for name, value in values.items():
        setattr(material, name, value)
    material.updated_at = _now()
    db.flush()

    log_audit(
        db,
        actor=actor,
        action='MATERIAL_SAVED',
        entity_type='project_material',
        entity_id=material.id,
        metadata={'created': created, 'area_id': area_id, 'product_name': material.product_name},
    )
    logger.info('Saved material %s (%s) in area %s', material.id, material.product_name, area_id or 'unassigned')
    return material


def get_commitment(db: Session, *, material_id: str) -> ProjectMaterial:
    material = db.get(ProjectMaterial, material_id)
    if material is None:
        raise RecordNotFoundError('Material not found')
    return material


def delete_commitment(db: Session, *, material_id: str, actor: str | None = None) -> None:
    material = get_commitment(db, material_id=material_id)
    db.delete(material)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action='MATERIAL_DELETED',
        entity_type='project_material',
        entity_id=material_id,
        metadata={'product_name': material.product_name, 'area_id': material.area_id},
    )
    logger.info('Deleted material %s', material_id)


def list_by_area(db: Session, *, area_id: str) -> list[ProjectMaterial]:
    return db.execute(
        select(ProjectMaterial)
        .where(ProjectMaterial.area_id == area_id)
        .order_by(ProjectMaterial.category.asc(), ProjectMaterial.product_name.asc())
    ).scalars().all()


def list_by_project(db: Session, *, job_id: str) -> list[ProjectMaterial]:
    return db.execute(
        select(ProjectMaterial)
        .where(ProjectMaterial.job_id == job_id)
        .order_by(
            ProjectMaterial.category.asc(),
            ProjectMaterial.sub_location.asc(),
            ProjectMaterial.product_name.asc(),
        )
    ).scalars().all()


def list_warehouse_inventory(db: Session) -> list[dict]:
    rows = db.execute(
        select(ProjectMaterial, Job.name, Job.job_number)
        .outerjoin(Job, Job.id == ProjectMaterial.job_id)
        .where(ProjectMaterial.shop_stock > 0)
        .order_by(ProjectMaterial.created_at.desc())
    ).all()
    return [
        {
            'material': material,
            'job_name': job_name or 'Unknown Job',
            'job_number': job_number or 'N/A',
        }
        for material, job_name, job_number in rows
    ]


def material_snapshot(material: ProjectMaterial) -> dict:
    snapshot = {column.key: getattr(material, column.key) for column in ProjectMaterial.__table__.columns}
    snapshot['total_value'] = total_value(material)
    snapshot['to_buy'] = to_buy(material)
    return snapshot
