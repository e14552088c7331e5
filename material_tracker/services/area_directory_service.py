from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from material_tracker.errors import LedgerValidationError, RecordNotFoundError
from material_tracker.models import Area, Floor, Job, ProjectMaterial, Unit


def _clean_name(value: str | None, *, field: str) -> str:
    name = (value or '').strip()
    if not name:
        raise LedgerValidationError(f'{field} is required')
    return name


def get_job(db: Session, *, job_id: str) -> Job:
    job = db.execute(select(Job).where(Job.id == job_id)).scalar_one_or_none()
    if job is None:
        raise RecordNotFoundError('Job not found')
    return job


def first_floor_id(db: Session, *, job_id: str) -> str | None:
    return db.execute(
        select(Floor.id).where(Floor.job_id == job_id).order_by(Floor.created_at.asc(), Floor.name.asc()).limit(1)
    ).scalar_one_or_none()


def create_unit(db: Session, *, floor_id: str, name: str, unit_id: str | None = None) -> str:
    clean_name = _clean_name(name, field='Unit name')
    if unit_id is not None:
        existing = db.get(Unit, unit_id)
        if existing is not None:
            return existing.id
    unit = Unit(floor_id=floor_id, name=clean_name)
    if unit_id is not None:
        unit.id = unit_id
    db.add(unit)
    db.flush()
    return unit.id


def create_area(
    db: Session,
    *,
    unit_id: str,
    name: str,
    description: str = '',
    area_id: str | None = None,
) -> str:
    clean_name = _clean_name(name, field='Area name')
    if area_id is not None:
        existing = db.get(Area, area_id)
        if existing is not None:
            return existing.id
    if db.get(Unit, unit_id) is None:
        raise RecordNotFoundError('Unit not found')
    area = Area(unit_id=unit_id, name=clean_name, description=(description or '').strip() or None)
    if area_id is not None:
        area.id = area_id
    db.add(area)
    db.flush()
    return area.id


def list_areas(db: Session, *, job_id: str) -> list[Area]:
    return db.execute(
        select(Area)
        .join(Unit, Unit.id == Area.unit_id)
        .join(Floor, Floor.id == Unit.floor_id)
        .where(Floor.job_id == job_id)
        .order_by(Area.created_at.asc(), Area.name.asc())
    ).scalars().all()


def delete_area(db: Session, *, area_id: str) -> None:
    area = db.get(Area, area_id)
    if area is None:
        raise RecordNotFoundError('Area not found')
    db.execute(delete(ProjectMaterial).where(ProjectMaterial.area_id == area_id))
    db.delete(area)
    db.flush()
