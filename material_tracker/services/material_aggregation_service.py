from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from material_tracker.models import Area, ProjectMaterial, PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from material_tracker.services.area_directory_service import list_areas
from material_tracker.services.material_ledger_service import list_by_project, total_value, waste_qty
from material_tracker.services.quantity_utils import ZERO, clamp_zero, or_zero, round_half_up

UNASSIGNED_KEY = 'virtual:unassigned'
UNASSIGNED_NAME = 'Unassigned / Global'

CATEGORY_GROUPS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ('TILE & STONE', ('Tile', 'Stone')),
    ('SETTING MATERIALS & SUNDRIES', ('Setting Materials', 'Sundries', 'Misc')),
)

_SUMMED_FIELDS = (
    'net_qty',
    'budget_qty',
    'ordered_qty',
    'shop_stock',
    'in_transit',
    'received_at_job',
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PersistedArea:
    record: Area

    @property
    def key(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def is_virtual(self) -> bool:
        return False


@dataclass(frozen=True)
class VirtualArea:
    key: str
    name: str

    @property
    def is_virtual(self) -> bool:
        return True


AreaRef = PersistedArea | VirtualArea


@dataclass
class AreaBucket:
    area: AreaRef
    materials: list[ProjectMaterial] = field(default_factory=list)
    sort_at: datetime = _EPOCH


@dataclass
class AggregatedMaterial:
    key: tuple
    category: str
    product_code: str | None
    product_name: str
    product_specs: str | None
    unit: str
    dim_length: Decimal | None
    dim_width: Decimal | None
    dim_thickness: str | None
    pcs_per_unit: Decimal | None
    supplier: str | None
    unit_cost: Decimal
    net_qty: Decimal = ZERO
    waste_qty: Decimal = ZERO
    budget_qty: Decimal = ZERO
    ordered_qty: Decimal = ZERO
    shop_stock: Decimal = ZERO
    in_transit: Decimal = ZERO
    received_at_job: Decimal = ZERO
    total_value: Decimal = ZERO
    locations: set[str] = field(default_factory=set)
    zones: set[str] = field(default_factory=set)
    all_ids: set[str] = field(default_factory=set)

    @property
    def to_buy(self) -> Decimal:
        return clamp_zero(self.budget_qty - (self.shop_stock + self.in_transit + self.received_at_job))


@dataclass(frozen=True)
class CategoryGroup:
    label: str
    materials: list[AggregatedMaterial]
    total_value: Decimal


@dataclass(frozen=True)
class ProjectAggregation:
    materials: list[AggregatedMaterial]
    areas: list[AreaBucket]


def _aware(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _norm_text(value: str | None) -> str:
    return (value or '').strip()


def _norm_dim(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value).normalize()


def is_grout(category: str | None) -> bool:
    return _norm_text(category).lower() == 'grout'


def grouping_key(material: ProjectMaterial) -> tuple:
    identity = _norm_text(material.product_code) or _norm_text(material.product_name)
    unit = _norm_text(material.unit).lower()
    if is_grout(material.category):
        # Grout has no meaningful dimensions; the colour tells products apart.
        return ('grout', identity, _norm_text(material.product_specs), unit)
    return ('dims', identity, _norm_dim(material.dim_length), _norm_dim(material.dim_width), unit)


def piece_count(qty: Decimal, pcs_per_unit: Decimal | None) -> int | None:
    if not pcs_per_unit:
        return None
    return round_half_up(qty * pcs_per_unit)


def aggregate_materials(materials: Iterable[ProjectMaterial]) -> list[AggregatedMaterial]:
    groups: dict[tuple, AggregatedMaterial] = {}
    for material in materials:
        key = grouping_key(material)
        row = groups.get(key)
        if row is None:
            row = AggregatedMaterial(
                key=key,
                category=material.category,
                product_code=material.product_code,
                product_name=material.product_name,
                product_specs=material.product_specs,
                unit=material.unit,
                dim_length=material.dim_length,
                dim_width=material.dim_width,
                dim_thickness=material.dim_thickness,
                pcs_per_unit=material.pcs_per_unit,
                supplier=material.supplier,
                unit_cost=or_zero(material.unit_cost),
            )
            groups[key] = row
        if material.sub_location:
            row.locations.add(material.sub_location)
        if material.zone:
            row.zones.add(material.zone)
        row.all_ids.add(material.id)
        for name in _SUMMED_FIELDS:
            setattr(row, name, getattr(row, name) + or_zero(getattr(material, name)))
        row.waste_qty += waste_qty(material)
        row.total_value += total_value(material)

    return sorted(
        groups.values(),
        key=lambda row: (_norm_text(row.category).lower(), (row.product_code or row.product_name).lower(), repr(row.key)),
    )


def bucket_by_area(areas: Iterable[Area], materials: Iterable[ProjectMaterial]) -> list[AreaBucket]:
    """Group materials under their area.

    Materials with no area, or whose area no longer exists, land in virtual
    buckets: one per sub-location label, or the shared unassigned bucket.
    Virtual buckets are rebuilt on every call and never stored. The unassigned
    bucket sorts first; everything else is chronological.
    """
    buckets: dict[str, AreaBucket] = {}
    for area in areas:
        buckets[area.id] = AreaBucket(area=PersistedArea(area), sort_at=_aware(area.created_at))

    for material in materials:
        bucket = buckets.get(material.area_id) if material.area_id else None
        if bucket is None:
            location = _norm_text(material.sub_location)
            if location:
                key = f'virtual:location:{location.lower()}'
                name = location
            else:
                key = UNASSIGNED_KEY
                name = UNASSIGNED_NAME
            bucket = buckets.get(key)
            if bucket is None:
                bucket = AreaBucket(area=VirtualArea(key=key, name=name), sort_at=_aware(material.created_at))
                buckets[key] = bucket
            else:
                bucket.sort_at = min(bucket.sort_at, _aware(material.created_at))
        bucket.materials.append(material)

    return sorted(
        buckets.values(),
        key=lambda bucket: (bucket.area.key != UNASSIGNED_KEY, bucket.sort_at, bucket.area.name.lower(), bucket.area.key),
    )


def aggregate(db: Session, *, job_id: str) -> ProjectAggregation:
    materials = list_by_project(db, job_id=job_id)
    areas = list_areas(db, job_id=job_id)
    return ProjectAggregation(
        materials=aggregate_materials(materials),
        areas=bucket_by_area(areas, materials),
    )


def materials_by_area(db: Session, *, job_id: str) -> list[AreaBucket]:
    return aggregate(db, job_id=job_id).areas


def group_by_category(
    materials: list[AggregatedMaterial],
    groups: tuple[tuple[str, tuple[str, ...]], ...] = CATEGORY_GROUPS,
) -> list[CategoryGroup]:
    """Split aggregated rows into display groups; the last group takes every
    category no earlier group claims."""
    result: list[CategoryGroup] = []
    claimed: set[str] = set()
    for idx, (label, tags) in enumerate(groups):
        lower_tags = {tag.lower() for tag in tags}
        is_last = idx == len(groups) - 1
        matched = []
        for row in materials:
            category = _norm_text(row.category).lower()
            if category in lower_tags or (is_last and category not in claimed):
                matched.append(row)
        claimed |= lower_tags
        if not matched and not is_last:
            continue
        result.append(
            CategoryGroup(
                label=label,
                materials=matched,
                total_value=sum((row.total_value for row in matched), ZERO),
            )
        )
    return result


def active_purchase_orders_by_key(db: Session, *, materials: list[AggregatedMaterial]) -> dict[tuple, list[str]]:
    """PO numbers still awaiting receipt for each aggregated row."""
    key_by_material_id = {material_id: row.key for row in materials for material_id in row.all_ids}
    if not key_by_material_id:
        return {}
    rows = db.execute(
        select(PurchaseOrderItem.material_id, PurchaseOrder.po_number)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.po_id)
        .where(
            PurchaseOrderItem.material_id.in_(list(key_by_material_id)),
            PurchaseOrder.status.in_([PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.ORDERED]),
        )
        .order_by(PurchaseOrder.po_number.asc())
    ).all()
    result: dict[tuple, list[str]] = {}
    for material_id, po_number in rows:
        numbers = result.setdefault(key_by_material_id[material_id], [])
        if po_number not in numbers:
            numbers.append(po_number)
    return result
