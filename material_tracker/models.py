from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from material_tracker.db import new_id

QTY = Numeric(14, 4)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class PurchaseOrderStatus(str, Enum):
    DRAFT = 'Draft'
    ORDERED = 'Ordered'
    RECEIVED = 'Received'
    RECEIVED_WITH_DISCREPANCY = 'Received with Discrepancy'


class DeliveryTicketStatus(str, Enum):
    DRAFT = 'draft'
    PENDING_APPROVAL = 'pending_approval'
    SCHEDULED = 'scheduled'
    IN_TRANSIT = 'in_transit'
    RECEIVED = 'received'


class DeliveryDestination(str, Enum):
    INVENTORY = 'Inventory'
    SHOP = 'Shop'


class ConditionFlag(str, Enum):
    DAMAGED = 'D'
    MISSING = 'M'


class Job(Base):
    __tablename__ = 'jobs'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    job_number: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Floor(Base):
    __tablename__ = 'floors'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(String(36), ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Unit(Base):
    __tablename__ = 'units'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    floor_id: Mapped[str] = mapped_column(String(36), ForeignKey('floors.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class Area(Base):
    __tablename__ = 'areas'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    unit_id: Mapped[str] = mapped_column(String(36), ForeignKey('units.id', ondelete='CASCADE'), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, default='NOT_STARTED', server_default='NOT_STARTED')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class ProjectMaterial(Base):
    """One budgeted material in one area (or unassigned when ``area_id`` is NULL)."""

    __tablename__ = 'project_materials'
    __table_args__ = (
        CheckConstraint('net_qty >= 0', name='project_materials_net_qty_non_negative'),
        CheckConstraint('waste_percent >= 0', name='project_materials_waste_percent_non_negative'),
        CheckConstraint('budget_qty >= 0', name='project_materials_budget_qty_non_negative'),
        CheckConstraint('ordered_qty >= 0', name='project_materials_ordered_qty_non_negative'),
        CheckConstraint('shop_stock >= 0', name='project_materials_shop_stock_non_negative'),
        CheckConstraint('in_transit >= 0', name='project_materials_in_transit_non_negative'),
        CheckConstraint('received_at_job >= 0', name='project_materials_received_at_job_non_negative'),
        CheckConstraint('unit_cost >= 0', name='project_materials_unit_cost_non_negative'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('jobs.id', ondelete='CASCADE'))
    # Not a foreign key: rows may outlive their area and surface as unassigned.
    area_id: Mapped[str | None] = mapped_column(String(36), index=True)
    sub_location: Mapped[str | None] = mapped_column(Text)
    zone: Mapped[str | None] = mapped_column(Text)

    category: Mapped[str] = mapped_column(Text, nullable=False, default='Generic', server_default='Generic')
    product_code: Mapped[str | None] = mapped_column(Text)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    product_specs: Mapped[str | None] = mapped_column(Text)
    supplier: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='sqft', server_default='sqft')
    dim_length: Mapped[Decimal | None] = mapped_column(QTY)
    dim_width: Mapped[Decimal | None] = mapped_column(QTY)
    dim_thickness: Mapped[str | None] = mapped_column(Text)
    grout_info: Mapped[str | None] = mapped_column(Text)
    caulk_info: Mapped[str | None] = mapped_column(Text)

    net_qty: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    waste_percent: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    budget_qty: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    ordered_qty: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    shop_stock: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    in_transit: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    received_at_job: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    unit_cost: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    pcs_per_unit: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('1'), server_default='1')
    sqft_per_piece: Mapped[Decimal | None] = mapped_column(QTY)
    expected_date: Mapped[date | None] = mapped_column(Date)

    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default='1')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())

    __mapper_args__ = {'version_id_col': version}


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'
    __table_args__ = (
        UniqueConstraint('job_id', 'po_number', name='purchase_orders_job_po_number_uniq'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('jobs.id', ondelete='CASCADE'))
    po_number: Mapped[str] = mapped_column(Text, nullable=False)
    vendor: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, name='purchase_order_status', values_callable=_enum_values),
        nullable=False,
        default=PurchaseOrderStatus.ORDERED,
    )
    order_date: Mapped[date | None] = mapped_column(Date)
    expected_date: Mapped[date | None] = mapped_column(Date)
    ordered_by: Mapped[str | None] = mapped_column(Text)
    source_po_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('purchase_orders.id', ondelete='SET NULL'))
    notes: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class PurchaseOrderItem(Base):
    __tablename__ = 'po_items'
    __table_args__ = (
        CheckConstraint('quantity_ordered > 0', name='po_items_quantity_ordered_positive'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    po_id: Mapped[str] = mapped_column(String(36), ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    material_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    quantity_ordered: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    unit_cost: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal('0'), server_default='0')
    pieces_per_crate: Mapped[Decimal | None] = mapped_column(QTY)

    # Snapshot of the material at order time.
    product_code: Mapped[str | None] = mapped_column(Text)
    product_name: Mapped[str | None] = mapped_column(Text)
    material_category: Mapped[str | None] = mapped_column(Text)
    dim_length: Mapped[Decimal | None] = mapped_column(QTY)
    dim_width: Mapped[Decimal | None] = mapped_column(QTY)
    pcs_per_unit: Mapped[Decimal | None] = mapped_column(QTY)
    sqft_per_piece: Mapped[Decimal | None] = mapped_column(QTY)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class PurchaseOrderDiscrepancy(Base):
    __tablename__ = 'po_discrepancies'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    po_id: Mapped[str] = mapped_column(String(36), ForeignKey('purchase_orders.id', ondelete='CASCADE'), nullable=False)
    po_item_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('po_items.id', ondelete='SET NULL'))
    material_id: Mapped[str] = mapped_column(String(36), nullable=False)
    condition_flag: Mapped[ConditionFlag | None] = mapped_column(
        SQLEnum(ConditionFlag, name='discrepancy_condition_flag', values_callable=_enum_values)
    )
    quantity_ordered: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    difference: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    pieces_difference: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    photo_url: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class DeliveryTicket(Base):
    __tablename__ = 'delivery_tickets'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('jobs.id', ondelete='CASCADE'))
    ticket_number: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DeliveryTicketStatus] = mapped_column(
        SQLEnum(DeliveryTicketStatus, name='delivery_ticket_status', values_callable=_enum_values),
        nullable=False,
        default=DeliveryTicketStatus.DRAFT,
    )
    destination: Mapped[DeliveryDestination] = mapped_column(
        SQLEnum(DeliveryDestination, name='delivery_destination', values_callable=_enum_values),
        nullable=False,
    )
    requested_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    due_time: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())


class DeliveryTicketItem(Base):
    __tablename__ = 'delivery_ticket_items'
    __table_args__ = (
        CheckConstraint('qty > 0', name='delivery_ticket_items_qty_positive'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    ticket_id: Mapped[str] = mapped_column(String(36), ForeignKey('delivery_tickets.id', ondelete='CASCADE'), nullable=False)
    material_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_name: Mapped[str | None] = mapped_column(Text)
    qty: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_id: Mapped[str | None] = mapped_column(String(36))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now, server_default=func.now())
