from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from material_tracker.models import DeliveryDestination, DeliveryTicketStatus
from material_tracker.services.delivery_ticket_service import TicketItemInput
from material_tracker.services.material_ledger_service import MaterialInput, NewAreaRequest
from material_tracker.services.purchase_order_service import LineItemInput, ReceiptDescriptor
from material_tracker.services.receipt_math_service import EditedField, ReceiptCondition, ReceiptMode
from material_tracker.services.reconciliation_service import ShortfallItem


class NewAreaIn(BaseModel):
    name: str
    unit_id: str | None = None
    new_unit_name: str | None = None
    description: str = ''
    area_id: str | None = None
    new_unit_id: str | None = None

    def to_request(self) -> NewAreaRequest:
        return NewAreaRequest(**self.model_dump())


class MaterialIn(BaseModel):
    product_name: str = ''
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
    new_area: NewAreaIn | None = None

    def to_input(self) -> MaterialInput:
        return MaterialInput(
            **self.model_dump(exclude={'new_area'}),
            fields_set=frozenset(self.model_fields_set - {'new_area'}),
        )


class LineItemIn(BaseModel):
    material_id: str
    quantity: Decimal
    unit_cost: Decimal | None = None
    pieces_per_crate: Decimal | None = None

    def to_input(self) -> LineItemInput:
        return LineItemInput(**self.model_dump())


class PurchaseOrderCreate(BaseModel):
    po_number: str = ''
    vendor: str | None = None
    expected_date: date | None = None
    notes: str | None = None
    id: str | None = None
    items: list[LineItemIn] = Field(default_factory=list)


class LineItemsAdd(BaseModel):
    items: list[LineItemIn] = Field(default_factory=list)


class ReceiptIn(BaseModel):
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

    def to_descriptor(self) -> ReceiptDescriptor:
        return ReceiptDescriptor(**self.model_dump())


class ReceiveRequest(BaseModel):
    # Omitted receipts mean every line arrived in full and verified.
    receipts: list[ReceiptIn] | None = None


class ShortfallIn(BaseModel):
    material_id: str
    qty: Decimal
    po_item_id: str | None = None


class ReorderRequest(BaseModel):
    po_number: str | None = None
    id: str | None = None
    items: list[ShortfallIn] | None = None

    def shortfall_items(self) -> list[ShortfallItem] | None:
        if self.items is None:
            return None
        return [ShortfallItem(**item.model_dump()) for item in self.items]


class TicketItemIn(BaseModel):
    material_id: str
    qty: Decimal
    product_name: str | None = None
    unit: str | None = None


class TicketCreate(BaseModel):
    destination: DeliveryDestination
    items: list[TicketItemIn] = Field(default_factory=list)
    due_date: date | None = None
    due_time: str | None = None
    notes: str | None = None
    status: DeliveryTicketStatus = DeliveryTicketStatus.DRAFT
    ticket_number: str | None = None
    id: str | None = None

    def item_inputs(self) -> list[TicketItemInput]:
        return [TicketItemInput(**item.model_dump()) for item in self.items]


class TicketAdvance(BaseModel):
    status: DeliveryTicketStatus | None = None
