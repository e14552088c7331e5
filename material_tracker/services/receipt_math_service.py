from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from material_tracker.errors import LedgerValidationError
from material_tracker.services.quantity_utils import non_negative, round_half_up

SQ_INCHES_PER_SQ_FOOT = Decimal('144')
AREA_UNITS = frozenset({'sqft'})


class ReceiptMode(str, Enum):
    BULK = 'Bulk'
    GRANULAR = 'Granular'


class ReceiptCondition(str, Enum):
    VERIFIED = 'Verified'
    DAMAGED = 'Damaged'
    MISSING = 'Missing'


class EditedField(str, Enum):
    QTY = 'QTY'
    PIECES = 'PIECES'
    CRATES = 'CRATES'


@dataclass(frozen=True)
class LineGeometry:
    unit: str | None = None
    pcs_per_unit: Decimal | None = None
    dim_length: Decimal | None = None
    dim_width: Decimal | None = None
    sqft_per_piece: Decimal | None = None
    pieces_per_crate: Decimal | None = None

    @property
    def is_area_unit(self) -> bool:
        return (self.unit or '').strip().lower() in AREA_UNITS


@dataclass(frozen=True)
class ReceiptEntry:
    """Operator input for one line, plus which field they touched last.

    Only the field named by ``last_edited`` is trusted; every other quantity
    is re-derived from it by :func:`resolve_entry`. When nothing was recorded
    the source is inferred from which fields are filled in, see
    :func:`source_field`.
    """

    mode: ReceiptMode = ReceiptMode.GRANULAR
    last_edited: EditedField | None = None
    qty_received: Decimal | None = None
    pieces_received: int | None = None
    crates_received: Decimal | None = None
    pieces_per_crate_override: Decimal | None = None
    sqft_per_crate_override: Decimal | None = None


@dataclass(frozen=True)
class ResolvedQuantities:
    qty_received: Decimal
    pieces_received: int | None
    crates_received: Decimal | None


def sqft_per_piece(geometry: LineGeometry) -> Decimal:
    if geometry.sqft_per_piece:
        return Decimal(geometry.sqft_per_piece)
    if geometry.dim_length and geometry.dim_width:
        return Decimal(geometry.dim_length) * Decimal(geometry.dim_width) / SQ_INCHES_PER_SQ_FOOT
    pcs_per_unit = Decimal(geometry.pcs_per_unit) if geometry.pcs_per_unit else Decimal('1')
    return Decimal('1') / pcs_per_unit


def qty_from_pieces(pieces: int, geometry: LineGeometry) -> Decimal:
    if not geometry.is_area_unit:
        # Bags, boxes and the like: a piece is one unit.
        return Decimal(pieces)
    return Decimal(pieces) * sqft_per_piece(geometry)


def pieces_from_qty(qty: Decimal, geometry: LineGeometry) -> int:
    if not geometry.is_area_unit:
        return round_half_up(qty)
    per_piece = sqft_per_piece(geometry)
    if per_piece <= 0:
        return 0
    return round_half_up(qty / per_piece)


def expected_pieces(quantity_ordered: Decimal, pcs_per_unit: Decimal | None) -> int:
    return round_half_up(quantity_ordered * (pcs_per_unit or Decimal('1')))


def resolve_crate_multipliers(
    geometry: LineGeometry,
    *,
    pieces_per_crate_override: Decimal | None = None,
    sqft_per_crate_override: Decimal | None = None,
) -> tuple[Decimal | None, Decimal | None]:
    """Return ``(pieces_per_crate, sqft_per_crate)``.

    The catalog value wins. Otherwise an operator override in either form is
    accepted and the other form is derived from it.
    """
    per_piece = sqft_per_piece(geometry)
    if geometry.pieces_per_crate:
        ppc = Decimal(geometry.pieces_per_crate)
        return ppc, ppc * per_piece
    if pieces_per_crate_override:
        ppc = Decimal(pieces_per_crate_override)
        return ppc, ppc * per_piece
    if sqft_per_crate_override:
        spc = Decimal(sqft_per_crate_override)
        ppc = Decimal(round_half_up(spc / per_piece)) if per_piece > 0 else None
        return ppc, spc
    return None, None


def crates_from_pieces(pieces: int, pieces_per_crate: Decimal | None) -> Decimal | None:
    if not pieces_per_crate:
        return None
    return Decimal(pieces) / Decimal(pieces_per_crate)


def _from_crates(entry: ReceiptEntry, geometry: LineGeometry) -> ResolvedQuantities:
    crates = non_negative(entry.crates_received, field='Crates received', default=None)
    if crates is None:
        raise LedgerValidationError('Crates received is required for a bulk receipt')
    ppc, spc = resolve_crate_multipliers(
        geometry,
        pieces_per_crate_override=entry.pieces_per_crate_override,
        sqft_per_crate_override=entry.sqft_per_crate_override,
    )
    if geometry.pieces_per_crate or entry.pieces_per_crate_override:
        pieces = round_half_up(crates * ppc)
        return ResolvedQuantities(qty_from_pieces(pieces, geometry), pieces, crates)
    if spc:
        if not geometry.is_area_unit:
            pieces = round_half_up(crates * spc)
            return ResolvedQuantities(Decimal(pieces), pieces, crates)
        qty = crates * spc
        return ResolvedQuantities(qty, pieces_from_qty(qty, geometry), crates)
    raise LedgerValidationError('Pieces per crate is required for a bulk receipt')


def source_field(entry: ReceiptEntry) -> EditedField:
    if entry.last_edited is not None:
        return entry.last_edited
    if entry.mode == ReceiptMode.BULK and entry.crates_received is not None:
        return EditedField.CRATES
    if entry.qty_received is None and entry.pieces_received is not None:
        return EditedField.PIECES
    return EditedField.QTY


def resolve_entry(entry: ReceiptEntry, geometry: LineGeometry) -> ResolvedQuantities:
    """Derive the canonical received quantity from the last edited field.

    Every value is computed from that single source in one step, so repeated
    edits never stack rounding from earlier derivations.
    """
    source = source_field(entry)
    if entry.mode == ReceiptMode.BULK and source == EditedField.CRATES:
        return _from_crates(entry, geometry)

    ppc, _ = resolve_crate_multipliers(
        geometry,
        pieces_per_crate_override=entry.pieces_per_crate_override,
        sqft_per_crate_override=entry.sqft_per_crate_override,
    )
    if source == EditedField.PIECES and entry.pieces_received is not None:
        if entry.pieces_received < 0:
            raise LedgerValidationError('Pieces received cannot be negative')
        pieces = int(entry.pieces_received)
        qty = qty_from_pieces(pieces, geometry)
    else:
        # Crate counts only drive the totals in bulk mode.
        qty = non_negative(entry.qty_received, field='Quantity received', default=None)
        if qty is None:
            raise LedgerValidationError('Quantity received is required')
        pieces = pieces_from_qty(qty, geometry)

    crates = crates_from_pieces(pieces, ppc) if entry.mode == ReceiptMode.BULK else None
    return ResolvedQuantities(qty, pieces, crates)


def edit_entry(entry: ReceiptEntry, field: EditedField, value) -> ReceiptEntry:
    """Record an operator edit; the edited field becomes the source of truth."""
    if field == EditedField.QTY:
        return replace(entry, qty_received=value, last_edited=field)
    if field == EditedField.PIECES:
        return replace(entry, pieces_received=None if value is None else int(value), last_edited=field)
    return replace(entry, crates_received=value, last_edited=field)


def switch_mode(entry: ReceiptEntry, mode: ReceiptMode, geometry: LineGeometry) -> ReceiptEntry:
    """Change receipt mode, carrying the current piece count across as crates."""
    if mode == entry.mode:
        return entry
    if mode == ReceiptMode.BULK and entry.pieces_received:
        ppc, _ = resolve_crate_multipliers(
            geometry,
            pieces_per_crate_override=entry.pieces_per_crate_override,
            sqft_per_crate_override=entry.sqft_per_crate_override,
        )
        crates = crates_from_pieces(entry.pieces_received, ppc)
        if crates is not None:
            return replace(entry, mode=mode, crates_received=crates, last_edited=EditedField.CRATES)
    if mode == ReceiptMode.GRANULAR and source_field(entry) == EditedField.CRATES:
        resolved = resolve_entry(entry, geometry)
        return replace(
            entry,
            mode=mode,
            qty_received=resolved.qty_received,
            pieces_received=resolved.pieces_received,
            last_edited=EditedField.PIECES,
        )
    return replace(entry, mode=mode)
