from __future__ import annotations

import unittest
from decimal import Decimal

from material_tracker.errors import LedgerValidationError
from material_tracker.services.receipt_math_service import (
    EditedField,
    LineGeometry,
    ReceiptEntry,
    ReceiptMode,
    crates_from_pieces,
    edit_entry,
    expected_pieces,
    resolve_crate_multipliers,
    resolve_entry,
    source_field,
    sqft_per_piece,
    switch_mode,
)


class SqftPerPieceTests(unittest.TestCase):
    def test_catalog_value_wins(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('3'), dim_length=Decimal('12'), dim_width=Decimal('24'))
        self.assertEqual(sqft_per_piece(geometry), Decimal('3'))

    def test_derived_from_dimensions_in_inches(self) -> None:
        geometry = LineGeometry(unit='sqft', dim_length=Decimal('12'), dim_width=Decimal('24'))
        self.assertEqual(sqft_per_piece(geometry), Decimal('2'))

    def test_falls_back_to_pieces_per_unit(self) -> None:
        geometry = LineGeometry(unit='sqft', pcs_per_unit=Decimal('4'))
        self.assertEqual(sqft_per_piece(geometry), Decimal('0.25'))

    def test_expected_pieces_rounds_half_up(self) -> None:
        self.assertEqual(expected_pieces(Decimal('5'), Decimal('0.5')), 3)
        self.assertEqual(expected_pieces(Decimal('5'), None), 5)


class BulkReceiptTests(unittest.TestCase):
    def test_crates_drive_pieces_and_quantity(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'), pieces_per_crate=Decimal('10'))
        entry = ReceiptEntry(mode=ReceiptMode.BULK, last_edited=EditedField.CRATES, crates_received=Decimal('2'))

        resolved = resolve_entry(entry, geometry)

        self.assertEqual(resolved.pieces_received, 20)
        self.assertEqual(resolved.qty_received, Decimal('40'))
        self.assertEqual(crates_from_pieces(resolved.pieces_received, geometry.pieces_per_crate), Decimal('2'))

    def test_pieces_per_crate_override_used_without_catalog_value(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('1.5'))
        entry = ReceiptEntry(
            mode=ReceiptMode.BULK,
            last_edited=EditedField.CRATES,
            crates_received=Decimal('2'),
            pieces_per_crate_override=Decimal('8'),
        )

        resolved = resolve_entry(entry, geometry)

        self.assertEqual(resolved.pieces_received, 16)
        self.assertEqual(resolved.qty_received, Decimal('24'))

    def test_area_per_crate_override_derives_pieces(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'))
        entry = ReceiptEntry(
            mode=ReceiptMode.BULK,
            last_edited=EditedField.CRATES,
            crates_received=Decimal('3'),
            sqft_per_crate_override=Decimal('20'),
        )

        resolved = resolve_entry(entry, geometry)

        self.assertEqual(resolved.qty_received, Decimal('60'))
        self.assertEqual(resolved.pieces_received, 30)
        self.assertEqual(
            resolve_crate_multipliers(geometry, sqft_per_crate_override=Decimal('20')),
            (Decimal('10'), Decimal('20')),
        )

    def test_catalog_pieces_per_crate_beats_override(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'), pieces_per_crate=Decimal('10'))
        entry = ReceiptEntry(
            mode=ReceiptMode.BULK,
            last_edited=EditedField.CRATES,
            crates_received=Decimal('2'),
            pieces_per_crate_override=Decimal('50'),
        )

        self.assertEqual(resolve_entry(entry, geometry).pieces_received, 20)

    def test_bulk_without_any_multiplier_is_rejected(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'))
        entry = ReceiptEntry(mode=ReceiptMode.BULK, last_edited=EditedField.CRATES, crates_received=Decimal('2'))

        with self.assertRaises(LedgerValidationError):
            resolve_entry(entry, geometry)

    def test_bulk_quantity_edit_reports_crates(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'), pieces_per_crate=Decimal('10'))
        entry = ReceiptEntry(mode=ReceiptMode.BULK, last_edited=EditedField.QTY, qty_received=Decimal('60'))

        resolved = resolve_entry(entry, geometry)

        self.assertEqual(resolved.pieces_received, 30)
        self.assertEqual(resolved.crates_received, Decimal('3'))


class GranularReceiptTests(unittest.TestCase):
    geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'))

    def test_last_edited_field_is_authoritative(self) -> None:
        entry = ReceiptEntry(qty_received=Decimal('100'), pieces_received=3, last_edited=EditedField.PIECES)

        resolved = resolve_entry(entry, self.geometry)
        self.assertEqual(resolved.qty_received, Decimal('6'))
        self.assertEqual(resolved.pieces_received, 3)

        entry = edit_entry(entry, EditedField.QTY, Decimal('10'))
        resolved = resolve_entry(entry, self.geometry)
        self.assertEqual(resolved.qty_received, Decimal('10'))
        self.assertEqual(resolved.pieces_received, 5)

    def test_repeated_edits_do_not_accumulate_rounding(self) -> None:
        geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('3'))
        entry = ReceiptEntry(qty_received=Decimal('10'))
        for _ in range(5):
            resolved = resolve_entry(entry, geometry)
            entry = edit_entry(entry, EditedField.QTY, Decimal('10'))

        self.assertEqual(resolved.qty_received, Decimal('10'))
        self.assertEqual(resolved.pieces_received, 3)
        self.assertIsNone(resolved.crates_received)

    def test_non_area_units_count_pieces_as_units(self) -> None:
        geometry = LineGeometry(unit='bag', pcs_per_unit=Decimal('1'))
        resolved = resolve_entry(ReceiptEntry(qty_received=Decimal('7')), geometry)

        self.assertEqual(resolved.qty_received, Decimal('7'))
        self.assertEqual(resolved.pieces_received, 7)

    def test_negative_quantity_is_rejected(self) -> None:
        with self.assertRaises(LedgerValidationError):
            resolve_entry(ReceiptEntry(qty_received=Decimal('-1')), self.geometry)

    def test_missing_quantity_is_rejected(self) -> None:
        with self.assertRaises(LedgerValidationError):
            resolve_entry(ReceiptEntry(), self.geometry)


class SourceFieldTests(unittest.TestCase):
    geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'), pieces_per_crate=Decimal('10'))

    def test_bulk_crate_count_alone_is_enough(self) -> None:
        entry = ReceiptEntry(mode=ReceiptMode.BULK, crates_received=Decimal('2'))

        resolved = resolve_entry(entry, self.geometry)

        self.assertEqual(source_field(entry), EditedField.CRATES)
        self.assertEqual(resolved.pieces_received, 20)
        self.assertEqual(resolved.qty_received, Decimal('40'))

    def test_piece_count_alone_is_enough(self) -> None:
        entry = ReceiptEntry(pieces_received=15)

        resolved = resolve_entry(entry, self.geometry)

        self.assertEqual(source_field(entry), EditedField.PIECES)
        self.assertEqual(resolved.qty_received, Decimal('30'))

    def test_quantity_wins_when_both_are_filled_in(self) -> None:
        entry = ReceiptEntry(qty_received=Decimal('10'), pieces_received=99)

        self.assertEqual(source_field(entry), EditedField.QTY)
        self.assertEqual(resolve_entry(entry, self.geometry).pieces_received, 5)

    def test_crates_ignored_outside_bulk_mode(self) -> None:
        entry = ReceiptEntry(qty_received=Decimal('6'), crates_received=Decimal('5'))

        self.assertEqual(source_field(entry), EditedField.QTY)

    def test_recorded_edit_beats_inference(self) -> None:
        entry = ReceiptEntry(mode=ReceiptMode.BULK, crates_received=Decimal('2'), qty_received=Decimal('10'))
        entry = edit_entry(entry, EditedField.QTY, Decimal('10'))

        self.assertEqual(resolve_entry(entry, self.geometry).qty_received, Decimal('10'))

class SwitchModeTests(unittest.TestCase):
    geometry = LineGeometry(unit='sqft', sqft_per_piece=Decimal('2'), pieces_per_crate=Decimal('10'))

    def test_granular_to_bulk_carries_pieces_as_crates(self) -> None:
        entry = ReceiptEntry(pieces_received=20, last_edited=EditedField.PIECES)

        switched = switch_mode(entry, ReceiptMode.BULK, self.geometry)

        self.assertEqual(switched.crates_received, Decimal('2'))
        self.assertEqual(switched.last_edited, EditedField.CRATES)
        self.assertEqual(resolve_entry(switched, self.geometry).qty_received, Decimal('40'))

    def test_bulk_to_granular_keeps_totals(self) -> None:
        entry = ReceiptEntry(mode=ReceiptMode.BULK, last_edited=EditedField.CRATES, crates_received=Decimal('3'))

        switched = switch_mode(entry, ReceiptMode.GRANULAR, self.geometry)

        self.assertEqual(switched.mode, ReceiptMode.GRANULAR)
        self.assertEqual(switched.pieces_received, 30)
        self.assertEqual(resolve_entry(switched, self.geometry).qty_received, Decimal('60'))


if __name__ == '__main__':
    unittest.main()
