from __future__ import annotations

import unittest
from decimal import Decimal

from db_support import make_session, seed_area, seed_job, seed_material, seed_po
from sqlalchemy import select

from material_tracker.errors import InvalidTransitionError, LedgerValidationError
from material_tracker.models import (
    ConditionFlag,
    PurchaseOrder,
    PurchaseOrderDiscrepancy,
    PurchaseOrderItem,
    PurchaseOrderStatus,
)
from material_tracker.services.receipt_math_service import ReceiptCondition
from material_tracker.services.reconciliation_service import (
    ReceiptLine,
    ShortfallItem,
    TransferLine,
    apply_receipt,
    apply_transfer,
    create_reorder,
    derive_po_status,
    shortfalls_from_discrepancies,
)


class ApplyReceiptTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.job = seed_job(self.db)
        self.area = seed_area(self.db, job=self.job)
        self.po = seed_po(self.db, job=self.job)

    def tearDown(self) -> None:
        self.db.close()

    def test_short_verified_receipt_creates_one_discrepancy(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('100'))

        result = apply_receipt(
            self.db,
            po_id=self.po.id,
            lines=[ReceiptLine(material_id=material.id, qty_ordered=Decimal('100'), qty_received=Decimal('80'))],
        )

        self.assertEqual(len(result.discrepancies), 1)
        self.assertEqual(result.discrepancies[0].difference, Decimal('20'))
        self.assertEqual(result.discrepancies[0].condition_flag, ConditionFlag.MISSING)
        self.assertEqual(material.received_at_job, Decimal('80'))
        self.assertEqual(material.in_transit, Decimal('20'))

    def test_damaged_full_receipt_still_records_discrepancy(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('100'))

        result = apply_receipt(
            self.db,
            po_id=self.po.id,
            lines=[
                ReceiptLine(
                    material_id=material.id,
                    qty_ordered=Decimal('100'),
                    qty_received=Decimal('100'),
                    condition=ReceiptCondition.DAMAGED,
                    notes='Two cartons crushed',
                )
            ],
        )

        self.assertEqual(len(result.discrepancies), 1)
        self.assertEqual(result.discrepancies[0].difference, Decimal('0'))
        self.assertEqual(result.discrepancies[0].condition_flag, ConditionFlag.DAMAGED)
        self.assertEqual(result.discrepancies[0].notes, 'Two cartons crushed')

    def test_full_verified_receipt_records_nothing(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('10'))

        result = apply_receipt(
            self.db,
            po_id=self.po.id,
            lines=[ReceiptLine(material_id=material.id, qty_ordered=Decimal('10'), qty_received=Decimal('10'))],
        )

        self.assertEqual(result.discrepancies, [])
        self.assertEqual(derive_po_status(len(result.discrepancies)), PurchaseOrderStatus.RECEIVED)

    def test_in_transit_clamps_at_zero(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('10'))

        apply_receipt(
            self.db,
            po_id=self.po.id,
            lines=[ReceiptLine(material_id=material.id, qty_ordered=Decimal('30'), qty_received=Decimal('30'))],
        )
        self.db.commit()

        self.assertEqual(material.in_transit, Decimal('0'))
        self.assertEqual(material.received_at_job, Decimal('30'))

    def test_pieces_difference_recorded_when_known(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area)

        result = apply_receipt(
            self.db,
            po_id=self.po.id,
            lines=[
                ReceiptLine(
                    material_id=material.id,
                    qty_ordered=Decimal('40'),
                    qty_received=Decimal('36'),
                    pieces_ordered=20,
                    pieces_received=18,
                )
            ],
        )

        self.assertEqual(result.discrepancies[0].pieces_difference, 2)

    def test_missing_material_is_skipped_and_others_apply(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('10'))

        with self.assertLogs('material_tracker.services.reconciliation_service', level='WARNING'):
            result = apply_receipt(
                self.db,
                po_id=self.po.id,
                lines=[
                    ReceiptLine(material_id='gone', qty_ordered=Decimal('5'), qty_received=Decimal('5')),
                    ReceiptLine(material_id=material.id, qty_ordered=Decimal('10'), qty_received=Decimal('10')),
                ],
            )

        self.assertEqual(result.skipped_material_ids, ['gone'])
        self.assertEqual(result.updated_materials, [material])
        self.assertEqual(material.received_at_job, Decimal('10'))

    def test_negative_receipt_is_rejected_before_any_update(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('10'))

        with self.assertRaises(LedgerValidationError):
            apply_receipt(
                self.db,
                po_id=self.po.id,
                lines=[
                    ReceiptLine(material_id=material.id, qty_ordered=Decimal('10'), qty_received=Decimal('10')),
                    ReceiptLine(material_id=material.id, qty_ordered=Decimal('10'), qty_received=Decimal('-1')),
                ],
            )

        self.assertEqual(material.received_at_job, Decimal('0'))

    def test_transfer_moves_transit_to_job(self) -> None:
        material = seed_material(self.db, job=self.job, area=self.area, in_transit=Decimal('50'))

        result = apply_transfer(self.db, lines=[TransferLine(material_id=material.id, qty=Decimal('30'))])

        self.assertEqual(result.updated_materials, [material])
        self.assertEqual(material.in_transit, Decimal('20'))
        self.assertEqual(material.received_at_job, Decimal('30'))


class CreateReorderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.job = seed_job(self.db)
        self.area = seed_area(self.db, job=self.job)
        self.material_a = seed_material(self.db, job=self.job, area=self.area, product_code='A', in_transit=Decimal('7'))
        self.material_b = seed_material(self.db, job=self.job, area=self.area, product_code='B')
        self.po = seed_po(self.db, job=self.job, po_number='PO-77', status=PurchaseOrderStatus.RECEIVED_WITH_DISCREPANCY)
        self.item_a = PurchaseOrderItem(
            po_id=self.po.id,
            material_id=self.material_a.id,
            quantity_ordered=Decimal('100'),
            unit='sqft',
            unit_cost=Decimal('4.25'),
            product_code='A',
            product_name='Porcelain 12x24',
        )
        self.db.add(self.item_a)
        self.db.flush()
        for material, difference in ((self.material_a, Decimal('5')), (self.material_b, Decimal('0'))):
            self.db.add(
                PurchaseOrderDiscrepancy(
                    po_id=self.po.id,
                    po_item_id=self.item_a.id if material is self.material_a else None,
                    material_id=material.id,
                    condition_flag=ConditionFlag.MISSING if difference else ConditionFlag.DAMAGED,
                    quantity_ordered=Decimal('100'),
                    quantity_received=Decimal('100') - difference,
                    difference=difference,
                )
            )
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_reorder_takes_only_positive_shortfalls(self) -> None:
        reorder = create_reorder(self.db, source_po_id=self.po.id)

        lines = self.db.execute(select(PurchaseOrderItem).where(PurchaseOrderItem.po_id == reorder.id)).scalars().all()
        self.assertEqual(reorder.status, PurchaseOrderStatus.DRAFT)
        self.assertEqual(reorder.source_po_id, self.po.id)
        self.assertEqual(reorder.po_number, 'PO-77-R1')
        self.assertEqual(reorder.ordered_by, 'SYSTEM')
        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0].material_id, self.material_a.id)
        self.assertEqual(lines[0].quantity_ordered, Decimal('5'))
        self.assertEqual(lines[0].unit_cost, Decimal('4.25'))

    def test_reorder_does_not_touch_the_ledger(self) -> None:
        create_reorder(self.db, source_po_id=self.po.id)

        self.assertEqual(self.material_a.in_transit, Decimal('7'))
        self.assertEqual(self.material_a.ordered_qty, Decimal('0'))
        self.assertEqual(self.material_a.received_at_job, Decimal('0'))

    def test_reorder_numbers_increment(self) -> None:
        create_reorder(self.db, source_po_id=self.po.id)
        second = create_reorder(self.db, source_po_id=self.po.id)

        self.assertEqual(second.po_number, 'PO-77-R2')

    def test_reorder_with_caller_id_is_idempotent(self) -> None:
        first = create_reorder(self.db, source_po_id=self.po.id, new_po_id='reorder-1')
        again = create_reorder(self.db, source_po_id=self.po.id, new_po_id='reorder-1')

        self.assertIs(first, again)
        count = self.db.execute(select(PurchaseOrder).where(PurchaseOrder.source_po_id == self.po.id)).scalars().all()
        self.assertEqual(len(count), 1)

    def test_reorder_id_of_unrelated_order_is_rejected(self) -> None:
        other = seed_po(self.db, job=self.job, po_number='PO-OTHER')

        with self.assertRaises(LedgerValidationError):
            create_reorder(self.db, source_po_id=self.po.id, new_po_id=other.id)

    def test_explicit_shortfall_items(self) -> None:
        reorder = create_reorder(
            self.db,
            source_po_id=self.po.id,
            shortfall_items=[ShortfallItem(material_id=self.material_b.id, qty=Decimal('3'))],
            ordered_by='buyer',
        )

        lines = self.db.execute(select(PurchaseOrderItem).where(PurchaseOrderItem.po_id == reorder.id)).scalars().all()
        self.assertEqual([(line.material_id, line.quantity_ordered) for line in lines], [(self.material_b.id, Decimal('3'))])
        self.assertEqual(reorder.ordered_by, 'buyer')

    def test_no_shortfall_is_rejected(self) -> None:
        with self.assertRaises(LedgerValidationError):
            create_reorder(
                self.db,
                source_po_id=self.po.id,
                shortfall_items=[ShortfallItem(material_id=self.material_b.id, qty=Decimal('0'))],
            )

    def test_unreceived_order_cannot_be_reordered(self) -> None:
        open_po = seed_po(self.db, job=self.job, po_number='PO-OPEN')
        with self.assertRaises(InvalidTransitionError):
            create_reorder(self.db, source_po_id=open_po.id)

    def test_shortfalls_skip_zero_difference(self) -> None:
        rows = [
            PurchaseOrderDiscrepancy(material_id='a', difference=Decimal('5')),
            PurchaseOrderDiscrepancy(material_id='b', difference=Decimal('0')),
        ]
        self.assertEqual([item.material_id for item in shortfalls_from_discrepancies(rows)], ['a'])


if __name__ == '__main__':
    unittest.main()
