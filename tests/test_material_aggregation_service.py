from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal

from db_support import make_session, seed_area, seed_job, seed_material, seed_po

from material_tracker.models import ProjectMaterial, PurchaseOrderItem, PurchaseOrderStatus
from material_tracker.services.area_directory_service import delete_area
from material_tracker.services.material_aggregation_service import (
    UNASSIGNED_KEY,
    UNASSIGNED_NAME,
    active_purchase_orders_by_key,
    aggregate,
    aggregate_materials,
    group_by_category,
    materials_by_area,
    piece_count,
)


def _at(day: int) -> datetime:
    return datetime(2024, 3, day, tzinfo=timezone.utc)


class AggregateMaterialsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.job = seed_job(self.db)
        self.kitchen = seed_area(self.db, job=self.job, name='Kitchen')
        self.bath = seed_area(self.db, job=self.job, name='Bath')

    def tearDown(self) -> None:
        self.db.close()

    def test_same_product_and_dimensions_are_summed_across_areas(self) -> None:
        seed_material(
            self.db, job=self.job, area=self.kitchen, sub_location='Kitchen', net_qty=Decimal('40'), budget_qty=Decimal('44')
        )
        seed_material(
            self.db, job=self.job, area=self.bath, sub_location='Bath', net_qty=Decimal('60'), budget_qty=Decimal('66')
        )

        rows = aggregate(self.db, job_id=self.job.id).materials

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].net_qty, Decimal('100'))
        self.assertEqual(rows[0].budget_qty, Decimal('110'))
        self.assertEqual(rows[0].waste_qty, Decimal('10'))
        self.assertEqual(rows[0].locations, {'Kitchen', 'Bath'})
        self.assertEqual(len(rows[0].all_ids), 2)

    def test_different_dimensions_stay_apart(self) -> None:
        seed_material(self.db, job=self.job, area=self.kitchen)
        seed_material(self.db, job=self.job, area=self.bath, dim_length=Decimal('24'), dim_width=Decimal('48'))

        self.assertEqual(len(aggregate(self.db, job_id=self.job.id).materials), 2)

    def test_equivalent_dimension_formats_group_together(self) -> None:
        seed_material(self.db, job=self.job, area=self.kitchen, dim_length=Decimal('12.0'))
        seed_material(self.db, job=self.job, area=self.bath, dim_length=Decimal('12'))

        self.assertEqual(len(aggregate(self.db, job_id=self.job.id).materials), 1)

    def test_grout_groups_by_specs_not_dimensions(self) -> None:
        grout = {'category': 'Grout', 'product_code': 'SG-1', 'product_name': 'Sanded Grout', 'unit': 'bag'}
        seed_material(self.db, job=self.job, area=self.kitchen, product_specs='Charcoal', dim_length=None, **_no_width(grout))
        seed_material(self.db, job=self.job, area=self.bath, product_specs='Charcoal', dim_length=Decimal('3'), **_no_width(grout))
        seed_material(self.db, job=self.job, area=self.bath, product_specs='Bone', dim_length=None, **_no_width(grout))

        rows = aggregate(self.db, job_id=self.job.id).materials

        self.assertEqual(sorted((row.product_specs, len(row.all_ids)) for row in rows), [('Bone', 1), ('Charcoal', 2)])

    def test_aggregation_is_repeatable(self) -> None:
        seed_material(self.db, job=self.job, area=self.kitchen)
        seed_material(self.db, job=self.job, area=self.bath, category='Stone', product_code='MB-1')
        seed_material(self.db, job=self.job, product_code=None, product_name='Schluter Trim', category='Misc', unit='lf')

        first = aggregate(self.db, job_id=self.job.id).materials
        second = aggregate(self.db, job_id=self.job.id).materials

        self.assertEqual({row.key: row.budget_qty for row in first}, {row.key: row.budget_qty for row in second})

    def test_totals_and_to_buy(self) -> None:
        seed_material(self.db, job=self.job, area=self.kitchen, shop_stock=Decimal('100'))
        seed_material(self.db, job=self.job, area=self.bath, in_transit=Decimal('50'))

        row = aggregate(self.db, job_id=self.job.id).materials[0]

        self.assertEqual(row.total_value, Decimal('990'))
        self.assertEqual(row.to_buy, Decimal('70'))


def _no_width(values: dict) -> dict:
    return {**values, 'dim_width': None}


class VirtualAreaTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.job = seed_job(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_unassigned_bucket_sorts_first_and_others_are_chronological(self) -> None:
        late = seed_area(self.db, job=self.job, name='Penthouse', created_at=_at(20))
        early = seed_area(self.db, job=self.job, name='Lobby', created_at=_at(2))
        seed_material(self.db, job=self.job, area=late)
        seed_material(self.db, job=self.job, area=early)
        seed_material(self.db, job=self.job, created_at=_at(28))
        seed_material(self.db, job=self.job, area_id='deleted-area', sub_location='Roof Deck', created_at=_at(10))

        buckets = materials_by_area(self.db, job_id=self.job.id)

        self.assertEqual([bucket.area.name for bucket in buckets], [UNASSIGNED_NAME, 'Lobby', 'Roof Deck', 'Penthouse'])
        self.assertEqual(buckets[0].area.key, UNASSIGNED_KEY)
        self.assertTrue(buckets[0].area.is_virtual)
        self.assertEqual(buckets[2].area.key, 'virtual:location:roof deck')
        self.assertFalse(buckets[1].area.is_virtual)

    def test_materials_of_deleted_area_surface_as_virtual(self) -> None:
        area = seed_area(self.db, job=self.job, name='Spa')
        seed_material(self.db, job=self.job, area=area, sub_location='Spa')
        area_id = area.id

        delete_area(self.db, area_id=area_id)
        kept = seed_material(self.db, job=self.job, area_id=area_id, sub_location='Spa')

        buckets = materials_by_area(self.db, job_id=self.job.id)

        self.assertEqual(len(buckets), 1)
        self.assertTrue(buckets[0].area.is_virtual)
        self.assertEqual([m.id for m in buckets[0].materials], [kept.id])

    def test_virtual_buckets_are_not_stored(self) -> None:
        seed_material(self.db, job=self.job)
        first = materials_by_area(self.db, job_id=self.job.id)
        second = materials_by_area(self.db, job_id=self.job.id)

        self.assertIsNot(first[0].area, second[0].area)
        self.assertEqual(first[0].area, second[0].area)


class CategoryGroupTests(unittest.TestCase):
    def test_last_group_catches_unclaimed_categories(self) -> None:
        materials = [
            seed_row(category='Tile', budget_qty=Decimal('10'), unit_cost=Decimal('2')),
            seed_row(category='Stone', budget_qty=Decimal('5'), unit_cost=Decimal('10'), product_code='ST'),
            seed_row(category='Grout', budget_qty=Decimal('3'), unit_cost=Decimal('1'), product_code='GR'),
            seed_row(category='Sundries', budget_qty=Decimal('1'), unit_cost=Decimal('7'), product_code='SU'),
        ]
        rows = aggregate_materials(materials)

        groups = group_by_category(rows)

        self.assertEqual([group.label for group in groups], ['TILE & STONE', 'SETTING MATERIALS & SUNDRIES'])
        self.assertEqual({row.category for row in groups[0].materials}, {'Tile', 'Stone'})
        self.assertEqual({row.category for row in groups[1].materials}, {'Grout', 'Sundries'})
        self.assertEqual(groups[0].total_value, Decimal('70'))
        self.assertEqual(groups[1].total_value, Decimal('10'))

    def test_piece_count(self) -> None:
        self.assertEqual(piece_count(Decimal('110'), Decimal('0.5')), 55)
        self.assertIsNone(piece_count(Decimal('110'), None))


def seed_row(**values) -> ProjectMaterial:
    defaults = {
        'id': values.get('product_code', 'PT') + '-id',
        'category': 'Tile',
        'product_code': 'PT',
        'product_name': 'Porcelain',
        'unit': 'sqft',
        'net_qty': Decimal('0'),
        'waste_percent': Decimal('0'),
        'budget_qty': Decimal('0'),
        'ordered_qty': Decimal('0'),
        'shop_stock': Decimal('0'),
        'in_transit': Decimal('0'),
        'received_at_job': Decimal('0'),
        'unit_cost': Decimal('0'),
    }
    defaults.update(values)
    return ProjectMaterial(**defaults)


class ActivePurchaseOrderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.job = seed_job(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_only_unreceived_orders_are_listed(self) -> None:
        material = seed_material(self.db, job=self.job)
        open_po = seed_po(self.db, job=self.job, po_number='PO-OPEN')
        done_po = seed_po(self.db, job=self.job, po_number='PO-DONE', status=PurchaseOrderStatus.RECEIVED)
        for po in (open_po, done_po):
            self.db.add(PurchaseOrderItem(po_id=po.id, material_id=material.id, quantity_ordered=Decimal('5')))
        self.db.flush()

        rows = aggregate(self.db, job_id=self.job.id).materials
        active = active_purchase_orders_by_key(self.db, materials=rows)

        self.assertEqual(active, {rows[0].key: ['PO-OPEN']})


if __name__ == '__main__':
    unittest.main()
