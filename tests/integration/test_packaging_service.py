"""
Integration tests for packaging_service against the database.
"""

import pytest
from decimal import Decimal

from app.exceptions import (
    ConflictError, CrossProductConversionError, InvalidArgumentError,
    InvalidHierarchyError, NotFoundError
)
from app.models import PackagingType, Product, StockItem
from app.services import packaging_service


def _version(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).hierarchy_version


class TestReads:

    def test_hierarchy_tree(self, session, hierarchy):
        data = packaging_service.get_hierarchy(session, hierarchy.product_id)

        assert data['is_valid'] is True
        unit = data['tree'][0]
        assert unit['id'] == hierarchy.unit
        assert unit['children'][0]['id'] == hierarchy.box
        assert unit['children'][0]['children'][0]['id'] == hierarchy.pallet

    def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            packaging_service.get_hierarchy(session, 999)

    def test_stock_consolidated(self, session, hierarchy):
        result = packaging_service.get_stock_consolidated(session, hierarchy.product_id)

        assert result.consolidated.total_base_units == 543
        assert [item.packaging_id for item in result.per_packaging] == [
            hierarchy.pallet, hierarchy.box, hierarchy.unit
        ]

    def test_get_packagings(self, session, hierarchy):
        data = packaging_service.get_packagings(session, hierarchy.product_id)

        assert [item['id'] for item in data['packagings']] == [hierarchy.unit, hierarchy.box, hierarchy.pallet]
        assert data['consolidated']['total_base_units'] == '543'

    def test_optimize_picking(self, session, hierarchy):
        result = packaging_service.optimize_picking(session, hierarchy.product_id, 500)

        assert [(item.packaging_id, item.quantity) for item in result.picking_plan] == [
            (hierarchy.pallet, 2), (hierarchy.box, 1), (hierarchy.unit, 3)
        ]
        assert result.remaining == 5
        assert result.can_fulfill is False

    def test_convert(self, session, hierarchy):
        result = packaging_service.convert_quantity(session, 2, hierarchy.pallet, hierarchy.box)
        assert result.converted_quantity == 40

    def test_convert_across_products(self, session, hierarchy, other_hierarchy):
        with pytest.raises(CrossProductConversionError):
            packaging_service.convert_quantity(session, 1, hierarchy.box, other_hierarchy.pack)

    def test_convert_unknown_packaging(self, session, hierarchy):
        with pytest.raises(NotFoundError):
            packaging_service.convert_quantity(session, 1, hierarchy.box, 999)

    def test_scan_barcode(self, session, hierarchy):
        node = packaging_service.scan_barcode(session, '7891234567891')
        assert node.id == hierarchy.box
        assert node.product_id == hierarchy.product_id

    def test_scan_unknown_barcode(self, session, hierarchy):
        with pytest.raises(NotFoundError):
            packaging_service.scan_barcode(session, '0000000000000')

    def test_scan_inactive_packaging(self, session, hierarchy):
        session.query(PackagingType).filter_by(id=hierarchy.pallet).update({'is_active': False})
        session.commit()

        with pytest.raises(NotFoundError):
            packaging_service.scan_barcode(session, '7891234567892')

    def test_invalid_tree_blocks_consolidation(self, session, hierarchy):
        session.query(PackagingType).filter_by(id=hierarchy.box).update(
            {'parent_packaging_id': hierarchy.pallet}
        )
        session.commit()

        report = packaging_service.validate_hierarchy(session, hierarchy.product_id)
        assert 'CYCLE_DETECTED' in report.error_codes()
        with pytest.raises(InvalidHierarchyError):
            packaging_service.get_stock_consolidated(session, hierarchy.product_id)


class TestAddPackaging:

    def test_add_base_unit_and_outer_packaging(self, session, product):
        unit = packaging_service.add_packaging(session, {
            'product_id': product.id, 'name': 'Unit', 'base_unit_quantity': 1, 'is_base_unit': True,
        })
        box = packaging_service.add_packaging(session, {
            'product_id': product.id, 'name': 'Box', 'base_unit_quantity': '24',
            'parent_packaging_id': unit.id, 'barcode': ' 555 ',
        })

        assert unit.level == 0
        assert box.level == 1
        assert box.barcode == '555'
        assert box.base_unit_quantity == Decimal('24')
        assert _version(session, product.id) == 3

    def test_add_bumps_version(self, session, hierarchy):
        before = _version(session, hierarchy.product_id)
        packaging_service.add_packaging(session, {
            'product_id': hierarchy.product_id, 'name': 'Inner pack', 'base_unit_quantity': 6,
            'parent_packaging_id': hierarchy.unit,
        })
        assert _version(session, hierarchy.product_id) == before + 1

    def test_add_rejects_invalid_tree(self, session, hierarchy):
        """A second base unit is refused and nothing is stored."""
        with pytest.raises(InvalidHierarchyError):
            packaging_service.add_packaging(session, {
                'product_id': hierarchy.product_id, 'name': 'Other unit', 'base_unit_quantity': 1,
                'is_base_unit': True,
            })
        assert session.query(PackagingType).filter_by(name='Other unit').count() == 0

    def test_add_rejects_smaller_outer_packaging(self, session, hierarchy):
        with pytest.raises(InvalidHierarchyError):
            packaging_service.add_packaging(session, {
                'product_id': hierarchy.product_id, 'name': 'Bad', 'base_unit_quantity': 10,
                'parent_packaging_id': hierarchy.box,
            })

    def test_add_with_stale_version(self, session, hierarchy):
        with pytest.raises(ConflictError):
            packaging_service.add_packaging(session, {
                'product_id': hierarchy.product_id, 'name': 'Late', 'base_unit_quantity': 6,
                'parent_packaging_id': hierarchy.unit,
            }, expected_version=0)

    def test_add_with_duplicate_barcode(self, session, hierarchy):
        with pytest.raises(ConflictError):
            packaging_service.add_packaging(session, {
                'product_id': hierarchy.product_id, 'name': 'Copy', 'base_unit_quantity': 6,
                'parent_packaging_id': hierarchy.unit, 'barcode': '7891234567890',
            })

    def test_add_with_foreign_parent(self, session, hierarchy, other_hierarchy):
        with pytest.raises(InvalidArgumentError):
            packaging_service.add_packaging(session, {
                'product_id': hierarchy.product_id, 'name': 'Mixed', 'base_unit_quantity': 6,
                'parent_packaging_id': other_hierarchy.unit,
            })

    def test_add_requires_fields(self, session, product):
        with pytest.raises(InvalidArgumentError):
            packaging_service.add_packaging(session, {'product_id': product.id, 'name': 'Unit'})
        with pytest.raises(InvalidArgumentError):
            packaging_service.add_packaging(session, {
                'product_id': product.id, 'name': 'Unit', 'base_unit_quantity': -1,
            })


class TestUpdatePackaging:

    def test_update_name_and_dimensions(self, session, hierarchy):
        packaging = packaging_service.update_packaging(session, hierarchy.box, {
            'name': 'Box of 12', 'dimensions': {'length': 31, 'width': 21, 'height': 11},
        })

        assert packaging.name == 'Box of 12'
        assert packaging.to_node().dimensions.length == 31

    def test_update_creating_cycle_is_rejected(self, session, hierarchy):
        with pytest.raises(InvalidHierarchyError) as exc_info:
            packaging_service.update_packaging(session, hierarchy.box, {
                'parent_packaging_id': hierarchy.pallet,
            })
        assert 'CYCLE_DETECTED' in exc_info.value.report.error_codes()

        session.expire_all()
        box = session.get(PackagingType, hierarchy.box)
        assert box.parent_packaging_id == hierarchy.unit

    def test_update_product_is_refused(self, session, hierarchy, other_hierarchy):
        with pytest.raises(InvalidArgumentError):
            packaging_service.update_packaging(session, hierarchy.box, {
                'product_id': other_hierarchy.product_id,
            })

    def test_update_with_null_level_recomputes_it(self, session, hierarchy):
        box = packaging_service.update_packaging(session, hierarchy.box, {'level': None})
        unit = packaging_service.update_packaging(session, hierarchy.unit, {'level': None})

        assert box.level == 1
        assert unit.level == 0

    def test_update_with_non_numeric_level(self, session, hierarchy):
        with pytest.raises(InvalidArgumentError):
            packaging_service.update_packaging(session, hierarchy.box, {'level': 'abc'})

    def test_update_unknown_packaging(self, session, hierarchy):
        with pytest.raises(NotFoundError):
            packaging_service.update_packaging(session, 999, {'name': 'Ghost'})

    def test_update_with_matching_version(self, session, hierarchy):
        version = _version(session, hierarchy.product_id)
        packaging_service.update_packaging(session, hierarchy.pallet, {'name': 'Pallet'}, expected_version=version)
        assert _version(session, hierarchy.product_id) == version + 1


class TestDeletePackaging:

    def test_delete_with_stock_is_refused(self, session, hierarchy):
        before = packaging_service.get_hierarchy(session, hierarchy.product_id)

        with pytest.raises(ConflictError):
            packaging_service.delete_packaging(session, hierarchy.pallet)

        session.expire_all()
        after = packaging_service.get_hierarchy(session, hierarchy.product_id)
        assert after == before

    def test_delete_with_dependents_is_refused(self, session, hierarchy):
        inner = packaging_service.add_packaging(session, {
            'product_id': hierarchy.product_id, 'name': 'Inner pack', 'base_unit_quantity': 6,
            'parent_packaging_id': hierarchy.unit,
        })
        packaging_service.add_packaging(session, {
            'product_id': hierarchy.product_id, 'name': 'Display', 'base_unit_quantity': 18,
            'parent_packaging_id': inner.id,
        })

        with pytest.raises(ConflictError):
            packaging_service.delete_packaging(session, inner.id)

    def test_delete_leaf_without_stock(self, session, hierarchy):
        session.query(StockItem).filter_by(packaging_type_id=hierarchy.pallet).delete()
        session.commit()

        packaging_service.delete_packaging(session, hierarchy.pallet)

        ids = [node.id for node in packaging_service.load_nodes(session, hierarchy.product_id)]
        assert ids == [hierarchy.unit, hierarchy.box]
        with pytest.raises(NotFoundError):
            packaging_service.get_packaging(session, hierarchy.pallet)

    def test_delete_stale_version(self, session, hierarchy):
        with pytest.raises(ConflictError):
            packaging_service.delete_packaging(session, hierarchy.pallet, expected_version=42)


class TestStockItems:

    def test_add_stock_item(self, session, hierarchy):
        packaging_service.add_stock_item(session, 20, hierarchy.box, '2')
        result = packaging_service.get_stock_consolidated(session, hierarchy.product_id)

        assert result.consolidated.total_base_units == 567
        assert result.consolidated.locations_count == 4

    def test_add_stock_item_rejects_zero(self, session, hierarchy):
        with pytest.raises(InvalidArgumentError):
            packaging_service.add_stock_item(session, 20, hierarchy.box, 0)
