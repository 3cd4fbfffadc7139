"""
Integration tests for the Flask CLI commands.
"""

import pytest


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestValidateHierarchies:

    def test_valid_products(self, runner, hierarchy, other_hierarchy):
        result = runner.invoke(args=['validate-hierarchies'])

        assert result.exit_code == 0
        assert '[OK]' in result.output
        assert '2 product(s) checked, 0 invalid.' in result.output

    def test_invalid_product_exits_non_zero(self, runner, session, hierarchy):
        from app.models import PackagingType
        session.query(PackagingType).filter_by(id=hierarchy.box).update(
            {'parent_packaging_id': hierarchy.pallet}
        )
        session.commit()

        result = runner.invoke(args=['validate-hierarchies', '--product-id', str(hierarchy.product_id)])

        assert result.exit_code == 1
        assert 'CYCLE_DETECTED' in result.output

    def test_no_products(self, runner, session):
        result = runner.invoke(args=['validate-hierarchies'])
        assert 'No products found.' in result.output
