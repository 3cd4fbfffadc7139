import fnmatch
import pytest
from decimal import Decimal
from types import SimpleNamespace

from app import create_app
from app.database import create_all, drop_all, get_session
from app.models import Product, PackagingType, StockItem
from app.services import cache_service
from app.services.cache_service import CacheService
from app.services.packaging_nodes import Dimensions, PackagingNode, StockRow


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client (tables are created by the session fixture)."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh in-memory schema and database session for each test."""
    with app.app_context():
        create_all()
        db_session = get_session()
        yield db_session
        db_session.rollback()
        db_session.remove()
        drop_all()


# =====================================================
# Engine snapshots (no database)
# =====================================================

@pytest.fixture
def make_node():
    """Factory for PackagingNode snapshots."""
    def _make(id, buq, parent_id=None, level=None, product_id=1, is_base_unit=None,
              barcode=None, dimensions=None, is_active=True, name=None):
        if is_base_unit is None:
            is_base_unit = parent_id is None and Decimal(str(buq)) == 1
        return PackagingNode(
            id=id,
            product_id=product_id,
            name=name or f'Packaging {id}',
            base_unit_quantity=Decimal(str(buq)),
            is_base_unit=is_base_unit,
            parent_id=parent_id,
            level=level if level is not None else 0,
            barcode=barcode,
            dimensions=Dimensions.from_dict(dimensions),
            is_active=is_active,
        )
    return _make


@pytest.fixture
def worked_nodes(make_node):
    """Unit (1) -> Box (12) -> Pallet (240) for product 1."""
    return [
        make_node(1, 1, level=0, name='Unit', barcode='7890000000001',
                  dimensions={'length': 5, 'width': 4, 'height': 3}),
        make_node(2, 12, parent_id=1, level=1, name='Box', barcode='7890000000012',
                  dimensions={'length': 30, 'width': 20, 'height': 10}),
        make_node(3, 240, parent_id=2, level=2, name='Pallet', barcode='7890000000240',
                  dimensions={'length': 120, 'width': 100, 'height': 150}),
    ]


@pytest.fixture
def worked_stock():
    """3 units, 5 boxes and 2 pallets, each at its own location."""
    return [
        StockRow(location_id=10, packaging_id=1, quantity=Decimal('3')),
        StockRow(location_id=11, packaging_id=2, quantity=Decimal('5')),
        StockRow(location_id=12, packaging_id=3, quantity=Decimal('2')),
    ]


# =====================================================
# Database fixtures
# =====================================================

@pytest.fixture
def product(session):
    """Create test product."""
    product = Product(sku='SKU-PACK-001', name='Product X', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def other_product(session):
    product = Product(sku='SKU-PACK-002', name='Product Y', active=True)
    session.add(product)
    session.commit()
    return product


def _add_packaging(session, product_id, name, buq, parent_id=None, level=0, is_base_unit=False,
                   barcode=None, dimensions=None):
    packaging = PackagingType(
        product_id=product_id,
        name=name,
        base_unit_quantity=Decimal(str(buq)),
        is_base_unit=is_base_unit,
        parent_packaging_id=parent_id,
        level=level,
        barcode=barcode,
        dimensions=dimensions,
        is_active=True,
    )
    session.add(packaging)
    session.flush()
    return packaging


@pytest.fixture
def hierarchy(session, product):
    """
    Stored Unit -> Box 12 -> Pallet 240 tree with stock:
    3 units, 5 boxes and 2 pallets. Returns plain ids.
    """
    unit = _add_packaging(session, product.id, 'Unit', 1, is_base_unit=True, level=0,
                          barcode='7891234567890', dimensions={'length': '5', 'width': '4', 'height': '3'})
    box = _add_packaging(session, product.id, 'Box 12', 12, parent_id=unit.id, level=1,
                         barcode='7891234567891', dimensions={'length': '30', 'width': '20', 'height': '10'})
    pallet = _add_packaging(session, product.id, 'Pallet 240', 240, parent_id=box.id, level=2,
                            barcode='7891234567892')
    session.add_all([
        StockItem(location_id=10, product_id=product.id, packaging_type_id=unit.id, quantity=Decimal('3')),
        StockItem(location_id=11, product_id=product.id, packaging_type_id=box.id, quantity=Decimal('5')),
        StockItem(location_id=12, product_id=product.id, packaging_type_id=pallet.id, quantity=Decimal('2')),
    ])
    session.commit()
    return SimpleNamespace(product_id=product.id, unit=unit.id, box=box.id, pallet=pallet.id)


@pytest.fixture
def other_hierarchy(session, other_product):
    unit = _add_packaging(session, other_product.id, 'Piece', 1, is_base_unit=True, level=0,
                          barcode='7899999999990')
    pack = _add_packaging(session, other_product.id, 'Pack 6', 6, parent_id=unit.id, level=1)
    session.commit()
    return SimpleNamespace(product_id=other_product.id, unit=unit.id, pack=pack.id)


# =====================================================
# Cache
# =====================================================

class FakeRedis:
    """In-memory stand-in for the redis client calls CacheService makes."""

    def __init__(self):
        self.store = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def scan_iter(self, match='*', count=100):
        return [key for key in list(self.store) if fnmatch.fnmatch(key, match)]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def live_cache(monkeypatch, fake_redis):
    """Swap the app's disabled cache for one backed by FakeRedis."""
    cache = CacheService(client=fake_redis)
    monkeypatch.setattr(cache_service, '_cache_service', cache)
    return cache
