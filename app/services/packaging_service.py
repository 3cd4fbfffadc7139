"""
Packaging service - storage-facing operations over the packaging engine.

Reads load a snapshot of one product's tree and stock, validate it and hand
it to the pure engine modules. Mutations (add / update / delete packaging)
are serialized per product: the product row is locked for the transaction
and its hierarchy_version is checked against the caller's expected version,
then bumped. The whole tree is re-validated before commit.
"""
import logging
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from app.blueprints.metrics import hierarchy_validations_total, picking_plans_total
from app.exceptions import (
    ConflictError, CrossProductConversionError, InvalidArgumentError,
    InvalidHierarchyError, NotFoundError, PackagingError
)
from app.models import PackagingType, Product, StockItem
from app.services import hierarchy_validator, picking_optimizer, stock_consolidator
from app.services.barcode_index import BarcodeIndex, normalize_barcode
from app.services.cache_service import get_cache
from app.services.packaging_nodes import AXES, Dimensions, PackagingNode, StockRow, build_tree
from app.services.unit_converter import ConversionResult, UnitConverter
from app.utils.number_format import parse_quantity

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'name', 'barcode', 'base_unit_quantity', 'is_base_unit',
    'parent_packaging_id', 'level', 'dimensions',
)


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _max_depth() -> int:
    return _config('MAX_HIERARCHY_DEPTH', hierarchy_validator.MAX_HIERARCHY_DEPTH)


def _invalidate_product_cache(product_id: int) -> None:
    """Gracefully attempt to invalidate every cached read of a product."""
    try:
        get_cache().invalidate_product(product_id)
    except RuntimeError as e:
        logger.warning(f"[CACHE] Invalidation skipped for product {product_id}: {e}")


# =====================================================
# Snapshot loading
# =====================================================

def get_product(session, product_id: int, lock: bool = False) -> Product:
    query = session.query(Product).filter(Product.id == product_id)
    if lock:
        query = query.with_for_update()
    product = query.first()
    if not product:
        raise NotFoundError(f"Product not found: {product_id}", {'product_id': product_id})
    return product


def get_packaging(session, packaging_id: int) -> PackagingType:
    """Active packaging by id."""
    packaging = session.query(PackagingType).filter(
        PackagingType.id == packaging_id,
        PackagingType.is_active == True
    ).first()
    if packaging is None:
        raise NotFoundError(f"Packaging not found: {packaging_id}", {'packaging_id': packaging_id})
    return packaging


def load_nodes(session, product_id: int) -> List[PackagingNode]:
    """Active packagings of a product, ordered by level."""
    rows = (
        session.query(PackagingType)
        .filter(PackagingType.product_id == product_id, PackagingType.is_active == True)
        .order_by(PackagingType.level, PackagingType.id)
        .all()
    )
    return [row.to_node() for row in rows]


def load_stock_rows(session, product_id: int) -> List[StockRow]:
    rows = (
        session.query(StockItem)
        .filter(StockItem.product_id == product_id, StockItem.is_active == True)
        .order_by(StockItem.id)
        .all()
    )
    return [row.to_row() for row in rows]


def _validate(product_id: int, nodes: List[PackagingNode]) -> hierarchy_validator.ValidationReport:
    report = hierarchy_validator.validate(product_id, nodes, max_depth=_max_depth())
    hierarchy_validations_total.labels(result='valid' if report.is_valid else 'invalid').inc()
    return report


def _require_valid(product_id: int, nodes: List[PackagingNode]) -> hierarchy_validator.ValidationReport:
    report = _validate(product_id, nodes)
    if not report.is_valid:
        logger.warning(
            f"[PACKAGING] Product {product_id} hierarchy invalid: {', '.join(report.error_codes())}"
        )
        raise InvalidHierarchyError(product_id, report)
    return report


# =====================================================
# Read operations
# =====================================================

def validate_hierarchy(session, product_id: int) -> hierarchy_validator.ValidationReport:
    get_product(session, product_id)
    return _validate(product_id, load_nodes(session, product_id))


def get_hierarchy(session, product_id: int) -> Dict[str, Any]:
    """Nested packaging tree of a product, with its validation report."""
    product = get_product(session, product_id)
    nodes = load_nodes(session, product_id)
    report = _validate(product_id, nodes)
    return {
        'product_id': product.id,
        'hierarchy_version': product.hierarchy_version,
        'is_valid': report.is_valid,
        'validation': report.to_dict(),
        'tree': [branch.to_dict() for branch in build_tree(nodes)],
    }


def get_stock_consolidated(session, product_id: int) -> stock_consolidator.ConsolidationResult:
    get_product(session, product_id)
    nodes = load_nodes(session, product_id)
    _require_valid(product_id, nodes)
    return stock_consolidator.consolidate(
        product_id, nodes, load_stock_rows(session, product_id), validate_tree=False
    )


def get_packagings(session, product_id: int) -> Dict[str, Any]:
    """Packagings of a product together with their stock, as listed by the product screen."""
    get_product(session, product_id)
    nodes = load_nodes(session, product_id)
    _require_valid(product_id, nodes)
    result = stock_consolidator.consolidate(
        product_id, nodes, load_stock_rows(session, product_id), validate_tree=False
    )
    return {
        'packagings': [node.to_dict() for node in nodes],
        'stock': [item.to_dict() for item in result.per_packaging],
        'consolidated': result.consolidated.to_dict(),
    }


def convert_quantity(session, quantity, from_packaging_id: int, to_packaging_id: int) -> ConversionResult:
    """Convert `quantity` of one packaging into another packaging of the same product."""
    rows = {
        row.id: row for row in session.query(PackagingType).filter(
            PackagingType.id.in_([from_packaging_id, to_packaging_id]),
            PackagingType.is_active == True
        ).all()
    }
    for packaging_id in (from_packaging_id, to_packaging_id):
        if packaging_id not in rows:
            raise NotFoundError(f"Packaging not found: {packaging_id}", {'packaging_id': packaging_id})

    from_product = rows[from_packaging_id].product_id
    to_product = rows[to_packaging_id].product_id
    if from_product != to_product:
        raise CrossProductConversionError(from_product, to_product)

    nodes = load_nodes(session, from_product)
    _require_valid(from_product, nodes)
    converter = UnitConverter(nodes, validate_tree=False, max_depth=_max_depth())
    return converter.convert(quantity, from_packaging_id, to_packaging_id)


def optimize_picking(session, product_id: int, requested_base_units) -> picking_optimizer.PickingResult:
    """Greedy picking plan (largest container first) against current stock."""
    requested = parse_quantity(requested_base_units, 'requested_base_units')
    result = get_stock_consolidated(session, product_id)
    plan = picking_optimizer.optimize(product_id, requested, result.per_packaging)
    picking_plans_total.labels(fulfilled='true' if plan.can_fulfill else 'false').inc()
    return plan


def scan_barcode(session, barcode: str) -> PackagingNode:
    """Resolve a scanned code to its active packaging."""
    code = normalize_barcode(barcode)
    if not code:
        raise InvalidArgumentError('barcode is required')

    match = (
        session.query(PackagingType.product_id)
        .filter(PackagingType.barcode == code)
        .order_by(PackagingType.is_active.desc(), PackagingType.id)
        .first()
    )
    if match is None:
        raise NotFoundError(f"Packaging not found for barcode: {code}", {'barcode': code})

    return BarcodeIndex(load_nodes(session, match.product_id)).lookup(code)


# =====================================================
# Mutations
# =====================================================

def _check_version(product: Product, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(expected_version) != product.hierarchy_version:
        raise ConflictError(
            f"Packaging hierarchy of product {product.id} changed "
            f"(expected version {expected_version}, current {product.hierarchy_version})",
            {'product_id': product.id, 'hierarchy_version': product.hierarchy_version},
        )


def _parse_int(value, field: str, required: bool = False) -> Optional[int]:
    if value is None or value == '':
        if required:
            raise InvalidArgumentError(f'{field} is required')
        return None
    if isinstance(value, bool):
        raise InvalidArgumentError(f'{field} must be an integer')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f'{field} must be an integer')


def _clean_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize editable packaging fields present in `data`."""
    fields: Dict[str, Any] = {}
    if 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise InvalidArgumentError('name is required')
        if len(name) > 100:
            raise InvalidArgumentError('name cannot exceed 100 characters')
        fields['name'] = name
    if 'barcode' in data:
        fields['barcode'] = normalize_barcode(data.get('barcode')) or None
    if 'base_unit_quantity' in data:
        fields['base_unit_quantity'] = parse_quantity(
            data.get('base_unit_quantity'), 'base_unit_quantity', allow_zero=False
        )
    if 'is_base_unit' in data:
        fields['is_base_unit'] = bool(data.get('is_base_unit'))
    if 'parent_packaging_id' in data:
        fields['parent_packaging_id'] = _parse_int(data.get('parent_packaging_id'), 'parent_packaging_id')
    if 'level' in data:
        fields['level'] = _parse_int(data.get('level'), 'level')
    if 'dimensions' in data:
        dimensions = Dimensions.from_dict(data.get('dimensions'))
        fields['dimensions'] = (
            {axis: str(getattr(dimensions, axis)) for axis in AXES} if dimensions else None
        )
    return fields


def _check_barcode_free(session, barcode: Optional[str], packaging_id: Optional[int] = None) -> None:
    if not barcode:
        return
    query = session.query(PackagingType).filter(
        PackagingType.barcode == barcode,
        PackagingType.is_active == True
    )
    if packaging_id is not None:
        query = query.filter(PackagingType.id != packaging_id)
    if query.first():
        raise ConflictError(f"Barcode {barcode} already belongs to another packaging", {'barcode': barcode})


def _resolve_parent(session, product_id: int, parent_id: Optional[int]) -> Optional[PackagingType]:
    if parent_id is None:
        return None
    parent = session.query(PackagingType).filter(
        PackagingType.id == parent_id,
        PackagingType.is_active == True
    ).first()
    if parent is None:
        raise NotFoundError(f"Parent packaging not found: {parent_id}", {'parent_packaging_id': parent_id})
    if parent.product_id != product_id:
        raise InvalidArgumentError(
            f"Parent packaging {parent_id} belongs to product {parent.product_id}, not {product_id}"
        )
    return parent


def _default_level(is_base_unit: bool, parent: Optional[PackagingType]) -> int:
    """Level a packaging gets when the caller does not set one."""
    if is_base_unit:
        return _config('BASE_UNIT_LEVEL', 0)
    if parent is not None:
        return parent.level + 1
    return 0


def _commit_mutation(session, product: Product, action: str, packaging: PackagingType) -> None:
    """Re-validate the tree, bump the version and commit."""
    session.flush()
    nodes = load_nodes(session, product.id)
    if nodes:
        _require_valid(product.id, nodes)
    product.hierarchy_version = (product.hierarchy_version or 0) + 1
    session.commit()
    logger.info(
        f"[PACKAGING] {action} packaging {packaging.id} of product {product.id} "
        f"(hierarchy version {product.hierarchy_version})"
    )
    _invalidate_product_cache(product.id)


def add_packaging(session, data: Dict[str, Any], expected_version: Optional[int] = None) -> PackagingType:
    """Create a packaging node; the whole product tree must stay valid."""
    product_id = _parse_int(data.get('product_id'), 'product_id', required=True)
    if 'name' not in data or 'base_unit_quantity' not in data:
        raise InvalidArgumentError('name and base_unit_quantity are required')
    fields = _clean_fields(data)

    try:
        product = get_product(session, product_id, lock=True)
        _check_version(product, expected_version)
        _check_barcode_free(session, fields.get('barcode'))

        parent = _resolve_parent(session, product_id, fields.get('parent_packaging_id'))
        if fields.get('level') is None:
            fields['level'] = _default_level(fields.get('is_base_unit', False), parent)

        packaging = PackagingType(product_id=product_id, is_active=True, **fields)
        session.add(packaging)
        _commit_mutation(session, product, 'Created', packaging)
        return packaging

    except PackagingError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[PACKAGING] Error creating packaging for product {product_id}")
        raise


def update_packaging(session, packaging_id: int, data: Dict[str, Any],
                     expected_version: Optional[int] = None) -> PackagingType:
    """Update editable fields of a packaging; the tree is re-validated."""
    if 'product_id' in data and data.get('product_id') is not None:
        raise InvalidArgumentError('product_id of a packaging cannot be changed')
    fields = _clean_fields({key: data[key] for key in EDITABLE_FIELDS if key in data})
    if not fields:
        raise InvalidArgumentError('No editable fields provided')

    try:
        packaging = get_packaging(session, packaging_id)

        product = get_product(session, packaging.product_id, lock=True)
        _check_version(product, expected_version)
        if 'barcode' in fields:
            _check_barcode_free(session, fields['barcode'], packaging_id)

        # An explicit null level is recomputed like a missing one
        if 'parent_packaging_id' in fields or ('level' in fields and fields['level'] is None):
            parent_id = fields.get('parent_packaging_id', packaging.parent_packaging_id)
            parent = _resolve_parent(session, product.id, parent_id)
            if fields.get('level') is None:
                is_base_unit = fields.get('is_base_unit', packaging.is_base_unit)
                fields['level'] = _default_level(is_base_unit, parent)

        for key, value in fields.items():
            setattr(packaging, key, value)
        _commit_mutation(session, product, 'Updated', packaging)
        return packaging

    except PackagingError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[PACKAGING] Error updating packaging {packaging_id}")
        raise


def delete_packaging(session, packaging_id: int, expected_version: Optional[int] = None) -> None:
    """
    Soft-delete a packaging.

    Refused with ConflictError while stock rows or other active packagings
    still reference it.
    """
    try:
        packaging = get_packaging(session, packaging_id)

        product = get_product(session, packaging.product_id, lock=True)
        _check_version(product, expected_version)

        stock_refs = session.query(StockItem).filter(
            StockItem.packaging_type_id == packaging_id,
            StockItem.is_active == True
        ).count()
        if stock_refs:
            raise ConflictError(
                f"Cannot delete packaging {packaging_id}: {stock_refs} stock row(s) reference it",
                {'packaging_id': packaging_id, 'stock_rows': stock_refs},
            )

        dependents = session.query(PackagingType).filter(
            PackagingType.parent_packaging_id == packaging_id,
            PackagingType.is_active == True
        ).count()
        if dependents:
            raise ConflictError(
                f"Cannot delete packaging {packaging_id}: {dependents} packaging(s) are built from it",
                {'packaging_id': packaging_id, 'dependent_packagings': dependents},
            )

        packaging.is_active = False
        _commit_mutation(session, product, 'Deleted', packaging)

    except PackagingError:
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[PACKAGING] Error deleting packaging {packaging_id}")
        raise


def add_stock_item(session, location_id: int, packaging_id: int, quantity) -> StockItem:
    """Record stock of a packaging at a location (quantity in the packaging's own unit)."""
    location_id = _parse_int(location_id, 'location_id', required=True)
    qty = parse_quantity(quantity, 'quantity', allow_zero=False)

    packaging = get_packaging(session, packaging_id)

    item = StockItem(
        location_id=location_id,
        product_id=packaging.product_id,
        packaging_type_id=packaging.id,
        quantity=qty,
        is_active=True,
    )
    session.add(item)
    session.commit()
    _invalidate_product_cache(packaging.product_id)
    return item
