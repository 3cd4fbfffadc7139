"""Packaging blueprint - hierarchy, conversion, stock and picking endpoints."""
from flask import Blueprint, request, jsonify, current_app
from typing import Any, Dict, Optional
import logging

from app.database import get_session
from app.exceptions import InvalidArgumentError
from app.services import packaging_service
from app.services.cache_service import get_cache

logger = logging.getLogger(__name__)

packaging_bp = Blueprint('packaging', __name__, url_prefix='/api/packaging')


def _ok(data: Any, status: int = 200):
    return jsonify({'success': True, 'data': data}), status


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidArgumentError('Request body must be a JSON object')
    return data


def _expected_version(data: Optional[Dict[str, Any]] = None) -> Optional[int]:
    """Optimistic concurrency token from If-Match header or body."""
    value = request.headers.get('If-Match')
    if value is None and data is not None:
        value = data.get('expected_version')
    if value in (None, ''):
        return None
    try:
        return int(str(value).strip('"'))
    except ValueError:
        raise InvalidArgumentError('expected_version must be an integer')


def _require_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        raise InvalidArgumentError(f'{key} is required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f'{key} must be an integer')


def _places() -> int:
    return current_app.config.get('QUANTITY_DISPLAY_PLACES', 3)


@packaging_bp.route('/products/<int:product_id>', methods=['GET'])
def product_packagings(product_id: int):
    """Packagings of a product with stock per packaging and consolidated stock."""
    db_session = get_session()
    data = get_cache().memoize(
        product_id, 'packagings', 'list',
        lambda: packaging_service.get_packagings(db_session, product_id),
        ttl=current_app.config.get('CACHE_STOCK_TTL'),
    )
    return _ok(data)


@packaging_bp.route('/products/<int:product_id>/hierarchy', methods=['GET'])
def hierarchy(product_id: int):
    db_session = get_session()
    data = get_cache().memoize(
        product_id, 'hierarchy', 'tree',
        lambda: packaging_service.get_hierarchy(db_session, product_id),
        ttl=current_app.config.get('CACHE_HIERARCHY_TTL'),
    )
    return _ok(data)


@packaging_bp.route('/products/<int:product_id>/validate', methods=['GET'])
def validate_hierarchy(product_id: int):
    """Validation errors are returned as data, never as an error status."""
    report = packaging_service.validate_hierarchy(get_session(), product_id)
    return _ok(report.to_dict())


@packaging_bp.route('/products/<int:product_id>/stock', methods=['GET'])
def stock_consolidated(product_id: int):
    db_session = get_session()
    data = get_cache().memoize(
        product_id, 'stock', 'consolidated',
        lambda: packaging_service.get_stock_consolidated(db_session, product_id).to_dict(),
        ttl=current_app.config.get('CACHE_STOCK_TTL'),
    )
    return _ok(data)


@packaging_bp.route('/convert', methods=['POST'])
def convert():
    data = _json_body()
    from_id = _require_int(data, 'from_packaging_id')
    to_id = _require_int(data, 'to_packaging_id')
    if data.get('quantity') is None:
        raise InvalidArgumentError('quantity is required')

    db_session = get_session()
    quantity = data['quantity']
    product_id = packaging_service.get_packaging(db_session, from_id).product_id
    result = get_cache().memoize(
        product_id, 'convert', f'{from_id}:{to_id}:{quantity}',
        lambda: packaging_service.convert_quantity(db_session, quantity, from_id, to_id).to_dict(_places()),
        ttl=current_app.config.get('CACHE_CONVERSION_TTL'),
    )
    return _ok(result)


@packaging_bp.route('/optimize-picking', methods=['POST'])
def optimize_picking():
    data = _json_body()
    product_id = _require_int(data, 'product_id')
    if data.get('requested_base_units') is None:
        raise InvalidArgumentError('requested_base_units is required')

    result = packaging_service.optimize_picking(get_session(), product_id, data['requested_base_units'])
    return _ok(result.to_dict())


@packaging_bp.route('/scan', methods=['POST'])
def scan_barcode():
    data = _json_body()
    node = packaging_service.scan_barcode(get_session(), data.get('barcode'))
    return _ok(node.to_dict())


@packaging_bp.route('', methods=['POST'])
def create_packaging():
    data = _json_body()
    packaging = packaging_service.add_packaging(get_session(), data, _expected_version(data))
    return _ok(packaging.to_node().to_dict(), 201)


@packaging_bp.route('/<int:packaging_id>', methods=['GET'])
def packaging_detail(packaging_id: int):
    packaging = packaging_service.get_packaging(get_session(), packaging_id)
    return _ok(packaging.to_node().to_dict())


@packaging_bp.route('/<int:packaging_id>', methods=['PUT', 'PATCH'])
def update_packaging(packaging_id: int):
    data = _json_body()
    packaging = packaging_service.update_packaging(
        get_session(), packaging_id, data, _expected_version(data)
    )
    return _ok(packaging.to_node().to_dict())


@packaging_bp.route('/<int:packaging_id>', methods=['DELETE'])
def delete_packaging(packaging_id: int):
    packaging_service.delete_packaging(get_session(), packaging_id, _expected_version())
    return _ok({'id': packaging_id, 'deleted': True})
