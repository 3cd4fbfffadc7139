"""
Consolidation of per-location, per-packaging stock into base units.
"""
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional

from app.exceptions import InvalidArgumentError, InvalidHierarchyError, NotFoundError
from app.services import hierarchy_validator
from app.services.packaging_nodes import PackagingNode, StockRow
from app.utils.number_format import format_quantity, fraction_to_decimal, parse_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackagingStock:
    """Stock accumulated against one packaging node."""
    product_id: int
    packaging_id: int
    packaging_name: str
    barcode: Optional[str]
    level: int
    base_unit_quantity: Decimal
    stock_quantity: Decimal
    total_base_units: Decimal
    available_packages: int
    remaining_base_units: Decimal
    locations_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packaging_id': self.packaging_id,
            'packaging_name': self.packaging_name,
            'barcode': self.barcode,
            'level': self.level,
            'base_unit_quantity': format_quantity(self.base_unit_quantity),
            'stock_quantity': format_quantity(self.stock_quantity),
            'total_base_units': format_quantity(self.total_base_units),
            'available_packages': self.available_packages,
            'remaining_base_units': format_quantity(self.remaining_base_units),
            'locations_count': self.locations_count,
        }


@dataclass(frozen=True)
class ConsolidatedStock:
    product_id: int
    total_base_units: Decimal
    locations_count: int
    items_count: int

    @property
    def grand_total_base_units(self) -> Decimal:
        return self.total_base_units

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'total_base_units': format_quantity(self.total_base_units),
            'locations_count': self.locations_count,
            'items_count': self.items_count,
        }


@dataclass
class ConsolidationResult:
    consolidated: ConsolidatedStock
    per_packaging: List[PackagingStock] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'per_packaging': [item.to_dict() for item in self.per_packaging],
            'consolidated': self.consolidated.to_dict(),
        }


def consolidate(product_id: int, nodes: Iterable[PackagingNode], stock_rows: Iterable[StockRow],
                validate_tree: bool = True) -> ConsolidationResult:
    """
    Aggregate stock rows of one product into base-unit totals.

    Each row's quantity is in its packaging's own unit and is multiplied by
    the packaging's base_unit_quantity. Per packaging, the accumulated base
    units are also split into whole packages and a base-unit remainder.

    The per-packaging list is sorted by level descending, then packaging id.
    """
    nodes = list(nodes)
    if validate_tree:
        report = hierarchy_validator.validate(product_id, nodes)
        if not report.is_valid:
            raise InvalidHierarchyError(product_id, report)

    by_id = {node.id: node for node in nodes}
    totals: Dict[int, Fraction] = {}
    raw_quantities: Dict[int, Fraction] = {}
    locations_by_packaging: Dict[int, set] = {}
    locations = set()
    grand_total = Fraction(0)
    items_count = 0

    for row in stock_rows:
        node = by_id.get(row.packaging_id)
        if node is None:
            raise NotFoundError(
                f"Stock row at location {row.location_id} references unknown packaging {row.packaging_id}",
                {'packaging_id': row.packaging_id, 'location_id': row.location_id},
            )
        if node.product_id != product_id:
            raise InvalidArgumentError(
                f"Stock row references packaging {node.id} of product {node.product_id}, not {product_id}"
            )
        quantity = parse_quantity(row.quantity, 'stock quantity')
        base_units = Fraction(quantity) * Fraction(node.base_unit_quantity)

        totals[node.id] = totals.get(node.id, Fraction(0)) + base_units
        raw_quantities[node.id] = raw_quantities.get(node.id, Fraction(0)) + Fraction(quantity)
        locations_by_packaging.setdefault(node.id, set()).add(row.location_id)
        locations.add(row.location_id)
        grand_total += base_units
        items_count += 1

    per_packaging = []
    for packaging_id, total in totals.items():
        node = by_id[packaging_id]
        package_size = Fraction(node.base_unit_quantity)
        whole = math.floor(total / package_size)
        per_packaging.append(PackagingStock(
            product_id=product_id,
            packaging_id=node.id,
            packaging_name=node.name,
            barcode=node.barcode,
            level=node.level,
            base_unit_quantity=node.base_unit_quantity,
            stock_quantity=fraction_to_decimal(raw_quantities[packaging_id]),
            total_base_units=fraction_to_decimal(total),
            available_packages=whole,
            remaining_base_units=fraction_to_decimal(total - whole * package_size),
            locations_count=len(locations_by_packaging[packaging_id]),
        ))
    per_packaging.sort(key=lambda item: (-item.level, item.packaging_id))

    consolidated = ConsolidatedStock(
        product_id=product_id,
        total_base_units=fraction_to_decimal(grand_total),
        locations_count=len(locations),
        items_count=items_count,
    )
    logger.debug(
        "Consolidated product %s: %s base units over %d locations (%d rows)",
        product_id, consolidated.total_base_units, len(locations), items_count
    )
    return ConsolidationResult(consolidated=consolidated, per_packaging=per_packaging)
