"""
Quantity conversion between packagings of the same product.

Every packaging carries base_unit_quantity, so conversion is a single ratio:
    converted = quantity * from.base_unit_quantity / to.base_unit_quantity
Arithmetic uses Fraction so repeated conversions never drift.
"""
import logging
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, Iterable, List

from app.exceptions import CrossProductConversionError, InvalidHierarchyError, NotFoundError
from app.services import hierarchy_validator
from app.services.packaging_nodes import PackagingNode
from app.utils.number_format import Number, format_quantity, to_fraction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PathStep:
    """One node on the conversion path and the factor from the previous node."""
    packaging_id: int
    name: str
    base_unit_quantity: Fraction
    multiplier: Fraction

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packaging_id': self.packaging_id,
            'name': self.name,
            'base_unit_quantity': format_quantity(self.base_unit_quantity),
            'multiplier': _render_fraction(self.multiplier),
        }


@dataclass
class ConversionResult:
    original_quantity: Fraction
    from_packaging_id: int
    to_packaging_id: int
    converted_quantity: Fraction
    base_units: Fraction
    is_exact: bool
    path: List[PathStep] = field(default_factory=list)

    def to_dict(self, places: int = 3) -> Dict[str, Any]:
        return {
            'original_quantity': format_quantity(self.original_quantity, places),
            'from_packaging_id': self.from_packaging_id,
            'to_packaging_id': self.to_packaging_id,
            'converted_quantity': format_quantity(self.converted_quantity, places),
            'converted_fraction': _render_fraction(self.converted_quantity),
            'base_units': format_quantity(self.base_units, places),
            'is_exact': self.is_exact,
            'path': [step.to_dict() for step in self.path],
        }


def _render_fraction(value: Fraction) -> str:
    if value.denominator == 1:
        return str(value.numerator)
    return f"{value.numerator}/{value.denominator}"


class UnitConverter:
    """
    Converter over a snapshot of packaging nodes.

    The snapshot may hold several products; conversions are only allowed
    inside one product. Each product tree is validated on construction and
    an invalid tree raises InvalidHierarchyError.
    """

    def __init__(self, nodes: Iterable[PackagingNode], validate_tree: bool = True,
                 max_depth: int = hierarchy_validator.MAX_HIERARCHY_DEPTH):
        self._nodes: Dict[int, PackagingNode] = {node.id: node for node in nodes}
        self._max_depth = max_depth
        if validate_tree:
            by_product: Dict[int, List[PackagingNode]] = {}
            for node in self._nodes.values():
                by_product.setdefault(node.product_id, []).append(node)
            for product_id, product_nodes in by_product.items():
                report = hierarchy_validator.validate(product_id, product_nodes, max_depth=max_depth)
                if not report.is_valid:
                    raise InvalidHierarchyError(product_id, report)

    def _get(self, packaging_id: int) -> PackagingNode:
        node = self._nodes.get(packaging_id)
        if node is None:
            raise NotFoundError(f"Packaging not found: {packaging_id}", {'packaging_id': packaging_id})
        return node

    def _pair(self, from_id: int, to_id: int):
        from_node = self._get(from_id)
        to_node = self._get(to_id)
        if from_node.product_id != to_node.product_id:
            raise CrossProductConversionError(from_node.product_id, to_node.product_id)
        return from_node, to_node

    def conversion_factor(self, from_id: int, to_id: int) -> Fraction:
        """How many `to` units one `from` unit is worth."""
        from_node, to_node = self._pair(from_id, to_id)
        return Fraction(from_node.base_unit_quantity) / Fraction(to_node.base_unit_quantity)

    def to_base_units(self, quantity: Number, packaging_id: int) -> Fraction:
        node = self._get(packaging_id)
        return to_fraction(quantity) * Fraction(node.base_unit_quantity)

    def from_base_units(self, base_quantity: Number, packaging_id: int) -> Fraction:
        node = self._get(packaging_id)
        return to_fraction(base_quantity, 'base_quantity') / Fraction(node.base_unit_quantity)

    def convert(self, quantity: Number, from_id: int, to_id: int) -> ConversionResult:
        from_node, to_node = self._pair(from_id, to_id)
        original = to_fraction(quantity)

        base_units = original * Fraction(from_node.base_unit_quantity)
        converted = base_units / Fraction(to_node.base_unit_quantity)

        result = ConversionResult(
            original_quantity=original,
            from_packaging_id=from_id,
            to_packaging_id=to_id,
            converted_quantity=converted,
            base_units=base_units,
            is_exact=converted.denominator == 1,
            path=self.path(from_id, to_id),
        )
        logger.debug("Converted %s x %s -> %s x %s", original, from_id, converted, to_id)
        return result

    def path(self, from_id: int, to_id: int) -> List[PathStep]:
        """
        Nodes walked from `from_id` down to the closest common unit, then up
        to `to_id`. The product of the multipliers equals the conversion
        factor.
        """
        from_node, to_node = self._pair(from_id, to_id)
        up = self._chain(from_node)
        down = self._chain(to_node)

        down_ids = [node.id for node in down]
        common_index = next((i for i, node in enumerate(up) if node.id in down_ids), None)
        if common_index is None:
            route = up + list(reversed(down))
        else:
            route = up[:common_index + 1] + list(reversed(down[:down_ids.index(up[common_index].id)]))

        steps = []
        previous = None
        for node in route:
            buq = Fraction(node.base_unit_quantity)
            multiplier = Fraction(1) if previous is None else previous / buq
            steps.append(PathStep(node.id, node.name, buq, multiplier))
            previous = buq
        return steps

    def _chain(self, node: PackagingNode) -> List[PackagingNode]:
        chain = [node]
        while chain[-1].parent_id is not None and len(chain) <= self._max_depth:
            chain.append(self._get(chain[-1].parent_id))
        return chain
