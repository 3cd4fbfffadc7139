"""
Plain snapshots of packaging nodes and stock rows.

The engine modules (validator, converter, consolidator, optimizer, barcode
index) work on these immutable values instead of ORM instances, so every call
receives a self-consistent copy of the tree and never touches the session.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from app.exceptions import InvalidArgumentError
from app.utils.number_format import format_quantity, parse_quantity

AXES = ('length', 'width', 'height')


@dataclass(frozen=True)
class Dimensions:
    """Outer dimensions of one packaging unit."""
    length: Decimal
    width: Decimal
    height: Decimal

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['Dimensions']:
        if not data:
            return None
        if not isinstance(data, dict):
            raise InvalidArgumentError('dimensions must be an object with length, width and height')
        missing = [axis for axis in AXES if data.get(axis) is None]
        if missing:
            raise InvalidArgumentError(f"dimensions missing: {', '.join(missing)}")
        return cls(*(parse_quantity(data[axis], f'dimensions.{axis}') for axis in AXES))

    def overflowing_axes(self, container: 'Dimensions') -> List[str]:
        """Axes on which this unit is larger than `container`."""
        return [axis for axis in AXES if getattr(self, axis) > getattr(container, axis)]

    def to_dict(self) -> Dict[str, str]:
        return {axis: format_quantity(getattr(self, axis)) for axis in AXES}


@dataclass(frozen=True)
class PackagingNode:
    """
    One level of a product's packaging tree.

    `parent_id` points to the packaging this one is built from (the inner
    unit), so following it always ends at the base unit.
    """
    id: int
    product_id: int
    name: str
    base_unit_quantity: Decimal
    is_base_unit: bool = False
    parent_id: Optional[int] = None
    level: int = 0
    barcode: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'barcode': self.barcode,
            'base_unit_quantity': format_quantity(self.base_unit_quantity),
            'is_base_unit': self.is_base_unit,
            'parent_id': self.parent_id,
            'level': self.level,
            'dimensions': self.dimensions.to_dict() if self.dimensions else None,
            'is_active': self.is_active,
        }


@dataclass(frozen=True)
class StockRow:
    """Stock of one packaging at one location, in the packaging's own unit."""
    location_id: int
    packaging_id: int
    quantity: Decimal


@dataclass
class HierarchyTreeNode:
    node: PackagingNode
    children: List['HierarchyTreeNode'] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.node.to_dict()
        data['children'] = [child.to_dict() for child in self.children]
        return data


def build_tree(nodes: Iterable[PackagingNode]) -> List[HierarchyTreeNode]:
    """
    Nest packagings under the unit they are built from.

    Roots are nodes without a parent (the base unit on a valid tree).
    Siblings are ordered by base_unit_quantity, then id. Nodes whose parent
    is missing or that sit on a cycle are left out.
    """
    nodes = list(nodes)
    children_of: Dict[Optional[int], List[PackagingNode]] = {}
    for node in nodes:
        children_of.setdefault(node.parent_id, []).append(node)
    for siblings in children_of.values():
        siblings.sort(key=lambda n: (n.base_unit_quantity, n.id))

    def expand(node: PackagingNode, seen: frozenset) -> HierarchyTreeNode:
        branch = HierarchyTreeNode(node)
        for child in children_of.get(node.id, []):
            if child.id not in seen:
                branch.children.append(expand(child, seen | {child.id}))
        return branch

    return [expand(root, frozenset({root.id})) for root in children_of.get(None, [])]
