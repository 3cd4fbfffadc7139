"""
Structural validation of a product's packaging tree.

Errors make the tree unusable for conversion, consolidation and picking.
Warnings (stale levels, dimension overflow) are informational only.
Results are returned as data, never raised.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from app.services.packaging_nodes import PackagingNode

logger = logging.getLogger(__name__)

MAX_HIERARCHY_DEPTH = 10

# Error codes
NO_BASE_UNIT = 'NO_BASE_UNIT'
MULTIPLE_BASE_UNITS = 'MULTIPLE_BASE_UNITS'
INVALID_BASE_UNIT = 'INVALID_BASE_UNIT'
DUPLICATE_PACKAGING = 'DUPLICATE_PACKAGING'
CROSS_PRODUCT_NODE = 'CROSS_PRODUCT_NODE'
CROSS_PRODUCT_PARENT = 'CROSS_PRODUCT_PARENT'
MISSING_PARENT = 'MISSING_PARENT'
CYCLE_DETECTED = 'CYCLE_DETECTED'
DEPTH_EXCEEDED = 'DEPTH_EXCEEDED'
INVALID_QUANTITY = 'INVALID_QUANTITY'
NON_MONOTONIC_QUANTITY = 'NON_MONOTONIC_QUANTITY'

# Warning codes
LEVEL_MISMATCH = 'LEVEL_MISMATCH'
DIMENSION_OVERFLOW = 'DIMENSION_OVERFLOW'


@dataclass(frozen=True)
class HierarchyIssue:
    code: str
    message: str
    packaging_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'code': self.code, 'message': self.message, 'packaging_id': self.packaging_id}


@dataclass
class ValidationReport:
    product_id: int
    errors: List[HierarchyIssue] = field(default_factory=list)
    warnings: List[HierarchyIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    def warning_codes(self) -> List[str]:
        return [issue.code for issue in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'is_valid': self.is_valid,
            'errors': [issue.to_dict() for issue in self.errors],
            'warnings': [issue.to_dict() for issue in self.warnings],
        }


def validate(product_id: int, nodes: Iterable[PackagingNode],
             max_depth: int = MAX_HIERARCHY_DEPTH) -> ValidationReport:
    """
    Check the structural invariants of one product's packaging tree.

    Steps:
    1. Exactly one base unit, with base_unit_quantity 1 and no parent.
    2. Every parent chain ends at the base unit within `max_depth` hops,
       without cycles or references to other products.
    3. Stored level equals base level + hops (warning on mismatch).
    4. base_unit_quantity strictly increases from parent to node.
    5. Each node's dimensions contain its parent's (warning on overflow).
    """
    report = ValidationReport(product_id=product_id)
    nodes = list(nodes)

    by_id: Dict[int, PackagingNode] = {}
    foreign_ids = set()
    for node in nodes:
        if node.product_id != product_id:
            foreign_ids.add(node.id)
            report.errors.append(HierarchyIssue(
                CROSS_PRODUCT_NODE,
                f"Packaging {node.id} belongs to product {node.product_id}, not {product_id}",
                node.id,
            ))
            continue
        if node.id in by_id:
            report.errors.append(HierarchyIssue(
                DUPLICATE_PACKAGING, f"Packaging {node.id} appears more than once", node.id
            ))
            continue
        by_id[node.id] = node

    _check_base_unit(report, by_id)
    _check_quantities(report, by_id)
    _check_chains(report, by_id, foreign_ids, max_depth)
    _check_edges(report, by_id)

    logger.debug(
        "Validated hierarchy of product %s: %d nodes, %d errors, %d warnings",
        product_id, len(by_id), len(report.errors), len(report.warnings)
    )
    return report


def _check_base_unit(report: ValidationReport, by_id: Dict[int, PackagingNode]) -> None:
    bases = [node for node in by_id.values() if node.is_base_unit]
    if not bases:
        report.errors.append(HierarchyIssue(NO_BASE_UNIT, "Product has no base unit packaging"))
        return
    if len(bases) > 1:
        ids = ', '.join(str(node.id) for node in sorted(bases, key=lambda n: n.id))
        report.errors.append(HierarchyIssue(
            MULTIPLE_BASE_UNITS, f"Product has more than one base unit: {ids}"
        ))
    for base in bases:
        if base.base_unit_quantity != 1:
            report.errors.append(HierarchyIssue(
                INVALID_BASE_UNIT,
                f"Base unit {base.id} must have base_unit_quantity 1, has {base.base_unit_quantity}",
                base.id,
            ))
        if base.parent_id is not None:
            report.errors.append(HierarchyIssue(
                INVALID_BASE_UNIT, f"Base unit {base.id} cannot have a parent", base.id
            ))


def _check_quantities(report: ValidationReport, by_id: Dict[int, PackagingNode]) -> None:
    for node in by_id.values():
        if not isinstance(node.base_unit_quantity, (int, Decimal)) or node.base_unit_quantity <= 0:
            report.errors.append(HierarchyIssue(
                INVALID_QUANTITY,
                f"Packaging {node.id} has non-positive base_unit_quantity {node.base_unit_quantity}",
                node.id,
            ))


def _check_chains(report: ValidationReport, by_id: Dict[int, PackagingNode],
                  foreign_ids: set, max_depth: int) -> None:
    reported_cycles = set()

    for node in sorted(by_id.values(), key=lambda n: n.id):
        if node.is_base_unit:
            continue
        if node.parent_id is None:
            report.errors.append(HierarchyIssue(
                MISSING_PARENT, f"Packaging {node.id} is not a base unit and has no parent", node.id
            ))
            continue

        visited = [node.id]
        current = node
        hops = 0
        while current.parent_id is not None:
            if hops >= max_depth:
                report.errors.append(HierarchyIssue(
                    DEPTH_EXCEEDED,
                    f"Packaging {node.id} is more than {max_depth} levels above its base unit",
                    node.id,
                ))
                break

            parent = by_id.get(current.parent_id)
            if parent is None:
                if current is node:
                    if current.parent_id in foreign_ids:
                        report.errors.append(HierarchyIssue(
                            CROSS_PRODUCT_PARENT,
                            f"Packaging {node.id} references packaging {current.parent_id} of another product",
                            node.id,
                        ))
                    else:
                        report.errors.append(HierarchyIssue(
                            MISSING_PARENT,
                            f"Packaging {node.id} references unknown parent {current.parent_id}",
                            node.id,
                        ))
                break

            if parent.id in visited:
                cycle = frozenset(visited[visited.index(parent.id):])
                if cycle not in reported_cycles:
                    reported_cycles.add(cycle)
                    members = ' -> '.join(str(pid) for pid in visited[visited.index(parent.id):])
                    report.errors.append(HierarchyIssue(
                        CYCLE_DETECTED,
                        f"Parent chain of packaging {parent.id} loops back to itself ({members} -> {parent.id})",
                        parent.id,
                    ))
                break

            visited.append(parent.id)
            current = parent
            hops += 1
        else:
            # Chain ended at a root; only a base unit root yields a usable level.
            if current.is_base_unit:
                expected_level = current.level + hops
                if node.level != expected_level:
                    report.warnings.append(HierarchyIssue(
                        LEVEL_MISMATCH,
                        f"Packaging {node.id} has level {node.level}, expected {expected_level}",
                        node.id,
                    ))


def _check_edges(report: ValidationReport, by_id: Dict[int, PackagingNode]) -> None:
    for node in sorted(by_id.values(), key=lambda n: n.id):
        parent = by_id.get(node.parent_id) if node.parent_id is not None else None
        if parent is None or parent.id == node.id:
            continue

        if node.base_unit_quantity <= parent.base_unit_quantity:
            report.errors.append(HierarchyIssue(
                NON_MONOTONIC_QUANTITY,
                f"Packaging {node.id} holds {node.base_unit_quantity} base units, "
                f"not more than the {parent.base_unit_quantity} of packaging {parent.id} it contains",
                node.id,
            ))

        if node.dimensions and parent.dimensions:
            axes = parent.dimensions.overflowing_axes(node.dimensions)
            if axes:
                report.warnings.append(HierarchyIssue(
                    DIMENSION_OVERFLOW,
                    f"Packaging {parent.id} does not fit inside packaging {node.id} ({', '.join(axes)})",
                    node.id,
                ))
