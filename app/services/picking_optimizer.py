"""
Picking plan: largest container first.

The policy is a single deterministic greedy pass, not a search for the
best combination. Callers rely on its exact output, including tie-breaks:
packagings are visited by base_unit_quantity descending, then packaging id
ascending.
"""
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional

from app.exceptions import InvalidArgumentError
from app.services.stock_consolidator import PackagingStock
from app.utils.number_format import Number, format_quantity, fraction_to_decimal, parse_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickingPlanItem:
    packaging_id: int
    quantity: int
    base_units: Decimal
    packaging_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packaging_id': self.packaging_id,
            'packaging_name': self.packaging_name,
            'quantity': self.quantity,
            'base_units': format_quantity(self.base_units),
        }


@dataclass
class PickingResult:
    product_id: int
    requested_base_units: Decimal
    total_planned: Decimal
    remaining: Decimal
    can_fulfill: bool
    total_available_base_units: Decimal
    picking_plan: List[PickingPlanItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'requested_base_units': format_quantity(self.requested_base_units),
            'picking_plan': [item.to_dict() for item in self.picking_plan],
            'total_planned': format_quantity(self.total_planned),
            'remaining': format_quantity(self.remaining),
            'can_fulfill': self.can_fulfill,
            'total_available_base_units': format_quantity(self.total_available_base_units),
        }


def _whole_packages(stock: PackagingStock) -> int:
    return math.floor(Fraction(stock.total_base_units) / Fraction(stock.base_unit_quantity))


def _check_stock(product_id: int, stock_entries: List[PackagingStock]) -> None:
    seen = set()
    for stock in stock_entries:
        if stock.product_id != product_id:
            raise InvalidArgumentError(
                f"Stock for packaging {stock.packaging_id} belongs to product {stock.product_id}, not {product_id}"
            )
        if stock.packaging_id in seen:
            raise InvalidArgumentError(f"Packaging {stock.packaging_id} listed more than once in stock")
        seen.add(stock.packaging_id)
        if stock.base_unit_quantity is None or stock.base_unit_quantity <= 0:
            raise InvalidArgumentError(
                f"Packaging {stock.packaging_id} has non-positive base_unit_quantity"
            )
        if stock.total_base_units is None or stock.total_base_units < 0:
            raise InvalidArgumentError(f"Packaging {stock.packaging_id} has negative stock")


def optimize(product_id: int, requested_base_units: Number,
             per_packaging_stock: Iterable[PackagingStock]) -> PickingResult:
    """
    Decompose `requested_base_units` into whole packages taken from stock.

    For each packaging (largest first) take
        min(whole packages in stock, floor(remaining / base_unit_quantity))
    and continue until nothing remains or packagings run out. Insufficient
    stock is reported through can_fulfill/remaining, not raised.

    Arithmetic runs on Fraction, so requests of any magnitude stay exact.
    """
    requested = parse_quantity(requested_base_units, 'requested_base_units')
    stock_entries = list(per_packaging_stock)
    _check_stock(product_id, stock_entries)

    total_available = sum(
        (_whole_packages(stock) * Fraction(stock.base_unit_quantity) for stock in stock_entries),
        Fraction(0),
    )

    if requested == 0:
        return PickingResult(
            product_id=product_id,
            requested_base_units=requested,
            total_planned=Decimal('0'),
            remaining=Decimal('0'),
            can_fulfill=True,
            total_available_base_units=fraction_to_decimal(total_available),
        )

    candidates = sorted(
        (stock for stock in stock_entries if stock.total_base_units > 0),
        key=lambda stock: (-stock.base_unit_quantity, stock.packaging_id),
    )

    plan = []
    remaining = Fraction(requested)
    for stock in candidates:
        if remaining == 0:
            break
        package_size = Fraction(stock.base_unit_quantity)
        take = min(_whole_packages(stock), math.floor(remaining / package_size))
        if take > 0:
            base_units = take * package_size
            plan.append(PickingPlanItem(
                packaging_id=stock.packaging_id,
                quantity=take,
                base_units=fraction_to_decimal(base_units),
                packaging_name=stock.packaging_name,
            ))
            remaining -= base_units

    result = PickingResult(
        product_id=product_id,
        requested_base_units=requested,
        total_planned=fraction_to_decimal(Fraction(requested) - remaining),
        remaining=fraction_to_decimal(remaining),
        can_fulfill=remaining == 0,
        total_available_base_units=fraction_to_decimal(total_available),
        picking_plan=plan,
    )
    logger.info(
        "Picking plan for product %s: requested=%s planned=%s remaining=%s lines=%d",
        product_id, requested, result.total_planned, result.remaining, len(plan)
    )
    return result
