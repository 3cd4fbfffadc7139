"""Quantity parsing and rendering utilities."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from fractions import Fraction
from typing import Union

from app.exceptions import InvalidArgumentError

QUANTITY_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?$")

Number = Union[int, float, Decimal, Fraction, str]


def parse_quantity(value: Number, field: str = 'quantity', allow_zero: bool = True) -> Decimal:
    """
    Parse a quantity coming from a request body or a stock row into Decimal.

    Accepts ints, Decimals and plain numeric strings ("12", "0.5").
    Floats are accepted through their string representation so that 0.1
    stays 0.1 instead of its binary expansion. Booleans are rejected.

    Raises:
        InvalidArgumentError: if the value is not a number or is negative.
    """
    if value is None or isinstance(value, bool):
        raise InvalidArgumentError(f'{field} is required and must be a number')

    if isinstance(value, Fraction):
        if value.denominator != 1:
            raise InvalidArgumentError(f'{field} must be a finite decimal number')
        decimal_value = Decimal(value.numerator)
    elif isinstance(value, (int, Decimal)):
        decimal_value = Decimal(value)
    elif isinstance(value, float):
        decimal_value = Decimal(repr(value))
    elif isinstance(value, str):
        cleaned = value.strip()
        if not QUANTITY_PATTERN.match(cleaned):
            raise InvalidArgumentError(f'{field} must be a number, got {value!r}')
        try:
            decimal_value = Decimal(cleaned)
        except InvalidOperation:
            raise InvalidArgumentError(f'{field} must be a number, got {value!r}')
    else:
        raise InvalidArgumentError(f'{field} must be a number, got {type(value).__name__}')

    if not decimal_value.is_finite():
        raise InvalidArgumentError(f'{field} must be a finite number')
    if decimal_value < 0:
        raise InvalidArgumentError(f'{field} cannot be negative')
    if not allow_zero and decimal_value == 0:
        raise InvalidArgumentError(f'{field} must be greater than 0')

    return decimal_value


def to_fraction(value: Number, field: str = 'quantity') -> Fraction:
    """Exact rational form of a quantity."""
    if isinstance(value, Fraction):
        if value < 0:
            raise InvalidArgumentError(f'{field} cannot be negative')
        return value
    return Fraction(parse_quantity(value, field))


def fraction_to_decimal(value: Fraction) -> Decimal:
    """
    Exact Decimal form of a fraction whose denominator divides a power of ten.

    Quantities parsed by parse_quantity and sums or whole multiples of them
    always qualify. Built from a string so no context precision applies.
    """
    denominator = value.denominator
    twos = fives = 0
    while denominator % 2 == 0:
        denominator //= 2
        twos += 1
    while denominator % 5 == 0:
        denominator //= 5
        fives += 1
    if denominator != 1:
        raise ValueError(f'{value} has no finite decimal representation')

    places = max(twos, fives)
    scaled = value.numerator * (10 ** places // value.denominator)
    return Decimal(f'{scaled}E-{places}')


def format_quantity(value: Union[Decimal, Fraction, int], places: int = 3) -> str:
    """
    Render a quantity for JSON output.

    Integral values render without decimals ("12"), other values are rounded
    half-up to `places` decimals with trailing zeros removed ("0.083").
    """
    if isinstance(value, Fraction):
        if value.denominator == 1:
            return str(value.numerator)
        value = Decimal(value.numerator) / Decimal(value.denominator)

    num = Decimal(value)
    if num == num.to_integral_value():
        return str(int(num))

    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, num.adjusted() + places + 2)
        rounded = num.quantize(quantum, rounding=ROUND_HALF_UP)
    text = format(rounded, 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text
