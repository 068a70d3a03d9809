from collections.abc import Iterable
from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize to cents, rounding half up."""
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal | int | float | str) -> Decimal:
    return to_money(Decimal(amount) * Decimal(str(rate)) / HUNDRED)


def sum_money(values: Iterable[Decimal | int | float | str]) -> Decimal:
    return to_money(sum((Decimal(str(value)) for value in values), ZERO_MONEY))


def average_money(values: list[Decimal]) -> Decimal:
    if not values:
        return ZERO_MONEY
    return to_money(sum_money(values) / len(values))
