from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Iterable, Literal

MONEY_QUANT = Decimal("0.01")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def format_money(value: Decimal, symbol: str = "") -> str:
    """Render ``500`` rather than ``500.00`` for whole amounts, as shown to shoppers."""
    amount = Decimal(value)
    if amount == amount.to_integral_value():
        return f"{symbol}{int(amount)}"
    return f"{symbol}{quantize_money(amount)}"


@dataclass(frozen=True)
class PricedLine:
    unit_price: Decimal
    quantity: int
    shipping_charge: Decimal = Decimal("0.00")
    free_shipping: bool = False

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * int(self.quantity)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


def line_shipping(line: PricedLine) -> Decimal:
    if line.free_shipping:
        return Decimal("0.00")
    charge = Decimal(line.shipping_charge or 0)
    return charge if charge > 0 else Decimal("0.00")


def compute_order_totals(
    lines: Iterable[PricedLine],
    *,
    discount: Decimal = Decimal("0.00"),
    free_shipping: bool = False,
    rounding: MoneyRounding = "half_up",
) -> OrderTotals:
    """Single source of truth for order money fields.

    ``discount`` is the already-evaluated coupon discount; it is clamped so it
    never exceeds the subtotal. Tax is carried as an explicit zero.
    """
    lines = list(lines)
    subtotal = quantize_money(sum((line.line_total for line in lines), start=Decimal("0.00")), rounding=rounding)

    discount_q = quantize_money(discount, rounding=rounding) if discount > 0 else Decimal("0.00")
    if discount_q > subtotal:
        discount_q = subtotal

    if free_shipping:
        shipping = Decimal("0.00")
    else:
        shipping = quantize_money(sum((line_shipping(line) for line in lines), start=Decimal("0.00")), rounding=rounding)

    total = subtotal - discount_q + shipping
    if total < 0:
        total = Decimal("0.00")
    return OrderTotals(
        subtotal=subtotal,
        discount=discount_q,
        shipping=shipping,
        tax=Decimal("0.00"),
        total=quantize_money(total, rounding=rounding),
    )
