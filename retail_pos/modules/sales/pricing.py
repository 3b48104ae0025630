"""
Cálculo de totales de venta

subtotal de renglón = cantidad x precio; total de renglón = subtotal - % - fijo.
Sobre la suma de renglones se aplica el descuento general y luego la tasa
plana de impuesto. Todo se redondea a 2 decimales (ROUND_HALF_UP).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

from retail_pos.common.exceptions import ValidationError

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    lines: List[LineTotals]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


def compute_line(quantity: Decimal, unit_price: Decimal,
                 discount_percent: Decimal = ZERO, discount_amount: Decimal = ZERO) -> LineTotals:
    if quantity <= 0:
        raise ValidationError("La cantidad de cada renglón debe ser mayor a cero")
    if unit_price < 0:
        raise ValidationError("El precio unitario no puede ser negativo")
    if discount_percent < 0 or discount_percent > HUNDRED or discount_amount < 0:
        raise ValidationError("Descuento de renglón fuera de rango")

    subtotal = money(Decimal(quantity) * Decimal(unit_price))
    discount = money(subtotal * Decimal(discount_percent) / HUNDRED) + money(discount_amount)
    if discount > subtotal:
        raise ValidationError("El descuento del renglón supera su subtotal")

    return LineTotals(subtotal=subtotal, discount=discount, total=subtotal - discount)


def compute_order(lines: Iterable[LineTotals], discount_percent: Decimal = ZERO,
                  tax_rate: Decimal = ZERO) -> OrderTotals:
    lines = list(lines)
    if discount_percent < 0 or discount_percent > HUNDRED:
        raise ValidationError("Descuento general fuera de rango")

    subtotal = sum((line.subtotal for line in lines), ZERO)
    lines_total = sum((line.total for line in lines), ZERO)
    order_discount = money(lines_total * Decimal(discount_percent) / HUNDRED)
    taxable = lines_total - order_discount
    tax = money(taxable * Decimal(tax_rate))

    return OrderTotals(
        lines=lines,
        subtotal=subtotal,
        discount=(subtotal - lines_total) + order_discount,
        tax=tax,
        total=taxable + tax
    )


def prorate(amount: Decimal, part: Decimal, whole: Decimal) -> Decimal:
    """Porción de amount equivalente a part/whole"""
    if whole == 0:
        return ZERO
    return money(Decimal(amount) * Decimal(part) / Decimal(whole))
