"""
Order pricing. Pure functions, no database access.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from utils.money import to_decimal, to_money, clamp_non_negative, HUNDRED


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    tax: Decimal
    service_charge: Decimal
    delivery_charge: Decimal
    discount: Decimal
    total: Decimal


def calculate_pricing(
    items: Iterable[tuple],
    tax_rate=0,
    service_charge=0,
    delivery_charge=0,
    discount=0,
) -> PricingBreakdown:
    """
    Price an order from its lines and the fee parameters of its context.

    Args:
        items: (unit_price, quantity) pairs
        tax_rate: Fraction of the subtotal, e.g. 0.13
        service_charge: Flat service fee
        delivery_charge: Flat delivery fee (0 for pickup)
        discount: Flat discount

    Returns:
        PricingBreakdown with every amount rounded to 2 dp and total >= 0
    """
    # each amount is rounded before it feeds the total
    subtotal = to_money(sum((to_decimal(price) * int(qty) for price, qty in items), Decimal("0")))
    tax = to_money(subtotal * to_decimal(tax_rate))
    service_charge = to_money(service_charge)
    delivery_charge = to_money(delivery_charge)
    discount = to_money(discount)

    total = subtotal + tax + service_charge + delivery_charge - discount

    return PricingBreakdown(
        subtotal=subtotal,
        tax=tax,
        service_charge=service_charge,
        delivery_charge=delivery_charge,
        discount=discount,
        total=to_money(clamp_non_negative(total)),
    )


def base_total(order) -> Decimal:
    """Total of an order before any coin discount."""
    total = order.subtotal + order.tax + order.service_charge + order.delivery_charge - order.discount
    return to_money(clamp_non_negative(total))


def apply_discount_percent(price, discount_percent) -> Decimal:
    """Price after a percentage discount: price - price * percent / 100."""
    price = to_decimal(price)
    return to_money(clamp_non_negative(price - price * to_decimal(discount_percent) / HUNDRED))
