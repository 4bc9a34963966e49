from decimal import Decimal
from types import SimpleNamespace
from services.pricing import calculate_pricing, base_total, apply_discount_percent


def test_delivery_order_total():
    pricing = calculate_pricing([(100, 2)], tax_rate=0, service_charge=0, delivery_charge=50, discount=0)

    assert pricing.subtotal == Decimal("200.00")
    assert pricing.total == Decimal("250.00")


def test_tax_and_fees():
    pricing = calculate_pricing(
        [(Decimal("250"), 2), (Decimal("99.99"), 1)],
        tax_rate=0.13, service_charge=10, delivery_charge=50, discount=25
    )

    assert pricing.subtotal == Decimal("599.99")
    # 599.99 * 0.13 = 77.9987
    assert pricing.tax == Decimal("78.00")
    assert pricing.total == Decimal("712.99")


def test_total_never_negative():
    pricing = calculate_pricing([(10, 1)], discount=100)

    assert pricing.total == Decimal("0.00")
    assert pricing.discount == Decimal("100.00")


def test_empty_order_is_free():
    assert calculate_pricing([]).total == Decimal("0.00")


def test_base_total_ignores_coin_discount():
    order = SimpleNamespace(subtotal=Decimal("600"), tax=Decimal("0"), service_charge=Decimal("0"),
                            delivery_charge=Decimal("50"), discount=Decimal("0"), coin_discount=Decimal("20"))

    assert base_total(order) == Decimal("650.00")


def test_apply_discount_percent():
    assert apply_discount_percent(400, 25) == Decimal("300.00")
    assert apply_discount_percent(Decimal("650"), Decimal("20")) == Decimal("520.00")
    assert apply_discount_percent(Decimal("99.99"), 33) == Decimal("66.99")
    assert apply_discount_percent(100, 100) == Decimal("0.00")
