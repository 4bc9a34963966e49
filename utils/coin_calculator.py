"""
Loyalty coin redemption math.

Business rules:
- 100 coins = 10 currency units (0.1 per coin)
- At most 30% of the order total can be paid with coins
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from core.exceptions import InsufficientCoinsError, InvalidInputError
from utils.money import to_decimal, to_money

COIN_TO_CURRENCY = Decimal("0.1")
MAX_DISCOUNT_PERCENT = Decimal("30")
MIN_COINS_PER_REDEMPTION = 100


@dataclass(frozen=True)
class CoinRedemption:
    coins_used: int
    coin_discount: Decimal
    new_total: Decimal
    max_coins_allowed: int


def _coins_for(amount: Decimal) -> int:
    return int((amount / COIN_TO_CURRENCY).to_integral_value(rounding=ROUND_FLOOR))


def calculate_coin_discount(order_total, coins_to_use: int, available_coins: int) -> CoinRedemption:
    """
    Work out how many coins can be redeemed against an order.

    Args:
        order_total: Payable total before coins are applied
        coins_to_use: Coins the customer asked to redeem
        available_coins: Customer's current balance

    Returns:
        CoinRedemption with the coins actually charged and the discount they buy

    Raises:
        InvalidInputError: Negative total or coin amounts
        InsufficientCoinsError: More coins requested than the customer holds
    """
    total = to_decimal(order_total)

    if coins_to_use < 0 or available_coins < 0 or total < 0:
        raise InvalidInputError("Coin amounts and order total must not be negative")

    if coins_to_use > available_coins:
        raise InsufficientCoinsError(
            f"Insufficient coins: requested {coins_to_use}, available {available_coins}"
        )

    potential_discount = coins_to_use * COIN_TO_CURRENCY
    max_allowed_discount = total * MAX_DISCOUNT_PERCENT / Decimal("100")
    actual_discount = min(potential_discount, max_allowed_discount)

    # Coins are re-derived from the capped discount, and the discount from the coins,
    # so the customer is charged exactly what was credited.
    coins_used = _coins_for(actual_discount)
    coin_discount = to_money(coins_used * COIN_TO_CURRENCY)

    return CoinRedemption(
        coins_used=coins_used,
        coin_discount=coin_discount,
        new_total=to_money(total - coin_discount),
        max_coins_allowed=_coins_for(max_allowed_discount),
    )
