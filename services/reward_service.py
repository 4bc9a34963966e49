from sqlalchemy import func, update
from sqlalchemy.orm import Session
from models.enums import PaymentStatus
from models.orders import Order
from models.reward_accounts import RewardAccount
from utils.logger import get_logger

logger = get_logger(__name__)


class RewardService:
    """
    Coin balance and meals-rescued counters.

    Increments are single UPDATE statements (coins = coins + :delta) so concurrent
    orders of the same customer cannot lose updates. Callers own the commit.
    """

    @staticmethod
    def get_account(db: Session, user_id: int) -> RewardAccount | None:
        return db.query(RewardAccount).filter(RewardAccount.user_id == user_id).one_or_none()

    @staticmethod
    def get_coin_balance(db: Session, user_id: int) -> int | None:
        coins = db.query(RewardAccount.coins).filter(RewardAccount.user_id == user_id).scalar()
        return coins

    @staticmethod
    def reserved_coins(db: Session, user_id: int, exclude_order_id: int | None = None) -> int:
        """Coins already applied to the customer's other unpaid orders."""
        query = db.query(func.coalesce(func.sum(Order.coins_used), 0)).filter(
            Order.customer_id == user_id,
            Order.payment_status == PaymentStatus.PENDING,
            Order.is_deleted == False
        )
        if exclude_order_id is not None:
            query = query.filter(Order.id != exclude_order_id)
        return int(query.scalar())

    @staticmethod
    def adjust_coins(db: Session, user_id: int, delta: int) -> bool:
        """
        Add `delta` coins (negative to spend). A debit only applies when the
        balance covers it, so the balance never goes below zero.

        Returns:
            False if there is no account or the balance is too low
        """
        statement = (
            update(RewardAccount)
            .where(RewardAccount.user_id == user_id)
            .values(coins=RewardAccount.coins + delta)
        )
        if delta < 0:
            statement = statement.where(RewardAccount.coins >= -delta)

        result = db.execute(statement)
        if result.rowcount == 0:
            logger.warning("Coin adjustment not applied", extra={"user_id": user_id, "delta": delta})
            return False
        return True

    @staticmethod
    def increment_meals_rescued(db: Session, user_id: int) -> bool:
        result = db.execute(
            update(RewardAccount)
            .where(RewardAccount.user_id == user_id)
            .values(meals_rescued=RewardAccount.meals_rescued + 1)
        )
        if result.rowcount == 0:
            logger.warning("No reward account to count rescued meal", extra={"user_id": user_id})
            return False
        return True
