import enum
from dataclasses import dataclass
from typing import Optional
from fastapi import BackgroundTasks
from sqlalchemy import or_
from sqlalchemy.orm import Session
from core.config import settings
from core.exceptions import (NotFoundError, ForbiddenError, InvalidStateError, ValidationError,
                             UnsupportedFulfillmentError)
from core.permissions import (Actor, Action, require_role, check_status_change,
                              DIRECT_CANCEL_STATUSES, COOKING_STATUSES, TERMINAL_STATUSES)
from models.enums import Role, OrderStatus, OrderType, PaymentStatus
from models.orders import Order
from models.order_items import OrderItem
from models.marketplace_items import MarketplaceItem
from schemas.order_schemas import CreateOrderRequest
from services.catalog_service import CatalogService
from services.marketplace_service import (claim_order_for_cancellation, apply_cancellation_pricing,
                                          build_listing, ensure_not_listed,
                                          default_discount_percent, validate_discount_percent)
from services.notification_service import Topic, notify
from services.pricing import calculate_pricing, base_total
from services.reward_service import RewardService
from utils.clock import utcnow
from utils.coin_calculator import calculate_coin_discount, CoinRedemption
from utils.transactions import transaction
from utils.logger import get_logger

logger = get_logger(__name__)

PAID_OUTCOMES = {"paid", "success"}
DIRECT_CANCEL_REASON = "Restaurant canceled"


class PaymentResult(str, enum.Enum):
    RECORDED = "recorded"
    FAILURE_RECORDED = "failure_recorded"
    ALREADY_PROCESSED = "already_processed"


@dataclass(frozen=True)
class PaymentOutcome:
    result: PaymentResult
    order: Order


def _order_event(order: Order) -> dict:
    return {
        "order_id": order.id,
        "restaurant_id": order.restaurant_id,
        "customer_id": order.customer_id,
        "status": order.status,
        "order_type": order.order_type,
        "total": order.total,
    }


class OrderService:

    @staticmethod
    def get_active_order(db: Session, order_id: int) -> Order:
        order = db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order or order.is_deleted:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def is_restaurant_owner(actor: Actor, order: Order) -> bool:
        return (
            actor.role == Role.RESTAURANT
            and order.restaurant is not None
            and order.restaurant.owner_id == actor.id
        )

    @staticmethod
    def can_view(actor: Actor, order: Order) -> bool:
        if actor.role == Role.ADMIN:
            return True
        if actor.role == Role.USER:
            return order.customer_id == actor.id
        if actor.role == Role.DELIVERY:
            return order.delivery_person_id == actor.id
        return OrderService.is_restaurant_owner(actor, order)

    @staticmethod
    def create_order(actor: Actor, request: CreateOrderRequest, db: Session, bg: BackgroundTasks) -> Order:
        """
        Checkout: price the cart against the restaurant's current menu and create a
        pending order.

        Flow:
        1. Restaurant must exist and not be deleted
        2. Restaurant must support the requested fulfillment type
        3. Every item must be on the restaurant's menu (name and price are copied)
        4. Price with the delivery fee (none for pickup)
        5. Save and tell the restaurant dashboard
        """
        require_role(actor, Action.CREATE_ORDER)

        if not request.items:
            raise ValidationError("Restaurant and at least 1 item required")

        restaurant = CatalogService.find_restaurant_by_id(db, request.restaurant_id)

        if request.order_type == OrderType.DELIVERY and not restaurant.supports_delivery:
            raise UnsupportedFulfillmentError("Restaurant does not support delivery")
        if request.order_type == OrderType.PICKUP and not restaurant.supports_pickup:
            raise UnsupportedFulfillmentError("Restaurant does not support pickup")

        menu = CatalogService.find_menu_items(db, restaurant, [item.menu_item_id for item in request.items])

        lines = [
            OrderItem(
                menu_item_id=item.menu_item_id,
                name=menu[item.menu_item_id].name,
                price=menu[item.menu_item_id].price,
                quantity=item.quantity,
                image=menu[item.menu_item_id].image or "",
                notes=item.notes,
            )
            for item in request.items
        ]

        pricing = calculate_pricing(
            [(line.price, line.quantity) for line in lines],
            tax_rate=settings.TAX_RATE,
            service_charge=settings.SERVICE_CHARGE,
            delivery_charge=0 if request.order_type == OrderType.PICKUP else settings.DELIVERY_CHARGE,
        )

        order = Order(
            customer_id=actor.id,
            restaurant_id=restaurant.id,
            items=lines,
            order_type=request.order_type,
            status=OrderStatus.PENDING,
            subtotal=pricing.subtotal,
            tax=pricing.tax,
            service_charge=pricing.service_charge,
            delivery_charge=pricing.delivery_charge,
            discount=pricing.discount,
            total=pricing.total,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            delivery_address=request.delivery_address,
            contact_phone=request.contact_phone,
            notes=request.notes,
        )

        with transaction(db, "create order"):
            db.add(order)

        db.refresh(order)

        logger.info(
            "Order created",
            extra={"order_id": order.id, "user_id": actor.id, "restaurant_id": restaurant.id,
                   "total": str(order.total), "order_type": order.order_type.value}
        )

        notify(bg, [Topic.restaurant(restaurant.id)], "order:created", _order_event(order))
        return order

    @staticmethod
    def list_orders(actor: Actor, db: Session, page: int = 1, limit: int = 20, status: Optional[str] = None):
        """
        Orders visible to the caller: customers see their own, restaurants their
        restaurant's, delivery people the ones assigned to them, admins all.
        """
        query = db.query(Order).filter(Order.is_deleted == False)

        if status:
            try:
                query = query.filter(Order.status == OrderStatus(status))
            except ValueError:
                raise ValidationError("Invalid status")

        if actor.role == Role.USER:
            query = query.filter(Order.customer_id == actor.id)
        elif actor.role == Role.DELIVERY:
            query = query.filter(Order.delivery_person_id == actor.id)
        elif actor.role == Role.RESTAURANT:
            try:
                restaurant = CatalogService.find_owned_restaurant(db, actor)
            except ForbiddenError:
                logger.debug("No restaurant found for owner", extra={"user_id": actor.id})
                return [], 0
            query = query.filter(Order.restaurant_id == restaurant.id)

        total = query.count()
        orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return orders, total

    @staticmethod
    def get_order(actor: Actor, order_id: int, db: Session) -> Order:
        require_role(actor, Action.VIEW_ORDER)
        order = OrderService.get_active_order(db, order_id)
        if not OrderService.can_view(actor, order):
            raise ForbiddenError("Access denied")
        return order

    @staticmethod
    def transition_status(actor: Actor, order_id: int, new_status: str, db: Session, bg: BackgroundTasks,
                          estimated_time_mins: Optional[int] = None) -> Order:
        """
        Move an order to `new_status` if the caller's role, their relation to the
        order and the current status all allow it.

        Raises:
            ValidationError: Unknown status value
            NotFoundError: Order absent or deleted
            ForbiddenError: Not the caller's order, or a status the role may not set
            InvalidStateError: Not reachable from the current status
        """
        require_role(actor, Action.SET_ORDER_STATUS)

        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError("Invalid status")

        order = OrderService.get_active_order(db, order_id)

        if actor.role != Role.ADMIN and not OrderService.can_view(actor, order):
            logger.warning(
                "Status change rejected - not the caller's order",
                extra={"order_id": order.id, "user_id": actor.id, "role": actor.role.value}
            )
            raise ForbiddenError("Access denied")

        current = order.status
        check_status_change(actor.role, current, target, order.order_type)

        values = {Order.status: target}
        if estimated_time_mins is not None:
            values[Order.estimated_time_mins] = estimated_time_mins
        if target == OrderStatus.CANCELLED:
            values[Order.canceled_at] = utcnow()

        with transaction(db, "update order status"):
            # Guarded on the status we validated against, so racing updates cannot skip a step
            updated = db.query(Order).filter(
                Order.id == order.id,
                Order.status == current
            ).update(values, synchronize_session=False)

            if not updated:
                raise InvalidStateError("Order status changed concurrently, please retry")

        db.refresh(order)

        logger.info(
            "Order status updated",
            extra={"order_id": order.id, "from_status": current.value, "to_status": target.value,
                   "user_id": actor.id, "role": actor.role.value}
        )

        topics = [Topic.order(order.id), Topic.customer(order.customer_id), Topic.restaurant(order.restaurant_id)]
        if order.delivery_person_id is not None:
            topics.append(Topic.delivery_person(order.delivery_person_id))
        notify(bg, topics, "order:status_updated",
            {"order_id": order.id, "status": order.status, "estimated_time_mins": order.estimated_time_mins},
        )
        return order

    @staticmethod
    def cancel_order(actor: Actor, order_id: int, discount_percent, cancel_reason: Optional[str],
                     db: Session, bg: BackgroundTasks) -> tuple[Order, Optional[MarketplaceItem]]:
        """
        Restaurant cancels one of its orders while it is pending or accepted.

        Accepted orders are already being cooked, so the order is listed on the
        marketplace in the same commit. Pending orders are simply canceled.

        Returns:
            (order, listing or None)
        """
        require_role(actor, Action.CANCEL_ORDER)
        restaurant = CatalogService.find_owned_restaurant(db, actor)
        percent = default_discount_percent() if discount_percent is None else validate_discount_percent(discount_percent)

        order = db.query(Order).filter(
            Order.id == order_id,
            Order.restaurant_id == restaurant.id,
            Order.is_deleted == False
        ).one_or_none()

        if not order:
            raise NotFoundError("Order not found or cannot be canceled")

        if order.status not in DIRECT_CANCEL_STATUSES:
            raise InvalidStateError(f"Order cannot be canceled while {order.status.value}")

        creates_listing = order.status in COOKING_STATUSES
        if creates_listing:
            ensure_not_listed(db, order.id)

        now = utcnow()
        item = None
        with transaction(db, "cancel order"):
            claim_order_for_cancellation(db, order, [order.status])
            apply_cancellation_pricing(order, percent, cancel_reason or DIRECT_CANCEL_REASON, now)
            if creates_listing:
                item = build_listing(order, cancel_reason, now)
                db.add(item)

        db.refresh(order)
        if item is not None:
            db.refresh(item)

        logger.info(
            "Order canceled by restaurant",
            extra={"order_id": order.id, "restaurant_id": restaurant.id,
                   "listed": item is not None, "discount_percent": str(percent)}
        )

        notify(bg, [Topic.order(order.id), Topic.customer(order.customer_id)], "order:cancelled",
               {"order_id": order.id, "status": order.status, "cancel_reason": order.cancel_reason})
        notify(bg, [Topic.marketplace()], "canceled_order:new", {
            "order_id": order.id,
            "restaurant_id": restaurant.id,
            "discount_percent": order.discount_percent,
            "discounted_price": order.discounted_price,
        })
        if item is not None:
            notify(bg, [Topic.restaurant(restaurant.id)], "marketplace:new_item",
                   {"item_id": item.id, "order_id": order.id, "marketplace_status": item.marketplace_status})
        return order, item

    @staticmethod
    def assign_delivery_person(actor: Actor, order_id: int, person_id: int, db: Session, bg: BackgroundTasks) -> Order:
        require_role(actor, Action.ASSIGN_DELIVERY)
        order = OrderService.get_active_order(db, order_id)

        if actor.role == Role.RESTAURANT and not OrderService.is_restaurant_owner(actor, order):
            raise ForbiddenError("Access denied")

        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot assign delivery to a {order.status.value} order")

        person = CatalogService.find_user_by_id(db, person_id)
        if not person or person.role != Role.DELIVERY:
            raise NotFoundError("Delivery person not found")

        with transaction(db, "assign delivery person"):
            order.delivery_person_id = person.id

        db.refresh(order)

        logger.info("Delivery person assigned", extra={"order_id": order.id, "delivery_person_id": person.id})

        notify(bg, [Topic.delivery_person(person.id)], "order:assigned", {"order_id": order.id, "order": _order_event(order)})
        notify(bg, [Topic.restaurant(order.restaurant_id)], "order:assigned",
               {"order_id": order.id, "delivery_person_id": person.id})
        return order

    @staticmethod
    def _get_customer_pending_order(actor: Actor, order_id: int, db: Session) -> Order:
        require_role(actor, Action.REDEEM_COINS)
        order = db.query(Order).filter(Order.id == order_id).one_or_none()

        # Someone else's order is reported as missing rather than forbidden
        if not order or order.is_deleted or order.customer_id != actor.id:
            raise NotFoundError("Order not found")

        if order.payment_status != PaymentStatus.PENDING:
            raise InvalidStateError("Cannot modify coins on paid/failed orders")
        return order

    @staticmethod
    def _write_coins(db: Session, order: Order, coins_used: int, coin_discount, total) -> None:
        with transaction(db, "update order coins"):
            updated = db.query(Order).filter(
                Order.id == order.id,
                Order.payment_status == PaymentStatus.PENDING
            ).update({
                Order.coins_used: coins_used,
                Order.coin_discount: coin_discount,
                Order.total: total,
            }, synchronize_session=False)

            if not updated:
                raise InvalidStateError("Cannot modify coins on paid/failed orders")

        db.refresh(order)

    @staticmethod
    def apply_coins(actor: Actor, order_id: int, coins_to_use: int, db: Session) -> tuple[CoinRedemption, int]:
        """
        Redeem loyalty coins against an unpaid order.

        Coins are deducted when payment succeeds so abandoned orders do not cost the
        customer anything. Until then they are held by the order: coins applied to
        the customer's other unpaid orders cannot be applied again here. Applying
        again to the same order replaces the previous redemption.

        Returns:
            (redemption, coins available to this order)
        """
        order = OrderService._get_customer_pending_order(actor, order_id, db)

        balance = RewardService.get_coin_balance(db, actor.id)
        if balance is None:
            raise NotFoundError("No reward account found")
        available = max(balance - RewardService.reserved_coins(db, actor.id, exclude_order_id=order.id), 0)

        redemption = calculate_coin_discount(base_total(order), coins_to_use, available)

        OrderService._write_coins(db, order, redemption.coins_used, redemption.coin_discount, redemption.new_total)

        logger.info(
            "Coins applied to order",
            extra={"order_id": order.id, "user_id": actor.id, "coins_used": redemption.coins_used,
                   "coin_discount": str(redemption.coin_discount)}
        )
        return redemption, available

    @staticmethod
    def remove_coins(actor: Actor, order_id: int, db: Session) -> Order:
        order = OrderService._get_customer_pending_order(actor, order_id, db)

        OrderService._write_coins(db, order, 0, 0, base_total(order))

        logger.info("Coins removed from order", extra={"order_id": order.id, "user_id": actor.id})
        return order

    @staticmethod
    def record_payment(order_id: int, payment_reference: Optional[str], outcome: str,
                       db: Session, bg: BackgroundTasks) -> PaymentOutcome:
        """
        Apply a payment provider callback. Safe to deliver more than once.

        A reference that was already stored, or an order that is already paid, is
        reported as ALREADY_PROCESSED with no side effects. On success the coins
        used are deducted and, for resold canceled orders, the customer's meals
        rescued counter goes up, both in the same commit as the status change.
        """
        order = db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order:
            raise NotFoundError("Order not found")

        if payment_reference and order.payment_reference == payment_reference:
            logger.info("Duplicate payment webhook ignored", extra={"order_id": order.id})
            return PaymentOutcome(PaymentResult.ALREADY_PROCESSED, order)

        if order.payment_status == PaymentStatus.PAID:
            logger.warning(
                "Payment webhook for an already paid order",
                extra={"order_id": order.id, "payment_reference": payment_reference}
            )
            return PaymentOutcome(PaymentResult.ALREADY_PROCESSED, order)

        if outcome.lower() not in PAID_OUTCOMES:
            with transaction(db, "record failed payment"):
                db.query(Order).filter(
                    Order.id == order.id,
                    Order.payment_status != PaymentStatus.PAID
                ).update({Order.payment_status: PaymentStatus.FAILED}, synchronize_session=False)

            db.refresh(order)
            logger.warning("Payment failed", extra={"order_id": order.id, "outcome": outcome})
            notify(bg, [Topic.customer(order.customer_id)], "order:payment_failed",
                   {"order_id": order.id, "payment_status": order.payment_status})
            return PaymentOutcome(PaymentResult.FAILURE_RECORDED, order)

        criteria = [Order.id == order.id, Order.payment_status != PaymentStatus.PAID]
        if payment_reference:
            criteria.append(or_(Order.payment_reference.is_(None), Order.payment_reference != payment_reference))

        with transaction(db, "record payment"):
            claimed = db.query(Order).filter(*criteria).update({
                Order.payment_status: PaymentStatus.PAID,
                Order.payment_reference: payment_reference or order.payment_reference,
            }, synchronize_session=False)

            if claimed:
                # A confirmed payment stands even when the coins can no longer be covered
                if order.coins_used > 0 and not RewardService.adjust_coins(db, order.customer_id, -order.coins_used):
                    logger.error(
                        "Coin balance too low to settle redeemed coins",
                        extra={"order_id": order.id, "user_id": order.customer_id, "coins_used": order.coins_used}
                    )
                if order.is_canceled:
                    RewardService.increment_meals_rescued(db, order.customer_id)

        db.refresh(order)

        if not claimed:
            logger.info("Concurrent duplicate payment webhook ignored", extra={"order_id": order.id})
            return PaymentOutcome(PaymentResult.ALREADY_PROCESSED, order)

        logger.info(
            "Payment recorded",
            extra={"order_id": order.id, "coins_used": order.coins_used, "meal_rescued": order.is_canceled}
        )

        notify(bg, [Topic.customer(order.customer_id), Topic.order(order.id)], "order:payment_received",
               {"order_id": order.id, "payment_status": order.payment_status})
        return PaymentOutcome(PaymentResult.RECORDED, order)

    @staticmethod
    def delete_order(actor: Actor, order_id: int, db: Session) -> None:
        require_role(actor, Action.DELETE_ORDER)

        order = db.query(Order).filter(Order.id == order_id).one_or_none()
        if not order:
            raise NotFoundError("Order not found")

        with transaction(db, "delete order"):
            order.is_deleted = True

        logger.info("Order deleted", extra={"order_id": order.id, "user_id": actor.id})
