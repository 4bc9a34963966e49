import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from fastapi import BackgroundTasks
from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import Session
from core.config import settings
from core.exceptions import NotFoundError, InvalidStateError, ValidationError
from core.permissions import Actor, Action, require_role, COOKING_STATUSES
from models.enums import Availability, MarketplaceStatus, OrderStatus
from models.marketplace_items import MarketplaceItem
from models.orders import Order
from models.restaurants import Restaurant
from schemas.marketplace_schemas import MarketplaceFilters
from services.catalog_service import CatalogService
from services.notification_service import Topic, notify
from services.pricing import apply_discount_percent
from utils.clock import utcnow, as_utc
from utils.money import to_decimal, to_money
from utils.transactions import transaction
from utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ORDER_CANCEL_REASON = "Restaurant canceled - food available"


def default_discount_percent() -> Decimal:
    return to_decimal(settings.MARKETPLACE_DEFAULT_DISCOUNT_PERCENT)


def validate_discount_percent(discount_percent) -> Decimal:
    if discount_percent is None:
        raise ValidationError("Discount percent is required")
    percent = to_decimal(discount_percent)
    if percent < 0 or percent > 100:
        raise ValidationError("Discount percent must be between 0 and 100")
    return percent


def claim_order_for_cancellation(db: Session, order: Order, allowed_statuses) -> None:
    """
    Move an order to cancelled only if it is still in one of `allowed_statuses`.

    A single conditional UPDATE, so two concurrent cancellations cannot both win.

    Raises:
        InvalidStateError: The order left the allowed statuses
    """
    claimed = db.query(Order).filter(
        Order.id == order.id,
        Order.status.in_(list(allowed_statuses)),
        Order.is_deleted == False
    ).update({Order.status: OrderStatus.CANCELLED}, synchronize_session="fetch")

    if not claimed:
        raise InvalidStateError("Order cannot be canceled at this stage")


def apply_cancellation_pricing(order: Order, discount_percent: Decimal, cancel_reason: str, now: datetime) -> None:
    original_price = to_money(order.total)
    order.status = OrderStatus.CANCELLED
    order.is_canceled = True
    order.original_price = original_price
    order.discount_percent = discount_percent
    order.discounted_price = apply_discount_percent(original_price, discount_percent)
    order.canceled_at = now
    order.cancel_reason = cancel_reason


def build_listing(order: Order, cancel_reason: Optional[str], now: datetime) -> MarketplaceItem:
    """New pending-discount listing mirroring a freshly canceled order."""
    return MarketplaceItem(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        original_customer_id=order.customer_id,
        items=[line.to_snapshot() for line in order.items],
        original_price=order.original_price,
        discount_percent=order.discount_percent,
        discounted_price=order.discounted_price,
        availability=Availability.AVAILABLE,
        marketplace_status=MarketplaceStatus.PENDING_DISCOUNT,
        discount_applied=False,
        canceled_at=now,
        cancel_reason=cancel_reason or "",
        expires_at=now + timedelta(hours=settings.MARKETPLACE_LISTING_HOURS),
    )


def ensure_not_listed(db: Session, order_id: int) -> None:
    existing = db.query(MarketplaceItem).filter(MarketplaceItem.order_id == order_id).one_or_none()
    if existing is None:
        return
    if existing.is_deleted:
        raise InvalidStateError("This order was removed from the marketplace and cannot be listed again")
    raise InvalidStateError("This order is already in the marketplace")


def mark_expired(db: Session, *criteria) -> int:
    """
    Flag listings as expired. Shared by the sweeper and manual restaurant updates;
    listings already expired are left untouched, so repeating it changes nothing.
    """
    return db.query(MarketplaceItem).filter(
        MarketplaceItem.availability != Availability.EXPIRED,
        MarketplaceItem.is_deleted == False,
        *criteria
    ).update(
        {MarketplaceItem.availability: Availability.EXPIRED, MarketplaceItem.status_updated_at: utcnow()},
        synchronize_session=False
    )


def _paginate(query, page: int, limit: int, *order_by):
    total = query.count()
    items = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()
    return items, total


def _restaurants_serving(cuisine: str):
    """
    Ids of live restaurants listing `cuisine`, compared case-insensitively.

    `cuisines` is stored as a JSON array, so the serialized text is matched
    against the quoted element. This keeps partial names ("pan" vs "japanese")
    from matching.
    """
    needle = json.dumps(cuisine.strip().lower())
    needle = needle.replace("!", "!!").replace("%", "!%").replace("_", "!_")
    return select(Restaurant.id).where(
        Restaurant.is_deleted == False,
        func.lower(cast(Restaurant.cuisines, String)).like(f"%{needle}%", escape="!")
    )


def _item_event(item: MarketplaceItem) -> dict:
    return {
        "item_id": item.id,
        "restaurant_id": item.restaurant_id,
        "availability": item.availability,
        "marketplace_status": item.marketplace_status,
        "discount_percent": item.discount_percent,
        "discounted_price": item.discounted_price,
    }


class MarketplaceService:

    @staticmethod
    def create_item(actor: Actor, order_id: int, discount_percent, cancel_reason: Optional[str],
                    db: Session, bg: BackgroundTasks) -> MarketplaceItem:
        """
        Cancel an order whose food is already being cooked and list it for resale.

        Flow:
        1. Caller must own the order's restaurant
        2. Order must be accepted or preparing
        3. Order must not already have a listing
        4. Cancel the order and create the pending-discount listing in one commit
        5. Tell the restaurant dashboard about the new listing
        """
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)
        percent = default_discount_percent() if discount_percent is None else validate_discount_percent(discount_percent)

        order = db.query(Order).filter(
            Order.id == order_id,
            Order.restaurant_id == restaurant.id,
            Order.is_deleted == False
        ).one_or_none()

        if not order:
            raise NotFoundError("Order not found or does not belong to your restaurant")

        if order.status not in COOKING_STATUSES:
            logger.warning(
                "Marketplace listing rejected - order not cooking",
                extra={"order_id": order.id, "status": order.status.value}
            )
            raise InvalidStateError("Order cannot be canceled at this stage")

        ensure_not_listed(db, order.id)

        now = utcnow()
        with transaction(db, "list canceled order"):
            claim_order_for_cancellation(db, order, COOKING_STATUSES)
            apply_cancellation_pricing(order, percent, cancel_reason or DEFAULT_ORDER_CANCEL_REASON, now)
            item = build_listing(order, cancel_reason, now)
            db.add(item)

        db.refresh(item)

        logger.info(
            "Order listed on marketplace",
            extra={"order_id": order.id, "item_id": item.id, "restaurant_id": restaurant.id}
        )

        notify(bg, [Topic.restaurant(restaurant.id)], "marketplace:new_item", _item_event(item))
        notify(bg, [Topic.order(order.id), Topic.customer(order.customer_id)], "order:cancelled",
               {"order_id": order.id, "status": order.status, "cancel_reason": order.cancel_reason})
        return item

    @staticmethod
    def apply_discount(actor: Actor, item_id: int, discount_percent, db: Session, bg: BackgroundTasks) -> MarketplaceItem:
        """
        Set the final discount on a pending listing and publish it to the marketplace.
        The discount is mirrored onto the originating order.
        """
        require_role(actor, Action.MANAGE_MARKETPLACE)
        percent = validate_discount_percent(discount_percent)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        item = db.query(MarketplaceItem).filter(
            MarketplaceItem.id == item_id,
            MarketplaceItem.restaurant_id == restaurant.id,
            MarketplaceItem.is_deleted == False,
            MarketplaceItem.marketplace_status == MarketplaceStatus.PENDING_DISCOUNT
        ).one_or_none()

        if not item:
            raise NotFoundError("Marketplace item not found, already processed, or access denied")

        discounted_price = apply_discount_percent(item.original_price, percent)

        with transaction(db, "apply marketplace discount"):
            finalized = db.query(MarketplaceItem).filter(
                MarketplaceItem.id == item.id,
                MarketplaceItem.marketplace_status == MarketplaceStatus.PENDING_DISCOUNT
            ).update({
                MarketplaceItem.discount_percent: percent,
                MarketplaceItem.discounted_price: discounted_price,
                MarketplaceItem.discount_applied: True,
                MarketplaceItem.discount_applied_at: utcnow(),
                MarketplaceItem.marketplace_status: MarketplaceStatus.DISCOUNTED,
            }, synchronize_session=False)

            if not finalized:
                raise InvalidStateError("Marketplace item was already discounted")

            db.query(Order).filter(Order.id == item.order_id).update({
                Order.discount_percent: percent,
                Order.discounted_price: discounted_price,
            }, synchronize_session=False)

        db.refresh(item)

        logger.info(
            "Marketplace discount applied",
            extra={"item_id": item.id, "discount_percent": str(percent)}
        )

        notify(bg, [Topic.restaurant(restaurant.id), Topic.marketplace()], "marketplace:item_discounted", _item_event(item))
        return item

    @staticmethod
    def update_item(actor: Actor, item_id: int, db: Session, bg: BackgroundTasks,
                    discount_percent=None, availability=None, expires_at: Optional[datetime] = None) -> MarketplaceItem:
        """
        Owner edits of a listing. Each field is optional and validated on its own.

        Availability changes other than expiry are applied as given; there is no
        sold/available state guard here.
        """
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        item = db.query(MarketplaceItem).filter(
            MarketplaceItem.id == item_id,
            MarketplaceItem.restaurant_id == restaurant.id,
            MarketplaceItem.is_deleted == False
        ).one_or_none()

        if not item:
            raise NotFoundError("Marketplace item not found or access denied")

        if availability is not None:
            try:
                availability = Availability(availability)
            except ValueError:
                raise ValidationError("Invalid availability status")

        with transaction(db, "update marketplace item"):
            if discount_percent is not None:
                percent = validate_discount_percent(discount_percent)
                item.discount_percent = percent
                item.discounted_price = apply_discount_percent(item.original_price, percent)
                db.query(Order).filter(Order.id == item.order_id).update({
                    Order.discount_percent: percent,
                    Order.discounted_price: item.discounted_price,
                }, synchronize_session=False)

            if expires_at is not None:
                item.expires_at = as_utc(expires_at)

            if availability == Availability.EXPIRED:
                db.flush()
                mark_expired(db, MarketplaceItem.id == item.id)
            elif availability is not None:
                item.availability = availability
                item.status_updated_at = utcnow()

        db.refresh(item)

        logger.info(
            "Marketplace item updated",
            extra={"item_id": item.id, "availability": item.availability.value}
        )

        notify(bg, [Topic.restaurant(restaurant.id), Topic.marketplace()], "marketplace:item_updated", _item_event(item))
        return item

    @staticmethod
    def purchase_item(actor: Actor, item_id: int, db: Session, bg: BackgroundTasks) -> MarketplaceItem:
        """
        Buy a listing. Exactly one buyer can win: the sale is a single UPDATE that
        only matches while the listing is still available and unexpired.
        """
        require_role(actor, Action.PURCHASE_MARKETPLACE)
        now = utcnow()

        with transaction(db, "purchase marketplace item"):
            sold = db.query(MarketplaceItem).filter(
                MarketplaceItem.id == item_id,
                MarketplaceItem.availability == Availability.AVAILABLE,
                MarketplaceItem.marketplace_status == MarketplaceStatus.DISCOUNTED,
                MarketplaceItem.is_deleted == False,
                MarketplaceItem.expires_at > now
            ).update({
                MarketplaceItem.availability: Availability.SOLD,
                MarketplaceItem.purchased_by_id: actor.id,
                MarketplaceItem.purchased_at: now,
                MarketplaceItem.status_updated_at: now,
            }, synchronize_session=False)

        item = db.query(MarketplaceItem).filter(MarketplaceItem.id == item_id).one_or_none()
        if item is not None:
            db.refresh(item)

        if not sold:
            if item is None or item.is_deleted:
                raise NotFoundError("Marketplace item not found")
            reason = item.availability.value
            if item.marketplace_status == MarketplaceStatus.PENDING_DISCOUNT:
                reason = "awaiting discount"
            elif item.availability == Availability.AVAILABLE:
                reason = "expired"
            logger.warning(
                "Marketplace purchase rejected",
                extra={"item_id": item_id, "user_id": actor.id, "reason": reason}
            )
            raise InvalidStateError(f"Marketplace item is not available for purchase ({reason})")

        logger.info("Marketplace item sold", extra={"item_id": item.id, "user_id": actor.id})

        notify(bg, [Topic.restaurant(item.restaurant_id)], "marketplace:item_sold",
               {"item_id": item.id, "order_id": item.order_id, "purchased_by": actor.id, "purchased_at": item.purchased_at})
        notify(bg, [Topic.marketplace()], "marketplace:item_updated", _item_event(item))
        return item

    @staticmethod
    def list_items(filters: MarketplaceFilters, db: Session):
        """
        Public marketplace browse. Only finalized (discounted) listings are shown;
        available listings must also be unexpired, even before the sweeper runs.
        """
        query = db.query(MarketplaceItem).filter(
            MarketplaceItem.is_deleted == False,
            MarketplaceItem.availability == filters.availability,
            MarketplaceItem.marketplace_status == MarketplaceStatus.DISCOUNTED
        )

        if filters.cuisine:
            query = query.filter(MarketplaceItem.restaurant_id.in_(_restaurants_serving(filters.cuisine)))

        if filters.restaurant_id is not None:
            query = query.filter(MarketplaceItem.restaurant_id == filters.restaurant_id)

        if filters.min_price is not None:
            query = query.filter(MarketplaceItem.discounted_price >= filters.min_price)
        if filters.max_price is not None:
            query = query.filter(MarketplaceItem.discounted_price <= filters.max_price)

        if filters.availability == Availability.AVAILABLE:
            query = query.filter(MarketplaceItem.expires_at > utcnow())

        return _paginate(query, filters.page, filters.limit,
                         MarketplaceItem.canceled_at.desc(), MarketplaceItem.id.desc())

    @staticmethod
    def get_item(item_id: int, db: Session) -> MarketplaceItem:
        """Public detail view. A listing still awaiting its discount is reported as missing."""
        item = db.query(MarketplaceItem).filter(MarketplaceItem.id == item_id).one_or_none()
        if not item or item.is_deleted or item.marketplace_status != MarketplaceStatus.DISCOUNTED:
            raise NotFoundError("Marketplace item not found")
        return item

    @staticmethod
    def list_my_items(actor: Actor, db: Session, availability: Optional[Availability] = None,
                      page: int = 1, limit: int = 20):
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        query = db.query(MarketplaceItem).filter(
            MarketplaceItem.restaurant_id == restaurant.id,
            MarketplaceItem.is_deleted == False
        )
        if availability is not None:
            query = query.filter(MarketplaceItem.availability == availability)

        return _paginate(query, page, limit, MarketplaceItem.canceled_at.desc(), MarketplaceItem.id.desc())

    @staticmethod
    def list_pending_items(actor: Actor, db: Session, page: int = 1, limit: int = 20):
        """Listings waiting for the restaurant to set a discount."""
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        query = db.query(MarketplaceItem).filter(
            MarketplaceItem.restaurant_id == restaurant.id,
            MarketplaceItem.is_deleted == False,
            MarketplaceItem.marketplace_status == MarketplaceStatus.PENDING_DISCOUNT
        )
        return _paginate(query, page, limit, MarketplaceItem.canceled_at.desc(), MarketplaceItem.id.desc())

    @staticmethod
    def list_discounted_items(actor: Actor, db: Session, availability: Optional[Availability] = None,
                              page: int = 1, limit: int = 20):
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        query = db.query(MarketplaceItem).filter(
            MarketplaceItem.restaurant_id == restaurant.id,
            MarketplaceItem.is_deleted == False,
            MarketplaceItem.marketplace_status == MarketplaceStatus.DISCOUNTED,
            MarketplaceItem.discount_applied == True
        )
        if availability is not None:
            query = query.filter(MarketplaceItem.availability == availability)

        return _paginate(query, page, limit, MarketplaceItem.discount_applied_at.desc(), MarketplaceItem.id.desc())

    @staticmethod
    def list_my_cancellations(actor: Actor, db: Session, page: int = 1, limit: int = 20):
        """
        Orders of this customer that a restaurant canceled and resold, shaped for
        the customer app (no internal references).
        """
        require_role(actor, Action.VIEW_OWN_CANCELLATIONS)

        query = db.query(MarketplaceItem).filter(
            MarketplaceItem.original_customer_id == actor.id,
            MarketplaceItem.is_deleted == False,
            MarketplaceItem.marketplace_status == MarketplaceStatus.DISCOUNTED,
            MarketplaceItem.discount_applied == True
        )
        items, total = _paginate(query, page, limit, MarketplaceItem.discount_applied_at.desc(), MarketplaceItem.id.desc())

        transformed = [
            {
                "id": item.id,
                "order_id": item.order_id,
                "restaurant_name": item.restaurant.name if item.restaurant else "Unknown Restaurant",
                "restaurant_image": (item.restaurant.image if item.restaurant else "") or "",
                "items": item.items,
                "original_price": item.original_price,
                "discount_percent": item.discount_percent,
                "discounted_price": item.discounted_price,
                "cancel_reason": item.cancel_reason,
                "canceled_at": item.canceled_at,
                "discount_applied_at": item.discount_applied_at,
                "expires_at": item.expires_at,
                "availability": item.availability,
            }
            for item in items
        ]
        return transformed, total

    @staticmethod
    def delete_item(actor: Actor, item_id: int, db: Session, bg: BackgroundTasks) -> None:
        require_role(actor, Action.MANAGE_MARKETPLACE)
        restaurant = CatalogService.find_owned_restaurant(db, actor)

        item = db.query(MarketplaceItem).filter(
            MarketplaceItem.id == item_id,
            MarketplaceItem.restaurant_id == restaurant.id
        ).one_or_none()

        if not item:
            raise NotFoundError("Marketplace item not found or access denied")

        with transaction(db, "delete marketplace item"):
            item.is_deleted = True

        logger.info("Marketplace item deleted", extra={"item_id": item.id, "restaurant_id": restaurant.id})

        notify(bg, [Topic.restaurant(restaurant.id), Topic.marketplace()], "marketplace:item_deleted", {"item_id": item.id})

    @staticmethod
    def auto_expire_items(db: Session) -> int:
        """
        Mark every available listing whose expiry has passed as expired.

        Returns:
            Number of listings changed (0 when run again straight after)
        """
        now = utcnow()
        with transaction(db, "expire marketplace items"):
            expired = mark_expired(
                db,
                MarketplaceItem.availability == Availability.AVAILABLE,
                MarketplaceItem.expires_at < now
            )

        if expired:
            logger.info("Expired marketplace items", extra={"expired_count": expired})
        else:
            logger.debug("No marketplace items to expire")
        return expired
