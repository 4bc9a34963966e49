"""
Read access to restaurants, menus and users.

Restaurant and menu management live in another service; the ordering core only
needs these lookups.
"""

from sqlalchemy.orm import Session
from core.exceptions import NotFoundError, ForbiddenError
from core.permissions import Actor
from models.enums import Role
from models.restaurants import Restaurant
from models.menu_items import MenuItem
from models.users import User


class CatalogService:

    @staticmethod
    def find_restaurant_by_id(db: Session, restaurant_id: int) -> Restaurant:
        restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).one_or_none()
        if not restaurant or restaurant.is_deleted:
            raise NotFoundError("Restaurant not found")
        return restaurant

    @staticmethod
    def find_menu_items(db: Session, restaurant: Restaurant, item_ids) -> dict[int, MenuItem]:
        """
        Look up menu items of one restaurant.

        Raises:
            NotFoundError: Any id is not on this restaurant's menu
        """
        wanted = set(item_ids)
        found = {
            item.id: item
            for item in db.query(MenuItem).filter(
                MenuItem.restaurant_id == restaurant.id,
                MenuItem.id.in_(wanted)
            ).all()
        }
        missing = sorted(wanted - found.keys())
        if missing:
            raise NotFoundError(
                f"Menu item(s) {', '.join(str(m) for m in missing)} do not belong to this restaurant"
            )
        return found

    @staticmethod
    def find_owned_restaurant(db: Session, actor: Actor) -> Restaurant:
        """Restaurant run by a restaurant-role actor."""
        restaurant = None
        if actor.role == Role.RESTAURANT:
            restaurant = db.query(Restaurant).filter(
                Restaurant.owner_id == actor.id,
                Restaurant.is_deleted == False
            ).first()
        if not restaurant:
            raise ForbiddenError("Not authorized as restaurant owner")
        return restaurant

    @staticmethod
    def find_user_by_id(db: Session, user_id: int) -> User | None:
        return db.query(User).filter(User.id == user_id, User.is_active == True).one_or_none()
