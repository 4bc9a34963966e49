from models.users import User
from models.reward_accounts import RewardAccount
from models.restaurants import Restaurant
from models.menu_items import MenuItem
from models.orders import Order
from models.order_items import OrderItem
from models.marketplace_items import MarketplaceItem

__all__ = ["User", "RewardAccount", "Restaurant", "MenuItem", "Order", "OrderItem", "MarketplaceItem"]
