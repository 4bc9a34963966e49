import enum


class Role(str, enum.Enum):
    USER = "user"
    RESTAURANT = "restaurant"
    ADMIN = "admin"
    DELIVERY = "delivery"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    HANDED_OVER = "handed_over"  # reserved for pickup flows, no transition reaches it
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    KHALTI = "khalti"
    ESEWA = "esewa"
    STRIPE = "stripe"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Availability(str, enum.Enum):
    AVAILABLE = "available"
    SOLD = "sold"
    EXPIRED = "expired"


class MarketplaceStatus(str, enum.Enum):
    PENDING_DISCOUNT = "pending_discount"
    DISCOUNTED = "discounted"


def enum_values(enum_cls):
    """Store enum values (not member names) in the database column."""
    return [member.value for member in enum_cls]
