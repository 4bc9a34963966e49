from decimal import Decimal
from core.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Index)
from models.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, enum_values
from .mixins import CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin

class Order(Base, CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_restaurant_status", "restaurant_id", "status"),
        Index("ix_orders_canceled", "is_canceled", "canceled_at"),
    )

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    delivery_person_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    #relationships
    customer = relationship("User", back_populates="orders", foreign_keys=[customer_id])
    restaurant = relationship("Restaurant", back_populates="orders")
    delivery_person = relationship("User", foreign_keys=[delivery_person_id])
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    marketplace_item = relationship("MarketplaceItem", back_populates="order", uselist=False)

    order_type = Column(Enum(OrderType, name="order_type", values_callable=enum_values), default=OrderType.DELIVERY, nullable=False)
    status = Column(Enum(OrderStatus, name="order_status", values_callable=enum_values), default=OrderStatus.PENDING, nullable=False)
    notes = Column(String, default="")

    # Pricing breakdown
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    service_charge = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    delivery_charge = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    discount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total = Column(Numeric(10, 2), nullable=False)

    # Payment
    payment_method = Column(Enum(PaymentMethod, name="payment_method", values_callable=enum_values), default=PaymentMethod.COD, nullable=False)
    payment_status = Column(Enum(PaymentStatus, name="payment_status", values_callable=enum_values), default=PaymentStatus.PENDING, nullable=False)
    payment_reference = Column(String, nullable=True)

    # Cancellation / marketplace pricing
    is_canceled = Column(Boolean, default=False, nullable=False)
    original_price = Column(Numeric(10, 2), nullable=True)
    discount_percent = Column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    discounted_price = Column(Numeric(10, 2), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String, default="")

    # Coin redemption
    coins_used = Column(Integer, default=0, nullable=False)
    coin_discount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    # Delivery
    delivery_address = Column(String, nullable=False)
    contact_phone = Column(String, nullable=False)
    estimated_time_mins = Column(Integer, nullable=True)
