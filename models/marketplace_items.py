from decimal import Decimal
from core.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, Enum, JSON, Index)
from models.enums import Availability, MarketplaceStatus, enum_values
from .mixins import CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin

class MarketplaceItem(Base, CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin):
    """
    A discounted resale listing created when a restaurant cancels an order
    after cooking has started. One listing per order.
    """
    __tablename__ = "marketplace_items"
    __table_args__ = (
        Index("ix_marketplace_restaurant_availability", "restaurant_id", "availability"),
        Index("ix_marketplace_restaurant_status", "restaurant_id", "marketplace_status"),
        Index("ix_marketplace_availability_expiry", "availability", "expires_at"),
    )

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    original_customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    purchased_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    #relationships
    order = relationship("Order", back_populates="marketplace_item")
    restaurant = relationship("Restaurant", back_populates="marketplace_items")

    # copied from the order lines so listings survive menu edits
    items = Column(JSON, nullable=False, default=list)

    original_price = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("20"))
    discounted_price = Column(Numeric(10, 2), nullable=False)

    availability = Column(Enum(Availability, name="availability", values_callable=enum_values), default=Availability.AVAILABLE, nullable=False)
    marketplace_status = Column(Enum(MarketplaceStatus, name="marketplace_status", values_callable=enum_values), default=MarketplaceStatus.PENDING_DISCOUNT, nullable=False)
    discount_applied = Column(Boolean, default=False, nullable=False)
    discount_applied_at = Column(DateTime(timezone=True), nullable=True)

    canceled_at = Column(DateTime(timezone=True), nullable=False)
    cancel_reason = Column(String, default="")
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    purchased_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
