from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean, ForeignKey, JSON)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin

class Restaurant(Base, CreatedAtMixin, UpdatedAtMixin, SoftDeleteMixin):
    __tablename__ = "restaurants"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    #relationships
    owner = relationship("User", back_populates="restaurants")
    menu = relationship("MenuItem", back_populates="restaurant")
    orders = relationship("Order", back_populates="restaurant")
    marketplace_items = relationship("MarketplaceItem", back_populates="restaurant")

    name = Column(String, nullable=False)
    address = Column(String)
    phone = Column(String)
    image = Column(String, default="")
    cuisines = Column(JSON, default=list)
    is_open = Column(Boolean, default=True)
    supports_delivery = Column(Boolean, default=True, nullable=False)
    supports_pickup = Column(Boolean, default=True, nullable=False)
