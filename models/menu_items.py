from core.database import Base
from sqlalchemy import (Column, Integer, String, ForeignKey, Numeric)
from sqlalchemy.orm import relationship

class MenuItem(Base):
    __tablename__ = "menu_items"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)

    #relationships
    restaurant = relationship("Restaurant", back_populates="menu")

    name = Column(String, nullable=False)
    description = Column(String, default="")
    price = Column(Numeric(10, 2), nullable=False)
    image = Column(String, default="")
