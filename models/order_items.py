from core.database import Base
from sqlalchemy import (Column, Integer, String, ForeignKey, Numeric)
from sqlalchemy.orm import relationship

class OrderItem(Base):
    __tablename__ = "order_items"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"))

    #relationships
    order = relationship("Order", back_populates="items")

    # name and price are copied from the menu at checkout time
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    image = Column(String, default="")
    notes = Column(String, default="")

    def to_snapshot(self) -> dict:
        return {
            "menu_item_id": self.menu_item_id,
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
            "image": self.image or "",
            "notes": self.notes or "",
        }
