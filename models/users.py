from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean, Enum)
from sqlalchemy.orm import relationship
from models.enums import Role, enum_values
from .mixins import CreatedAtMixin

class User(Base, CreatedAtMixin):
    __tablename__ = "users"

    #pk 
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    orders = relationship("Order", back_populates="customer", foreign_keys="Order.customer_id")
    restaurants = relationship("Restaurant", back_populates="owner")
    reward_account = relationship("RewardAccount", back_populates="user", uselist=False)

    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    phone_number = Column(String)
    role = Column(Enum(Role, name="user_role", values_callable=enum_values), default=Role.USER, nullable=False)
    is_active = Column(Boolean, default=True)
