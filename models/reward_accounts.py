from core.database import Base
from sqlalchemy import (Column, Integer, ForeignKey)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin

class RewardAccount(Base, CreatedAtMixin, UpdatedAtMixin):
    """
    Per-customer loyalty counters.

    Only ever changed through single-statement increments in RewardService,
    never by loading the row and writing it back.
    """
    __tablename__ = "reward_accounts"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    #relationships
    user = relationship("User", back_populates="reward_account")

    coins = Column(Integer, default=0, nullable=False)
    meals_rescued = Column(Integer, default=0, nullable=False)
