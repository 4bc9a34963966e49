from sqlalchemy.sql import func
from sqlalchemy import Column, DateTime, Boolean


class CreatedAtMixin:
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UpdatedAtMixin:
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SoftDeleteMixin:
    """Rows are flagged, never removed; queries filter on is_deleted == False."""
    is_deleted = Column(Boolean, default=False, nullable=False)
