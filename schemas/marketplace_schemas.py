from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from models.enums import Availability, MarketplaceStatus
from schemas.common import Pagination


class CreateMarketplaceItemRequest(BaseModel):
    order_id: int
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    cancel_reason: Optional[str] = Field(default=None, max_length=500)


class ApplyDiscountRequest(BaseModel):
    discount_percent: Decimal = Field(ge=0, le=100)


class UpdateMarketplaceItemRequest(BaseModel):
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    availability: Optional[Availability] = None
    expires_at: Optional[datetime] = None

    @model_validator(mode='after')
    def require_a_change(self):
        if self.discount_percent is None and self.availability is None and self.expires_at is None:
            raise ValueError('Provide at least one of discount_percent, availability, expires_at')
        return self


class MarketplaceFilters(BaseModel):
    cuisine: Optional[str] = None
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    restaurant_id: Optional[int] = None
    availability: Availability = Availability.AVAILABLE
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class ListedItem(BaseModel):
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = ""
    notes: Optional[str] = ""


class RestaurantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    image: Optional[str] = ""
    cuisines: Optional[list[str]] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class PublicMarketplaceItemResponse(BaseModel):
    """What anyone browsing the marketplace may see. No customer references."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    restaurant: RestaurantSummary
    items: list[ListedItem]
    original_price: Decimal
    discount_percent: Decimal
    discounted_price: Decimal
    availability: Availability
    marketplace_status: MarketplaceStatus
    canceled_at: datetime
    cancel_reason: Optional[str]
    expires_at: datetime


class MarketplaceItemResponse(PublicMarketplaceItemResponse):
    """Restaurant dashboard view of its own listings."""
    original_customer_id: int
    discount_applied: bool
    discount_applied_at: Optional[datetime]
    status_updated_at: Optional[datetime]
    purchased_by_id: Optional[int]
    purchased_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class CustomerCancellationResponse(BaseModel):
    id: int
    order_id: int
    restaurant_name: str
    restaurant_image: str
    items: list[ListedItem]
    original_price: Decimal
    discount_percent: Decimal
    discounted_price: Decimal
    cancel_reason: Optional[str]
    canceled_at: datetime
    discount_applied_at: Optional[datetime]
    expires_at: datetime
    availability: Availability


class PublicMarketplaceListResponse(BaseModel):
    items: list[PublicMarketplaceItemResponse]
    pagination: Pagination


class MarketplaceListResponse(BaseModel):
    items: list[MarketplaceItemResponse]
    pagination: Pagination


class CustomerCancellationListResponse(BaseModel):
    items: list[CustomerCancellationResponse]
    pagination: Pagination
