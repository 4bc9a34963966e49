from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from models.enums import OrderType, OrderStatus, PaymentMethod, PaymentStatus
from schemas.common import Pagination, normalize_phone
from utils.coin_calculator import MIN_COINS_PER_REDEMPTION


class OrderItemRequest(BaseModel):
    menu_item_id: int
    quantity: int = Field(default=1, ge=1, le=99)
    notes: str = Field(default="", max_length=200)


class CreateOrderRequest(BaseModel):
    restaurant_id: int
    items: list[OrderItemRequest] = Field(min_length=1)
    order_type: OrderType = OrderType.DELIVERY
    payment_method: PaymentMethod = PaymentMethod.COD
    delivery_address: str = ""
    contact_phone: str
    notes: str = Field(default="", max_length=500)

    @field_validator('contact_phone')
    @classmethod
    def validate_phone(cls, value):
        return normalize_phone(value)

    @field_validator('delivery_address')
    @classmethod
    def strip_address(cls, value):
        return value.strip()

    @model_validator(mode='after')
    def require_address_for_delivery(self):
        """Delivery orders need a 5-200 character address; pickup orders may omit it."""
        if self.order_type == OrderType.DELIVERY and not 5 <= len(self.delivery_address) <= 200:
            raise ValueError('Address must be 5-200 characters for delivery orders')
        return self


class UpdateStatusRequest(BaseModel):
    # kept as a plain string so unknown values get a domain ValidationError
    status: str
    estimated_time_mins: Optional[int] = Field(default=None, ge=0)


class CancelOrderRequest(BaseModel):
    discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    cancel_reason: Optional[str] = Field(default=None, max_length=500)


class AssignDeliveryRequest(BaseModel):
    delivery_person_id: int


class ApplyCoinsRequest(BaseModel):
    coins_to_use: int = Field(ge=MIN_COINS_PER_REDEMPTION)


class PaymentWebhookRequest(BaseModel):
    order_id: int
    payment_reference: Optional[str] = None
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value):
        if not value or not value.strip():
            raise ValueError('Payment status cannot be empty')
        return value.strip().lower()


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    menu_item_id: Optional[int]
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = ""
    notes: Optional[str] = ""


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    restaurant_id: int
    delivery_person_id: Optional[int]
    items: list[OrderItemResponse]
    order_type: OrderType
    status: OrderStatus

    subtotal: Decimal
    tax: Decimal
    service_charge: Decimal
    delivery_charge: Decimal
    discount: Decimal
    total: Decimal

    payment_method: PaymentMethod
    payment_status: PaymentStatus

    is_canceled: bool
    original_price: Optional[Decimal]
    discount_percent: Decimal
    discounted_price: Optional[Decimal]
    canceled_at: Optional[datetime]
    cancel_reason: Optional[str]

    coins_used: int
    coin_discount: Decimal

    delivery_address: str
    contact_phone: str
    estimated_time_mins: Optional[int]
    notes: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: Pagination


class CoinRedemptionResponse(BaseModel):
    coins_used: int
    coin_discount: Decimal
    new_total: Decimal
    max_coins_allowed: int
    remaining_coins: int
