from typing import Optional
from fastapi import APIRouter, Request, BackgroundTasks, Query
from starlette import status
from utils.deps import db_dependency, actor_dependency
from schemas.common import paginate
from schemas.order_schemas import (CreateOrderRequest, UpdateStatusRequest, CancelOrderRequest, AssignDeliveryRequest,
                                   ApplyCoinsRequest, PaymentWebhookRequest, OrderResponse, OrderListResponse,
                                   CoinRedemptionResponse)
from schemas.marketplace_schemas import MarketplaceItemResponse
from services.order_service import OrderService, PaymentResult
from middleware.rate_limiter import limiter
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/orders",
    tags=["orders"]
)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=OrderResponse)
@limiter.limit("20/minute")
async def create_order(request: Request, body: CreateOrderRequest, actor: actor_dependency,
                       db: db_dependency, bg: BackgroundTasks):
    return OrderService.create_order(actor, body, db, bg)


@router.get("/", response_model=OrderListResponse)
@limiter.limit("60/minute")
async def list_orders(request: Request, actor: actor_dependency, db: db_dependency,
                      page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                      order_status: Optional[str] = Query(None, alias="status")):
    orders, total = OrderService.list_orders(actor, db, page=page, limit=limit, status=order_status)
    return {"orders": orders, "pagination": paginate(page, limit, total)}


@router.post("/webhook/payment")
@limiter.limit("60/minute")
async def payment_webhook(request: Request, body: PaymentWebhookRequest, db: db_dependency, bg: BackgroundTasks):
    """
    Payment provider callback. Duplicates are acknowledged without side effects.
    """
    outcome = OrderService.record_payment(body.order_id, body.payment_reference, body.status, db, bg)

    if outcome.result == PaymentResult.ALREADY_PROCESSED:
        return {"message": "Already processed", "order_id": outcome.order.id,
                "payment_status": outcome.order.payment_status}

    return {"message": "Payment status updated", "order_id": outcome.order.id,
            "payment_status": outcome.order.payment_status}


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit("60/minute")
async def get_order(request: Request, order_id: int, actor: actor_dependency, db: db_dependency):
    return OrderService.get_order(actor, order_id, db)


@router.patch("/{order_id}/status", response_model=OrderResponse)
@limiter.limit("30/minute")
async def update_order_status(request: Request, order_id: int, body: UpdateStatusRequest,
                              actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    return OrderService.transition_status(actor, order_id, body.status, db, bg,
                                          estimated_time_mins=body.estimated_time_mins)


@router.post("/{order_id}/cancel")
@limiter.limit("20/minute")
async def cancel_order(request: Request, order_id: int, body: CancelOrderRequest,
                       actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    order, item = OrderService.cancel_order(actor, order_id, body.discount_percent, body.cancel_reason, db, bg)

    return {
        "message": "Order canceled and listed on the marketplace" if item else "Order canceled",
        "order": OrderResponse.model_validate(order),
        "marketplace_item": MarketplaceItemResponse.model_validate(item) if item else None,
    }


@router.post("/{order_id}/assign", response_model=OrderResponse)
@limiter.limit("30/minute")
async def assign_delivery_person(request: Request, order_id: int, body: AssignDeliveryRequest,
                                 actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    return OrderService.assign_delivery_person(actor, order_id, body.delivery_person_id, db, bg)


@router.post("/{order_id}/apply-coins", response_model=CoinRedemptionResponse)
@limiter.limit("10/minute")
async def apply_coins(request: Request, order_id: int, body: ApplyCoinsRequest,
                      actor: actor_dependency, db: db_dependency):
    redemption, available = OrderService.apply_coins(actor, order_id, body.coins_to_use, db)

    return {
        "coins_used": redemption.coins_used,
        "coin_discount": redemption.coin_discount,
        "new_total": redemption.new_total,
        "max_coins_allowed": redemption.max_coins_allowed,
        # deducted on payment, so this is what would remain
        "remaining_coins": available - redemption.coins_used,
    }


@router.post("/{order_id}/remove-coins", response_model=OrderResponse)
@limiter.limit("10/minute")
async def remove_coins(request: Request, order_id: int, actor: actor_dependency, db: db_dependency):
    return OrderService.remove_coins(actor, order_id, db)


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
async def delete_order(request: Request, order_id: int, actor: actor_dependency, db: db_dependency):
    OrderService.delete_order(actor, order_id, db)
