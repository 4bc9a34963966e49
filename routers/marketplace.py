from typing import Annotated, Optional
from fastapi import APIRouter, Request, BackgroundTasks, Query
from starlette import status
from utils.deps import db_dependency, actor_dependency
from models.enums import Availability
from schemas.common import paginate
from schemas.marketplace_schemas import (CreateMarketplaceItemRequest, ApplyDiscountRequest, UpdateMarketplaceItemRequest,
                                         MarketplaceFilters, PublicMarketplaceItemResponse, MarketplaceItemResponse,
                                         PublicMarketplaceListResponse, MarketplaceListResponse,
                                         CustomerCancellationListResponse)
from services.marketplace_service import MarketplaceService
from middleware.rate_limiter import limiter
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/marketplace",
    tags=["marketplace"]
)


# Static paths are registered before /{item_id} so they are not read as ids

@router.get("/", response_model=PublicMarketplaceListResponse)
@limiter.limit("60/minute")
async def browse_marketplace(request: Request, filters: Annotated[MarketplaceFilters, Query()], db: db_dependency):
    items, total = MarketplaceService.list_items(filters, db)
    return {"items": items, "pagination": paginate(filters.page, filters.limit, total)}


@router.get("/my-items/list", response_model=MarketplaceListResponse)
@limiter.limit("60/minute")
async def list_my_items(request: Request, actor: actor_dependency, db: db_dependency,
                        availability: Optional[Availability] = None,
                        page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    items, total = MarketplaceService.list_my_items(actor, db, availability=availability, page=page, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, total)}


@router.get("/pending/list", response_model=MarketplaceListResponse)
@limiter.limit("60/minute")
async def list_pending_items(request: Request, actor: actor_dependency, db: db_dependency,
                             page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    items, total = MarketplaceService.list_pending_items(actor, db, page=page, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, total)}


@router.get("/discounted/list", response_model=MarketplaceListResponse)
@limiter.limit("60/minute")
async def list_discounted_items(request: Request, actor: actor_dependency, db: db_dependency,
                                availability: Optional[Availability] = None,
                                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    items, total = MarketplaceService.list_discounted_items(actor, db, availability=availability, page=page, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, total)}


@router.get("/my-cancellations", response_model=CustomerCancellationListResponse)
@limiter.limit("60/minute")
async def list_my_cancellations(request: Request, actor: actor_dependency, db: db_dependency,
                                page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100)):
    items, total = MarketplaceService.list_my_cancellations(actor, db, page=page, limit=limit)
    return {"items": items, "pagination": paginate(page, limit, total)}


@router.get("/{item_id}", response_model=PublicMarketplaceItemResponse)
@limiter.limit("60/minute")
async def get_marketplace_item(request: Request, item_id: int, db: db_dependency):
    return MarketplaceService.get_item(item_id, db)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=MarketplaceItemResponse)
@limiter.limit("20/minute")
async def create_marketplace_item(request: Request, body: CreateMarketplaceItemRequest,
                                  actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    return MarketplaceService.create_item(actor, body.order_id, body.discount_percent, body.cancel_reason, db, bg)


@router.post("/{item_id}/apply-discount", response_model=MarketplaceItemResponse)
@limiter.limit("20/minute")
async def apply_discount(request: Request, item_id: int, body: ApplyDiscountRequest,
                         actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    return MarketplaceService.apply_discount(actor, item_id, body.discount_percent, db, bg)


@router.post("/{item_id}/purchase")
@limiter.limit("10/minute")
async def purchase_item(request: Request, item_id: int, actor: actor_dependency,
                        db: db_dependency, bg: BackgroundTasks):
    item = MarketplaceService.purchase_item(actor, item_id, db, bg)

    return {
        "message": "Item purchased successfully",
        "item": PublicMarketplaceItemResponse.model_validate(item),
        "purchased_at": item.purchased_at,
    }


@router.patch("/{item_id}", response_model=MarketplaceItemResponse)
@limiter.limit("20/minute")
async def update_marketplace_item(request: Request, item_id: int, body: UpdateMarketplaceItemRequest,
                                  actor: actor_dependency, db: db_dependency, bg: BackgroundTasks):
    return MarketplaceService.update_item(actor, item_id, db, bg, discount_percent=body.discount_percent,
                                          availability=body.availability, expires_at=body.expires_at)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
async def delete_marketplace_item(request: Request, item_id: int, actor: actor_dependency,
                                  db: db_dependency, bg: BackgroundTasks):
    MarketplaceService.delete_item(actor, item_id, db, bg)
