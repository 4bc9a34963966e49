"""
Websocket transport for the notification hub.

Clients connect with a bearer token and a comma separated topic list, e.g.
/events?token=...&topics=order:12,customer:3,marketplace
"""

import asyncio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException, status
from sqlalchemy.orm import Session
from core.database import SessionLocal
from core.permissions import Actor
from core.exceptions import AppError
from models.enums import Role
from services.catalog_service import CatalogService
from services.notification_service import Topic, TopicKind, hub
from services.order_service import OrderService
from utils.deps import decode_actor
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    tags=["events"]
)


def can_subscribe(actor: Actor, topic: Topic, db: Session) -> bool:
    if topic.kind == TopicKind.MARKETPLACE or actor.role == Role.ADMIN:
        return True
    if topic.kind in (TopicKind.CUSTOMER, TopicKind.DELIVERY_PERSON):
        return topic.id == actor.id
    if topic.kind == TopicKind.RESTAURANT:
        try:
            return CatalogService.find_owned_restaurant(db, actor).id == topic.id
        except AppError:
            return False
    try:
        OrderService.get_order(actor, topic.id, db)
    except AppError:
        return False
    return True


@router.websocket("/events")
async def events(websocket: WebSocket, token: str = "", topics: str = ""):
    try:
        actor = decode_actor(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        wanted = [Topic.parse(text) for text in topics.split(",") if text.strip()]
    except ValueError as e:
        logger.warning("Websocket subscription rejected - bad topic", extra={"user_id": actor.id, "error": str(e)})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # Short-lived session: a subscriber must not hold a pooled connection while it listens
    db = SessionLocal()
    try:
        denied = [str(topic) for topic in wanted if not can_subscribe(actor, topic, db)]
    finally:
        db.close()

    if not wanted or denied:
        logger.warning(
            "Websocket subscription rejected",
            extra={"user_id": actor.id, "role": actor.role.value, "denied_topics": denied}
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = hub.subscribe(wanted)
    logger.info("Websocket subscribed", extra={"user_id": actor.id, "topics": [str(t) for t in wanted]})

    async def forward():
        while True:
            event = await subscription.next_event()
            await websocket.send_json(event.to_message())

    async def drain():
        # Clients only listen; reading is how a disconnect is noticed
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
    except WebSocketDisconnect:
        logger.info("Websocket disconnected", extra={"user_id": actor.id})
    finally:
        for task in tasks:
            task.cancel()
        hub.unsubscribe(subscription)
