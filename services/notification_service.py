"""
Real-time notification fan-out.

Publishers address typed topics (an order, a customer, a restaurant, a delivery
person, or the public marketplace feed); subscribers (websocket sessions) hold a
bounded queue per subscription. Delivery is best-effort: a full queue drops the
event for that subscriber and a failure is logged, never raised back into the
operation that produced the event.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from fastapi import BackgroundTasks
from fastapi.encoders import jsonable_encoder
from core.config import settings
from utils.logger import get_logger

logger = get_logger(__name__)


class TopicKind(str, enum.Enum):
    ORDER = "order"
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY_PERSON = "delivery"
    MARKETPLACE = "marketplace"


@dataclass(frozen=True)
class Topic:
    kind: TopicKind
    id: Optional[int] = None

    @classmethod
    def order(cls, order_id: int) -> "Topic":
        return cls(TopicKind.ORDER, order_id)

    @classmethod
    def customer(cls, user_id: int) -> "Topic":
        return cls(TopicKind.CUSTOMER, user_id)

    @classmethod
    def restaurant(cls, restaurant_id: int) -> "Topic":
        return cls(TopicKind.RESTAURANT, restaurant_id)

    @classmethod
    def delivery_person(cls, user_id: int) -> "Topic":
        return cls(TopicKind.DELIVERY_PERSON, user_id)

    @classmethod
    def marketplace(cls) -> "Topic":
        return cls(TopicKind.MARKETPLACE)

    @classmethod
    def parse(cls, text: str) -> "Topic":
        """
        Parse "order:12" style strings sent by websocket clients.

        Raises:
            ValueError: Unknown kind, missing id, or an id on the marketplace topic
        """
        kind_text, _, id_text = text.strip().partition(":")
        kind = TopicKind(kind_text)
        if kind == TopicKind.MARKETPLACE:
            if id_text:
                raise ValueError("The marketplace topic takes no id")
            return cls.marketplace()
        if not id_text.isdigit():
            raise ValueError(f"Topic '{text}' needs a numeric id")
        return cls(kind, int(id_text))

    def __str__(self) -> str:
        return self.kind.value if self.id is None else f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class Event:
    name: str
    topic: Topic
    payload: dict

    def to_message(self) -> dict:
        return {"event": self.name, "topic": str(self.topic), "data": self.payload}


@dataclass(eq=False)
class Subscription:
    topics: frozenset
    queue: asyncio.Queue = field(repr=False)

    async def next_event(self) -> Event:
        return await self.queue.get()


class NotificationHub:

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[Topic, set[Subscription]] = {}

    def subscribe(self, topics: Iterable[Topic]) -> Subscription:
        subscription = Subscription(topics=frozenset(topics), queue=asyncio.Queue(maxsize=self.queue_size))
        for topic in subscription.topics:
            self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug("Subscribed", extra={"topics": [str(t) for t in subscription.topics]})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        for topic in subscription.topics:
            subscribers = self._subscribers.get(topic)
            if subscribers is None:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[topic]

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, topic: Topic, name: str, payload: dict[str, Any]) -> int:
        """
        Deliver an event to every subscriber of `topic`.

        Returns:
            Number of subscribers the event was queued for
        """
        try:
            event = Event(name=name, topic=topic, payload=jsonable_encoder(payload))
        except (TypeError, ValueError) as e:
            logger.error(
                f"Could not encode event payload: {str(e)}",
                extra={"event": name, "topic": str(topic), "error_type": type(e).__name__},
                exc_info=True
            )
            return 0

        delivered = 0
        for subscription in list(self._subscribers.get(topic, ())):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping event for slow subscriber",
                    extra={"event": name, "topic": str(topic)}
                )

        logger.debug(
            "Event published",
            extra={"event": name, "topic": str(topic), "delivered": delivered}
        )
        return delivered


hub = NotificationHub(queue_size=settings.EVENT_QUEUE_SIZE)


def notify(bg: BackgroundTasks, topics: Iterable[Topic], name: str, payload: dict[str, Any]) -> None:
    """
    Schedule an event for every topic. Runs after the response is sent, so a slow
    or failing delivery never holds up or rolls back the state change.
    """
    for topic in topics:
        bg.add_task(hub.publish, topic, name, payload)
