"""
Authorization table for the ordering core.

Each operation checks the caller once against these tables:
- ACTION_ROLES: which roles may attempt an action at all
- STATUS_PERMISSIONS: which target statuses each role may set
- STATUS_PRECONDITIONS: extra (role, target) rules on the current status
- ORDER_TRANSITIONS: the order status graph non-admin actors must follow

Ownership (is this the caller's order / restaurant?) needs the database and is
checked by the services.
"""

import enum
from dataclasses import dataclass
from core.exceptions import ForbiddenError, InvalidStateError
from models.enums import Role, OrderStatus, OrderType


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role


class Action(str, enum.Enum):
    CREATE_ORDER = "create_order"
    VIEW_ORDER = "view_order"
    SET_ORDER_STATUS = "set_order_status"
    CANCEL_ORDER = "cancel_order"
    ASSIGN_DELIVERY = "assign_delivery"
    REDEEM_COINS = "redeem_coins"
    DELETE_ORDER = "delete_order"
    MANAGE_MARKETPLACE = "manage_marketplace"
    PURCHASE_MARKETPLACE = "purchase_marketplace"
    VIEW_OWN_CANCELLATIONS = "view_own_cancellations"


ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.CREATE_ORDER: frozenset({Role.USER}),
    Action.VIEW_ORDER: frozenset(Role),
    Action.SET_ORDER_STATUS: frozenset(Role),
    Action.CANCEL_ORDER: frozenset({Role.RESTAURANT}),
    Action.ASSIGN_DELIVERY: frozenset({Role.RESTAURANT, Role.ADMIN}),
    Action.REDEEM_COINS: frozenset({Role.USER}),
    Action.DELETE_ORDER: frozenset({Role.ADMIN}),
    Action.MANAGE_MARKETPLACE: frozenset({Role.RESTAURANT}),
    Action.PURCHASE_MARKETPLACE: frozenset({Role.USER}),
    Action.VIEW_OWN_CANCELLATIONS: frozenset({Role.USER}),
}


STATUS_PERMISSIONS: dict[Role, frozenset[OrderStatus]] = {
    Role.RESTAURANT: frozenset({
        OrderStatus.ACCEPTED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.CANCELLED,
    }),
    Role.USER: frozenset({OrderStatus.CANCELLED}),
    Role.DELIVERY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}),
    Role.ADMIN: frozenset(OrderStatus),
}

# Customers may only cancel before the kitchen starts cooking
STATUS_PRECONDITIONS: dict[tuple[Role, OrderStatus], frozenset[OrderStatus]] = {
    (Role.USER, OrderStatus.CANCELLED): frozenset({OrderStatus.PENDING, OrderStatus.ACCEPTED}),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.HANDED_OVER: frozenset(),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Pickup orders are collected at the counter, so they skip out_for_delivery
PICKUP_EXTRA_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED}),
}

# Direct restaurant cancellation (cancel_order) vs. listing on the marketplace
# (food already being cooked). See DESIGN.md for why these differ.
DIRECT_CANCEL_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.ACCEPTED})
COOKING_STATUSES = frozenset({OrderStatus.ACCEPTED, OrderStatus.PREPARING})


def is_allowed(actor: Actor, action: Action) -> bool:
    return actor.role in ACTION_ROLES[action]


def require_role(actor: Actor, action: Action) -> None:
    if not is_allowed(actor, action):
        raise ForbiddenError(f"Access denied: {actor.role.value} cannot {action.value.replace('_', ' ')}")


def next_statuses(current: OrderStatus, order_type: OrderType = OrderType.DELIVERY) -> frozenset[OrderStatus]:
    allowed = ORDER_TRANSITIONS[current]
    if order_type == OrderType.PICKUP:
        allowed = allowed | PICKUP_EXTRA_TRANSITIONS.get(current, frozenset())
    return allowed


def check_status_change(role: Role, current: OrderStatus, target: OrderStatus,
                        order_type: OrderType = OrderType.DELIVERY) -> None:
    """
    Raise if `role` may not move an order from `current` to `target`.

    Raises:
        ForbiddenError: The role may never set this status
        InvalidStateError: The role may set it, but not from the current status
    """
    if target not in STATUS_PERMISSIONS[role]:
        raise ForbiddenError(f"{role.value.capitalize()} cannot set status '{target.value}'")

    precondition = STATUS_PRECONDITIONS.get((role, target))
    if precondition is not None and current not in precondition:
        raise InvalidStateError(f"Cannot set '{target.value}' while order is '{current.value}'")

    if current in TERMINAL_STATUSES:
        raise InvalidStateError(f"Order is already {current.value}")

    # Admins may skip steps of the graph, but never reopen a terminal order
    if role == Role.ADMIN:
        return

    if target not in next_statuses(current, order_type):
        raise InvalidStateError(f"Cannot move order from '{current.value}' to '{target.value}'")
