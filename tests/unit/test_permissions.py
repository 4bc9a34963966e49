import pytest
from core.exceptions import ForbiddenError, InvalidStateError
from core.permissions import Actor, Action, require_role, check_status_change, next_statuses, is_allowed
from models.enums import Role, OrderStatus, OrderType


def test_customer_cannot_set_preparing():
    with pytest.raises(ForbiddenError) as exc_info:
        check_status_change(Role.USER, OrderStatus.PENDING, OrderStatus.PREPARING)

    assert exc_info.value.status_code == 403
    assert "preparing" in exc_info.value.detail


@pytest.mark.parametrize("current", [OrderStatus.PENDING, OrderStatus.ACCEPTED])
def test_customer_can_cancel_before_cooking(current):
    check_status_change(Role.USER, current, OrderStatus.CANCELLED)


@pytest.mark.parametrize("current", [OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY])
def test_customer_cannot_cancel_once_cooking(current):
    with pytest.raises(InvalidStateError):
        check_status_change(Role.USER, current, OrderStatus.CANCELLED)


def test_restaurant_follows_the_graph():
    check_status_change(Role.RESTAURANT, OrderStatus.PENDING, OrderStatus.ACCEPTED)
    check_status_change(Role.RESTAURANT, OrderStatus.ACCEPTED, OrderStatus.PREPARING)
    check_status_change(Role.RESTAURANT, OrderStatus.PREPARING, OrderStatus.READY)

    with pytest.raises(InvalidStateError):
        check_status_change(Role.RESTAURANT, OrderStatus.PENDING, OrderStatus.READY)


def test_restaurant_cannot_deliver():
    with pytest.raises(ForbiddenError):
        check_status_change(Role.RESTAURANT, OrderStatus.READY, OrderStatus.DELIVERED)


def test_delivery_person_statuses():
    check_status_change(Role.DELIVERY, OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY)
    check_status_change(Role.DELIVERY, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED)

    with pytest.raises(ForbiddenError):
        check_status_change(Role.DELIVERY, OrderStatus.PENDING, OrderStatus.ACCEPTED)


def test_pickup_orders_skip_out_for_delivery():
    assert OrderStatus.DELIVERED in next_statuses(OrderStatus.READY, OrderType.PICKUP)
    assert OrderStatus.DELIVERED not in next_statuses(OrderStatus.READY, OrderType.DELIVERY)


def test_admin_may_skip_steps():
    check_status_change(Role.ADMIN, OrderStatus.PENDING, OrderStatus.DELIVERED)
    check_status_change(Role.ADMIN, OrderStatus.ACCEPTED, OrderStatus.HANDED_OVER)


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("current", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_orders_cannot_change(role, current):
    with pytest.raises((ForbiddenError, InvalidStateError)):
        check_status_change(role, current, OrderStatus.CANCELLED)


def test_action_roles():
    customer = Actor(id=1, role=Role.USER)
    owner = Actor(id=2, role=Role.RESTAURANT)

    assert is_allowed(customer, Action.CREATE_ORDER)
    assert is_allowed(owner, Action.MANAGE_MARKETPLACE)
    assert not is_allowed(owner, Action.PURCHASE_MARKETPLACE)

    with pytest.raises(ForbiddenError) as exc_info:
        require_role(customer, Action.CANCEL_ORDER)
    assert exc_info.value.detail == "Access denied: user cannot cancel order"
