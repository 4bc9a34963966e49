import pytest
from decimal import Decimal
from fastapi import BackgroundTasks
from core.exceptions import (NotFoundError, ForbiddenError, InvalidStateError, ValidationError,
                             UnsupportedFulfillmentError, InsufficientCoinsError, ServerError)
from models.enums import OrderStatus, OrderType, PaymentStatus, Availability, MarketplaceStatus
from models.marketplace_items import MarketplaceItem
from models.reward_accounts import RewardAccount
from schemas.order_schemas import CreateOrderRequest
from services.marketplace_service import build_listing
from services.order_service import OrderService, PaymentResult


def test_create_delivery_order(session, order, customer, restaurant):
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.customer_id == customer.id
    assert order.subtotal == Decimal("600.00")
    assert order.delivery_charge == Decimal("50.00")
    assert order.total == Decimal("650.00")
    assert order.contact_phone == "+9779841234567"
    assert sorted(line.name for line in order.items) == ["Chicken Momo", "Veg Chowmein"]


def test_create_pickup_order_has_no_delivery_fee(session, customer, restaurant, make_order):
    order = make_order(customer, restaurant, order_type=OrderType.PICKUP)

    assert order.delivery_charge == Decimal("0.00")
    assert order.total == Decimal("600.00")


def test_create_order_notifies_restaurant(session, customer, restaurant, as_actor):
    bg = BackgroundTasks()
    request = CreateOrderRequest(
        restaurant_id=restaurant.id,
        items=[{"menu_item_id": restaurant.menu[0].id, "quantity": 1}],
        delivery_address="Thamel, Kathmandu",
        contact_phone="9841234567"
    )

    OrderService.create_order(as_actor(customer), request, session, bg)

    assert len(bg.tasks) == 1
    assert str(bg.tasks[0].args[0]) == f"restaurant:{restaurant.id}"
    assert bg.tasks[0].args[1] == "order:created"


def test_create_order_unsupported_fulfillment(session, customer, restaurant, make_order):
    restaurant.supports_pickup = False
    session.commit()

    with pytest.raises(UnsupportedFulfillmentError) as exc_info:
        make_order(customer, restaurant, order_type=OrderType.PICKUP)

    assert exc_info.value.status_code == 400


def test_create_order_with_foreign_menu_item(session, customer, restaurant, other_restaurant, as_actor):
    request = CreateOrderRequest(
        restaurant_id=restaurant.id,
        items=[{"menu_item_id": other_restaurant.menu[0].id, "quantity": 1}],
        delivery_address="Thamel, Kathmandu",
        contact_phone="9841234567"
    )

    with pytest.raises(NotFoundError) as exc_info:
        OrderService.create_order(as_actor(customer), request, session, BackgroundTasks())

    assert "do not belong to this restaurant" in exc_info.value.detail


def test_create_order_for_deleted_restaurant(session, customer, restaurant, make_order):
    restaurant.is_deleted = True
    session.commit()

    with pytest.raises(NotFoundError):
        make_order(customer, restaurant)


def test_restaurant_cannot_place_orders(session, owner, restaurant, make_order):
    with pytest.raises(ForbiddenError):
        make_order(owner, restaurant)


def test_list_orders_is_scoped_by_role(session, customer, other_customer, owner, other_owner, restaurant,
                                       other_restaurant, admin, make_order, as_actor):
    make_order(customer, restaurant)
    make_order(customer, restaurant)
    make_order(other_customer, restaurant)

    mine, total = OrderService.list_orders(as_actor(customer), session)
    assert total == 2
    assert all(o.customer_id == customer.id for o in mine)

    _, total = OrderService.list_orders(as_actor(owner), session)
    assert total == 3

    _, total = OrderService.list_orders(as_actor(other_owner), session)
    assert total == 0

    _, total = OrderService.list_orders(as_actor(admin), session)
    assert total == 3


def test_list_orders_for_owner_without_restaurant(session, owner, as_actor):
    orders, total = OrderService.list_orders(as_actor(owner), session)

    assert orders == []
    assert total == 0


def test_list_orders_paginates_newest_first(session, customer, restaurant, make_order, as_actor):
    created = [make_order(customer, restaurant) for _ in range(3)]

    page, total = OrderService.list_orders(as_actor(customer), session, page=1, limit=2)

    assert total == 3
    assert [o.id for o in page] == [created[2].id, created[1].id]


def test_list_orders_rejects_unknown_status(session, customer, as_actor):
    with pytest.raises(ValidationError):
        OrderService.list_orders(as_actor(customer), session, status="lost")


def test_get_order_access(session, order, customer, other_customer, owner, other_owner, other_restaurant, as_actor):
    assert OrderService.get_order(as_actor(customer), order.id, session).id == order.id
    assert OrderService.get_order(as_actor(owner), order.id, session).id == order.id

    with pytest.raises(ForbiddenError):
        OrderService.get_order(as_actor(other_customer), order.id, session)
    with pytest.raises(ForbiddenError):
        OrderService.get_order(as_actor(other_owner), order.id, session)


def test_get_deleted_order(session, order, customer, as_actor):
    order.is_deleted = True
    session.commit()

    with pytest.raises(NotFoundError):
        OrderService.get_order(as_actor(customer), order.id, session)


def test_restaurant_moves_order_through_kitchen(session, order, owner, as_actor):
    bg = BackgroundTasks()

    updated = OrderService.transition_status(as_actor(owner), order.id, "accepted", session, bg, estimated_time_mins=25)

    assert updated.status == OrderStatus.ACCEPTED
    assert updated.estimated_time_mins == 25
    assert {str(task.args[0]) for task in bg.tasks} == {
        f"order:{order.id}", f"customer:{order.customer_id}", f"restaurant:{order.restaurant_id}"
    }
    assert all(task.args[1] == "order:status_updated" for task in bg.tasks)


def test_customer_cannot_set_preparing(session, order, customer, as_actor):
    with pytest.raises(ForbiddenError) as exc_info:
        OrderService.transition_status(as_actor(customer), order.id, "preparing", session, BackgroundTasks())

    assert exc_info.value.status_code == 403
    session.refresh(order)
    assert order.status == OrderStatus.PENDING


def test_customer_cancels_pending_order(session, order, customer, as_actor):
    updated = OrderService.transition_status(as_actor(customer), order.id, "cancelled", session, BackgroundTasks())

    assert updated.status == OrderStatus.CANCELLED
    assert updated.canceled_at is not None


def test_customer_cannot_cancel_while_preparing(session, order, customer, move_to, as_actor):
    move_to(order, OrderStatus.PREPARING)

    with pytest.raises(InvalidStateError):
        OrderService.transition_status(as_actor(customer), order.id, "cancelled", session, BackgroundTasks())


def test_other_restaurant_cannot_change_status(session, order, other_owner, other_restaurant, as_actor):
    with pytest.raises(ForbiddenError):
        OrderService.transition_status(as_actor(other_owner), order.id, "accepted", session, BackgroundTasks())


def test_unknown_status_value(session, order, owner, as_actor):
    with pytest.raises(ValidationError) as exc_info:
        OrderService.transition_status(as_actor(owner), order.id, "teleported", session, BackgroundTasks())

    assert exc_info.value.detail == "Invalid status"


def test_transition_on_missing_order(session, owner, restaurant, as_actor):
    with pytest.raises(NotFoundError):
        OrderService.transition_status(as_actor(owner), 999, "accepted", session, BackgroundTasks())


def test_rider_delivers_assigned_order(session, order, owner, rider, move_to, as_actor):
    move_to(order, OrderStatus.READY)
    OrderService.assign_delivery_person(as_actor(owner), order.id, rider.id, session, BackgroundTasks())

    OrderService.transition_status(as_actor(rider), order.id, "out_for_delivery", session, BackgroundTasks())
    delivered = OrderService.transition_status(as_actor(rider), order.id, "delivered", session, BackgroundTasks())

    assert delivered.status == OrderStatus.DELIVERED


def test_unassigned_rider_cannot_touch_order(session, order, rider, move_to, as_actor):
    move_to(order, OrderStatus.READY)

    with pytest.raises(ForbiddenError):
        OrderService.transition_status(as_actor(rider), order.id, "out_for_delivery", session, BackgroundTasks())


def test_admin_cannot_reopen_delivered_order(session, order, admin, move_to, as_actor):
    move_to(order, OrderStatus.DELIVERED)

    with pytest.raises(InvalidStateError):
        OrderService.transition_status(as_actor(admin), order.id, "pending", session, BackgroundTasks())


def test_cancel_pending_order_without_listing(session, order, owner, as_actor):
    bg = BackgroundTasks()

    canceled, item = OrderService.cancel_order(as_actor(owner), order.id, None, None, session, bg)

    assert item is None
    assert canceled.status == OrderStatus.CANCELLED
    assert canceled.is_canceled is True
    assert canceled.original_price == Decimal("650.00")
    assert canceled.discount_percent == Decimal("20")
    assert canceled.discounted_price == Decimal("520.00")
    assert session.query(MarketplaceItem).count() == 0
    assert "canceled_order:new" in [task.args[1] for task in bg.tasks]


def test_cancel_accepted_order_lists_it(session, accepted_order, owner, as_actor):
    bg = BackgroundTasks()

    canceled, item = OrderService.cancel_order(as_actor(owner), accepted_order.id, Decimal("30"), "Rider unavailable",
                                               session, bg)

    assert canceled.status == OrderStatus.CANCELLED
    assert canceled.discounted_price == Decimal("455.00")
    assert item.order_id == accepted_order.id
    assert item.marketplace_status == MarketplaceStatus.PENDING_DISCOUNT
    assert item.availability == Availability.AVAILABLE
    assert item.discounted_price == Decimal("455.00")
    assert "marketplace:new_item" in [task.args[1] for task in bg.tasks]


def test_failed_listing_rolls_back_cancellation(session, accepted_order, owner, monkeypatch, as_actor):
    def listing_without_expiry(order, cancel_reason, now):
        item = build_listing(order, cancel_reason, now)
        item.expires_at = None
        return item

    monkeypatch.setattr("services.order_service.build_listing", listing_without_expiry)
    bg = BackgroundTasks()

    with pytest.raises(ServerError):
        OrderService.cancel_order(as_actor(owner), accepted_order.id, Decimal("30"), None, session, bg)

    session.refresh(accepted_order)
    assert accepted_order.status == OrderStatus.ACCEPTED
    assert accepted_order.is_canceled is False
    assert accepted_order.canceled_at is None
    assert session.query(MarketplaceItem).count() == 0
    assert bg.tasks == []


def test_cancel_preparing_order_is_rejected(session, order, owner, move_to, as_actor):
    move_to(order, OrderStatus.PREPARING)

    with pytest.raises(InvalidStateError):
        OrderService.cancel_order(as_actor(owner), order.id, None, None, session, BackgroundTasks())

    session.refresh(order)
    assert order.status == OrderStatus.PREPARING
    assert order.is_canceled is False


def test_cancel_other_restaurants_order(session, order, other_owner, other_restaurant, as_actor):
    with pytest.raises(NotFoundError) as exc_info:
        OrderService.cancel_order(as_actor(other_owner), order.id, None, None, session, BackgroundTasks())

    assert exc_info.value.detail == "Order not found or cannot be canceled"


def test_assign_requires_delivery_role(session, order, owner, other_customer, as_actor):
    with pytest.raises(NotFoundError):
        OrderService.assign_delivery_person(as_actor(owner), order.id, other_customer.id, session, BackgroundTasks())


def test_assign_notifies_rider_and_restaurant(session, order, owner, rider, as_actor):
    bg = BackgroundTasks()

    updated = OrderService.assign_delivery_person(as_actor(owner), order.id, rider.id, session, bg)

    assert updated.delivery_person_id == rider.id
    assert {str(task.args[0]) for task in bg.tasks} == {f"delivery:{rider.id}", f"restaurant:{order.restaurant_id}"}


def test_apply_and_remove_coins(session, order, customer, as_actor):
    redemption, available = OrderService.apply_coins(as_actor(customer), order.id, 200, session)

    assert available == 500
    assert redemption.coins_used == 200
    assert redemption.coin_discount == Decimal("20.00")
    session.refresh(order)
    assert order.total == Decimal("630.00")
    assert order.coins_used == 200

    # balance is untouched until payment
    assert session.query(RewardAccount).filter_by(user_id=customer.id).one().coins == 500

    OrderService.remove_coins(as_actor(customer), order.id, session)
    session.refresh(order)
    assert order.total == Decimal("650.00")
    assert order.coins_used == 0
    assert order.coin_discount == Decimal("0.00")


def test_reapplying_coins_replaces_previous_redemption(session, order, customer, as_actor):
    OrderService.apply_coins(as_actor(customer), order.id, 300, session)
    OrderService.apply_coins(as_actor(customer), order.id, 100, session)

    session.refresh(order)
    assert order.coins_used == 100
    assert order.total == Decimal("640.00")


def test_apply_coins_over_balance(session, order, customer, as_actor):
    with pytest.raises(InsufficientCoinsError):
        OrderService.apply_coins(as_actor(customer), order.id, 600, session)


def test_apply_coins_on_someone_elses_order(session, order, other_customer, as_actor):
    with pytest.raises(NotFoundError):
        OrderService.apply_coins(as_actor(other_customer), order.id, 100, session)


def test_apply_coins_after_payment(session, order, customer, as_actor):
    OrderService.record_payment(order.id, "ref-1", "paid", session, BackgroundTasks())

    with pytest.raises(InvalidStateError):
        OrderService.apply_coins(as_actor(customer), order.id, 100, session)


def test_payment_deducts_coins_once(session, order, customer, as_actor):
    OrderService.apply_coins(as_actor(customer), order.id, 200, session)

    first = OrderService.record_payment(order.id, "khalti-123", "paid", session, BackgroundTasks())
    second = OrderService.record_payment(order.id, "khalti-123", "paid", session, BackgroundTasks())
    third = OrderService.record_payment(order.id, "khalti-456", "success", session, BackgroundTasks())

    assert first.result == PaymentResult.RECORDED
    assert second.result == PaymentResult.ALREADY_PROCESSED
    assert third.result == PaymentResult.ALREADY_PROCESSED
    assert first.order.payment_status == PaymentStatus.PAID

    account = session.query(RewardAccount).filter_by(user_id=customer.id).one()
    session.refresh(account)
    assert account.coins == 300
    assert account.meals_rescued == 0


def test_coins_are_held_by_other_unpaid_orders(session, order, customer, restaurant, make_order, as_actor):
    second = make_order(customer, restaurant)
    OrderService.apply_coins(as_actor(customer), order.id, 500, session)

    with pytest.raises(InsufficientCoinsError):
        OrderService.apply_coins(as_actor(customer), second.id, 100, session)

    OrderService.remove_coins(as_actor(customer), order.id, session)
    redemption, available = OrderService.apply_coins(as_actor(customer), second.id, 500, session)
    assert available == 500
    assert redemption.coins_used == 500


def test_payment_never_drives_coins_negative(session, order, customer, as_actor):
    OrderService.apply_coins(as_actor(customer), order.id, 500, session)
    account = session.query(RewardAccount).filter_by(user_id=customer.id).one()
    account.coins = 100
    session.commit()

    outcome = OrderService.record_payment(order.id, "khalti-777", "paid", session, BackgroundTasks())

    assert outcome.result == PaymentResult.RECORDED
    assert outcome.order.payment_status == PaymentStatus.PAID
    session.refresh(account)
    assert account.coins == 100


def test_payment_for_canceled_order_counts_rescued_meal(session, accepted_order, owner, customer, as_actor):
    OrderService.cancel_order(as_actor(owner), accepted_order.id, None, None, session, BackgroundTasks())

    OrderService.record_payment(accepted_order.id, "esewa-1", "paid", session, BackgroundTasks())
    OrderService.record_payment(accepted_order.id, "esewa-1", "paid", session, BackgroundTasks())

    account = session.query(RewardAccount).filter_by(user_id=customer.id).one()
    session.refresh(account)
    assert account.meals_rescued == 1


def test_failed_payment(session, order, customer):
    bg = BackgroundTasks()

    outcome = OrderService.record_payment(order.id, "ref-9", "failed", session, bg)

    assert outcome.result == PaymentResult.FAILURE_RECORDED
    assert outcome.order.payment_status == PaymentStatus.FAILED
    assert outcome.order.payment_reference is None
    assert [task.args[1] for task in bg.tasks] == ["order:payment_failed"]


def test_failure_never_downgrades_paid_order(session, order):
    OrderService.record_payment(order.id, "ref-1", "paid", session, BackgroundTasks())

    outcome = OrderService.record_payment(order.id, "ref-2", "failed", session, BackgroundTasks())

    assert outcome.result == PaymentResult.ALREADY_PROCESSED
    assert outcome.order.payment_status == PaymentStatus.PAID


def test_payment_for_missing_order(session):
    with pytest.raises(NotFoundError):
        OrderService.record_payment(404, "ref", "paid", session, BackgroundTasks())


def test_delete_order_is_soft(session, order, admin, customer, as_actor):
    OrderService.delete_order(as_actor(admin), order.id, session)

    session.refresh(order)
    assert order.is_deleted is True
    _, total = OrderService.list_orders(as_actor(customer), session)
    assert total == 0


def test_only_admin_deletes(session, order, customer, as_actor):
    with pytest.raises(ForbiddenError):
        OrderService.delete_order(as_actor(customer), order.id, session)
