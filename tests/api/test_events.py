import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from main import app
from routers.events import can_subscribe
from services.notification_service import Topic


@pytest.fixture
def opened_sessions(session_factory, monkeypatch):
    """Sessions the websocket opens for its authorization checks."""
    opened = []

    def factory():
        db = session_factory()
        opened.append(db)
        return db

    monkeypatch.setattr("routers.events.SessionLocal", factory)
    return opened


@pytest.fixture
def ws_client(opened_sessions):
    return TestClient(app)


def test_can_subscribe(session, order, customer, other_customer, owner, restaurant, rider, admin, as_actor):
    assert can_subscribe(as_actor(customer), Topic.customer(customer.id), session)
    assert can_subscribe(as_actor(customer), Topic.order(order.id), session)
    assert can_subscribe(as_actor(customer), Topic.marketplace(), session)
    assert not can_subscribe(as_actor(customer), Topic.customer(other_customer.id), session)
    assert not can_subscribe(as_actor(other_customer), Topic.order(order.id), session)

    assert can_subscribe(as_actor(owner), Topic.restaurant(restaurant.id), session)
    assert not can_subscribe(as_actor(customer), Topic.restaurant(restaurant.id), session)

    assert can_subscribe(as_actor(rider), Topic.delivery_person(rider.id), session)
    assert can_subscribe(as_actor(admin), Topic.restaurant(restaurant.id), session)


def test_websocket_rejects_bad_token(ws_client):
    with pytest.raises(WebSocketDisconnect):
        with ws_client.websocket_connect("/events?token=nope&topics=marketplace") as websocket:
            websocket.receive_json()


def test_websocket_rejects_foreign_topic(ws_client, customer, other_customer, headers):
    token = headers(customer)["Authorization"].split(" ")[1]

    with pytest.raises(WebSocketDisconnect):
        with ws_client.websocket_connect(f"/events?token={token}&topics=customer:{other_customer.id}") as websocket:
            websocket.receive_json()


def test_websocket_rejects_malformed_topic(ws_client, customer, headers):
    token = headers(customer)["Authorization"].split(" ")[1]

    with pytest.raises(WebSocketDisconnect):
        with ws_client.websocket_connect(f"/events?token={token}&topics=order:abc") as websocket:
            websocket.receive_json()


def test_websocket_releases_its_session_before_streaming(ws_client, opened_sessions, order, customer, headers):
    token = headers(customer)["Authorization"].split(" ")[1]

    with ws_client.websocket_connect(f"/events?token={token}&topics=order:{order.id},marketplace"):
        assert len(opened_sessions) == 1
        assert not opened_sessions[0].in_transaction()
