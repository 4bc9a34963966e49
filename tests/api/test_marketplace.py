import pytest
from fastapi import BackgroundTasks
from models.enums import OrderStatus
from services.marketplace_service import MarketplaceService


@pytest.fixture
def listing(session, order, owner, move_to, as_actor):
    move_to(order, OrderStatus.PREPARING)
    return MarketplaceService.create_item(as_actor(owner), order.id, None, None, session, BackgroundTasks())


async def test_create_listing(client, owner, order, move_to, headers):
    move_to(order, OrderStatus.ACCEPTED)

    response = await client.post("/marketplace/", json={"order_id": order.id, "discount_percent": 25},
                                 headers=headers(owner))

    assert response.status_code == 201
    body = response.json()
    assert body["order_id"] == order.id
    assert body["marketplace_status"] == "pending_discount"
    assert float(body["discounted_price"]) == 487.5
    assert body["restaurant"]["name"] == "Momo House"


async def test_create_listing_for_pending_order(client, owner, order, headers):
    response = await client.post("/marketplace/", json={"order_id": order.id}, headers=headers(owner))

    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state"


async def test_create_listing_twice(client, owner, listing, headers):
    response = await client.post("/marketplace/", json={"order_id": listing.order_id}, headers=headers(owner))

    assert response.status_code == 409


async def test_finalize_then_browse_and_buy(client, owner, other_customer, listing, headers):
    response = await client.post(f"/marketplace/{listing.id}/apply-discount", json={"discount_percent": 50},
                                 headers=headers(owner))
    assert response.status_code == 200
    assert response.json()["marketplace_status"] == "discounted"

    response = await client.get("/marketplace/")
    assert response.status_code == 200
    body = response.json()
    assert body["pagination"]["total"] == 1
    public_item = body["items"][0]
    assert float(public_item["discounted_price"]) == 325.0
    assert "original_customer_id" not in public_item

    response = await client.post(f"/marketplace/{listing.id}/purchase", headers=headers(other_customer))
    assert response.status_code == 200
    assert response.json()["item"]["availability"] == "sold"

    response = await client.post(f"/marketplace/{listing.id}/purchase", headers=headers(other_customer))
    assert response.status_code == 409


async def test_apply_discount_on_discounted_listing(client, owner, listing, headers):
    await client.post(f"/marketplace/{listing.id}/apply-discount", json={"discount_percent": 30}, headers=headers(owner))

    response = await client.post(f"/marketplace/{listing.id}/apply-discount", json={"discount_percent": 35},
                                 headers=headers(owner))

    assert response.status_code == 404


async def test_browse_filters_are_validated(client):
    response = await client.get("/marketplace/", params={"limit": 500})

    assert response.status_code == 422


async def test_get_listing(client, owner, listing, headers):
    response = await client.get(f"/marketplace/{listing.id}")
    assert response.status_code == 404

    await client.post(f"/marketplace/{listing.id}/apply-discount", json={"discount_percent": 30}, headers=headers(owner))

    response = await client.get(f"/marketplace/{listing.id}")
    assert response.status_code == 200
    assert response.json()["id"] == listing.id
    assert float(response.json()["discount_percent"]) == 30.0

    response = await client.get("/marketplace/9999")
    assert response.status_code == 404


async def test_restaurant_lists(client, owner, listing, headers):
    response = await client.get("/marketplace/my-items/list", headers=headers(owner))
    assert response.status_code == 200
    assert response.json()["items"][0]["original_customer_id"] == listing.original_customer_id

    response = await client.get("/marketplace/pending/list", headers=headers(owner))
    assert response.json()["pagination"]["total"] == 1

    response = await client.get("/marketplace/discounted/list", headers=headers(owner))
    assert response.json()["pagination"]["total"] == 0


async def test_customer_cannot_use_restaurant_lists(client, customer, listing, headers):
    response = await client.get("/marketplace/pending/list", headers=headers(customer))

    assert response.status_code == 403


async def test_my_cancellations(client, owner, customer, listing, headers):
    await client.post(f"/marketplace/{listing.id}/apply-discount", json={"discount_percent": 20}, headers=headers(owner))

    response = await client.get("/marketplace/my-cancellations", headers=headers(customer))

    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["restaurant_name"] == "Momo House"


async def test_update_listing(client, owner, listing, headers):
    response = await client.patch(f"/marketplace/{listing.id}", json={"availability": "expired"}, headers=headers(owner))

    assert response.status_code == 200
    assert response.json()["availability"] == "expired"


async def test_update_listing_needs_a_field(client, owner, listing, headers):
    response = await client.patch(f"/marketplace/{listing.id}", json={}, headers=headers(owner))

    assert response.status_code == 422


async def test_delete_listing(client, owner, listing, headers):
    response = await client.delete(f"/marketplace/{listing.id}", headers=headers(owner))
    assert response.status_code == 204

    response = await client.get(f"/marketplace/{listing.id}")
    assert response.status_code == 404
