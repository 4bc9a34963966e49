import os

# Must be set before the app (and its settings) are imported
os.environ["ENV"] = "testing"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["LOG_DIR"] = "logs/test"

import pytest
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
from fastapi import BackgroundTasks

from main import app
from core.config import settings
from core.database import Base
from core.permissions import Actor
from models.enums import Role, OrderStatus, OrderType
from models.users import User
from models.restaurants import Restaurant
from models.menu_items import MenuItem
from models.reward_accounts import RewardAccount
from models.orders import Order
from schemas.order_schemas import CreateOrderRequest
from services.order_service import OrderService
from utils.deps import get_db

# SYNC SQLite for testing (matches sync service layer)
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False}
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """
    Creates a fresh, empty database for each test.
    Uses SYNC SQLAlchemy to match the service layer.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
async def client(session: Session):
    """
    Yields an HTTP client that interacts with the app using the test database.
    The client is async (for FastAPI), but the DB session is sync.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass  # Session cleanup handled by session fixture

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def make_token(user: User) -> str:
    return jwt.encode({"id": user.id, "role": user.role.value, "type": "access"},
                      settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


def actor_of(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def create_user(session: Session, name: str, role: Role = Role.USER, coins: int | None = None) -> User:
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        phone_number="+9779841234567",
        role=role,
        is_active=True
    )
    session.add(user)
    session.commit()
    session.refresh(user)

    if coins is not None:
        session.add(RewardAccount(user_id=user.id, coins=coins, meals_rescued=0))
        session.commit()
    return user


@pytest.fixture
def customer(session):
    return create_user(session, "Sita Sharma", coins=500)


@pytest.fixture
def other_customer(session):
    return create_user(session, "Ram Thapa", coins=0)


@pytest.fixture
def owner(session):
    return create_user(session, "Momo House Owner", role=Role.RESTAURANT)


@pytest.fixture
def other_owner(session):
    return create_user(session, "Pizza Place Owner", role=Role.RESTAURANT)


@pytest.fixture
def rider(session):
    return create_user(session, "Hari Rider", role=Role.DELIVERY)


@pytest.fixture
def admin(session):
    return create_user(session, "Admin", role=Role.ADMIN)


@pytest.fixture
def restaurant(session, owner):
    """Restaurant with a two item menu: Chicken Momo (250) and Veg Chowmein (100)."""
    restaurant = Restaurant(
        owner_id=owner.id,
        name="Momo House",
        address="Thamel, Kathmandu",
        phone="+97714123456",
        cuisines=["Nepali", "Tibetan"],
        supports_delivery=True,
        supports_pickup=True
    )
    session.add(restaurant)
    session.commit()

    session.add_all([
        MenuItem(restaurant_id=restaurant.id, name="Chicken Momo", price=Decimal("250.00")),
        MenuItem(restaurant_id=restaurant.id, name="Veg Chowmein", price=Decimal("100.00")),
    ])
    session.commit()
    session.refresh(restaurant)
    return restaurant


@pytest.fixture
def other_restaurant(session, other_owner):
    restaurant = Restaurant(owner_id=other_owner.id, name="Pizza Place", cuisines=["Italian"])
    session.add(restaurant)
    session.commit()
    session.add(MenuItem(restaurant_id=restaurant.id, name="Margherita", price=Decimal("600.00")))
    session.commit()
    session.refresh(restaurant)
    return restaurant


def menu_ids(restaurant: Restaurant) -> dict[str, int]:
    return {item.name: item.id for item in restaurant.menu}


def place_order(session: Session, customer: User, restaurant: Restaurant,
                order_type: OrderType = OrderType.DELIVERY, momos: int = 2, chowmein: int = 1) -> Order:
    """2 x 250 + 1 x 100 = 600 subtotal, plus the delivery fee for delivery orders."""
    ids = menu_ids(restaurant)
    items = []
    if momos:
        items.append({"menu_item_id": ids["Chicken Momo"], "quantity": momos})
    if chowmein:
        items.append({"menu_item_id": ids["Veg Chowmein"], "quantity": chowmein})

    request = CreateOrderRequest(
        restaurant_id=restaurant.id,
        items=items,
        order_type=order_type,
        delivery_address="Thamel, Kathmandu",
        contact_phone="9841234567"
    )
    return OrderService.create_order(actor_of(customer), request, session, BackgroundTasks())


def set_status(session: Session, order: Order, status: OrderStatus) -> Order:
    order.status = status
    session.commit()
    session.refresh(order)
    return order


@pytest.fixture
def order(session, customer, restaurant):
    return place_order(session, customer, restaurant)


@pytest.fixture
def accepted_order(session, order):
    return set_status(session, order, OrderStatus.ACCEPTED)


@pytest.fixture
def make_order(session):
    def _make(customer, restaurant, **kwargs):
        return place_order(session, customer, restaurant, **kwargs)
    return _make


@pytest.fixture
def move_to(session):
    def _move(order, status):
        return set_status(session, order, status)
    return _move


@pytest.fixture
def headers():
    return auth_header


@pytest.fixture
def as_actor():
    return actor_of


@pytest.fixture
def session_factory(session):
    return TestingSessionLocal


@pytest.fixture
def other_session(session):
    """A second connection to the same database, like a concurrent request."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
