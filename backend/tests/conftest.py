import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_ENABLED"] = "0"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import auth
import models
from database import Base, get_db, init_restaurant_data
from main import app
from schemas import OrderItemCreate

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    init_restaurant_data(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def menu(db):
    """Burger (kitchen), Coffee (cafe), Water (water-station) and an unavailable Soup"""
    departments = {d.name: d for d in db.query(models.Department).all()}
    items = {
        "burger": models.MenuItem(name="Burger", price=Decimal("12.50"), department=departments["kitchen"]),
        "coffee": models.MenuItem(name="Coffee", price=Decimal("3.00"), department=departments["cafe"]),
        "water": models.MenuItem(name="Water", price=Decimal("1.00"), department=departments["water-station"]),
        "soup": models.MenuItem(name="Soup", price=Decimal("6.00"), available=False,
                                department=departments["kitchen"]),
    }
    db.add_all(items.values())
    db.commit()
    return items


@pytest.fixture
def table(db):
    return db.query(models.Table).filter(models.Table.number == 1).first()


@pytest.fixture
def small_table(db):
    table = db.query(models.Table).filter(models.Table.number == 1).first()
    table.capacity = 2
    db.commit()
    return table


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers():
    token = auth.create_access_token({"sub": "alice", "role": "waiter"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def cart_item():
    def make(menu_item, quantity=1, unit_price=None, selections=None, notes=None):
        return OrderItemCreate(
            menu_item_id=menu_item.id,
            quantity=quantity,
            unit_price=unit_price,
            selections=selections,
            notes=notes,
        )
    return make


@pytest.fixture
def file_sessions(tmp_path):
    """
    Session factory over a SQLite file, so several terminals (threads or
    separate sessions) each get their own connection. Seeds the tables,
    departments, a Burger (kitchen) and a Coffee (cafe).
    """
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'lifecycle.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

    seed = factory()
    init_restaurant_data(seed)
    departments = {d.name: d for d in seed.query(models.Department).all()}
    seed.add_all([
        models.MenuItem(name="Burger", price=Decimal("12.50"), department=departments["kitchen"]),
        models.MenuItem(name="Coffee", price=Decimal("3.00"), department=departments["cafe"]),
    ])
    seed.commit()
    seed.close()
    try:
        yield factory
    finally:
        file_engine.dispose()
