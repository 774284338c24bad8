"""
Pytest fixtures: a throwaway SQLite database per test, seeded shop, user and
product helpers, and an API client bound to the same database.
"""
import pytest
from decimal import Decimal
from uuid import uuid4

from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.core import Base, get_db
from app.core.database import create_db_engine
from app.api.auth import get_current_active_user, get_password_hash
from app.models import AppUser, Product, Shop
from app.schemas.product import ProductCreate
from app.services import ProductService


@pytest.fixture
def engine(tmp_path):
    # File database so worker threads get their own connections
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'shopstock_test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def shop(db):
    shop = Shop(code="MAIN", name="Main Street Store")
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def other_shop(db):
    shop = Shop(code="MALL", name="Mall Kiosk")
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def user(db):
    user = AppUser(
        username="clerk",
        email="clerk@example.com",
        full_name="Store Clerk",
        hashed_password=get_password_hash("secret"),
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def bare_product(db, shop):
    """Product row with no stock counter yet"""
    product = Product(shop_id=shop.id, sku="BARE-1", name="Bare Product", selling_price=Decimal("10.00"))
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def make_product(db, shop, user):
    """Create a product with opening stock through ProductService"""
    def _make(sku=None, stock=0, reorder_level=None, selling_price="10.00", shop_id=None, name="Test Product", **extra):
        data = ProductCreate(
            sku=sku or f"SKU-{uuid4().hex[:6]}",
            name=name,
            selling_price=Decimal(selling_price),
            stock_quantity=stock,
            reorder_level=reorder_level,
            **extra
        )
        product, result = ProductService.create_product(db, data, shop_id or shop.id, user.id)
        assert result.ok, result.error
        return product
    return _make


@pytest.fixture
def client(session_factory, user):
    from main import app

    user_id = user.id

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_current_user(db=Depends(get_db)):
        return db.get(AppUser, user_id)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_active_user] = override_current_user
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
