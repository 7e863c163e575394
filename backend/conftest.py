"""Shared fixtures: a fresh in-memory database per test and small factories."""
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy.orm import sessionmaker

import marketplace.models  # noqa: F401
from marketplace.db.base import Base
from marketplace.db.session import build_engine
from marketplace.models.product import Batch, Product, ProductType
from marketplace.models.user import User, UserRole
from marketplace.services.notification_hub import NotificationHub


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def channel():
    return NotificationHub()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=UserRole.SUPPLIER.value, approved=True, company_name=None, **fields):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            role=role,
            company_name=company_name or f"Company {counter['n']}",
            is_approved=approved,
            profile_complete=True,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN.value, company_name="MedLink Admin")


@pytest.fixture
def seller(make_user):
    return make_user(role=UserRole.IMPORTER.value, company_name="Addis Pharma Import")


@pytest.fixture
def buyer(make_user):
    return make_user(role=UserRole.SUPPLIER.value, company_name="Bole Supplies")


@pytest.fixture
def facility(make_user):
    return make_user(role=UserRole.HEALTHCARE_FACILITY.value, company_name="Tikur Anbessa Clinic")


@pytest.fixture
def make_product(db):
    def _make(owner, product_type=ProductType.DRUG.value, name="Amoxicillin 500mg", **fields):
        product = Product(
            product_type=product_type,
            name=name,
            owner_id=owner.id,
            owner_name=owner.display_name,
            original_lister_id=owner.id,
            original_lister_name=owner.display_name,
            category=fields.pop("category", "Antibiotics" if product_type == ProductType.DRUG.value else "Diagnostics"),
            is_active=True,
            **fields,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def make_batch(db):
    base_time = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(product, quantity=10, price="25.00", expiry=None, added_at=None, owner=None, **fields):
        counter["n"] += 1
        owner = owner or product.owner
        batch = Batch(
            product_id=product.id,
            product_type=product.product_type,
            current_owner_id=owner.id,
            current_owner_name=owner.display_name,
            quantity=quantity,
            cost_price=Decimal(str(price)) * Decimal("0.8") if price is not None else None,
            selling_price=Decimal(str(price)) if price is not None else None,
            expiry_date=expiry,
            added_at=added_at or base_time + timedelta(hours=counter["n"]),
            **fields,
        )
        db.add(batch)
        db.commit()
        db.refresh(batch)
        return batch

    return _make


@pytest.fixture
def future():
    def _future(days):
        return date.today() + timedelta(days=days)

    return _future
