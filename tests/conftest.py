"""Shared test fixtures: isolated in-memory database, API client, catalog seed."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from models import (
    Base, Brand, ExteriorColor, Order, VehicleVariant, get_db,
)
from store import SqlDiscountStore, SqlNotifier
from workflow import DiscountApprovalWorkflow

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture()
def db_engine():
    """A fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(db_engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_engine, monkeypatch):
    """TestClient bound to the per-test database; VIN decode never hits the network."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    async def fake_decode_vin(vin):
        return {"make": "TOYOTA", "model_year": 2024}

    monkeypatch.setattr(main, "decode_vin", fake_decode_vin)
    main.app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager: startup (which touches the real DB) stays off
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture()
def workflow(db):
    return DiscountApprovalWorkflow(SqlDiscountStore(db), SqlNotifier(db), clock=lambda: NOW)


@pytest.fixture()
def order(db):
    o = Order(customer_name="Aisha Rahman", salesperson_id="sp-001", total_amount=Decimal("100000"))
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


@pytest.fixture()
def catalog(db):
    """One brand, one variant, two colors."""
    brand = Brand(code="TOYOTA", name="Toyota")
    db.add(brand)
    db.flush()
    variant = VehicleVariant(
        brand_id=brand.id, model_name="Land Cruiser", name="GXR", year=2024,
        current_price=Decimal("250000"),
    )
    white = ExteriorColor(name="Pearl White", hex_code="#F8F8FF")
    black = ExteriorColor(name="Attitude Black", hex_code="#0A0A0A")
    db.add_all([variant, white, black])
    db.commit()
    return {"brand": brand, "variant": variant, "white": white, "black": black}
