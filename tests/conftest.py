import os
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import bomledger.models  # noqa: F401
from bomledger.core.deps import get_db
from bomledger.db.base import Base
from bomledger.db.session import unit_of_work
from bomledger.main import app
from bomledger.models.company import Company
from bomledger.models.component import Component
from bomledger.models.location import Location
from bomledger.models.sku import SKU, BOMVersion
from bomledger.models.transaction import Transaction
from bomledger.services import bom_service
from bomledger.services.transaction_service import create_receipt_transaction

ACTOR = "user-1"


def _make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def test_context():
    engine = _make_engine()
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    engine = _make_engine()
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


class Seed:
    """Small builders for service-level tests; every call commits."""

    def __init__(self, db):
        self.db = db

    def company(self, name: str = "Acme", settings: dict | None = None) -> Company:
        with unit_of_work(self.db):
            company = Company(name=name, settings=settings)
            self.db.add(company)
        return company

    def location(self, company: Company, name: str = "Main", *, is_default: bool = True) -> Location:
        with unit_of_work(self.db):
            location = Location(company_id=company.id, name=name, is_default=is_default)
            self.db.add(location)
        return location

    def component(
        self,
        company: Company,
        name: str,
        *,
        cost: str = "1.00",
        lot_tracked: bool = False,
    ) -> Component:
        with unit_of_work(self.db):
            component = Component(
                company_id=company.id,
                name=name,
                sku_code=name.upper().replace(" ", "-"),
                cost_per_unit=Decimal(cost),
                is_lot_tracked=lot_tracked,
            )
            self.db.add(component)
        return component

    def sku(self, company: Company, code: str = "SKU-1") -> SKU:
        with unit_of_work(self.db):
            sku = SKU(company_id=company.id, name=f"Product {code}", internal_code=code)
            self.db.add(sku)
        return sku

    def bom(
        self,
        company: Company,
        sku: SKU,
        lines: dict[str, str],
        *,
        start: date = date(2024, 1, 1),
        name: str = "v1",
        active: bool = True,
    ) -> BOMVersion:
        with unit_of_work(self.db):
            version = bom_service.create_bom_version(
                self.db,
                company_id=company.id,
                sku_id=sku.id,
                actor_user_id=ACTOR,
                version_name=name,
                effective_start_date=start,
                is_active=active,
                lines=[
                    bom_service.BOMLineInput(component_id=component_id, quantity_per_unit=Decimal(quantity))
                    for component_id, quantity in lines.items()
                ],
            )
        return version

    def receive(
        self,
        company: Company,
        component: Component,
        quantity: str,
        *,
        location: Location | None = None,
        lot_number: str | None = None,
        expiry: date | None = None,
        on: date = date(2024, 1, 1),
    ) -> Transaction:
        return create_receipt_transaction(
            self.db,
            company_id=company.id,
            actor_user_id=ACTOR,
            component_id=component.id,
            quantity=Decimal(quantity),
            transaction_date=on,
            location_id=location.id if location else None,
            lot_number=lot_number,
            expiry_date=expiry,
        ).transaction


@pytest.fixture()
def seed(db):
    return Seed(db)
