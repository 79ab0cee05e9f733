from datetime import date
from decimal import Decimal

import pytest

from bomledger.core.errors import InventoryValidationError
from bomledger.models.transaction import TransactionStatus
from bomledger.services import buildable_service, catalog_service, inventory_service
from bomledger.services.transaction_service import (
    create_adjustment_transaction,
    create_build_transaction,
    create_receipt_transaction,
)

ACTOR = "user-1"


def test_on_hand_counts_only_approved_lines(db, seed):
    company = seed.company()
    seed.location(company)
    part = seed.component(company, "Part")
    missing = seed.component(company, "Never Received")
    seed.receive(company, part, "10")
    create_receipt_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        component_id=part.id,
        quantity=Decimal("99"),
        transaction_date=date(2024, 1, 2),
        status=TransactionStatus.DRAFT,
    )

    quantities = inventory_service.get_component_quantities(
        db, company_id=company.id, component_ids=[part.id, missing.id]
    )

    assert quantities == {part.id: Decimal("10"), missing.id: Decimal("0")}


def test_on_hand_is_scoped_by_location_and_tenant(db, seed):
    company = seed.company("Acme")
    other = seed.company("Globex")
    main = seed.location(company, "Main")
    overflow = seed.location(company, "Overflow", is_default=False)
    seed.location(other, "Main")
    part = seed.component(company, "Part")
    seed.receive(company, part, "7", location=main)
    seed.receive(company, part, "3", location=overflow)

    assert inventory_service.get_component_quantity(db, company_id=company.id, component_id=part.id) == Decimal("10")
    assert inventory_service.get_component_quantity(
        db, company_id=company.id, component_id=part.id, location_id=overflow.id
    ) == Decimal("3")
    assert inventory_service.get_component_quantity(db, company_id=other.id, component_id=part.id) == Decimal("0")
    assert inventory_service.get_component_quantities_by_location(
        db, company_id=company.id, component_id=part.id
    ) == {main.id: Decimal("7"), overflow.id: Decimal("3")}


def test_max_buildable_ignores_zero_quantity_lines(db, seed):
    company = seed.company()
    seed.location(company)
    bottle = seed.component(company, "Bottle")
    sticker = seed.component(company, "Sticker")
    sku = seed.sku(company)
    seed.bom(company, sku, {bottle.id: "2", sticker.id: "0"})
    seed.receive(company, bottle, "10")

    assert buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id) == 5


def test_max_buildable_is_none_without_active_bom(db, seed):
    company = seed.company()
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    seed.bom(company, sku, {part.id: "1"}, active=False)

    assert buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id) is None


def test_max_buildable_floors_and_never_goes_negative(db, seed):
    company = seed.company()
    seed.location(company)
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    seed.bom(company, sku, {part.id: "3"})
    seed.receive(company, part, "2")
    create_adjustment_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        component_id=part.id,
        quantity_change=Decimal("-5"),
        reason="Damaged",
        transaction_date=date(2024, 1, 3),
        allow_insufficient_inventory=True,
    )

    assert inventory_service.get_component_quantity(db, company_id=company.id, component_id=part.id) == Decimal("-3")
    assert buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id) == 0


def test_max_buildable_moves_with_stock(db, seed):
    company = seed.company()
    seed.location(company)
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    seed.bom(company, sku, {part.id: "2"})
    seed.receive(company, part, "5")
    before = buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id)

    seed.receive(company, part, "4")
    after_receipt = buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id)

    create_build_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        sku_id=sku.id,
        units_to_build=3,
        transaction_date=date(2024, 2, 1),
    )
    after_build = buildable_service.max_buildable(db, company_id=company.id, sku_id=sku.id)

    assert (before, after_receipt, after_build) == (2, 4, 1)


def test_batch_buildable_matches_single_calls(db, seed):
    company = seed.company()
    seed.location(company)
    part = seed.component(company, "Part")
    first = seed.sku(company, "SKU-A")
    second = seed.sku(company, "SKU-B")
    no_bom = seed.sku(company, "SKU-C")
    seed.bom(company, first, {part.id: "1"})
    seed.bom(company, second, {part.id: "4"})
    seed.receive(company, part, "9")

    batch = buildable_service.max_buildable_for_skus(
        db, company_id=company.id, sku_ids=[first.id, second.id, no_bom.id]
    )

    assert batch == {first.id: 9, second.id: 2, no_bom.id: None}
    for sku_id, units in batch.items():
        assert buildable_service.max_buildable(db, company_id=company.id, sku_id=sku_id) == units


def test_limiting_components_most_constraining_first(db, seed):
    company = seed.company()
    seed.location(company)
    bottle = seed.component(company, "Bottle")
    cap = seed.component(company, "Cap")
    sku = seed.sku(company)
    seed.bom(company, sku, {bottle.id: "1", cap.id: "2"})
    seed.receive(company, bottle, "10")
    seed.receive(company, cap, "6")

    limiting = buildable_service.limiting_components(db, company_id=company.id, sku_id=sku.id)

    assert [(item.component_name, item.buildable_units) for item in limiting] == [("Cap", 3), ("Bottle", 10)]


def test_check_insufficient_inventory_lists_shortfalls(db, seed):
    company = seed.company()
    seed.location(company)
    bottle = seed.component(company, "Bottle")
    cap = seed.component(company, "Cap")
    sku = seed.sku(company)
    version = seed.bom(company, sku, {bottle.id: "1", cap.id: "2"})
    seed.receive(company, bottle, "10")
    seed.receive(company, cap, "5")

    shortfalls = inventory_service.check_insufficient_inventory(
        db, company_id=company.id, bom_version=version, units_to_build=4
    )

    assert len(shortfalls) == 1
    assert shortfalls[0].component_id == cap.id
    assert shortfalls[0].required == Decimal("8")
    assert shortfalls[0].shortage == Decimal("3")


def test_reorder_and_expiry_status():
    assert inventory_service.calculate_reorder_status(Decimal("5"), 0) == "ok"
    assert inventory_service.calculate_reorder_status(Decimal("10"), 10) == "critical"
    assert inventory_service.calculate_reorder_status(Decimal("14"), 10, 1.5) == "warning"
    assert inventory_service.calculate_reorder_status(Decimal("16"), 10, 1.5) == "ok"

    today = date(2024, 6, 1)
    assert inventory_service.calculate_expiry_status(None, as_of=today, warning_days=30) == "ok"
    assert inventory_service.calculate_expiry_status(date(2024, 5, 31), as_of=today, warning_days=30) == "expired"
    assert inventory_service.calculate_expiry_status(today, as_of=today, warning_days=30) == "expired"
    assert inventory_service.calculate_expiry_status(date(2024, 6, 2), as_of=today, warning_days=30) == "expiring_soon"
    assert inventory_service.calculate_expiry_status(date(2024, 6, 20), as_of=today, warning_days=30) == "expiring_soon"
    assert inventory_service.calculate_expiry_status(date(2024, 9, 1), as_of=today, warning_days=30) == "ok"


def test_component_in_active_bom_cannot_be_deactivated(db, seed):
    company = seed.company()
    seed.location(company)
    bolt = seed.component(company, "Bolt")
    seed.bom(company, seed.sku(company, "WIDGET"), {bolt.id: "2"})

    with pytest.raises(InventoryValidationError) as exc:
        catalog_service.update_component(
            db, company_id=company.id, component_id=bolt.id, changes={"is_active": False}
        )
    db.rollback()

    assert exc.value.details == {"skus": ["WIDGET"]}
    db.refresh(bolt)
    assert bolt.is_active is True


def test_component_outside_active_boms_can_be_deactivated(db, seed):
    company = seed.company()
    seed.location(company)
    bolt = seed.component(company, "Bolt")
    seed.bom(company, seed.sku(company, "OLD"), {bolt.id: "2"}, active=False)

    updated = catalog_service.update_component(
        db, company_id=company.id, component_id=bolt.id, changes={"is_active": False}
    )

    assert updated.is_active is False
