from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from bomledger.core.errors import (
    ExpiredLotBlockError,
    InsufficientInventoryError,
    InvalidLotOverrideError,
)
from bomledger.models.component import Lot
from bomledger.services import inventory_service
from bomledger.services.audit_service import list_audit_events
from bomledger.services.lot_allocation_service import (
    LotCandidate,
    LotOverride,
    allocate_lots,
    plan_fefo_allocation,
)
from bomledger.services.settings_service import CompanySettings, get_company_settings
from bomledger.services.transaction_service import (
    ComponentLotOverride,
    create_adjustment_transaction,
    create_build_transaction,
    create_transfer_transaction,
)

ACTOR = "user-1"


def _candidates() -> list[LotCandidate]:
    return [
        LotCandidate(lot_id="lot-c", lot_number="C", expiry_date=None, available=Decimal("10")),
        LotCandidate(lot_id="lot-b", lot_number="B", expiry_date=date(2024, 9, 1), available=Decimal("10")),
        LotCandidate(lot_id="lot-a", lot_number="A", expiry_date=date(2024, 3, 1), available=Decimal("5")),
    ]


def test_fefo_takes_earliest_expiry_first_and_undated_last():
    plan = plan_fefo_allocation(_candidates(), Decimal("12"), component_id="cmp")

    assert [(selection.lot_number, selection.quantity) for selection in plan.selections] == [
        ("A", Decimal("5")),
        ("B", Decimal("7")),
    ]
    assert plan.allocated == Decimal("12")
    assert plan.unallocated == Decimal("0")


def test_fefo_breaks_expiry_ties_by_lot_id():
    candidates = [
        LotCandidate(lot_id="lot-2", lot_number="Two", expiry_date=date(2024, 5, 1), available=Decimal("4")),
        LotCandidate(lot_id="lot-1", lot_number="One", expiry_date=date(2024, 5, 1), available=Decimal("4")),
    ]

    plan = plan_fefo_allocation(candidates, Decimal("5"), component_id="cmp")

    assert [selection.lot_id for selection in plan.selections] == ["lot-1", "lot-2"]


def test_fefo_never_short_allocates():
    with pytest.raises(InsufficientInventoryError) as exc_info:
        plan_fefo_allocation(_candidates(), Decimal("26"), component_id="cmp")

    shortfall = exc_info.value.shortfalls[0]
    assert shortfall.available == Decimal("25")
    assert shortfall.shortage == Decimal("1")


def test_fefo_short_allocation_reports_unallocated_when_allowed():
    plan = plan_fefo_allocation(_candidates(), Decimal("30"), component_id="cmp", allow_insufficient=True)

    assert plan.allocated == Decimal("25")
    assert plan.unallocated == Decimal("5")


def test_manual_override_is_applied_before_fefo():
    plan = plan_fefo_allocation(
        _candidates(),
        Decimal("8"),
        component_id="cmp",
        overrides=[LotOverride(lot_id="lot-c", quantity=Decimal("6"))],
    )

    assert [(selection.lot_number, selection.quantity, selection.manual) for selection in plan.selections] == [
        ("C", Decimal("6"), True),
        ("A", Decimal("2"), False),
    ]


def test_manual_override_above_lot_balance_is_rejected():
    with pytest.raises(InsufficientInventoryError):
        plan_fefo_allocation(
            _candidates(),
            Decimal("8"),
            component_id="cmp",
            overrides=[LotOverride(lot_id="lot-a", quantity=Decimal("6"))],
        )


def _lot_tracked_setup(seed):
    company = seed.company()
    location = seed.location(company)
    resin = seed.component(company, "Resin", lot_tracked=True)
    seed.receive(company, resin, "5", lot_number="A", expiry=date(2024, 3, 1))
    seed.receive(company, resin, "10", lot_number="B", expiry=date(2024, 9, 1))
    seed.receive(company, resin, "10", lot_number="C")
    sku = seed.sku(company)
    seed.bom(company, sku, {resin.id: "1"})
    return company, location, resin, sku


def _lot_balances(db, company_id: str) -> dict[str, Decimal]:
    lots = db.execute(select(Lot).where(Lot.company_id == company_id)).scalars().all()
    balances = inventory_service.get_lot_balances(db, company_id=company_id, lot_ids=[lot.id for lot in lots])
    return {lot.lot_number: balances[lot.id] for lot in lots}


def test_build_consumes_lots_fefo(db, seed):
    company, _, _, sku = _lot_tracked_setup(seed)

    result = create_build_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        sku_id=sku.id,
        units_to_build=12,
        transaction_date=date(2024, 2, 1),
    )

    assert len(result.transaction.lines) == 2
    assert _lot_balances(db, company.id) == {"A": Decimal("0"), "B": Decimal("3"), "C": Decimal("10")}


def test_lot_override_from_another_tenant_is_rejected(db, seed):
    company, _, _, _ = _lot_tracked_setup(seed)
    foreign_lot = db.execute(select(Lot).where(Lot.company_id == company.id)).scalars().first()

    other = seed.company("Globex")
    seed.location(other)
    other_resin = seed.component(other, "Resin", lot_tracked=True)
    seed.receive(other, other_resin, "20", lot_number="G1")
    other_sku = seed.sku(other)
    seed.bom(other, other_sku, {other_resin.id: "1"})

    with pytest.raises(InvalidLotOverrideError) as exc_info:
        create_build_transaction(
            db,
            company_id=other.id,
            actor_user_id=ACTOR,
            sku_id=other_sku.id,
            units_to_build=2,
            transaction_date=date(2024, 2, 1),
            lot_overrides=[
                ComponentLotOverride(
                    component_id=other_resin.id,
                    allocations=[LotOverride(lot_id=foreign_lot.id, quantity=Decimal("2"))],
                )
            ],
        )

    assert "not found or access denied" in exc_info.value.errors[0]
    assert _lot_balances(db, other.id) == {"G1": Decimal("20")}


def _globex_short_of_resin(seed, *, lot_tracked: bool = True):
    other = seed.company("Globex")
    main = seed.location(other)
    resin = seed.component(other, "Resin", lot_tracked=lot_tracked)
    seed.receive(other, resin, "1", lot_number="G1" if lot_tracked else None)
    sku = seed.sku(other)
    seed.bom(other, sku, {resin.id: "1"})
    return other, main, resin, sku


def test_foreign_lot_override_rejected_even_when_stock_is_short(db, seed):
    company, _, _, _ = _lot_tracked_setup(seed)
    foreign_lot = db.execute(select(Lot).where(Lot.company_id == company.id)).scalars().first()
    other, _, resin, sku = _globex_short_of_resin(seed)

    with pytest.raises(InvalidLotOverrideError) as exc_info:
        create_build_transaction(
            db,
            company_id=other.id,
            actor_user_id=ACTOR,
            sku_id=sku.id,
            units_to_build=10,
            transaction_date=date(2024, 2, 1),
            lot_overrides=[
                ComponentLotOverride(
                    component_id=resin.id,
                    allocations=[LotOverride(lot_id=foreign_lot.id, quantity=Decimal("10"))],
                )
            ],
        )

    assert "not found or access denied" in exc_info.value.errors[0]


def test_foreign_lot_override_rejected_on_short_transfer(db, seed):
    company, _, _, _ = _lot_tracked_setup(seed)
    foreign_lot = db.execute(select(Lot).where(Lot.company_id == company.id)).scalars().first()
    other, main, resin, _ = _globex_short_of_resin(seed)
    overflow = seed.location(other, "Overflow", is_default=False)

    with pytest.raises(InvalidLotOverrideError):
        create_transfer_transaction(
            db,
            company_id=other.id,
            actor_user_id=ACTOR,
            component_id=resin.id,
            quantity=Decimal("10"),
            from_location_id=main.id,
            to_location_id=overflow.id,
            transaction_date=date(2024, 2, 1),
            lot_overrides=[LotOverride(lot_id=foreign_lot.id, quantity=Decimal("10"))],
        )

    assert _lot_balances(db, other.id) == {"G1": Decimal("1")}


def test_foreign_lot_override_rejected_for_untracked_component(db, seed):
    company, _, _, _ = _lot_tracked_setup(seed)
    foreign_lot = db.execute(select(Lot).where(Lot.company_id == company.id)).scalars().first()
    other, _, resin, _ = _globex_short_of_resin(seed, lot_tracked=False)

    with pytest.raises(InvalidLotOverrideError):
        create_adjustment_transaction(
            db,
            company_id=other.id,
            actor_user_id=ACTOR,
            component_id=resin.id,
            quantity_change=Decimal("-5"),
            reason="damaged",
            transaction_date=date(2024, 2, 1),
            lot_overrides=[LotOverride(lot_id=foreign_lot.id, quantity=Decimal("5"))],
        )


def test_lot_override_for_other_component_is_rejected(db, seed):
    company, location, resin, _ = _lot_tracked_setup(seed)
    glue = seed.component(company, "Glue", lot_tracked=True)
    seed.receive(company, glue, "5", lot_number="GL-1")
    glue_lot = db.execute(select(Lot).where(Lot.component_id == glue.id)).scalar_one()

    with pytest.raises(InvalidLotOverrideError):
        allocate_lots(
            db,
            company_id=company.id,
            component=resin,
            location_id=location.id,
            quantity_needed=Decimal("2"),
            as_of=date(2024, 2, 1),
            company_settings=CompanySettings(),
            overrides=[LotOverride(lot_id=glue_lot.id, quantity=Decimal("2"))],
        )


def test_expired_lot_blocks_allocation(db, seed):
    company, _, _, sku = _lot_tracked_setup(seed)

    # Lot A expires on the transaction date itself.
    with pytest.raises(ExpiredLotBlockError) as exc_info:
        create_build_transaction(
            db,
            company_id=company.id,
            actor_user_id=ACTOR,
            sku_id=sku.id,
            units_to_build=2,
            transaction_date=date(2024, 3, 1),
        )

    assert exc_info.value.override_permitted is True
    assert [lot["lot_number"] for lot in exc_info.value.lots] == ["A"]
    assert _lot_balances(db, company.id)["A"] == Decimal("5")


def test_expired_lot_override_is_audited(db, seed):
    company, _, _, sku = _lot_tracked_setup(seed)

    result = create_build_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        sku_id=sku.id,
        units_to_build=2,
        transaction_date=date(2024, 4, 1),
        allow_expired_lots=True,
    )

    assert [lot["lot_number"] for lot in result.expired_lots_used] == ["A"]
    [audit] = list_audit_events(db, company_id=company.id, action="lot.expired_override")
    assert audit.target_id == result.transaction.id
    assert audit.metadata_json["lots"][0]["lot_number"] == "A"


def test_expired_lot_override_denied_by_tenant_policy(db, seed):
    company, _, _, sku = _lot_tracked_setup(seed)
    company.settings = {"allow_expired_lot_override": False}
    db.commit()
    assert get_company_settings(db, company_id=company.id).allow_expired_lot_override is False

    with pytest.raises(ExpiredLotBlockError) as exc_info:
        create_build_transaction(
            db,
            company_id=company.id,
            actor_user_id=ACTOR,
            sku_id=sku.id,
            units_to_build=2,
            transaction_date=date(2024, 4, 1),
            allow_expired_lots=True,
        )

    assert exc_info.value.override_permitted is False


def test_expired_lots_allowed_when_enforcement_is_off(db, seed):
    company, _, _, sku = _lot_tracked_setup(seed)
    company.settings = {"enforce_lot_expiry": False}
    db.commit()

    result = create_build_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        sku_id=sku.id,
        units_to_build=2,
        transaction_date=date(2024, 4, 1),
    )

    assert result.transaction.status == "approved"


def test_negative_adjustment_can_write_off_expired_lot(db, seed):
    company, _, resin, _ = _lot_tracked_setup(seed)
    lot_a = db.execute(select(Lot).where(Lot.lot_number == "A")).scalar_one()

    create_adjustment_transaction(
        db,
        company_id=company.id,
        actor_user_id=ACTOR,
        component_id=resin.id,
        quantity_change=Decimal("-5"),
        reason="Expired write-off",
        transaction_date=date(2024, 4, 1),
        lot_overrides=[LotOverride(lot_id=lot_a.id, quantity=Decimal("5"))],
    )

    assert _lot_balances(db, company.id)["A"] == Decimal("0")
