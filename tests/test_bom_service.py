from datetime import date
from decimal import Decimal

import pytest

from bomledger.core.errors import (
    BOMVersionLockedError,
    InventoryValidationError,
    NoBOMEffectiveError,
    NotFoundError,
    VersionConflictError,
)
from bomledger.services import bom_service

ACTOR = "user-1"


def _two_versions(seed):
    company = seed.company()
    seed.location(company)
    bottle = seed.component(company, "Bottle", cost="2.50")
    cap = seed.component(company, "Cap", cost="3.00")
    sku = seed.sku(company)
    v1 = seed.bom(company, sku, {bottle.id: "2", cap.id: "2"}, start=date(2024, 1, 1), name="v1")
    v2 = seed.bom(company, sku, {bottle.id: "3", cap.id: "1"}, start=date(2024, 6, 1), name="v2")
    return company, sku, v1, v2


def test_resolve_active_bom_picks_version_covering_date(db, seed):
    company, sku, v1, v2 = _two_versions(seed)

    before_handoff = bom_service.resolve_active_bom(
        db, company_id=company.id, sku_id=sku.id, as_of=date(2024, 5, 31)
    )
    on_handoff = bom_service.resolve_active_bom(
        db, company_id=company.id, sku_id=sku.id, as_of=date(2024, 6, 1)
    )
    later = bom_service.resolve_active_bom(db, company_id=company.id, sku_id=sku.id, as_of=date(2030, 1, 1))

    assert before_handoff.id == v1.id
    assert on_handoff.id == v2.id
    assert later.id == v2.id


def test_resolve_active_bom_raises_before_first_version(db, seed):
    company, sku, _, _ = _two_versions(seed)

    with pytest.raises(NoBOMEffectiveError) as exc_info:
        bom_service.resolve_active_bom(db, company_id=company.id, sku_id=sku.id, as_of=date(2023, 1, 1))

    assert exc_info.value.code == "no_bom_effective"
    assert exc_info.value.as_of == date(2023, 1, 1)


def test_resolve_ignores_versions_never_activated(db, seed):
    company = seed.company()
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    seed.bom(company, sku, {part.id: "1"}, start=date(2024, 1, 1), active=False)

    with pytest.raises(NoBOMEffectiveError):
        bom_service.resolve_active_bom(db, company_id=company.id, sku_id=sku.id, as_of=date(2024, 2, 1))


def test_activation_closes_previous_version(db, seed):
    _, _, v1, v2 = _two_versions(seed)
    db.refresh(v1)
    db.refresh(v2)

    assert v1.is_active is False
    assert v1.effective_end_date == date(2024, 6, 1)
    assert v1.version == 2
    assert v2.is_active is True
    assert v2.effective_end_date is None


def test_activation_rejects_start_before_active_version(db, seed):
    company, sku, _, _ = _two_versions(seed)
    part = seed.component(company, "Label")

    with pytest.raises(InventoryValidationError):
        seed.bom(company, sku, {part.id: "1"}, start=date(2024, 3, 1), name="backdated")


def test_unit_cost_uses_current_component_costs(db, seed):
    _, _, v1, _ = _two_versions(seed)

    cost = bom_service.calculate_unit_cost(db, bom_version_id=v1.id)

    assert cost == Decimal("11")
    assert str(cost) == "11.0000"


def test_unit_cost_prefers_frozen_costs(db, seed):
    _, _, v1, _ = _two_versions(seed)
    bottle_id = v1.lines[0].component_id

    cost = bom_service.calculate_unit_cost(
        db, bom_version_id=v1.id, frozen_costs={bottle_id: Decimal("1.00")}
    )

    # 2 x 1.00 (frozen) + 2 x 3.00 (current)
    assert cost == Decimal("8.0000")


def test_unit_costs_batch_includes_empty_versions(db, seed):
    company, sku, v1, v2 = _two_versions(seed)
    empty = seed.bom(company, sku, {}, start=date(2025, 1, 1), name="empty", active=False)

    costs = bom_service.calculate_unit_costs(db, bom_version_ids=[v1.id, v2.id, empty.id])

    assert costs == {v1.id: Decimal("11.0000"), v2.id: Decimal("10.5000"), empty.id: Decimal("0.0000")}


def test_unit_cost_rounds_half_up_to_four_places(db, seed):
    company = seed.company()
    part = seed.component(company, "Resin", cost="0.3333")
    sku = seed.sku(company)
    version = seed.bom(company, sku, {part.id: "0.5"})

    assert str(bom_service.calculate_unit_cost(db, bom_version_id=version.id)) == "0.1667"


def test_bom_lines_reject_foreign_components(db, seed):
    company = seed.company("Acme")
    other = seed.company("Globex")
    foreign_part = seed.component(other, "Foreign")
    sku = seed.sku(company)

    with pytest.raises(NotFoundError):
        seed.bom(company, sku, {foreign_part.id: "1"})


def test_update_bom_version_detects_stale_version(db, seed):
    company = seed.company()
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    draft_version = seed.bom(company, sku, {part.id: "1"}, active=False)

    updated = bom_service.update_bom_version(
        db,
        company_id=company.id,
        bom_version_id=draft_version.id,
        expected_version=1,
        changes={"notes": "first writer"},
    )
    db.commit()
    assert updated.version == 2
    assert updated.notes == "first writer"

    with pytest.raises(VersionConflictError) as exc_info:
        bom_service.update_bom_version(
            db,
            company_id=company.id,
            bom_version_id=draft_version.id,
            expected_version=1,
            changes={"notes": "second writer"},
        )
    db.rollback()

    assert exc_info.value.current_version == 2
    db.refresh(updated)
    assert updated.notes == "first writer"


def test_update_bom_version_replaces_lines_before_activation(db, seed):
    company = seed.company()
    part = seed.component(company, "Part")
    other_part = seed.component(company, "Other")
    sku = seed.sku(company)
    version = seed.bom(company, sku, {part.id: "1"}, active=False)

    updated = bom_service.update_bom_version(
        db,
        company_id=company.id,
        bom_version_id=version.id,
        expected_version=1,
        changes={},
        lines=[bom_service.BOMLineInput(component_id=other_part.id, quantity_per_unit=Decimal("4"))],
    )
    db.commit()
    db.refresh(updated)

    assert [(line.component_id, line.quantity_per_unit) for line in updated.lines] == [
        (other_part.id, Decimal("4.0000"))
    ]


def test_activated_version_lines_are_locked(db, seed):
    company = seed.company()
    part = seed.component(company, "Part")
    sku = seed.sku(company)
    version = seed.bom(company, sku, {part.id: "1"})

    with pytest.raises(BOMVersionLockedError):
        bom_service.update_bom_version(
            db,
            company_id=company.id,
            bom_version_id=version.id,
            expected_version=version.version,
            changes={"effective_start_date": date(2024, 2, 1)},
        )
    db.rollback()

    # Descriptive fields stay editable.
    renamed = bom_service.update_bom_version(
        db,
        company_id=company.id,
        bom_version_id=version.id,
        expected_version=version.version,
        changes={"version_name": "  v1 final  "},
    )
    db.commit()
    assert renamed.version_name == "v1 final"


def test_clone_bom_version_copies_lines_inactive(db, seed):
    _, _, v1, _ = _two_versions(seed)

    clone = bom_service.clone_bom_version(
        db,
        company_id=v1.company_id,
        bom_version_id=v1.id,
        new_version_name="v1 copy",
        actor_user_id=ACTOR,
        effective_start_date=date(2025, 1, 1),
    )
    db.commit()
    db.refresh(clone)

    assert clone.is_active is False
    assert clone.activated_at is None
    assert clone.notes == "Cloned from v1"
    assert [line.component_id for line in clone.lines] == [line.component_id for line in v1.lines]


def test_activate_rejects_empty_version(db, seed):
    company = seed.company()
    sku = seed.sku(company)
    empty = seed.bom(company, sku, {}, active=False)

    with pytest.raises(InventoryValidationError):
        bom_service.activate_bom_version(db, company_id=company.id, bom_version_id=empty.id)
