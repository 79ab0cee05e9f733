"""First-expired-first-out lot allocation.

``plan_fefo_allocation`` is a pure fold over candidate lots sorted by
(expiry ascending, no-expiry last, lot id). ``allocate_lots`` loads the
candidates, checks manual overrides against the tenant and applies the
expiry policy around it.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.errors import (
    ExpiredLotBlockError,
    InsufficientInventoryError,
    InvalidLotOverrideError,
    InventoryValidationError,
)
from bomledger.core.money import ZERO, to_decimal, to_quantity
from bomledger.models.component import Component, Lot
from bomledger.services.inventory_service import Shortfall, get_lot_balances
from bomledger.services.settings_service import CompanySettings


@dataclass(frozen=True)
class LotCandidate:
    lot_id: str
    lot_number: str
    expiry_date: date | None
    available: Decimal


@dataclass(frozen=True)
class LotOverride:
    lot_id: str
    quantity: Decimal


@dataclass(frozen=True)
class LotSelection:
    lot_id: str
    lot_number: str
    expiry_date: date | None
    quantity: Decimal
    manual: bool = False


@dataclass(frozen=True)
class AllocationPlan:
    component_id: str
    location_id: str | None
    quantity_needed: Decimal
    selections: list[LotSelection] = field(default_factory=list)
    # Only non-zero when the caller accepted insufficient stock.
    unallocated: Decimal = ZERO
    expired_lots: list[LotSelection] = field(default_factory=list)

    @property
    def allocated(self) -> Decimal:
        return sum((selection.quantity for selection in self.selections), ZERO)


def fefo_sort_key(candidate: LotCandidate) -> tuple:
    return (candidate.expiry_date is None, candidate.expiry_date or date.min, candidate.lot_id)


def plan_fefo_allocation(
    candidates: Sequence[LotCandidate],
    quantity_needed: Decimal,
    *,
    component_id: str,
    component_name: str = "",
    sku_code: str = "",
    location_id: str | None = None,
    overrides: Sequence[LotOverride] = (),
    allow_insufficient: bool = False,
) -> AllocationPlan:
    needed = to_quantity(quantity_needed)
    if needed < 0:
        raise InventoryValidationError("Quantity to allocate cannot be negative")

    by_id = {candidate.lot_id: candidate for candidate in candidates}
    remaining_capacity = {candidate.lot_id: to_decimal(candidate.available) for candidate in candidates}
    selections: list[LotSelection] = []

    pinned_total = ZERO
    for override in overrides:
        candidate = by_id.get(override.lot_id)
        if candidate is None:
            raise InvalidLotOverrideError([f"Lot {override.lot_id} is not a candidate for this component"])
        quantity = to_quantity(override.quantity)
        if quantity <= 0:
            raise InventoryValidationError(f"Override quantity for lot {candidate.lot_number} must be positive")
        if quantity > remaining_capacity[candidate.lot_id]:
            raise InsufficientInventoryError(
                [
                    Shortfall(
                        component_id=component_id,
                        component_name=component_name,
                        sku_code=sku_code,
                        required=quantity,
                        available=max(remaining_capacity[candidate.lot_id], ZERO),
                        shortage=quantity - max(remaining_capacity[candidate.lot_id], ZERO),
                        location_id=location_id,
                    )
                ],
                message=f"Lot {candidate.lot_number}: requested {quantity}, available {remaining_capacity[candidate.lot_id]}",
            )
        remaining_capacity[candidate.lot_id] -= quantity
        pinned_total += quantity
        selections.append(
            LotSelection(
                lot_id=candidate.lot_id,
                lot_number=candidate.lot_number,
                expiry_date=candidate.expiry_date,
                quantity=quantity,
                manual=True,
            )
        )
    if pinned_total > needed:
        raise InventoryValidationError(
            f"Manual lot allocations ({pinned_total}) exceed the required quantity ({needed})"
        )

    remaining = needed - pinned_total
    for candidate in sorted(candidates, key=fefo_sort_key):
        if remaining <= 0:
            break
        capacity = remaining_capacity[candidate.lot_id]
        if capacity <= 0:
            continue
        take = min(capacity, remaining)
        selections.append(
            LotSelection(
                lot_id=candidate.lot_id,
                lot_number=candidate.lot_number,
                expiry_date=candidate.expiry_date,
                quantity=take,
            )
        )
        remaining -= take

    if remaining > 0 and not allow_insufficient:
        available = needed - remaining
        raise InsufficientInventoryError(
            [
                Shortfall(
                    component_id=component_id,
                    component_name=component_name,
                    sku_code=sku_code,
                    required=needed,
                    available=available,
                    shortage=remaining,
                    location_id=location_id,
                )
            ]
        )

    return AllocationPlan(
        component_id=component_id,
        location_id=location_id,
        quantity_needed=needed,
        selections=selections,
        unallocated=max(remaining, ZERO),
    )


def validate_lot_overrides(
    db: Session,
    *,
    company_id: str,
    component_id: str,
    location_id: str | None,
    overrides: Iterable[LotOverride],
) -> None:
    """Every pinned lot must belong to this tenant, component and location.

    Any failure rejects the whole allocation; nothing is partially applied.
    """
    overrides = list(overrides)
    if not overrides:
        return
    lot_ids = {override.lot_id for override in overrides}
    lots = {
        lot.id: lot
        for lot in db.execute(select(Lot).where(Lot.id.in_(lot_ids))).scalars().all()
    }

    errors: list[str] = []
    seen: set[str] = set()
    for override in overrides:
        lot = lots.get(override.lot_id)
        # Foreign-tenant lots are reported exactly like missing ones.
        if lot is None or lot.company_id != company_id:
            errors.append(f"Lot {override.lot_id} not found or access denied")
            continue
        if lot.component_id != component_id:
            errors.append(f"Lot {lot.lot_number} does not belong to the specified component")
            continue
        if location_id is not None and lot.location_id != location_id:
            errors.append(f"Lot {lot.lot_number} is not stocked at the requested location")
            continue
        if override.lot_id in seen:
            errors.append(f"Lot {lot.lot_number} is listed more than once")
        seen.add(override.lot_id)

    if errors:
        raise InvalidLotOverrideError(errors)


def load_lot_candidates(
    db: Session,
    *,
    company_id: str,
    component_id: str,
    location_id: str | None,
) -> list[LotCandidate]:
    stmt = select(Lot).where(Lot.company_id == company_id, Lot.component_id == component_id)
    if location_id is not None:
        stmt = stmt.where(Lot.location_id == location_id)
    lots = db.execute(stmt).scalars().all()
    balances = get_lot_balances(db, company_id=company_id, lot_ids=[lot.id for lot in lots])
    candidates = [
        LotCandidate(
            lot_id=lot.id,
            lot_number=lot.lot_number,
            expiry_date=lot.expiry_date,
            available=balances[lot.id],
        )
        for lot in lots
    ]
    candidates.sort(key=fefo_sort_key)
    return candidates


def allocate_lots(
    db: Session,
    *,
    company_id: str,
    component: Component,
    location_id: str | None,
    quantity_needed: Decimal,
    as_of: date,
    company_settings: CompanySettings,
    overrides: Sequence[LotOverride] = (),
    allow_expired_lots: bool = False,
    allow_insufficient: bool = False,
) -> AllocationPlan:
    if component.company_id != company_id:
        raise InvalidLotOverrideError([f"Component {component.id} not found or access denied"])
    validate_lot_overrides(
        db,
        company_id=company_id,
        component_id=component.id,
        location_id=location_id,
        overrides=overrides,
    )
    candidates = load_lot_candidates(
        db, company_id=company_id, component_id=component.id, location_id=location_id
    )
    plan = plan_fefo_allocation(
        candidates,
        quantity_needed,
        component_id=component.id,
        component_name=component.name,
        sku_code=component.sku_code,
        location_id=location_id,
        overrides=overrides,
        allow_insufficient=allow_insufficient,
    )

    expired = [
        selection
        for selection in plan.selections
        if selection.expiry_date is not None and selection.expiry_date <= as_of
    ]
    if expired and company_settings.enforce_lot_expiry:
        if not (allow_expired_lots and company_settings.allow_expired_lot_override):
            raise ExpiredLotBlockError(
                [
                    {
                        "component_id": component.id,
                        "component_name": component.name,
                        "lot_id": selection.lot_id,
                        "lot_number": selection.lot_number,
                        "expiry_date": selection.expiry_date,
                        "quantity": selection.quantity,
                    }
                    for selection in expired
                ],
                override_permitted=company_settings.allow_expired_lot_override,
            )

    return AllocationPlan(
        component_id=plan.component_id,
        location_id=plan.location_id,
        quantity_needed=plan.quantity_needed,
        selections=plan.selections,
        unallocated=plan.unallocated,
        expired_lots=expired,
    )
