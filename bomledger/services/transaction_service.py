"""Transaction engine: builds, receipts, adjustments, opening balances and transfers.

Each create_* function validates, plans and writes inside one unit of work.
Component rows are locked before the sufficiency check, so the check and the
ledger write commit together. The same functions stage drafts when called with
``status=TransactionStatus.DRAFT``.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from bomledger.core.errors import (
    InsufficientInventoryError,
    InvalidLotOverrideError,
    InventoryValidationError,
    MissingOutputLocationError,
    NotFoundError,
)
from bomledger.core.money import ZERO, to_cost, to_decimal, to_quantity
from bomledger.core.observability import log_event
from bomledger.db.session import unit_of_work
from bomledger.models.component import Component, Lot
from bomledger.models.location import Location
from bomledger.models.transaction import (
    FinishedGoodsLine,
    Transaction,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)
from bomledger.services.audit_service import log_audit_event
from bomledger.services.bom_service import bom_snapshot, calculate_unit_cost, resolve_active_bom
from bomledger.services.catalog_service import get_company_sku
from bomledger.services.inventory_service import Shortfall, check_insufficient_inventory, get_component_quantities
from bomledger.services.location_service import get_company_location, get_default_location
from bomledger.services.lot_allocation_service import (
    AllocationPlan,
    LotOverride,
    allocate_lots,
    validate_lot_overrides,
)
from bomledger.services.settings_service import CompanySettings, get_company_settings


@dataclass(frozen=True)
class ComponentLotOverride:
    component_id: str
    allocations: list[LotOverride]


@dataclass(frozen=True)
class PlannedLine:
    component_id: str
    location_id: str
    quantity_change: Decimal
    cost_per_unit: Decimal | None = None
    lot_id: str | None = None


@dataclass
class TransactionResult:
    transaction: Transaction
    # Shortfalls the caller chose to proceed through (override or tenant policy).
    warnings: list[Shortfall] = field(default_factory=list)
    allocations: list[AllocationPlan] = field(default_factory=list)
    expired_lots_used: list[dict] = field(default_factory=list)


def write_transaction_lines(db: Session, *, transaction: Transaction, lines: Sequence[PlannedLine]) -> list[TransactionLine]:
    rows = []
    for position, line in enumerate(lines):
        row = TransactionLine(
            transaction_id=transaction.id,
            component_id=line.component_id,
            location_id=line.location_id,
            lot_id=line.lot_id,
            position=position,
            quantity_change=to_quantity(line.quantity_change),
            cost_per_unit=None if line.cost_per_unit is None else to_cost(line.cost_per_unit),
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def lock_components(db: Session, *, company_id: str, component_ids: Iterable[str]) -> dict[str, Component]:
    """SELECT ... FOR UPDATE in id order so concurrent writers queue instead of deadlocking."""
    ids = sorted(set(component_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(Component)
        .where(Component.company_id == company_id, Component.id.in_(ids))
        .order_by(Component.id.asc())
        .with_for_update()
    ).scalars().all()
    found = {row.id: row for row in rows}
    missing = [component_id for component_id in ids if component_id not in found]
    if missing:
        raise NotFoundError("Component", missing[0])
    return found


def _require_active(components: Iterable[Component]) -> None:
    inactive = sorted(component.name for component in components if not component.is_active)
    if inactive:
        raise InventoryValidationError(
            "One or more components are inactive",
            details={"components": inactive},
        )


def _resolve_consumption_location(db: Session, *, company_id: str, location_id: str | None) -> Location:
    if location_id:
        return get_company_location(db, company_id=company_id, location_id=location_id)
    location = get_default_location(db, company_id=company_id)
    if location is None:
        raise InventoryValidationError("No location specified and company has no default location")
    return location


def _resolve_output_location(db: Session, *, company_id: str, output_location_id: str | None) -> Location:
    if output_location_id:
        location = db.execute(
            select(Location).where(Location.id == output_location_id, Location.company_id == company_id)
        ).scalar_one_or_none()
        if location is None or not location.is_active:
            raise MissingOutputLocationError("Output location not found or inactive")
        return location
    location = get_default_location(db, company_id=company_id)
    if location is None:
        raise MissingOutputLocationError()
    return location


def _positive(value: Decimal | int, label: str) -> Decimal:
    quantity = to_quantity(value)
    if quantity <= 0:
        raise InventoryValidationError(f"{label} must be greater than zero")
    return quantity


def _get_or_create_lot(
    db: Session,
    *,
    company_id: str,
    component: Component,
    location_id: str,
    lot_number: str,
    expiry_date: date | None,
    supplier: str | None = None,
) -> Lot:
    normalized = lot_number.strip()
    if not normalized:
        raise InventoryValidationError("Lot number is required")
    lot = db.execute(
        select(Lot).where(
            Lot.company_id == company_id,
            Lot.component_id == component.id,
            Lot.location_id == location_id,
            Lot.lot_number == normalized,
        )
    ).scalar_one_or_none()
    if lot is not None:
        if expiry_date is not None and lot.expiry_date is not None and lot.expiry_date != expiry_date:
            raise InventoryValidationError(
                f"Lot {normalized} already exists with expiry {lot.expiry_date.isoformat()}",
            )
        if lot.expiry_date is None and expiry_date is not None:
            lot.expiry_date = expiry_date
        return lot

    lot = Lot(
        company_id=company_id,
        component_id=component.id,
        location_id=location_id,
        lot_number=normalized,
        expiry_date=expiry_date,
        supplier=supplier,
    )
    db.add(lot)
    db.flush()
    return lot


def _inbound_lot_id(
    db: Session,
    *,
    company_id: str,
    component: Component,
    location_id: str,
    lot_number: str | None,
    expiry_date: date | None,
    supplier: str | None = None,
) -> str | None:
    if lot_number is None:
        if component.is_lot_tracked:
            raise InventoryValidationError(f"Component '{component.name}' is lot-tracked; a lot number is required")
        return None
    if not component.is_lot_tracked:
        raise InventoryValidationError(f"Component '{component.name}' is not lot-tracked")
    lot = _get_or_create_lot(
        db,
        company_id=company_id,
        component=component,
        location_id=location_id,
        lot_number=lot_number,
        expiry_date=expiry_date,
        supplier=supplier,
    )
    return lot.id


def _plan_consumption(
    db: Session,
    *,
    company_id: str,
    component: Component,
    location_id: str,
    quantity: Decimal,
    as_of: date,
    company_settings: CompanySettings,
    overrides: Sequence[LotOverride] = (),
    allow_expired_lots: bool = False,
    allow_insufficient: bool = False,
    enforce_expiry: bool = True,
) -> tuple[list[PlannedLine], AllocationPlan | None]:
    """Negative ledger lines consuming ``quantity`` of one component at one location."""
    cost = to_cost(component.cost_per_unit)
    if not component.is_lot_tracked:
        return [PlannedLine(component.id, location_id, -quantity, cost)], None

    policy = company_settings
    if not enforce_expiry:
        policy = company_settings.model_copy(update={"enforce_lot_expiry": False})
    plan = allocate_lots(
        db,
        company_id=company_id,
        component=component,
        location_id=location_id,
        quantity_needed=quantity,
        as_of=as_of,
        company_settings=policy,
        overrides=overrides,
        allow_expired_lots=allow_expired_lots,
        allow_insufficient=allow_insufficient,
    )
    lines = [
        PlannedLine(component.id, location_id, -selection.quantity, cost, selection.lot_id)
        for selection in plan.selections
    ]
    if plan.unallocated > 0:
        # Override let the build run short; the uncovered part is booked un-lotted.
        lines.append(PlannedLine(component.id, location_id, -plan.unallocated, cost))
    return lines, plan


def _check_overrides(
    db: Session,
    *,
    company_id: str,
    component: Component,
    location_id: str | None,
    overrides: Sequence[LotOverride],
) -> None:
    """Pinned lots are checked against the tenant before any quantity is looked at."""
    if not overrides:
        return
    validate_lot_overrides(
        db,
        company_id=company_id,
        component_id=component.id,
        location_id=location_id,
        overrides=overrides,
    )
    if not component.is_lot_tracked:
        raise InventoryValidationError(f"Component '{component.name}' is not lot-tracked; lot overrides are not allowed")


def _expired_lot_payload(component: Component, plan: AllocationPlan) -> list[dict]:
    return [
        {
            "component_id": component.id,
            "lot_id": selection.lot_id,
            "lot_number": selection.lot_number,
            "expiry_date": selection.expiry_date.isoformat() if selection.expiry_date else None,
            "quantity": str(selection.quantity),
        }
        for selection in plan.expired_lots
    ]


def _record_expired_override(
    db: Session,
    *,
    transaction: Transaction,
    actor_user_id: str,
    lots: list[dict],
) -> None:
    if not lots:
        return
    log_audit_event(
        db,
        company_id=transaction.company_id,
        actor_user_id=actor_user_id,
        action="lot.expired_override",
        target_type="transaction",
        target_id=transaction.id,
        metadata_json={"status": transaction.status, "lots": lots},
    )
    log_event("lot.expired_override", transaction_id=transaction.id, lot_count=len(lots))


def _log_created(transaction: Transaction, line_count: int) -> None:
    log_event(
        "transaction.created",
        transaction_id=transaction.id,
        company_id=transaction.company_id,
        type=transaction.type,
        status=transaction.status,
        line_count=line_count,
    )


def _index_overrides(
    overrides: Sequence[ComponentLotOverride],
    allowed_component_ids: set[str],
) -> dict[str, list[LotOverride]]:
    indexed: dict[str, list[LotOverride]] = {}
    errors = []
    for override in overrides:
        if override.component_id not in allowed_component_ids:
            errors.append(f"Component {override.component_id} is not consumed by this transaction")
            continue
        indexed.setdefault(override.component_id, []).extend(override.allocations)
    if errors:
        raise InvalidLotOverrideError(errors)
    return indexed


def create_build_transaction(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    sku_id: str,
    units_to_build: int,
    transaction_date: date,
    location_id: str | None = None,
    sales_channel: str | None = None,
    notes: str | None = None,
    defect_count: int | None = None,
    defect_notes: str | None = None,
    affected_units: int | None = None,
    allow_insufficient_inventory: bool = False,
    allow_expired_lots: bool = False,
    lot_overrides: Sequence[ComponentLotOverride] = (),
    output_to_finished_goods: bool = False,
    output_location_id: str | None = None,
    output_quantity: int | None = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
) -> TransactionResult:
    if units_to_build <= 0:
        raise InventoryValidationError("Units to build must be greater than zero")

    with unit_of_work(db):
        company_settings = get_company_settings(db, company_id=company_id)
        sku = get_company_sku(db, company_id=company_id, sku_id=sku_id, require_active=True)
        location = _resolve_consumption_location(db, company_id=company_id, location_id=location_id)
        version = resolve_active_bom(db, company_id=company_id, sku_id=sku.id, as_of=transaction_date)

        required: dict[str, Decimal] = {}
        for line in version.lines:
            quantity = to_quantity(to_decimal(line.quantity_per_unit) * units_to_build)
            if quantity > 0:
                required[line.component_id] = required.get(line.component_id, ZERO) + quantity

        components = lock_components(db, company_id=company_id, component_ids=required)
        _require_active(components.values())
        overrides = _index_overrides(lot_overrides, set(required))
        for overridden_id, component_overrides in overrides.items():
            _check_overrides(
                db,
                company_id=company_id,
                component=components[overridden_id],
                location_id=location.id,
                overrides=component_overrides,
            )

        shortfalls = check_insufficient_inventory(
            db,
            company_id=company_id,
            bom_version=version,
            units_to_build=units_to_build,
            location_id=location.id,
        )
        allow_short = allow_insufficient_inventory or company_settings.allow_negative_inventory
        if shortfalls and not allow_short:
            raise InsufficientInventoryError(shortfalls)

        planned: list[PlannedLine] = []
        allocations: list[AllocationPlan] = []
        expired_lots: list[dict] = []
        for component_id, quantity in required.items():
            component = components[component_id]
            lines, plan = _plan_consumption(
                db,
                company_id=company_id,
                component=component,
                location_id=location.id,
                quantity=quantity,
                as_of=transaction_date,
                company_settings=company_settings,
                overrides=overrides.get(component_id, ()),
                allow_expired_lots=allow_expired_lots,
                allow_insufficient=allow_short,
            )
            planned.extend(lines)
            if plan is not None:
                allocations.append(plan)
                expired_lots.extend(_expired_lot_payload(component, plan))

        output_location = None
        if output_to_finished_goods:
            output_location = _resolve_output_location(
                db, company_id=company_id, output_location_id=output_location_id
            )
        produced = output_quantity if output_quantity is not None else units_to_build
        if output_to_finished_goods and produced <= 0:
            raise InventoryValidationError("Output quantity must be greater than zero")

        unit_cost = calculate_unit_cost(db, bom_version_id=version.id)
        total_cost = to_cost(unit_cost * units_to_build)

        header = Transaction(
            company_id=company_id,
            type=TransactionType.BUILD.value,
            status=status.value,
            transaction_date=transaction_date,
            sku_id=sku.id,
            bom_version_id=version.id,
            location_id=location.id,
            output_location_id=output_location.id if output_location else None,
            output_quantity=produced if output_location else None,
            sales_channel=sales_channel or sku.sales_channel,
            units_built=units_to_build,
            unit_bom_cost=unit_cost,
            total_bom_cost=total_cost,
            bom_snapshot=bom_snapshot(db, version=version),
            notes=notes,
            defect_count=defect_count,
            defect_notes=defect_notes,
            affected_units=affected_units,
            allow_insufficient_inventory=allow_short,
            allow_expired_lots=allow_expired_lots,
            created_by_id=actor_user_id,
        )
        db.add(header)
        db.flush()

        write_transaction_lines(db, transaction=header, lines=planned)
        if output_location is not None:
            db.add(
                FinishedGoodsLine(
                    transaction_id=header.id,
                    sku_id=sku.id,
                    location_id=output_location.id,
                    quantity_change=to_quantity(produced),
                    cost_per_unit=unit_cost,
                )
            )
        _record_expired_override(db, transaction=header, actor_user_id=actor_user_id, lots=expired_lots)
        db.flush()

    db.refresh(header)
    _log_created(header, len(planned))
    return TransactionResult(
        transaction=header,
        warnings=shortfalls,
        allocations=allocations,
        expired_lots_used=expired_lots,
    )


def _create_inbound(
    db: Session,
    *,
    transaction_type: TransactionType,
    company_id: str,
    actor_user_id: str,
    component_id: str,
    quantity: Decimal,
    transaction_date: date,
    location_id: str | None,
    cost_per_unit: Decimal | None,
    update_component_cost: bool,
    lot_number: str | None,
    expiry_date: date | None,
    supplier: str | None,
    reason: str | None,
    notes: str | None,
    status: TransactionStatus,
) -> TransactionResult:
    quantity = _positive(quantity, "Quantity")
    if cost_per_unit is not None and cost_per_unit < 0:
        raise InventoryValidationError("Cost per unit cannot be negative")

    with unit_of_work(db):
        component = lock_components(db, company_id=company_id, component_ids=[component_id])[component_id]
        _require_active([component])
        location = _resolve_consumption_location(db, company_id=company_id, location_id=location_id)
        lot_id = _inbound_lot_id(
            db,
            company_id=company_id,
            component=component,
            location_id=location.id,
            lot_number=lot_number,
            expiry_date=expiry_date,
            supplier=supplier,
        )
        line_cost = to_cost(cost_per_unit if cost_per_unit is not None else component.cost_per_unit)

        header = Transaction(
            company_id=company_id,
            type=transaction_type.value,
            status=status.value,
            transaction_date=transaction_date,
            location_id=location.id,
            supplier=supplier,
            reason=reason,
            notes=notes,
            created_by_id=actor_user_id,
        )
        db.add(header)
        db.flush()
        write_transaction_lines(
            db,
            transaction=header,
            lines=[PlannedLine(component.id, location.id, quantity, line_cost, lot_id)],
        )
        # Draft receipts leave the current cost alone until they take effect.
        if update_component_cost and cost_per_unit is not None and status == TransactionStatus.APPROVED:
            component.cost_per_unit = line_cost
        db.flush()

    db.refresh(header)
    _log_created(header, 1)
    return TransactionResult(transaction=header)


def create_receipt_transaction(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    component_id: str,
    quantity: Decimal,
    transaction_date: date,
    location_id: str | None = None,
    supplier: str | None = None,
    cost_per_unit: Decimal | None = None,
    update_component_cost: bool = False,
    lot_number: str | None = None,
    expiry_date: date | None = None,
    notes: str | None = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
) -> TransactionResult:
    return _create_inbound(
        db,
        transaction_type=TransactionType.RECEIPT,
        company_id=company_id,
        actor_user_id=actor_user_id,
        component_id=component_id,
        quantity=quantity,
        transaction_date=transaction_date,
        location_id=location_id,
        cost_per_unit=cost_per_unit,
        update_component_cost=update_component_cost,
        lot_number=lot_number,
        expiry_date=expiry_date,
        supplier=supplier,
        reason=None,
        notes=notes,
        status=status,
    )


def create_initial_transaction(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    component_id: str,
    quantity: Decimal,
    transaction_date: date,
    location_id: str | None = None,
    cost_per_unit: Decimal | None = None,
    update_component_cost: bool = False,
    lot_number: str | None = None,
    expiry_date: date | None = None,
    notes: str | None = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
) -> TransactionResult:
    return _create_inbound(
        db,
        transaction_type=TransactionType.INITIAL,
        company_id=company_id,
        actor_user_id=actor_user_id,
        component_id=component_id,
        quantity=quantity,
        transaction_date=transaction_date,
        location_id=location_id,
        cost_per_unit=cost_per_unit,
        update_component_cost=update_component_cost,
        lot_number=lot_number,
        expiry_date=expiry_date,
        supplier=None,
        reason="Initial inventory",
        notes=notes,
        status=status,
    )


def create_adjustment_transaction(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    component_id: str,
    quantity_change: Decimal,
    reason: str,
    transaction_date: date,
    location_id: str | None = None,
    lot_number: str | None = None,
    expiry_date: date | None = None,
    lot_overrides: Sequence[LotOverride] = (),
    allow_insufficient_inventory: bool = False,
    notes: str | None = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
) -> TransactionResult:
    """Signed correction. Negative adjustments may write off expired lots."""
    change = to_quantity(quantity_change)
    if change == 0:
        raise InventoryValidationError("Quantity change cannot be zero")
    if not reason or not reason.strip():
        raise InventoryValidationError("Adjustment reason is required")

    with unit_of_work(db):
        company_settings = get_company_settings(db, company_id=company_id)
        component = lock_components(db, company_id=company_id, component_ids=[component_id])[component_id]
        _require_active([component])
        location = _resolve_consumption_location(db, company_id=company_id, location_id=location_id)
        allow_short = allow_insufficient_inventory or company_settings.allow_negative_inventory
        _check_overrides(
            db, company_id=company_id, component=component, location_id=location.id, overrides=lot_overrides
        )

        warnings: list[Shortfall] = []
        allocations: list[AllocationPlan] = []
        if change > 0:
            if lot_overrides:
                raise InventoryValidationError("Lot overrides apply only to negative adjustments")
            lot_id = _inbound_lot_id(
                db,
                company_id=company_id,
                component=component,
                location_id=location.id,
                lot_number=lot_number,
                expiry_date=expiry_date,
            )
            planned = [PlannedLine(component.id, location.id, change, to_cost(component.cost_per_unit), lot_id)]
        else:
            needed = -change
            available = get_component_quantities(
                db, company_id=company_id, component_ids=[component.id], location_id=location.id
            )[component.id]
            if available < needed:
                shortfall = Shortfall(
                    component_id=component.id,
                    component_name=component.name,
                    sku_code=component.sku_code,
                    required=needed,
                    available=available,
                    shortage=needed - available,
                    location_id=location.id,
                )
                if not allow_short:
                    raise InsufficientInventoryError([shortfall])
                warnings.append(shortfall)
            planned, plan = _plan_consumption(
                db,
                company_id=company_id,
                component=component,
                location_id=location.id,
                quantity=needed,
                as_of=transaction_date,
                company_settings=company_settings,
                overrides=lot_overrides,
                allow_insufficient=allow_short,
                enforce_expiry=False,
            )
            if plan is not None:
                allocations.append(plan)

        header = Transaction(
            company_id=company_id,
            type=TransactionType.ADJUSTMENT.value,
            status=status.value,
            transaction_date=transaction_date,
            location_id=location.id,
            reason=reason.strip(),
            notes=notes,
            allow_insufficient_inventory=allow_short,
            created_by_id=actor_user_id,
        )
        db.add(header)
        db.flush()
        write_transaction_lines(db, transaction=header, lines=planned)

    db.refresh(header)
    _log_created(header, len(planned))
    return TransactionResult(transaction=header, warnings=warnings, allocations=allocations)


def create_transfer_transaction(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    component_id: str,
    quantity: Decimal,
    from_location_id: str,
    to_location_id: str,
    transaction_date: date,
    lot_overrides: Sequence[LotOverride] = (),
    allow_expired_lots: bool = False,
    notes: str | None = None,
    status: TransactionStatus = TransactionStatus.APPROVED,
) -> TransactionResult:
    """Move stock between two locations; lots keep their number and expiry at the destination."""
    quantity = _positive(quantity, "Quantity")
    if from_location_id == to_location_id:
        raise InventoryValidationError("Cannot transfer to the same location")

    with unit_of_work(db):
        company_settings = get_company_settings(db, company_id=company_id)
        component = lock_components(db, company_id=company_id, component_ids=[component_id])[component_id]
        _require_active([component])
        source = get_company_location(db, company_id=company_id, location_id=from_location_id)
        destination = get_company_location(db, company_id=company_id, location_id=to_location_id)
        _check_overrides(
            db, company_id=company_id, component=component, location_id=source.id, overrides=lot_overrides
        )

        available = get_component_quantities(
            db, company_id=company_id, component_ids=[component.id], location_id=source.id
        )[component.id]
        if available < quantity:
            raise InsufficientInventoryError(
                [
                    Shortfall(
                        component_id=component.id,
                        component_name=component.name,
                        sku_code=component.sku_code,
                        required=quantity,
                        available=available,
                        shortage=quantity - available,
                        location_id=source.id,
                    )
                ],
                message=f"Insufficient inventory at source location. Available: {available}, Required: {quantity}",
            )

        outbound, plan = _plan_consumption(
            db,
            company_id=company_id,
            component=component,
            location_id=source.id,
            quantity=quantity,
            as_of=transaction_date,
            company_settings=company_settings,
            overrides=lot_overrides,
            allow_expired_lots=allow_expired_lots,
        )

        inbound: list[PlannedLine] = []
        if plan is None:
            inbound.append(PlannedLine(component.id, destination.id, quantity, outbound[0].cost_per_unit))
        else:
            source_lots = {
                lot.id: lot
                for lot in db.execute(
                    select(Lot).where(Lot.id.in_([selection.lot_id for selection in plan.selections]))
                ).scalars()
            }
            for line in outbound:
                mirrored = _get_or_create_lot(
                    db,
                    company_id=company_id,
                    component=component,
                    location_id=destination.id,
                    lot_number=source_lots[line.lot_id].lot_number,
                    expiry_date=source_lots[line.lot_id].expiry_date,
                    supplier=source_lots[line.lot_id].supplier,
                )
                inbound.append(
                    PlannedLine(component.id, destination.id, -line.quantity_change, line.cost_per_unit, mirrored.id)
                )

        header = Transaction(
            company_id=company_id,
            type=TransactionType.TRANSFER.value,
            status=status.value,
            transaction_date=transaction_date,
            from_location_id=source.id,
            to_location_id=destination.id,
            notes=notes,
            allow_expired_lots=allow_expired_lots,
            created_by_id=actor_user_id,
        )
        db.add(header)
        db.flush()
        write_transaction_lines(db, transaction=header, lines=outbound + inbound)
        expired_lots = _expired_lot_payload(component, plan) if plan is not None else []
        _record_expired_override(db, transaction=header, actor_user_id=actor_user_id, lots=expired_lots)
        db.flush()

    db.refresh(header)
    _log_created(header, len(outbound) + len(inbound))
    return TransactionResult(
        transaction=header,
        allocations=[plan] if plan is not None else [],
        expired_lots_used=expired_lots,
    )


def get_company_transaction(db: Session, *, company_id: str, transaction_id: str) -> Transaction:
    transaction = db.execute(
        select(Transaction)
        .options(selectinload(Transaction.lines), selectinload(Transaction.finished_goods_lines))
        .where(Transaction.id == transaction_id, Transaction.company_id == company_id)
    ).scalar_one_or_none()
    if not transaction:
        raise NotFoundError("Transaction", transaction_id)
    return transaction


def list_transactions(
    db: Session,
    *,
    company_id: str,
    status: str | None = None,
    type: str | None = None,
    sku_id: str | None = None,
    component_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    stmt = select(Transaction).where(Transaction.company_id == company_id, Transaction.deleted_at.is_(None))
    if status:
        stmt = stmt.where(Transaction.status == status)
    if type:
        stmt = stmt.where(Transaction.type == type)
    if sku_id:
        stmt = stmt.where(Transaction.sku_id == sku_id)
    if component_id:
        stmt = stmt.where(
            Transaction.id.in_(
                select(TransactionLine.transaction_id).where(TransactionLine.component_id == component_id)
            )
        )
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.options(selectinload(Transaction.lines), selectinload(Transaction.finished_goods_lines))
        .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), int(total)
