from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bomledger.core.errors import InventoryValidationError, NotFoundError
from bomledger.core.money import to_cost
from bomledger.models.component import Component
from bomledger.models.sku import SKU, BOMLine, BOMVersion


def get_company_component(
    db: Session,
    *,
    company_id: str,
    component_id: str,
    require_active: bool = False,
) -> Component:
    component = db.execute(
        select(Component).where(Component.id == component_id, Component.company_id == company_id)
    ).scalar_one_or_none()
    if not component:
        raise NotFoundError("Component", component_id)
    if require_active and not component.is_active:
        raise InventoryValidationError(f"Component '{component.name}' is inactive")
    return component


def get_company_components(
    db: Session,
    *,
    company_id: str,
    component_ids: Iterable[str],
    require_active: bool = False,
) -> dict[str, Component]:
    """Load several components at once; any id outside the company is a NotFoundError."""
    wanted = set(component_ids)
    if not wanted:
        return {}
    rows = db.execute(
        select(Component).where(Component.company_id == company_id, Component.id.in_(wanted))
    ).scalars().all()
    found = {row.id: row for row in rows}
    missing = sorted(wanted - set(found))
    if missing:
        raise NotFoundError("Component", missing[0])
    if require_active:
        inactive = sorted(row.name for row in found.values() if not row.is_active)
        if inactive:
            raise InventoryValidationError(
                "One or more components are inactive",
                details={"components": inactive},
            )
    return found


def get_company_sku(db: Session, *, company_id: str, sku_id: str, require_active: bool = False) -> SKU:
    sku = db.execute(
        select(SKU).where(SKU.id == sku_id, SKU.company_id == company_id)
    ).scalar_one_or_none()
    if not sku:
        raise NotFoundError("SKU", sku_id)
    if require_active and not sku.is_active:
        raise InventoryValidationError(f"SKU '{sku.name}' is inactive")
    return sku


def create_component(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str | None,
    name: str,
    sku_code: str,
    unit_of_measure: str = "each",
    cost_per_unit: Decimal = Decimal("0"),
    reorder_point: int = 0,
    lead_time_days: int = 0,
    is_lot_tracked: bool = False,
    category: str | None = None,
    brand_id: str | None = None,
    notes: str | None = None,
) -> Component:
    normalized_code = sku_code.strip()
    if not normalized_code:
        raise InventoryValidationError("Component SKU code is required")
    exists = db.execute(
        select(Component.id).where(
            Component.company_id == company_id,
            func.lower(Component.sku_code) == normalized_code.lower(),
        )
    ).first()
    if exists:
        raise InventoryValidationError(f"Component SKU code '{normalized_code}' already exists")
    if cost_per_unit < 0:
        raise InventoryValidationError("Cost per unit cannot be negative")

    component = Component(
        company_id=company_id,
        brand_id=brand_id,
        name=name.strip(),
        sku_code=normalized_code,
        category=category,
        unit_of_measure=unit_of_measure,
        cost_per_unit=to_cost(cost_per_unit),
        reorder_point=reorder_point,
        lead_time_days=lead_time_days,
        is_lot_tracked=is_lot_tracked,
        notes=notes,
        created_by_id=actor_user_id,
    )
    db.add(component)
    db.flush()
    return component


def _ensure_not_in_active_bom(db: Session, *, company_id: str, component: Component) -> None:
    skus = db.execute(
        select(SKU.internal_code)
        .join(BOMVersion, BOMVersion.sku_id == SKU.id)
        .join(BOMLine, BOMLine.bom_version_id == BOMVersion.id)
        .where(
            BOMVersion.company_id == company_id,
            BOMVersion.is_active.is_(True),
            BOMLine.component_id == component.id,
        )
        .distinct()
        .order_by(SKU.internal_code)
    ).scalars().all()
    if skus:
        raise InventoryValidationError(
            f"Component '{component.name}' is used by active BOMs and cannot be deactivated",
            details={"skus": list(skus)},
        )


def update_component(db: Session, *, company_id: str, component_id: str, changes: dict[str, Any]) -> Component:
    component = get_company_component(db, company_id=company_id, component_id=component_id)
    if changes.get("is_active") is False and component.is_active:
        _ensure_not_in_active_bom(db, company_id=company_id, component=component)
    if "sku_code" in changes and changes["sku_code"] is not None:
        normalized_code = changes["sku_code"].strip()
        clash = db.execute(
            select(Component.id).where(
                Component.company_id == company_id,
                func.lower(Component.sku_code) == normalized_code.lower(),
                Component.id != component.id,
            )
        ).first()
        if clash:
            raise InventoryValidationError(f"Component SKU code '{normalized_code}' already exists")
        changes = {**changes, "sku_code": normalized_code}
    if "cost_per_unit" in changes and changes["cost_per_unit"] is not None:
        if changes["cost_per_unit"] < 0:
            raise InventoryValidationError("Cost per unit cannot be negative")
        changes = {**changes, "cost_per_unit": to_cost(changes["cost_per_unit"])}

    for field, value in changes.items():
        setattr(component, field, value)
    db.flush()
    return component


def list_components(
    db: Session,
    *,
    company_id: str,
    include_inactive: bool = False,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Component], int]:
    stmt = select(Component).where(Component.company_id == company_id)
    if not include_inactive:
        stmt = stmt.where(Component.is_active.is_(True))
    if q:
        pattern = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            func.lower(Component.name).like(pattern) | func.lower(Component.sku_code).like(pattern)
        )
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(Component.name.asc(), Component.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    return list(rows), int(total)


def create_sku(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str | None,
    name: str,
    internal_code: str,
    sales_channel: str | None = None,
    external_ids: dict[str, Any] | None = None,
    brand_id: str | None = None,
    notes: str | None = None,
) -> SKU:
    normalized_code = internal_code.strip()
    if not normalized_code:
        raise InventoryValidationError("SKU internal code is required")
    exists = db.execute(
        select(SKU.id).where(
            SKU.company_id == company_id,
            func.lower(SKU.internal_code) == normalized_code.lower(),
        )
    ).first()
    if exists:
        raise InventoryValidationError(f"SKU code '{normalized_code}' already exists")

    sku = SKU(
        company_id=company_id,
        brand_id=brand_id,
        name=name.strip(),
        internal_code=normalized_code,
        sales_channel=sales_channel,
        external_ids=external_ids or {},
        notes=notes,
        created_by_id=actor_user_id,
    )
    db.add(sku)
    db.flush()
    return sku


def list_skus(
    db: Session,
    *,
    company_id: str,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[SKU], int]:
    stmt = select(SKU).where(SKU.company_id == company_id)
    if not include_inactive:
        stmt = stmt.where(SKU.is_active.is_(True))
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(SKU.name.asc(), SKU.id.asc()).offset(offset).limit(limit)).scalars().all()
    return list(rows), int(total)
