"""BOM version lifecycle, effective-date resolution and cost rollup."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from bomledger.core.errors import (
    BOMVersionLockedError,
    InventoryValidationError,
    NoBOMEffectiveError,
    NotFoundError,
    VersionConflictError,
)
from bomledger.core.money import ZERO, to_cost, to_decimal, to_quantity
from bomledger.core.observability import log_event
from bomledger.models.component import Component
from bomledger.models.sku import BOMLine, BOMVersion
from bomledger.services.catalog_service import get_company_components, get_company_sku

# Only these may change after a version has been activated.
ALWAYS_EDITABLE_FIELDS = {"version_name", "notes", "defect_notes", "quality_metadata"}


@dataclass(frozen=True)
class BOMLineInput:
    component_id: str
    quantity_per_unit: Decimal
    notes: str | None = None


def get_company_bom_version(db: Session, *, company_id: str, bom_version_id: str) -> BOMVersion:
    version = db.execute(
        select(BOMVersion)
        .options(selectinload(BOMVersion.lines))
        .where(BOMVersion.id == bom_version_id, BOMVersion.company_id == company_id)
    ).scalar_one_or_none()
    if not version:
        raise NotFoundError("BOM version", bom_version_id)
    return version


def resolve_active_bom(db: Session, *, company_id: str, sku_id: str, as_of: date) -> BOMVersion:
    """Pick the version covering ``as_of``; both ends of the range are inclusive.

    On a hand-off day the previous version's end equals the next version's start,
    so the latest start wins. Versions that were never activated do not take part.
    """
    version = db.execute(
        select(BOMVersion)
        .options(selectinload(BOMVersion.lines))
        .where(
            BOMVersion.company_id == company_id,
            BOMVersion.sku_id == sku_id,
            BOMVersion.activated_at.is_not(None),
            BOMVersion.effective_start_date <= as_of,
            (BOMVersion.effective_end_date.is_(None)) | (BOMVersion.effective_end_date >= as_of),
        )
        .order_by(
            BOMVersion.effective_start_date.desc(),
            BOMVersion.activated_at.desc(),
            BOMVersion.id.asc(),
        )
        .limit(1)
    ).scalar_one_or_none()
    if not version:
        raise NoBOMEffectiveError(sku_id, as_of)
    return version


def get_active_bom(db: Session, *, company_id: str, sku_id: str) -> BOMVersion | None:
    return db.execute(
        select(BOMVersion)
        .options(selectinload(BOMVersion.lines))
        .where(
            BOMVersion.company_id == company_id,
            BOMVersion.sku_id == sku_id,
            BOMVersion.is_active.is_(True),
        )
        .order_by(BOMVersion.effective_start_date.desc(), BOMVersion.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_active_boms(db: Session, *, company_id: str, sku_ids: Iterable[str]) -> dict[str, BOMVersion]:
    wanted = set(sku_ids)
    if not wanted:
        return {}
    rows = db.execute(
        select(BOMVersion)
        .options(selectinload(BOMVersion.lines))
        .where(
            BOMVersion.company_id == company_id,
            BOMVersion.sku_id.in_(wanted),
            BOMVersion.is_active.is_(True),
        )
        .order_by(BOMVersion.effective_start_date.asc(), BOMVersion.id.desc())
    ).scalars().all()
    # Later rows overwrite earlier ones, leaving the most recent start per SKU.
    return {row.sku_id: row for row in rows}


def list_bom_versions(db: Session, *, company_id: str, sku_id: str) -> list[BOMVersion]:
    get_company_sku(db, company_id=company_id, sku_id=sku_id)
    return list(
        db.execute(
            select(BOMVersion)
            .options(selectinload(BOMVersion.lines))
            .where(BOMVersion.company_id == company_id, BOMVersion.sku_id == sku_id)
            .order_by(BOMVersion.effective_start_date.desc(), BOMVersion.created_at.desc())
        ).scalars().all()
    )


def calculate_unit_cost(
    db: Session,
    *,
    bom_version_id: str,
    frozen_costs: Mapping[str, Decimal] | None = None,
) -> Decimal:
    """Σ(quantity_per_unit × cost_per_unit) rounded to 4 dp.

    ``frozen_costs`` (component id → cost) replaces the current component cost,
    e.g. when re-pricing from a transaction's BOM snapshot.
    """
    return calculate_unit_costs(db, bom_version_ids=[bom_version_id], frozen_costs=frozen_costs)[bom_version_id]


def calculate_unit_costs(
    db: Session,
    *,
    bom_version_ids: Iterable[str],
    frozen_costs: Mapping[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    ids = list(dict.fromkeys(bom_version_ids))
    totals: dict[str, Decimal] = {version_id: ZERO for version_id in ids}
    if not ids:
        return {}

    rows = db.execute(
        select(BOMLine.bom_version_id, BOMLine.component_id, BOMLine.quantity_per_unit, Component.cost_per_unit)
        .join(Component, Component.id == BOMLine.component_id)
        .where(BOMLine.bom_version_id.in_(ids))
    ).all()
    for version_id, component_id, quantity_per_unit, cost_per_unit in rows:
        if frozen_costs is not None and component_id in frozen_costs:
            cost_per_unit = frozen_costs[component_id]
        totals[version_id] += to_decimal(quantity_per_unit) * to_decimal(cost_per_unit)

    return {version_id: to_cost(total) for version_id, total in totals.items()}


def bom_snapshot(db: Session, *, version: BOMVersion) -> dict[str, Any]:
    """Lines and costs as they stood at staging time; stored on draft headers."""
    component_ids = [line.component_id for line in version.lines]
    components = get_company_components(db, company_id=version.company_id, component_ids=component_ids)
    lines = []
    for line in version.lines:
        component = components[line.component_id]
        lines.append(
            {
                "component_id": component.id,
                "component_name": component.name,
                "sku_code": component.sku_code,
                "quantity_per_unit": str(to_quantity(line.quantity_per_unit)),
                "cost_per_unit": str(to_cost(component.cost_per_unit)),
            }
        )
    return {
        "bom_version_id": version.id,
        "version_name": version.version_name,
        "lines": lines,
    }


def _validate_lines(db: Session, *, company_id: str, lines: list[BOMLineInput]) -> None:
    seen: set[str] = set()
    for line in lines:
        if to_decimal(line.quantity_per_unit) < 0:
            raise InventoryValidationError("Quantity per unit cannot be negative")
        if line.component_id in seen:
            raise InventoryValidationError(
                "A component may appear only once per BOM version",
                details={"component_id": line.component_id},
            )
        seen.add(line.component_id)
    get_company_components(db, company_id=company_id, component_ids=seen, require_active=True)


def _build_lines(lines: list[BOMLineInput]) -> list[BOMLine]:
    return [
        BOMLine(
            component_id=line.component_id,
            position=index,
            quantity_per_unit=to_quantity(line.quantity_per_unit),
            notes=line.notes,
        )
        for index, line in enumerate(lines)
    ]


def _activate(db: Session, *, version: BOMVersion) -> None:
    previous = db.execute(
        select(BOMVersion).where(
            BOMVersion.company_id == version.company_id,
            BOMVersion.sku_id == version.sku_id,
            BOMVersion.is_active.is_(True),
            BOMVersion.id != version.id,
        )
    ).scalars().all()
    for prior in previous:
        if version.effective_start_date < prior.effective_start_date:
            raise InventoryValidationError(
                "Effective start date cannot precede the currently active version",
                details={
                    "active_version_id": prior.id,
                    "active_effective_start_date": prior.effective_start_date,
                },
            )

    for prior in previous:
        prior.is_active = False
        prior.effective_end_date = version.effective_start_date
        prior.version = prior.version + 1

    version.is_active = True
    version.effective_end_date = None
    if version.activated_at is None:
        version.activated_at = datetime.now(timezone.utc)


def create_bom_version(
    db: Session,
    *,
    company_id: str,
    sku_id: str,
    actor_user_id: str | None,
    version_name: str,
    effective_start_date: date,
    lines: list[BOMLineInput],
    is_active: bool = False,
    notes: str | None = None,
    defect_notes: str | None = None,
    quality_metadata: dict[str, Any] | None = None,
) -> BOMVersion:
    get_company_sku(db, company_id=company_id, sku_id=sku_id)
    _validate_lines(db, company_id=company_id, lines=lines)

    version = BOMVersion(
        company_id=company_id,
        sku_id=sku_id,
        version_name=version_name.strip(),
        effective_start_date=effective_start_date,
        is_active=False,
        notes=notes,
        defect_notes=defect_notes,
        quality_metadata=quality_metadata or {},
        created_by_id=actor_user_id,
        lines=_build_lines(lines),
    )
    db.add(version)
    db.flush()
    if is_active:
        _activate(db, version=version)
        db.flush()
    return version


def clone_bom_version(
    db: Session,
    *,
    company_id: str,
    bom_version_id: str,
    new_version_name: str,
    actor_user_id: str | None,
    effective_start_date: date | None = None,
) -> BOMVersion:
    source = get_company_bom_version(db, company_id=company_id, bom_version_id=bom_version_id)
    clone = BOMVersion(
        company_id=company_id,
        sku_id=source.sku_id,
        version_name=new_version_name.strip(),
        effective_start_date=effective_start_date or date.today(),
        is_active=False,
        notes=f"Cloned from {source.version_name}",
        defect_notes=None,
        quality_metadata={},
        created_by_id=actor_user_id,
        lines=[
            BOMLine(
                component_id=line.component_id,
                position=line.position,
                quantity_per_unit=line.quantity_per_unit,
                notes=line.notes,
            )
            for line in source.lines
        ],
    )
    db.add(clone)
    db.flush()
    return clone


def activate_bom_version(db: Session, *, company_id: str, bom_version_id: str) -> BOMVersion:
    version = get_company_bom_version(db, company_id=company_id, bom_version_id=bom_version_id)
    if not version.lines:
        raise InventoryValidationError("Cannot activate a BOM version without lines")
    _activate(db, version=version)
    version.version = version.version + 1
    db.flush()
    return version


def update_bom_version(
    db: Session,
    *,
    company_id: str,
    bom_version_id: str,
    expected_version: int,
    changes: dict[str, Any],
    lines: list[BOMLineInput] | None = None,
) -> BOMVersion:
    """Apply an edit only if nobody else bumped ``version`` since the caller read it.

    The compare-and-increment is a single conditional UPDATE, so of two writers
    holding the same ``expected_version`` exactly one succeeds.
    """
    current = get_company_bom_version(db, company_id=company_id, bom_version_id=bom_version_id)

    unknown = set(changes) - ALWAYS_EDITABLE_FIELDS - {"effective_start_date"}
    if unknown:
        raise InventoryValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    touches_recipe = lines is not None or "effective_start_date" in changes
    if touches_recipe and current.activated_at is not None:
        raise BOMVersionLockedError(
            "Lines and effective start date are frozen once a BOM version has been activated; clone it instead",
            details={"id": current.id},
        )
    if lines is not None:
        _validate_lines(db, company_id=company_id, lines=lines)

    values = dict(changes)
    if "version_name" in values and values["version_name"] is not None:
        values["version_name"] = values["version_name"].strip()

    result = db.execute(
        update(BOMVersion)
        .where(
            BOMVersion.id == current.id,
            BOMVersion.company_id == company_id,
            BOMVersion.version == expected_version,
        )
        .values(version=BOMVersion.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(current)
        log_event(
            "bom_version.conflict",
            bom_version_id=current.id,
            expected_version=expected_version,
            current_version=current.version,
        )
        raise VersionConflictError(current.id, expected_version, current.version)

    db.refresh(current)
    if lines is not None:
        current.lines = _build_lines(lines)
    db.flush()
    return current
