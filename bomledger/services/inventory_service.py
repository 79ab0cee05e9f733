"""On-hand read model.

Quantities are never stored; every read sums the signed ``quantity_change`` of
ledger lines whose transaction is ``approved``. Drafts and rejected rows are
invisible here.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bomledger.core.money import ZERO, to_decimal, to_quantity
from bomledger.models.component import Component, Lot
from bomledger.models.sku import SKU, BOMVersion
from bomledger.models.transaction import (
    FinishedGoodsLine,
    Transaction,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)

APPROVED = TransactionStatus.APPROVED.value


@dataclass(frozen=True)
class Shortfall:
    component_id: str
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    shortage: Decimal
    location_id: str | None = None


def get_component_quantities(
    db: Session,
    *,
    company_id: str,
    component_ids: Iterable[str],
    location_id: str | None = None,
) -> dict[str, Decimal]:
    ids = list(dict.fromkeys(component_ids))
    if not ids:
        return {}
    stmt = (
        select(
            TransactionLine.component_id,
            func.coalesce(func.sum(TransactionLine.quantity_change), 0),
        )
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .where(
            Transaction.company_id == company_id,
            Transaction.status == APPROVED,
            TransactionLine.component_id.in_(ids),
        )
        .group_by(TransactionLine.component_id)
    )
    if location_id:
        stmt = stmt.where(TransactionLine.location_id == location_id)

    quantities = {component_id: ZERO for component_id in ids}
    for component_id, total in db.execute(stmt).all():
        quantities[component_id] = to_quantity(total)
    return quantities


def get_component_quantity(
    db: Session,
    *,
    company_id: str,
    component_id: str,
    location_id: str | None = None,
) -> Decimal:
    return get_component_quantities(
        db, company_id=company_id, component_ids=[component_id], location_id=location_id
    )[component_id]


def get_component_quantities_by_location(
    db: Session,
    *,
    company_id: str,
    component_id: str,
) -> dict[str, Decimal]:
    rows = db.execute(
        select(
            TransactionLine.location_id,
            func.coalesce(func.sum(TransactionLine.quantity_change), 0),
        )
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .where(
            Transaction.company_id == company_id,
            Transaction.status == APPROVED,
            TransactionLine.component_id == component_id,
        )
        .group_by(TransactionLine.location_id)
    ).all()
    return {location_id: to_quantity(total) for location_id, total in rows}


def get_lot_balances(db: Session, *, company_id: str, lot_ids: Iterable[str]) -> dict[str, Decimal]:
    ids = list(dict.fromkeys(lot_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(TransactionLine.lot_id, func.coalesce(func.sum(TransactionLine.quantity_change), 0))
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .where(
            Transaction.company_id == company_id,
            Transaction.status == APPROVED,
            TransactionLine.lot_id.in_(ids),
        )
        .group_by(TransactionLine.lot_id)
    ).all()
    balances = {lot_id: ZERO for lot_id in ids}
    for lot_id, total in rows:
        balances[lot_id] = to_quantity(total)
    return balances


def get_lot_balance(db: Session, *, company_id: str, lot_id: str) -> Decimal:
    return get_lot_balances(db, company_id=company_id, lot_ids=[lot_id])[lot_id]


def get_lots_for_component(
    db: Session,
    *,
    company_id: str,
    component_id: str,
    location_id: str | None = None,
) -> list[tuple[Lot, Decimal]]:
    stmt = select(Lot).where(Lot.company_id == company_id, Lot.component_id == component_id)
    if location_id:
        stmt = stmt.where(Lot.location_id == location_id)
    lots = db.execute(stmt).scalars().all()
    balances = get_lot_balances(db, company_id=company_id, lot_ids=[lot.id for lot in lots])
    return [(lot, balances[lot.id]) for lot in lots]


def calculate_reorder_status(
    quantity_on_hand: Decimal | int | float,
    reorder_point: int,
    reorder_warning_multiplier: float = 1.5,
) -> str:
    if reorder_point == 0:
        return "ok"
    quantity = to_decimal(quantity_on_hand)
    if quantity <= reorder_point:
        return "critical"
    if quantity <= to_decimal(reorder_point) * to_decimal(reorder_warning_multiplier):
        return "warning"
    return "ok"


def calculate_expiry_status(expiry_date: date | None, *, as_of: date, warning_days: int) -> str:
    if expiry_date is None:
        return "ok"
    if expiry_date <= as_of:
        return "expired"
    if expiry_date <= as_of + timedelta(days=warning_days):
        return "expiring_soon"
    return "ok"


def check_insufficient_inventory(
    db: Session,
    *,
    company_id: str,
    bom_version: BOMVersion,
    units_to_build: int,
    location_id: str | None = None,
) -> list[Shortfall]:
    if not bom_version.lines:
        return []
    component_ids = [line.component_id for line in bom_version.lines]
    quantities = get_component_quantities(
        db, company_id=company_id, component_ids=component_ids, location_id=location_id
    )
    components = {
        component.id: component
        for component in db.execute(select(Component).where(Component.id.in_(component_ids))).scalars()
    }

    shortfalls = []
    for line in bom_version.lines:
        available = quantities[line.component_id]
        required = to_quantity(to_decimal(line.quantity_per_unit) * units_to_build)
        if required > 0 and available < required:
            component = components[line.component_id]
            shortfalls.append(
                Shortfall(
                    component_id=component.id,
                    component_name=component.name,
                    sku_code=component.sku_code,
                    required=required,
                    available=available,
                    shortage=required - available,
                    location_id=location_id,
                )
            )
    return shortfalls


def get_sku_finished_goods_quantity(
    db: Session,
    *,
    company_id: str,
    sku_id: str,
    location_id: str | None = None,
) -> Decimal:
    stmt = (
        select(func.coalesce(func.sum(FinishedGoodsLine.quantity_change), 0))
        .join(Transaction, Transaction.id == FinishedGoodsLine.transaction_id)
        .where(
            Transaction.company_id == company_id,
            Transaction.status == APPROVED,
            FinishedGoodsLine.sku_id == sku_id,
        )
    )
    if location_id:
        stmt = stmt.where(FinishedGoodsLine.location_id == location_id)
    return to_quantity(db.execute(stmt).scalar_one())


def get_affected_skus_for_lot(db: Session, *, company_id: str, lot_id: str) -> list[dict]:
    """Trace: which SKUs were built from this lot, and how much of it they used."""
    rows = db.execute(
        select(
            SKU.id,
            SKU.name,
            SKU.internal_code,
            func.coalesce(func.sum(TransactionLine.quantity_change), 0),
            func.count(func.distinct(Transaction.id)),
        )
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .join(SKU, SKU.id == Transaction.sku_id)
        .where(
            Transaction.company_id == company_id,
            Transaction.status == APPROVED,
            Transaction.type == TransactionType.BUILD.value,
            TransactionLine.lot_id == lot_id,
        )
        .group_by(SKU.id, SKU.name, SKU.internal_code)
        .order_by(SKU.name.asc())
    ).all()
    return [
        {
            "sku_id": sku_id,
            "name": name,
            "internal_code": internal_code,
            # Consumption lines are negative.
            "quantity_used": abs(to_quantity(total)),
            "transaction_count": int(count),
        }
        for sku_id, name, internal_code, total, count in rows
    ]
