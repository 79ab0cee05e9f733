from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.config import settings
from bomledger.core.deps import get_db
from bomledger.core.errors import NotFoundError
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.models.component import Lot
from bomledger.schemas.component import AffectedSkuOut, LotListOut, LotOut, LotTraceOut
from bomledger.services.inventory_service import (
    calculate_expiry_status,
    get_affected_skus_for_lot,
    get_lot_balance,
    get_lot_balances,
)

router = APIRouter(prefix="/lots", tags=["lots"])


def lot_out(lot: Lot, *, balance: Decimal, as_of: date, warning_days: int) -> LotOut:
    return LotOut(
        id=lot.id,
        component_id=lot.component_id,
        location_id=lot.location_id,
        lot_number=lot.lot_number,
        expiry_date=lot.expiry_date,
        supplier=lot.supplier,
        balance=balance,
        expiry_status=calculate_expiry_status(lot.expiry_date, as_of=as_of, warning_days=warning_days),
        created_at=lot.created_at,
    )


def _lot_in_company_or_404(db: Session, *, company_id: str, lot_id: str) -> Lot:
    lot = db.execute(
        select(Lot).where(Lot.id == lot_id, Lot.company_id == company_id)
    ).scalar_one_or_none()
    if not lot:
        raise NotFoundError("Lot", lot_id)
    return lot


@router.get(
    "",
    response_model=LotListOut,
    summary="List lots",
    responses=error_responses(401, 403, 422, 500),
)
def list_lots(
    component_id: str | None = Query(default=None),
    location_id: str | None = Query(default=None),
    expiry_status: str | None = Query(default=None, pattern="^(expired|expiring_soon|ok)$"),
    include_empty: bool = Query(default=False),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    stmt = select(Lot).where(Lot.company_id == access.company.id)
    if component_id:
        stmt = stmt.where(Lot.component_id == component_id)
    if location_id:
        stmt = stmt.where(Lot.location_id == location_id)
    lots = db.execute(stmt).scalars().all()
    balances = get_lot_balances(db, company_id=access.company.id, lot_ids=[lot.id for lot in lots])

    today = date.today()
    items = [
        lot_out(lot, balance=balances[lot.id], as_of=today, warning_days=settings.lot_expiry_warning_days)
        for lot in lots
        if include_empty or balances[lot.id] > 0
    ]
    if expiry_status:
        items = [item for item in items if item.expiry_status == expiry_status]
    items.sort(key=lambda item: (item.expiry_date is None, item.expiry_date or date.min, item.id))
    return LotListOut(items=items)


@router.get(
    "/{lot_id}",
    response_model=LotOut,
    summary="Get lot",
    responses=error_responses(401, 403, 404, 500),
)
def get_lot(
    lot_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    lot = _lot_in_company_or_404(db, company_id=access.company.id, lot_id=lot_id)
    balance = get_lot_balance(db, company_id=access.company.id, lot_id=lot.id)
    return lot_out(lot, balance=balance, as_of=date.today(), warning_days=settings.lot_expiry_warning_days)


@router.get(
    "/{lot_id}/trace",
    response_model=LotTraceOut,
    summary="SKUs built from a lot",
    responses=error_responses(401, 403, 404, 500),
)
def trace_lot(
    lot_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    lot = _lot_in_company_or_404(db, company_id=access.company.id, lot_id=lot_id)
    balance = get_lot_balance(db, company_id=access.company.id, lot_id=lot.id)
    affected = get_affected_skus_for_lot(db, company_id=access.company.id, lot_id=lot.id)
    return LotTraceOut(
        lot=lot_out(lot, balance=balance, as_of=date.today(), warning_days=settings.lot_expiry_warning_days),
        affected_skus=[AffectedSkuOut(**item) for item in affected],
    )
