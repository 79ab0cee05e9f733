from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.models.component import Lot
from bomledger.models.transaction import Transaction, TransactionStatus, TransactionType
from bomledger.schemas.common import PaginationMeta
from bomledger.schemas.transaction import (
    AdjustmentTransactionIn,
    BuildTransactionIn,
    FinishedGoodsLineOut,
    InitialTransactionIn,
    ReceiptTransactionIn,
    ShortfallOut,
    TransactionCreateOut,
    TransactionLineOut,
    TransactionListOut,
    TransactionOut,
    TransferTransactionIn,
)
from bomledger.services import transaction_service
from bomledger.services.lot_allocation_service import LotOverride
from bomledger.services.transaction_service import ComponentLotOverride, TransactionResult

router = APIRouter(prefix="/transactions", tags=["transactions"])


def transaction_out(db: Session, transaction: Transaction) -> TransactionOut:
    lot_ids = {line.lot_id for line in transaction.lines if line.lot_id}
    lots: dict[str, Lot] = {}
    if lot_ids:
        lots = {lot.id: lot for lot in db.execute(select(Lot).where(Lot.id.in_(lot_ids))).scalars().all()}

    lines = []
    for line in transaction.lines:
        lot = lots.get(line.lot_id) if line.lot_id else None
        lines.append(
            TransactionLineOut(
                id=line.id,
                component_id=line.component_id,
                location_id=line.location_id,
                lot_id=line.lot_id,
                lot_number=lot.lot_number if lot else None,
                lot_expiry_date=lot.expiry_date if lot else None,
                quantity_change=line.quantity_change,
                cost_per_unit=line.cost_per_unit,
            )
        )
    return TransactionOut(
        id=transaction.id,
        type=transaction.type,
        status=transaction.status,
        transaction_date=transaction.transaction_date,
        sku_id=transaction.sku_id,
        bom_version_id=transaction.bom_version_id,
        location_id=transaction.location_id,
        from_location_id=transaction.from_location_id,
        to_location_id=transaction.to_location_id,
        output_location_id=transaction.output_location_id,
        output_quantity=transaction.output_quantity,
        sales_channel=transaction.sales_channel,
        units_built=transaction.units_built,
        unit_bom_cost=transaction.unit_bom_cost,
        total_bom_cost=transaction.total_bom_cost,
        supplier=transaction.supplier,
        reason=transaction.reason,
        notes=transaction.notes,
        defect_count=transaction.defect_count,
        defect_notes=transaction.defect_notes,
        affected_units=transaction.affected_units,
        bom_snapshot=transaction.bom_snapshot,
        created_by_id=transaction.created_by_id,
        reviewed_by_id=transaction.reviewed_by_id,
        reviewed_at=transaction.reviewed_at,
        reject_reason=transaction.reject_reason,
        created_at=transaction.created_at,
        lines=lines,
        finished_goods_lines=[
            FinishedGoodsLineOut(
                id=line.id,
                sku_id=line.sku_id,
                location_id=line.location_id,
                quantity_change=line.quantity_change,
                cost_per_unit=line.cost_per_unit,
            )
            for line in transaction.finished_goods_lines
        ],
    )


def create_out(db: Session, result: TransactionResult) -> TransactionCreateOut:
    return TransactionCreateOut(
        transaction=transaction_out(db, result.transaction),
        warnings=[
            ShortfallOut(
                component_id=item.component_id,
                component_name=item.component_name,
                sku_code=item.sku_code,
                required=item.required,
                available=item.available,
                shortage=item.shortage,
                location_id=item.location_id,
            )
            for item in result.warnings
        ],
        expired_lots_used=result.expired_lots_used,
    )


def engine_params(payload: BaseModel) -> dict[str, Any]:
    """Translate a request body into keyword arguments for the transaction engine."""
    params = payload.model_dump(exclude={"type", "lot_overrides"})
    if isinstance(payload, BuildTransactionIn):
        params["lot_overrides"] = [
            ComponentLotOverride(
                component_id=override.component_id,
                allocations=[LotOverride(lot_id=item.lot_id, quantity=item.quantity) for item in override.allocations],
            )
            for override in payload.lot_overrides
        ]
    elif isinstance(payload, (AdjustmentTransactionIn, TransferTransactionIn)):
        params["lot_overrides"] = [
            LotOverride(lot_id=item.lot_id, quantity=item.quantity) for item in payload.lot_overrides
        ]
    return params


@router.get(
    "",
    response_model=TransactionListOut,
    summary="List transactions",
    responses=error_responses(401, 403, 422, 500),
)
def list_transactions(
    status: TransactionStatus | None = Query(default=None),
    type: TransactionType | None = Query(default=None),
    sku_id: str | None = Query(default=None),
    component_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    rows, total = transaction_service.list_transactions(
        db,
        company_id=access.company.id,
        status=status.value if status else None,
        type=type.value if type else None,
        sku_id=sku_id,
        component_id=component_id,
        limit=limit,
        offset=offset,
    )
    items = [transaction_out(db, row) for row in rows]
    count = len(items)
    return TransactionListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionOut,
    summary="Get transaction",
    responses=error_responses(401, 403, 404, 500),
)
def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    transaction = transaction_service.get_company_transaction(
        db, company_id=access.company.id, transaction_id=transaction_id
    )
    return transaction_out(db, transaction)


@router.post(
    "/build",
    response_model=TransactionCreateOut,
    summary="Record a build",
    description=(
        "Resolves the BOM effective on `transaction_date`, consumes components FEFO and "
        "optionally books finished goods. Shortfalls return 400 `insufficient_inventory` "
        "unless `allow_insufficient_inventory` is set."
    ),
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_build(
    payload: BuildTransactionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = transaction_service.create_build_transaction(
        db, company_id=access.company.id, actor_user_id=access.user_id, **engine_params(payload)
    )
    return create_out(db, result)


@router.post(
    "/receipt",
    response_model=TransactionCreateOut,
    summary="Receive components",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_receipt(
    payload: ReceiptTransactionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = transaction_service.create_receipt_transaction(
        db, company_id=access.company.id, actor_user_id=access.user_id, **engine_params(payload)
    )
    return create_out(db, result)


@router.post(
    "/adjustment",
    response_model=TransactionCreateOut,
    summary="Adjust component stock",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_adjustment(
    payload: AdjustmentTransactionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = transaction_service.create_adjustment_transaction(
        db, company_id=access.company.id, actor_user_id=access.user_id, **engine_params(payload)
    )
    return create_out(db, result)


@router.post(
    "/initial",
    response_model=TransactionCreateOut,
    summary="Record opening balance",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_initial(
    payload: InitialTransactionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = transaction_service.create_initial_transaction(
        db, company_id=access.company.id, actor_user_id=access.user_id, **engine_params(payload)
    )
    return create_out(db, result)


@router.post(
    "/transfer",
    response_model=TransactionCreateOut,
    summary="Transfer stock between locations",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_transfer(
    payload: TransferTransactionIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = transaction_service.create_transfer_transaction(
        db, company_id=access.company.id, actor_user_id=access.user_id, **engine_params(payload)
    )
    return create_out(db, result)
