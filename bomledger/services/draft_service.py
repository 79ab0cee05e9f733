from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from bomledger.core.config import settings
from bomledger.core.errors import (
    InsufficientInventoryError,
    InvalidTransitionError,
    InventoryError,
    InventoryValidationError,
    NotFoundError,
)
from bomledger.core.money import ZERO
from bomledger.core.observability import log_event
from bomledger.db.session import unit_of_work
from bomledger.models.audit_log import AuditLog
from bomledger.models.component import Lot
from bomledger.models.location import Location
from bomledger.models.transaction import (
    FinishedGoodsLine,
    Transaction,
    TransactionLine,
    TransactionStatus,
    TransactionType,
)
from bomledger.services.audit_service import log_audit_event
from bomledger.services.inventory_service import Shortfall, get_component_quantities, get_lot_balances
from bomledger.services.transaction_service import (
    TransactionResult,
    create_adjustment_transaction,
    create_build_transaction,
    create_initial_transaction,
    create_receipt_transaction,
    create_transfer_transaction,
    get_company_transaction,
    lock_components,
)

ALLOWED_STATUS_TRANSITIONS: dict[str, set[str]] = {
    TransactionStatus.DRAFT.value: {TransactionStatus.APPROVED.value, TransactionStatus.REJECTED.value},
    TransactionStatus.APPROVED.value: set(),
    TransactionStatus.REJECTED.value: set(),
}

_DRAFT_CREATORS: dict[TransactionType, Callable[..., TransactionResult]] = {
    TransactionType.BUILD: create_build_transaction,
    TransactionType.RECEIPT: create_receipt_transaction,
    TransactionType.ADJUSTMENT: create_adjustment_transaction,
    TransactionType.INITIAL: create_initial_transaction,
    TransactionType.TRANSFER: create_transfer_transaction,
}


@dataclass(frozen=True)
class BatchApproveItem:
    id: str
    success: bool
    code: str | None = None
    error: str | None = None


def ensure_transition_allowed(current_status: str, next_status: str) -> None:
    allowed_next = ALLOWED_STATUS_TRANSITIONS.get(current_status, set())
    if next_status not in allowed_next:
        raise InvalidTransitionError(current_status, next_status)


def create_draft_transaction(
    db: Session,
    *,
    transaction_type: TransactionType,
    **params: Any,
) -> TransactionResult:
    """Stage any transaction type through the engine without touching on-hand."""
    creator = _DRAFT_CREATORS[transaction_type]
    return creator(db, status=TransactionStatus.DRAFT, **params)


def list_drafts(
    db: Session,
    *,
    company_id: str,
    status: str | None = TransactionStatus.DRAFT.value,
    type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    # Anything that started life as a draft has been reviewed or is still pending.
    stmt = select(Transaction).where(Transaction.company_id == company_id, Transaction.deleted_at.is_(None))
    if status:
        stmt = stmt.where(Transaction.status == status)
    else:
        stmt = stmt.where(
            (Transaction.status == TransactionStatus.DRAFT.value) | Transaction.reviewed_at.is_not(None)
        )
    if type:
        stmt = stmt.where(Transaction.type == type)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.options(selectinload(Transaction.lines), selectinload(Transaction.finished_goods_lines))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), int(total)


def get_draft(db: Session, *, company_id: str, draft_id: str) -> Transaction:
    draft = get_company_transaction(db, company_id=company_id, transaction_id=draft_id)
    if draft.deleted_at is not None:
        raise NotFoundError("Draft", draft_id)
    return draft


def count_pending_drafts(db: Session, *, company_id: str) -> int:
    return int(
        db.execute(
            select(func.count(Transaction.id)).where(
                Transaction.company_id == company_id,
                Transaction.status == TransactionStatus.DRAFT.value,
                Transaction.deleted_at.is_(None),
            )
        ).scalar_one()
    )


def _revalidate_for_approval(db: Session, *, draft: Transaction) -> None:
    components = lock_components(
        db, company_id=draft.company_id, component_ids=[line.component_id for line in draft.lines]
    )
    inactive_components = sorted(component.name for component in components.values() if not component.is_active)
    if inactive_components:
        raise InventoryValidationError(
            "Draft references inactive components",
            details={"components": inactive_components},
        )

    location_ids = {line.location_id for line in draft.lines}
    location_ids.update(line.location_id for line in draft.finished_goods_lines)
    if location_ids:
        locations = db.execute(
            select(Location).where(Location.company_id == draft.company_id, Location.id.in_(location_ids))
        ).scalars().all()
        inactive_locations = sorted(location.name for location in locations if not location.is_active)
        if inactive_locations or len(locations) != len(location_ids):
            raise InventoryValidationError(
                "Draft references inactive or missing locations",
                details={"locations": inactive_locations},
            )

    if draft.allow_insufficient_inventory:
        return

    by_location: dict[tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
    by_lot: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for line in draft.lines:
        if line.quantity_change >= 0:
            continue
        by_location[(line.component_id, line.location_id)] += -line.quantity_change
        if line.lot_id:
            by_lot[line.lot_id] += -line.quantity_change

    shortfalls: list[Shortfall] = []
    for (component_id, location_id), needed in by_location.items():
        available = get_component_quantities(
            db, company_id=draft.company_id, component_ids=[component_id], location_id=location_id
        )[component_id]
        if available < needed:
            component = components[component_id]
            shortfalls.append(
                Shortfall(
                    component_id=component_id,
                    component_name=component.name,
                    sku_code=component.sku_code,
                    required=needed,
                    available=available,
                    shortage=needed - available,
                    location_id=location_id,
                )
            )
    if shortfalls:
        raise InsufficientInventoryError(shortfalls)

    balances = get_lot_balances(db, company_id=draft.company_id, lot_ids=by_lot)
    short_lots = [
        {"lot_id": lot_id, "required": needed, "available": balances[lot_id]}
        for lot_id, needed in by_lot.items()
        if balances[lot_id] < needed
    ]
    if short_lots:
        raise InsufficientInventoryError(short_lots, message="Lot balances changed since the draft was staged")


def _set_review_status(
    db: Session,
    *,
    draft: Transaction,
    next_status: TransactionStatus,
    reviewer_id: str,
    reject_reason: str | None = None,
) -> None:
    values: dict[str, Any] = {
        "status": next_status.value,
        "reviewed_by_id": reviewer_id,
        "reviewed_at": datetime.now(timezone.utc),
    }
    if next_status == TransactionStatus.REJECTED:
        values["reject_reason"] = reject_reason
    result = db.execute(
        update(Transaction)
        .where(
            Transaction.id == draft.id,
            Transaction.company_id == draft.company_id,
            Transaction.status == TransactionStatus.DRAFT.value,
            Transaction.deleted_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Someone else reviewed or deleted it between our read and this write.
        db.refresh(draft)
        if draft.deleted_at is not None:
            raise NotFoundError("Draft", draft.id)
        raise InvalidTransitionError(draft.status, next_status.value)


def approve_draft(db: Session, *, company_id: str, draft_id: str, reviewer_id: str) -> Transaction:
    with unit_of_work(db):
        draft = get_draft(db, company_id=company_id, draft_id=draft_id)
        ensure_transition_allowed(draft.status, TransactionStatus.APPROVED.value)
        _revalidate_for_approval(db, draft=draft)
        _set_review_status(db, draft=draft, next_status=TransactionStatus.APPROVED, reviewer_id=reviewer_id)
        log_audit_event(
            db,
            company_id=company_id,
            actor_user_id=reviewer_id,
            action="draft.approved",
            target_type="transaction",
            target_id=draft.id,
            metadata_json={"type": draft.type},
        )

    db.refresh(draft)
    log_event("draft.approved", transaction_id=draft.id, company_id=company_id, reviewer_id=reviewer_id)
    return draft


def reject_draft(
    db: Session,
    *,
    company_id: str,
    draft_id: str,
    reviewer_id: str,
    reason: str | None = None,
) -> Transaction:
    with unit_of_work(db):
        draft = get_draft(db, company_id=company_id, draft_id=draft_id)
        ensure_transition_allowed(draft.status, TransactionStatus.REJECTED.value)
        _set_review_status(
            db,
            draft=draft,
            next_status=TransactionStatus.REJECTED,
            reviewer_id=reviewer_id,
            reject_reason=reason.strip() if reason else None,
        )
        log_audit_event(
            db,
            company_id=company_id,
            actor_user_id=reviewer_id,
            action="draft.rejected",
            target_type="transaction",
            target_id=draft.id,
            metadata_json={"type": draft.type, "reason": reason},
        )

    db.refresh(draft)
    log_event("draft.rejected", transaction_id=draft.id, company_id=company_id, reviewer_id=reviewer_id)
    return draft


def _staged_params(db: Session, draft: Transaction) -> dict[str, Any]:
    """Recover the engine arguments a pending draft was planned from."""
    params: dict[str, Any] = {"transaction_date": draft.transaction_date, "notes": draft.notes}
    if draft.type == TransactionType.BUILD.value:
        params.update(
            sku_id=draft.sku_id,
            units_to_build=draft.units_built,
            location_id=draft.location_id,
            sales_channel=draft.sales_channel,
            defect_count=draft.defect_count,
            defect_notes=draft.defect_notes,
            affected_units=draft.affected_units,
            allow_insufficient_inventory=draft.allow_insufficient_inventory,
            allow_expired_lots=draft.allow_expired_lots,
            output_to_finished_goods=draft.output_location_id is not None,
            output_location_id=draft.output_location_id,
            output_quantity=draft.output_quantity,
        )
        return params

    first = draft.lines[0]
    params["component_id"] = first.component_id
    if draft.type == TransactionType.TRANSFER.value:
        params.update(
            quantity=sum((-line.quantity_change for line in draft.lines if line.quantity_change < 0), ZERO),
            from_location_id=draft.from_location_id,
            to_location_id=draft.to_location_id,
            allow_expired_lots=draft.allow_expired_lots,
        )
        return params

    params["location_id"] = draft.location_id
    quantity = sum((line.quantity_change for line in draft.lines), ZERO)
    # Only inbound lines name their own lot; outbound lots come from FEFO.
    lot = db.get(Lot, first.lot_id) if first.lot_id and quantity > 0 else None
    params["lot_number"] = lot.lot_number if lot else None
    params["expiry_date"] = lot.expiry_date if lot else None
    if draft.type == TransactionType.ADJUSTMENT.value:
        params.update(
            quantity_change=quantity,
            reason=draft.reason,
            allow_insufficient_inventory=draft.allow_insufficient_inventory,
        )
        return params

    params.update(quantity=quantity, cost_per_unit=first.cost_per_unit)
    if draft.type == TransactionType.RECEIPT.value:
        params["supplier"] = draft.supplier
    return params


# Accepted on update but not recoverable from the stored draft.
_EXTRA_UPDATE_FIELDS: dict[str, set[str]] = {
    TransactionType.BUILD.value: {"lot_overrides"},
    TransactionType.ADJUSTMENT.value: {"lot_overrides"},
    TransactionType.TRANSFER.value: {"lot_overrides"},
    TransactionType.RECEIPT.value: {"update_component_cost"},
    TransactionType.INITIAL.value: {"update_component_cost"},
}

_REPLANNED_COLUMNS = (
    "transaction_date",
    "sku_id",
    "bom_version_id",
    "location_id",
    "from_location_id",
    "to_location_id",
    "output_location_id",
    "sales_channel",
    "units_built",
    "output_quantity",
    "unit_bom_cost",
    "total_bom_cost",
    "bom_snapshot",
    "supplier",
    "reason",
    "notes",
    "defect_count",
    "defect_notes",
    "affected_units",
    "allow_insufficient_inventory",
    "allow_expired_lots",
)


def _swap_draft_contents(db: Session, *, draft: Transaction, staged: Transaction) -> None:
    """Move a freshly planned header onto the draft's id and drop the temporary row."""
    result = db.execute(
        update(Transaction)
        .where(
            Transaction.id == draft.id,
            Transaction.company_id == draft.company_id,
            Transaction.status == TransactionStatus.DRAFT.value,
            Transaction.deleted_at.is_(None),
        )
        .values(**{column: getattr(staged, column) for column in _REPLANNED_COLUMNS})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.refresh(draft)
        if draft.deleted_at is not None:
            raise NotFoundError("Draft", draft.id)
        raise InvalidTransitionError(draft.status, TransactionStatus.DRAFT.value)

    for model in (TransactionLine, FinishedGoodsLine):
        db.execute(
            delete(model).where(model.transaction_id == draft.id).execution_options(synchronize_session=False)
        )
        db.execute(
            update(model)
            .where(model.transaction_id == staged.id)
            .values(transaction_id=draft.id)
            .execution_options(synchronize_session=False)
        )
    db.execute(
        update(AuditLog)
        .where(AuditLog.target_type == "transaction", AuditLog.target_id == staged.id)
        .values(target_id=draft.id)
        .execution_options(synchronize_session=False)
    )
    db.execute(delete(Transaction).where(Transaction.id == staged.id).execution_options(synchronize_session=False))


def update_draft(
    db: Session,
    *,
    company_id: str,
    draft_id: str,
    actor_user_id: str,
    changes: dict[str, Any],
) -> TransactionResult:
    """Re-plan a pending draft with edited fields. The draft keeps its id and author.

    Lines are planned from scratch, so lots are re-allocated by FEFO unless
    ``lot_overrides`` is part of the change.
    """
    if not changes:
        raise InventoryValidationError("At least one field must be provided")

    with unit_of_work(db):
        draft = get_draft(db, company_id=company_id, draft_id=draft_id)
        if draft.status != TransactionStatus.DRAFT.value:
            raise InvalidTransitionError(draft.status, TransactionStatus.DRAFT.value)

        params = _staged_params(db, draft)
        editable = set(params) | _EXTRA_UPDATE_FIELDS[draft.type]
        unknown = sorted(set(changes) - editable)
        if unknown:
            raise InventoryValidationError(
                f"Cannot change {', '.join(unknown)} on a {draft.type} draft",
                details={"fields": unknown},
            )
        params.update(changes)

        creator = _DRAFT_CREATORS[TransactionType(draft.type)]
        result = creator(
            db,
            company_id=company_id,
            actor_user_id=actor_user_id,
            status=TransactionStatus.DRAFT,
            **params,
        )
        _swap_draft_contents(db, draft=draft, staged=result.transaction)
        log_audit_event(
            db,
            company_id=company_id,
            actor_user_id=actor_user_id,
            action="draft.updated",
            target_type="transaction",
            target_id=draft.id,
            metadata_json={"type": draft.type, "fields": sorted(changes)},
        )

    db.refresh(draft)
    log_event("draft.updated", transaction_id=draft.id, company_id=company_id, actor_user_id=actor_user_id)
    return TransactionResult(
        transaction=draft,
        warnings=result.warnings,
        allocations=result.allocations,
        expired_lots_used=result.expired_lots_used,
    )


def delete_draft(db: Session, *, company_id: str, draft_id: str, actor_user_id: str) -> Transaction:
    """Soft-delete a pending draft. Reviewed drafts are part of the ledger and stay."""
    with unit_of_work(db):
        draft = get_draft(db, company_id=company_id, draft_id=draft_id)
        if draft.status != TransactionStatus.DRAFT.value:
            raise InvalidTransitionError(draft.status, "deleted")
        result = db.execute(
            update(Transaction)
            .where(
                Transaction.id == draft.id,
                Transaction.company_id == company_id,
                Transaction.status == TransactionStatus.DRAFT.value,
                Transaction.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(timezone.utc), deleted_by_id=actor_user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.refresh(draft)
            if draft.deleted_at is not None:
                raise NotFoundError("Draft", draft.id)
            raise InvalidTransitionError(draft.status, "deleted")
        log_audit_event(
            db,
            company_id=company_id,
            actor_user_id=actor_user_id,
            action="draft.deleted",
            target_type="transaction",
            target_id=draft.id,
            metadata_json={"type": draft.type},
        )

    db.refresh(draft)
    log_event("draft.deleted", transaction_id=draft.id, company_id=company_id, actor_user_id=actor_user_id)
    return draft


def batch_approve_drafts(
    db: Session,
    *,
    company_id: str,
    draft_ids: Sequence[str],
    reviewer_id: str,
) -> dict[str, Any]:
    """Approve each id on its own unit of work; one failure never blocks the rest."""
    ids = list(dict.fromkeys(draft_ids))
    if not ids:
        raise InventoryValidationError("At least one draft id is required")
    if len(ids) > settings.draft_batch_approve_limit:
        raise InventoryValidationError(
            f"Cannot approve more than {settings.draft_batch_approve_limit} drafts at once"
        )

    results: list[BatchApproveItem] = []
    for draft_id in ids:
        try:
            approve_draft(db, company_id=company_id, draft_id=draft_id, reviewer_id=reviewer_id)
        except InventoryError as exc:
            results.append(BatchApproveItem(id=draft_id, success=False, code=exc.code, error=exc.message))
            log_event("draft.approve_failed", transaction_id=draft_id, code=exc.code, error=exc.message)
        except SQLAlchemyError as exc:
            results.append(BatchApproveItem(id=draft_id, success=False, code="storage_error", error=str(exc)))
            log_event("draft.approve_failed", transaction_id=draft_id, code="storage_error", error=str(exc))
        else:
            results.append(BatchApproveItem(id=draft_id, success=True))

    succeeded = sum(1 for item in results if item.success)
    return {
        "results": results,
        "summary": {"total": len(results), "succeeded": succeeded, "failed": len(results) - succeeded},
    }
