from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.models.transaction import TransactionStatus, TransactionType
from bomledger.routers.transactions import create_out, engine_params, transaction_out
from bomledger.schemas.common import PaginationMeta
from bomledger.schemas.draft import (
    DraftBatchApproveIn,
    DraftBatchApproveOut,
    DraftBatchItemOut,
    DraftBatchSummaryOut,
    DraftCountOut,
    DraftCreateIn,
    DraftDeleteOut,
    DraftRejectIn,
    DraftUpdateIn,
)
from bomledger.schemas.transaction import TransactionCreateOut, TransactionListOut, TransactionOut
from bomledger.services import draft_service

router = APIRouter(prefix="/drafts", tags=["drafts"])


@router.post(
    "",
    response_model=TransactionCreateOut,
    summary="Stage a draft transaction",
    description="Drafts are validated and planned like live transactions but never count toward on-hand.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_draft(
    payload: Annotated[DraftCreateIn, Body(discriminator="type")],
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = draft_service.create_draft_transaction(
        db,
        transaction_type=TransactionType(payload.type),
        company_id=access.company.id,
        actor_user_id=access.user_id,
        **engine_params(payload),
    )
    return create_out(db, result)


@router.get(
    "",
    response_model=TransactionListOut,
    summary="List drafts",
    responses=error_responses(401, 403, 422, 500),
)
def list_drafts(
    status: TransactionStatus | None = Query(default=TransactionStatus.DRAFT),
    type: TransactionType | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    rows, total = draft_service.list_drafts(
        db,
        company_id=access.company.id,
        status=status.value if status else None,
        type=type.value if type else None,
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
    "/count",
    response_model=DraftCountOut,
    summary="Count pending drafts",
    responses=error_responses(401, 403, 500),
)
def count_drafts(
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    return DraftCountOut(pending=draft_service.count_pending_drafts(db, company_id=access.company.id))


@router.post(
    "/batch-approve",
    response_model=DraftBatchApproveOut,
    summary="Approve several drafts",
    description="Each draft is approved independently; failures are reported per id.",
    responses=error_responses(400, 401, 403, 422, 500),
)
def batch_approve(
    payload: DraftBatchApproveIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    outcome = draft_service.batch_approve_drafts(
        db,
        company_id=access.company.id,
        draft_ids=payload.draft_ids,
        reviewer_id=access.user_id,
    )
    results = []
    for item in outcome["results"]:
        transaction = None
        if item.success:
            transaction = transaction_out(
                db, draft_service.get_draft(db, company_id=access.company.id, draft_id=item.id)
            )
        results.append(
            DraftBatchItemOut(
                id=item.id,
                success=item.success,
                code=item.code,
                error=item.error,
                transaction=transaction,
            )
        )
    return DraftBatchApproveOut(results=results, summary=DraftBatchSummaryOut(**outcome["summary"]))


@router.get(
    "/{draft_id}",
    response_model=TransactionOut,
    summary="Get draft",
    responses=error_responses(401, 403, 404, 500),
)
def get_draft(
    draft_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    return transaction_out(db, draft_service.get_draft(db, company_id=access.company.id, draft_id=draft_id))


@router.patch(
    "/{draft_id}",
    response_model=TransactionCreateOut,
    summary="Update draft",
    description="Re-plans a pending draft with the changed fields. Reviewed drafts cannot be edited.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_draft(
    draft_id: str,
    payload: DraftUpdateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    result = draft_service.update_draft(
        db,
        company_id=access.company.id,
        draft_id=draft_id,
        actor_user_id=access.user_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    return create_out(db, result)


@router.delete(
    "/{draft_id}",
    response_model=DraftDeleteOut,
    summary="Delete draft",
    description="Soft-deletes a pending draft so it no longer appears in lists or counts.",
    responses=error_responses(401, 403, 404, 409, 500),
)
def delete_draft(
    draft_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    draft = draft_service.delete_draft(
        db, company_id=access.company.id, draft_id=draft_id, actor_user_id=access.user_id
    )
    return DraftDeleteOut(id=draft.id, deleted_at=draft.deleted_at)


@router.post(
    "/{draft_id}/approve",
    response_model=TransactionOut,
    summary="Approve draft",
    description="Re-validates stock and references, then posts the draft to the ledger.",
    responses=error_responses(400, 401, 403, 404, 409, 500),
)
def approve_draft(
    draft_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    draft = draft_service.approve_draft(
        db, company_id=access.company.id, draft_id=draft_id, reviewer_id=access.user_id
    )
    return transaction_out(db, draft)


@router.post(
    "/{draft_id}/reject",
    response_model=TransactionOut,
    summary="Reject draft",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def reject_draft(
    draft_id: str,
    payload: DraftRejectIn | None = None,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    draft = draft_service.reject_draft(
        db,
        company_id=access.company.id,
        draft_id=draft_id,
        reviewer_id=access.user_id,
        reason=payload.reason if payload else None,
    )
    return transaction_out(db, draft)
