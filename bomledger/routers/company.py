from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.db.session import unit_of_work
from bomledger.schemas.company import CompanySettingsOut, CompanySettingsUpdateIn
from bomledger.services.audit_service import log_audit_event
from bomledger.services.settings_service import resolve_company_settings, update_company_settings

router = APIRouter(prefix="/company", tags=["company"])


@router.get(
    "/settings",
    response_model=CompanySettingsOut,
    summary="Get inventory policy settings",
    responses=error_responses(401, 403, 404, 500),
)
def get_settings(
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    return CompanySettingsOut(**resolve_company_settings(access.company).model_dump())


@router.patch(
    "/settings",
    response_model=CompanySettingsOut,
    summary="Update inventory policy settings",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def patch_settings(
    payload: CompanySettingsUpdateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin")),
):
    changes = payload.model_dump(exclude_unset=True)
    with unit_of_work(db):
        updated = update_company_settings(db, company=access.company, changes=changes)
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="company.settings_update",
            target_type="company",
            target_id=access.company.id,
            metadata_json=changes,
        )
    return CompanySettingsOut(**updated.model_dump())
