from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.money import to_cost
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.db.session import unit_of_work
from bomledger.models.sku import BOMVersion
from bomledger.schemas.sku import BOMLineOut, BOMVersionCloneIn, BOMVersionOut, BOMVersionUpdateIn
from bomledger.services import bom_service
from bomledger.services.audit_service import log_audit_event
from bomledger.services.catalog_service import get_company_components
from bomledger.services.inventory_service import get_component_quantities

router = APIRouter(prefix="/bom-versions", tags=["bom"])


def bom_version_out(
    db: Session,
    *,
    company_id: str,
    version: BOMVersion,
    location_id: str | None = None,
) -> BOMVersionOut:
    component_ids = [line.component_id for line in version.lines]
    components = get_company_components(db, company_id=company_id, component_ids=component_ids)
    quantities = get_component_quantities(
        db, company_id=company_id, component_ids=component_ids, location_id=location_id
    )
    lines = []
    for line in version.lines:
        component = components[line.component_id]
        lines.append(
            BOMLineOut(
                id=line.id,
                component_id=component.id,
                component_name=component.name,
                sku_code=component.sku_code,
                quantity_per_unit=line.quantity_per_unit,
                cost_per_unit=component.cost_per_unit,
                line_cost=to_cost(line.quantity_per_unit * component.cost_per_unit),
                quantity_on_hand=quantities[component.id],
                notes=line.notes,
            )
        )
    return BOMVersionOut(
        id=version.id,
        sku_id=version.sku_id,
        version_name=version.version_name,
        effective_start_date=version.effective_start_date,
        effective_end_date=version.effective_end_date,
        is_active=version.is_active,
        activated_at=version.activated_at,
        notes=version.notes,
        defect_notes=version.defect_notes,
        quality_metadata=version.quality_metadata,
        version=version.version,
        unit_cost=bom_service.calculate_unit_cost(db, bom_version_id=version.id),
        lines=lines,
        created_at=version.created_at,
    )


@router.get(
    "/{bom_version_id}",
    response_model=BOMVersionOut,
    summary="Get BOM version with costs and on-hand",
    responses=error_responses(401, 403, 404, 500),
)
def get_bom_version(
    bom_version_id: str,
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    version = bom_service.get_company_bom_version(
        db, company_id=access.company.id, bom_version_id=bom_version_id
    )
    return bom_version_out(db, company_id=access.company.id, version=version, location_id=location_id)


@router.patch(
    "/{bom_version_id}",
    response_model=BOMVersionOut,
    summary="Update BOM version (optimistic concurrency)",
    description="Send the `version` you last read. A stale value returns 409 `version_conflict`.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_bom_version(
    bom_version_id: str,
    payload: BOMVersionUpdateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    changes = payload.model_dump(exclude_unset=True, exclude={"version", "lines"})
    lines = None
    if payload.lines is not None:
        lines = [
            bom_service.BOMLineInput(
                component_id=line.component_id,
                quantity_per_unit=line.quantity_per_unit,
                notes=line.notes,
            )
            for line in payload.lines
        ]
    with unit_of_work(db):
        version = bom_service.update_bom_version(
            db,
            company_id=access.company.id,
            bom_version_id=bom_version_id,
            expected_version=payload.version,
            changes=changes,
            lines=lines,
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="bom_version.update",
            target_type="bom_version",
            target_id=version.id,
            metadata_json={"fields": sorted(changes), "lines_replaced": lines is not None},
        )
    db.refresh(version)
    return bom_version_out(db, company_id=access.company.id, version=version)


@router.post(
    "/{bom_version_id}/activate",
    response_model=BOMVersionOut,
    summary="Activate BOM version",
    responses=error_responses(400, 401, 403, 404, 500),
)
def activate_bom_version(
    bom_version_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        version = bom_service.activate_bom_version(
            db, company_id=access.company.id, bom_version_id=bom_version_id
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="bom_version.activate",
            target_type="bom_version",
            target_id=version.id,
        )
    db.refresh(version)
    return bom_version_out(db, company_id=access.company.id, version=version)


@router.post(
    "/{bom_version_id}/clone",
    response_model=BOMVersionOut,
    summary="Clone BOM version as a new inactive version",
    responses=error_responses(401, 403, 404, 422, 500),
)
def clone_bom_version(
    bom_version_id: str,
    payload: BOMVersionCloneIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        clone = bom_service.clone_bom_version(
            db,
            company_id=access.company.id,
            bom_version_id=bom_version_id,
            new_version_name=payload.version_name,
            actor_user_id=access.user_id,
            effective_start_date=payload.effective_start_date,
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="bom_version.clone",
            target_type="bom_version",
            target_id=clone.id,
            metadata_json={"source_id": bom_version_id},
        )
    db.refresh(clone)
    return bom_version_out(db, company_id=access.company.id, version=clone)
