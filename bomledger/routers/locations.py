from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.db.session import unit_of_work
from bomledger.models.location import Location
from bomledger.schemas.common import PaginationMeta
from bomledger.schemas.location import LocationCreateIn, LocationListOut, LocationOut, LocationUpdateIn
from bomledger.services import location_service
from bomledger.services.audit_service import log_audit_event

router = APIRouter(prefix="/locations", tags=["locations"])


def _location_out(location: Location) -> LocationOut:
    return LocationOut.model_validate(location)


@router.post(
    "",
    response_model=LocationOut,
    summary="Create location",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_location(
    payload: LocationCreateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        location = location_service.create_location(
            db,
            company_id=access.company.id,
            name=payload.name,
            type=payload.type,
            is_default=payload.is_default,
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="location.create",
            target_type="location",
            target_id=location.id,
            metadata_json={"name": location.name, "type": location.type},
        )
    db.refresh(location)
    return _location_out(location)


@router.get(
    "",
    response_model=LocationListOut,
    summary="List locations",
    responses=error_responses(401, 403, 422, 500),
)
def list_locations(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    rows = location_service.list_locations(
        db, company_id=access.company.id, include_inactive=include_inactive
    )
    items = [_location_out(row) for row in rows]
    count = len(items)
    return LocationListOut(
        items=items,
        pagination=PaginationMeta(total=count, limit=count, offset=0, count=count, has_next=False),
    )


@router.patch(
    "/{location_id}",
    response_model=LocationOut,
    summary="Update location",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_location(
    location_id: str,
    payload: LocationUpdateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin")),
):
    with unit_of_work(db):
        location = location_service.update_location(
            db,
            company_id=access.company.id,
            location_id=location_id,
            name=payload.name,
            type=payload.type,
            is_active=payload.is_active,
            is_default=payload.is_default,
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="location.update",
            target_type="location",
            target_id=location.id,
            metadata_json=payload.model_dump(exclude_none=True),
        )
    db.refresh(location)
    return _location_out(location)


@router.post(
    "/{location_id}/default",
    response_model=LocationOut,
    summary="Make location the company default",
    responses=error_responses(400, 401, 403, 404, 500),
)
def set_default_location(
    location_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin")),
):
    with unit_of_work(db):
        location = location_service.set_default_location(
            db, company_id=access.company.id, location_id=location_id
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="location.set_default",
            target_type="location",
            target_id=location.id,
        )
    db.refresh(location)
    return _location_out(location)


@router.post(
    "/default",
    response_model=LocationOut,
    summary="Ensure the company has a default location",
    description="Creates `Main Warehouse` when the company has no locations, otherwise promotes the oldest one.",
    responses=error_responses(401, 403, 500),
)
def ensure_default_location(
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        location = location_service.ensure_default_location(db, company_id=access.company.id)
    db.refresh(location)
    return _location_out(location)
