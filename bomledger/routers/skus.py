from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.db.session import unit_of_work
from bomledger.models.sku import SKU
from bomledger.routers.bom_versions import bom_version_out
from bomledger.schemas.common import PaginationMeta
from bomledger.schemas.sku import (
    BOMVersionCreateIn,
    BOMVersionListOut,
    BOMVersionOut,
    BuildableOut,
    LimitingComponentOut,
    SKUCreateIn,
    SKUListOut,
    SKUOut,
)
from bomledger.services import bom_service, buildable_service, catalog_service
from bomledger.services.audit_service import log_audit_event
from bomledger.services.inventory_service import get_sku_finished_goods_quantity

router = APIRouter(prefix="/skus", tags=["skus"])


def _sku_out(db: Session, sku: SKU, *, max_buildable: int | None) -> SKUOut:
    return SKUOut(
        id=sku.id,
        name=sku.name,
        internal_code=sku.internal_code,
        sales_channel=sku.sales_channel,
        external_ids=sku.external_ids,
        is_active=sku.is_active,
        max_buildable=max_buildable,
        finished_goods_quantity=get_sku_finished_goods_quantity(db, company_id=sku.company_id, sku_id=sku.id),
        created_at=sku.created_at,
    )


@router.post(
    "",
    response_model=SKUOut,
    summary="Create SKU",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_sku(
    payload: SKUCreateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        sku = catalog_service.create_sku(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            **payload.model_dump(),
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="sku.create",
            target_type="sku",
            target_id=sku.id,
            metadata_json={"internal_code": sku.internal_code},
        )
    db.refresh(sku)
    return _sku_out(db, sku, max_buildable=None)


@router.get(
    "",
    response_model=SKUListOut,
    summary="List SKUs with buildable units",
    responses=error_responses(401, 403, 422, 500),
)
def list_skus(
    location_id: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    rows, total = catalog_service.list_skus(
        db,
        company_id=access.company.id,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )
    buildable = buildable_service.max_buildable_for_skus(
        db, company_id=access.company.id, sku_ids=[row.id for row in rows], location_id=location_id
    )
    items = [_sku_out(db, row, max_buildable=buildable[row.id]) for row in rows]
    count = len(items)
    return SKUListOut(
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
    "/{sku_id}",
    response_model=SKUOut,
    summary="Get SKU",
    responses=error_responses(401, 403, 404, 500),
)
def get_sku(
    sku_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    sku = catalog_service.get_company_sku(db, company_id=access.company.id, sku_id=sku_id)
    units = buildable_service.max_buildable(db, company_id=access.company.id, sku_id=sku.id)
    return _sku_out(db, sku, max_buildable=units)


@router.get(
    "/{sku_id}/buildable",
    response_model=BuildableOut,
    summary="Maximum buildable units and limiting components",
    responses=error_responses(401, 403, 404, 500),
)
def get_buildable(
    sku_id: str,
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    units = buildable_service.max_buildable(
        db, company_id=access.company.id, sku_id=sku_id, location_id=location_id
    )
    limiting = buildable_service.limiting_components(
        db, company_id=access.company.id, sku_id=sku_id, location_id=location_id
    )
    return BuildableOut(
        sku_id=sku_id,
        location_id=location_id,
        max_buildable=units,
        limiting_components=[
            LimitingComponentOut(
                component_id=item.component_id,
                component_name=item.component_name,
                quantity_on_hand=item.quantity_on_hand,
                quantity_per_unit=item.quantity_per_unit,
                buildable_units=item.buildable_units,
            )
            for item in limiting
        ],
    )


@router.get(
    "/{sku_id}/bom-versions",
    response_model=BOMVersionListOut,
    summary="List BOM versions of a SKU",
    responses=error_responses(401, 403, 404, 500),
)
def list_bom_versions(
    sku_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    versions = bom_service.list_bom_versions(db, company_id=access.company.id, sku_id=sku_id)
    return BOMVersionListOut(
        items=[bom_version_out(db, company_id=access.company.id, version=version) for version in versions]
    )


@router.post(
    "/{sku_id}/bom-versions",
    response_model=BOMVersionOut,
    summary="Create BOM version",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_bom_version(
    sku_id: str,
    payload: BOMVersionCreateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        version = bom_service.create_bom_version(
            db,
            company_id=access.company.id,
            sku_id=sku_id,
            actor_user_id=access.user_id,
            version_name=payload.version_name,
            effective_start_date=payload.effective_start_date,
            is_active=payload.is_active,
            notes=payload.notes,
            defect_notes=payload.defect_notes,
            quality_metadata=payload.quality_metadata,
            lines=[
                bom_service.BOMLineInput(
                    component_id=line.component_id,
                    quantity_per_unit=line.quantity_per_unit,
                    notes=line.notes,
                )
                for line in payload.lines
            ],
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="bom_version.create",
            target_type="bom_version",
            target_id=version.id,
            metadata_json={"sku_id": sku_id, "is_active": payload.is_active},
        )
    db.refresh(version)
    return bom_version_out(db, company_id=access.company.id, version=version)
