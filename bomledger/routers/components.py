from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bomledger.core.api_docs import error_responses
from bomledger.core.config import settings
from bomledger.core.deps import get_db
from bomledger.core.permissions import require_company_roles
from bomledger.core.security_current import CompanyAccess
from bomledger.db.session import unit_of_work
from bomledger.models.component import Component
from bomledger.routers.lots import lot_out
from bomledger.schemas.common import PaginationMeta
from bomledger.schemas.component import (
    ComponentCreateIn,
    ComponentListOut,
    ComponentLocationQuantityOut,
    ComponentOut,
    ComponentStockOut,
    ComponentUpdateIn,
    LotListOut,
)
from bomledger.services import catalog_service
from bomledger.services.audit_service import log_audit_event
from bomledger.services.inventory_service import (
    calculate_reorder_status,
    get_component_quantities,
    get_component_quantities_by_location,
    get_component_quantity,
    get_lots_for_component,
)
from bomledger.services.settings_service import resolve_company_settings

router = APIRouter(prefix="/components", tags=["components"])


def _component_out(component: Component, *, quantity, multiplier: float) -> ComponentOut:
    return ComponentOut(
        id=component.id,
        name=component.name,
        sku_code=component.sku_code,
        category=component.category,
        unit_of_measure=component.unit_of_measure,
        cost_per_unit=component.cost_per_unit,
        reorder_point=component.reorder_point,
        lead_time_days=component.lead_time_days,
        is_lot_tracked=component.is_lot_tracked,
        is_active=component.is_active,
        notes=component.notes,
        quantity_on_hand=quantity,
        reorder_status=calculate_reorder_status(quantity, component.reorder_point, multiplier),
        created_at=component.created_at,
    )


@router.post(
    "",
    response_model=ComponentOut,
    summary="Create component",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_component(
    payload: ComponentCreateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    with unit_of_work(db):
        component = catalog_service.create_component(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            **payload.model_dump(),
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="component.create",
            target_type="component",
            target_id=component.id,
            metadata_json={"sku_code": component.sku_code},
        )
    db.refresh(component)
    multiplier = resolve_company_settings(access.company).reorder_warning_multiplier
    return _component_out(component, quantity=0, multiplier=multiplier)


@router.get(
    "",
    response_model=ComponentListOut,
    summary="List components with on-hand quantity",
    responses=error_responses(401, 403, 422, 500),
)
def list_components(
    q: str | None = Query(default=None, max_length=100),
    location_id: str | None = Query(default=None),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    rows, total = catalog_service.list_components(
        db,
        company_id=access.company.id,
        include_inactive=include_inactive,
        q=q,
        limit=limit,
        offset=offset,
    )
    quantities = get_component_quantities(
        db,
        company_id=access.company.id,
        component_ids=[row.id for row in rows],
        location_id=location_id,
    )
    multiplier = resolve_company_settings(access.company).reorder_warning_multiplier
    items = [_component_out(row, quantity=quantities[row.id], multiplier=multiplier) for row in rows]
    count = len(items)
    return ComponentListOut(
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
    "/{component_id}",
    response_model=ComponentOut,
    summary="Get component",
    responses=error_responses(401, 403, 404, 500),
)
def get_component(
    component_id: str,
    location_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    component = catalog_service.get_company_component(
        db, company_id=access.company.id, component_id=component_id
    )
    quantity = get_component_quantity(
        db, company_id=access.company.id, component_id=component.id, location_id=location_id
    )
    multiplier = resolve_company_settings(access.company).reorder_warning_multiplier
    return _component_out(component, quantity=quantity, multiplier=multiplier)


@router.patch(
    "/{component_id}",
    response_model=ComponentOut,
    summary="Update component",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_component(
    component_id: str,
    payload: ComponentUpdateIn,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops")),
):
    changes = payload.model_dump(exclude_unset=True)
    with unit_of_work(db):
        component = catalog_service.update_component(
            db, company_id=access.company.id, component_id=component_id, changes=changes
        )
        log_audit_event(
            db,
            company_id=access.company.id,
            actor_user_id=access.user_id,
            action="component.update",
            target_type="component",
            target_id=component.id,
            metadata_json={key: str(value) for key, value in changes.items()},
        )
    db.refresh(component)
    quantity = get_component_quantity(db, company_id=access.company.id, component_id=component.id)
    multiplier = resolve_company_settings(access.company).reorder_warning_multiplier
    return _component_out(component, quantity=quantity, multiplier=multiplier)


@router.get(
    "/{component_id}/stock",
    response_model=ComponentStockOut,
    summary="On-hand quantity per location",
    responses=error_responses(401, 403, 404, 500),
)
def get_component_stock(
    component_id: str,
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    component = catalog_service.get_company_component(
        db, company_id=access.company.id, component_id=component_id
    )
    by_location = get_component_quantities_by_location(
        db, company_id=access.company.id, component_id=component.id
    )
    return ComponentStockOut(
        component_id=component.id,
        total=sum(by_location.values(), start=0),
        by_location=[
            ComponentLocationQuantityOut(location_id=location_id, quantity=quantity)
            for location_id, quantity in sorted(by_location.items())
        ],
    )


@router.get(
    "/{component_id}/lots",
    response_model=LotListOut,
    summary="Lots of a component in FEFO order",
    responses=error_responses(401, 403, 404, 500),
)
def list_component_lots(
    component_id: str,
    location_id: str | None = Query(default=None),
    include_empty: bool = Query(default=False),
    db: Session = Depends(get_db),
    access: CompanyAccess = Depends(require_company_roles("admin", "ops", "viewer")),
):
    component = catalog_service.get_company_component(
        db, company_id=access.company.id, component_id=component_id
    )
    lots = get_lots_for_component(
        db, company_id=access.company.id, component_id=component.id, location_id=location_id
    )
    today = date.today()
    items = [
        lot_out(lot, balance=balance, as_of=today, warning_days=settings.lot_expiry_warning_days)
        for lot, balance in lots
        if include_empty or balance > 0
    ]
    items.sort(key=lambda item: (item.expiry_date is None, item.expiry_date or date.min, item.id))
    return LotListOut(items=items)
