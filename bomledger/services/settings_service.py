from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.config import settings
from bomledger.core.errors import NotFoundError
from bomledger.models.company import Company


class CompanySettings(BaseModel):
    allow_negative_inventory: bool = settings.default_allow_negative_inventory
    enforce_lot_expiry: bool = settings.default_enforce_lot_expiry
    allow_expired_lot_override: bool = settings.default_allow_expired_lot_override
    reorder_warning_multiplier: float = settings.default_reorder_warning_multiplier


def _defaults() -> CompanySettings:
    return CompanySettings(
        allow_negative_inventory=settings.default_allow_negative_inventory,
        enforce_lot_expiry=settings.default_enforce_lot_expiry,
        allow_expired_lot_override=settings.default_allow_expired_lot_override,
        reorder_warning_multiplier=settings.default_reorder_warning_multiplier,
    )


def resolve_company_settings(company: Company) -> CompanySettings:
    merged = _defaults().model_dump()
    stored = company.settings or {}
    for key in CompanySettings.model_fields:
        if key in stored:
            merged[key] = stored[key]
    try:
        return CompanySettings.model_validate(merged)
    except ValidationError:
        # A bad stored value must not take the ledger down; fall back per field.
        result = _defaults()
        for key in CompanySettings.model_fields:
            if key not in stored:
                continue
            try:
                candidate = CompanySettings.model_validate({**result.model_dump(), key: stored[key]})
            except ValidationError:
                continue
            result = candidate
        return result


def get_company_settings(db: Session, *, company_id: str) -> CompanySettings:
    company = db.execute(select(Company).where(Company.id == company_id)).scalar_one_or_none()
    if not company:
        raise NotFoundError("Company", company_id)
    return resolve_company_settings(company)


def update_company_settings(db: Session, *, company: Company, changes: dict) -> CompanySettings:
    current = resolve_company_settings(company)
    updated = CompanySettings.model_validate({**current.model_dump(), **changes})
    company.settings = updated.model_dump()
    return updated
