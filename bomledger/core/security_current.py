from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.deps import get_db
from bomledger.models.company import Company

COMPANY_ROLES = {"admin", "ops", "viewer"}


@dataclass(frozen=True)
class CompanyAccess:
    company: Company
    user_id: str
    role: str


def get_current_company_access(
    x_company_id: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> CompanyAccess:
    # Identity is asserted by the upstream gateway; only tenant scoping happens here.
    if not x_company_id or not x_user_id:
        raise HTTPException(status_code=401, detail="Missing identity headers")

    role = (x_user_role or "viewer").strip().lower()
    if role not in COMPANY_ROLES:
        raise HTTPException(status_code=403, detail="Unknown role")

    company = db.execute(select(Company).where(Company.id == x_company_id)).scalar_one_or_none()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return CompanyAccess(company=company, user_id=x_user_id, role=role)
