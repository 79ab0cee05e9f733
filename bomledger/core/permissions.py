from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from bomledger.core.security_current import COMPANY_ROLES, CompanyAccess, get_current_company_access


def require_company_roles(*allowed_roles: str) -> Callable[[CompanyAccess], CompanyAccess]:
    """Viewers read; admin and ops post to the ledger; tenant policy is admin-only."""
    allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not allowed or not allowed <= COMPANY_ROLES:
        raise ValueError(f"Invalid role set: {sorted(allowed_roles)}")

    def dependency(access: CompanyAccess = Depends(get_current_company_access)) -> CompanyAccess:
        if access.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{access.role}' cannot perform this action",
            )
        return access

    return dependency
