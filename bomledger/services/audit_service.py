from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bomledger.core.errors import to_jsonable
from bomledger.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    company_id: str,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row on the caller's unit of work; it commits or rolls back with the change."""
    event = AuditLog(
        company_id=company_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        # Quantities and dates arrive as Decimal/date; the JSON column stores strings.
        metadata_json=to_jsonable(metadata_json) if metadata_json is not None else None,
    )
    db.add(event)
    return event


def list_audit_events(
    db: Session,
    *,
    company_id: str,
    action: str | None = None,
    target_id: str | None = None,
) -> list[AuditLog]:
    stmt = select(AuditLog).where(AuditLog.company_id == company_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if target_id:
        stmt = stmt.where(AuditLog.target_id == target_id)
    return list(db.execute(stmt.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())).scalars().all())
