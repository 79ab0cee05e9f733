from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from bomledger.core.errors import InventoryValidationError, NotFoundError
from bomledger.models.location import LOCATION_TYPES, Location

DEFAULT_LOCATION_NAME = "Main Warehouse"


def get_company_location(
    db: Session,
    *,
    company_id: str,
    location_id: str,
    require_active: bool = True,
) -> Location:
    location = db.execute(
        select(Location).where(Location.id == location_id, Location.company_id == company_id)
    ).scalar_one_or_none()
    if not location:
        raise NotFoundError("Location", location_id)
    if require_active and not location.is_active:
        raise InventoryValidationError(f"Location '{location.name}' is inactive")
    return location


def get_default_location(db: Session, *, company_id: str) -> Location | None:
    return db.execute(
        select(Location)
        .where(
            Location.company_id == company_id,
            Location.is_default.is_(True),
            Location.is_active.is_(True),
        )
        .order_by(Location.created_at.asc(), Location.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def ensure_default_location(db: Session, *, company_id: str) -> Location:
    existing = db.execute(
        select(Location)
        .where(Location.company_id == company_id)
        .order_by(Location.created_at.asc(), Location.id.asc())
    ).scalars().all()

    if not existing:
        location = Location(
            company_id=company_id,
            name=DEFAULT_LOCATION_NAME,
            type="warehouse",
            is_default=True,
            is_active=True,
        )
        db.add(location)
        db.flush()
        return location

    for location in existing:
        if location.is_default:
            return location

    first = existing[0]
    first.is_default = True
    db.flush()
    return first


def set_default_location(db: Session, *, company_id: str, location_id: str) -> Location:
    location = get_company_location(db, company_id=company_id, location_id=location_id)
    db.execute(
        update(Location)
        .where(
            Location.company_id == company_id,
            Location.is_default.is_(True),
            Location.id != location.id,
        )
        .values(is_default=False)
        .execution_options(synchronize_session="fetch")
    )
    location.is_default = True
    db.flush()
    return location


def _normalize_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in LOCATION_TYPES:
        raise InventoryValidationError(
            f"Unsupported location type '{value}'",
            details={"allowed": sorted(LOCATION_TYPES)},
        )
    return normalized


def _ensure_name_available(db: Session, *, company_id: str, name: str, exclude_id: str | None = None) -> None:
    stmt = select(Location.id).where(
        Location.company_id == company_id,
        func.lower(Location.name) == name.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Location.id != exclude_id)
    if db.execute(stmt).first():
        raise InventoryValidationError(f"Location name '{name}' already exists")


def create_location(
    db: Session,
    *,
    company_id: str,
    name: str,
    type: str = "warehouse",
    is_default: bool = False,
) -> Location:
    normalized_name = name.strip()
    if not normalized_name:
        raise InventoryValidationError("Location name is required")
    _ensure_name_available(db, company_id=company_id, name=normalized_name)

    has_any = db.execute(select(Location.id).where(Location.company_id == company_id).limit(1)).first()
    location = Location(
        company_id=company_id,
        name=normalized_name,
        type=_normalize_type(type),
        is_default=False,
        is_active=True,
    )
    db.add(location)
    db.flush()
    # First location of a company always becomes the default.
    if is_default or not has_any:
        set_default_location(db, company_id=company_id, location_id=location.id)
    return location


def update_location(
    db: Session,
    *,
    company_id: str,
    location_id: str,
    name: str | None = None,
    type: str | None = None,
    is_active: bool | None = None,
    is_default: bool | None = None,
) -> Location:
    location = get_company_location(db, company_id=company_id, location_id=location_id, require_active=False)

    if name is not None:
        normalized_name = name.strip()
        if not normalized_name:
            raise InventoryValidationError("Location name is required")
        _ensure_name_available(db, company_id=company_id, name=normalized_name, exclude_id=location.id)
        location.name = normalized_name
    if type is not None:
        location.type = _normalize_type(type)
    if is_active is not None:
        if not is_active and location.is_default:
            raise InventoryValidationError("Cannot deactivate the default location")
        location.is_active = is_active
    if is_default:
        if not location.is_active:
            raise InventoryValidationError("Cannot make an inactive location the default")
        set_default_location(db, company_id=company_id, location_id=location.id)
    elif is_default is False and location.is_default:
        raise InventoryValidationError("Choose another default location instead of unsetting this one")

    db.flush()
    return location


def list_locations(db: Session, *, company_id: str, include_inactive: bool = False) -> list[Location]:
    stmt = select(Location).where(Location.company_id == company_id)
    if not include_inactive:
        stmt = stmt.where(Location.is_active.is_(True))
    return list(
        db.execute(stmt.order_by(Location.is_default.desc(), Location.name.asc())).scalars().all()
    )
