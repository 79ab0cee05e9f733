from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from bomledger.core.money import ZERO, floor_units, to_decimal
from bomledger.models.sku import BOMVersion
from bomledger.services.bom_service import get_active_bom, get_active_boms
from bomledger.services.catalog_service import get_company_components, get_company_sku
from bomledger.services.inventory_service import get_component_quantities


@dataclass(frozen=True)
class LimitingComponent:
    component_id: str
    component_name: str
    quantity_on_hand: Decimal
    quantity_per_unit: Decimal
    buildable_units: int


def _buildable_from_quantities(version: BOMVersion, quantities: Mapping[str, Decimal]) -> int | None:
    best: int | None = None
    for line in version.lines:
        per_unit = to_decimal(line.quantity_per_unit)
        if per_unit <= 0:
            # Zero-quantity lines never constrain the build.
            continue
        units = max(floor_units(quantities.get(line.component_id, ZERO) / per_unit), 0)
        best = units if best is None else min(best, units)
    return best


def max_buildable(
    db: Session,
    *,
    company_id: str,
    sku_id: str,
    location_id: str | None = None,
) -> int | None:
    """Units of the SKU buildable from approved stock; None without an active BOM.

    An active BOM with no constraining lines (empty, or every line 0 per unit)
    also yields None because no finite bound exists.
    """
    get_company_sku(db, company_id=company_id, sku_id=sku_id)
    version = get_active_bom(db, company_id=company_id, sku_id=sku_id)
    if version is None:
        return None
    quantities = get_component_quantities(
        db,
        company_id=company_id,
        component_ids=[line.component_id for line in version.lines],
        location_id=location_id,
    )
    return _buildable_from_quantities(version, quantities)


def max_buildable_for_skus(
    db: Session,
    *,
    company_id: str,
    sku_ids: Iterable[str],
    location_id: str | None = None,
) -> dict[str, int | None]:
    ids = list(dict.fromkeys(sku_ids))
    versions = get_active_boms(db, company_id=company_id, sku_ids=ids)
    component_ids = {line.component_id for version in versions.values() for line in version.lines}
    # One aggregate query shared by every SKU.
    quantities = get_component_quantities(
        db, company_id=company_id, component_ids=component_ids, location_id=location_id
    )

    result: dict[str, int | None] = {}
    for sku_id in ids:
        version = versions.get(sku_id)
        result[sku_id] = None if version is None else _buildable_from_quantities(version, quantities)
    return result


def limiting_components(
    db: Session,
    *,
    company_id: str,
    sku_id: str,
    location_id: str | None = None,
) -> list[LimitingComponent]:
    get_company_sku(db, company_id=company_id, sku_id=sku_id)
    version = get_active_bom(db, company_id=company_id, sku_id=sku_id)
    if version is None:
        return []
    constraining = [line for line in version.lines if to_decimal(line.quantity_per_unit) > 0]
    component_ids = [line.component_id for line in constraining]
    quantities = get_component_quantities(
        db, company_id=company_id, component_ids=component_ids, location_id=location_id
    )
    components = get_company_components(db, company_id=company_id, component_ids=component_ids)

    items = []
    for line in constraining:
        per_unit = to_decimal(line.quantity_per_unit)
        on_hand = quantities[line.component_id]
        items.append(
            LimitingComponent(
                component_id=line.component_id,
                component_name=components[line.component_id].name,
                quantity_on_hand=on_hand,
                quantity_per_unit=per_unit,
                buildable_units=max(floor_units(on_hand / per_unit), 0),
            )
        )
    items.sort(key=lambda item: (item.buildable_units, item.component_name))
    return items
