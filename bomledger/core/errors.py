"""Typed failures raised by the inventory/BOM services.

Every error is detected before any ledger row is written, so callers can render
``code``/``message``/``details`` without re-deriving business meaning.
"""

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {key: to_jsonable(item) for key, item in dataclasses.asdict(value).items()}
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class InventoryError(Exception):
    code = "inventory_error"

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def details_payload(self) -> Any:
        return to_jsonable(self.details)


class InventoryValidationError(InventoryError):
    code = "invalid_request"


class NotFoundError(InventoryError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str | None = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} not found: {entity_id}"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class NoBOMEffectiveError(InventoryError):
    code = "no_bom_effective"

    def __init__(self, sku_id: str, as_of: date):
        super().__init__(
            f"No BOM version effective on {as_of.isoformat()} for this SKU",
            details={"sku_id": sku_id, "as_of": as_of},
        )
        self.sku_id = sku_id
        self.as_of = as_of


class InsufficientInventoryError(InventoryError):
    code = "insufficient_inventory"

    def __init__(self, shortfalls: list, message: str | None = None):
        super().__init__(
            message or f"Insufficient inventory for {len(shortfalls)} component(s)",
            details=shortfalls,
        )
        self.shortfalls = shortfalls


class ExpiredLotBlockError(InventoryError):
    code = "expired_lot_block"

    def __init__(self, lots: list, *, override_permitted: bool):
        super().__init__(
            f"Allocation would consume {len(lots)} expired lot(s)",
            details={"override_permitted": override_permitted, "lots": lots},
        )
        self.lots = lots
        self.override_permitted = override_permitted


class InvalidLotOverrideError(InventoryError):
    code = "invalid_lot_override"

    def __init__(self, errors: list[str]):
        super().__init__("Manual lot override rejected", details=errors)
        self.errors = errors


class VersionConflictError(InventoryError):
    code = "version_conflict"

    def __init__(self, entity_id: str, expected_version: int, current_version: int | None):
        super().__init__(
            "Record was modified by another request; re-fetch and retry",
            details={
                "id": entity_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )
        self.expected_version = expected_version
        self.current_version = current_version


class MissingOutputLocationError(InventoryError):
    code = "missing_output_location"

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "No output location specified and company has no default location"
        )


class InvalidTransitionError(InventoryError):
    code = "invalid_transition"

    def __init__(self, current_status: str, next_status: str):
        super().__init__(
            f"Cannot transition transaction from '{current_status}' to '{next_status}'",
            details={"current_status": current_status, "next_status": next_status},
        )
        self.current_status = current_status
        self.next_status = next_status


class BOMVersionLockedError(InventoryError):
    code = "bom_version_locked"
