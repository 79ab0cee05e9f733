from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bomledger.schemas.common import PaginationMeta


class LotAllocationIn(BaseModel):
    lot_id: str
    quantity: Decimal = Field(gt=0)


class ComponentLotOverrideIn(BaseModel):
    component_id: str
    allocations: list[LotAllocationIn] = Field(min_length=1)


class BuildTransactionIn(BaseModel):
    sku_id: str
    units_to_build: int = Field(gt=0)
    transaction_date: date
    location_id: str | None = None
    sales_channel: str | None = Field(default=None, max_length=50)
    notes: str | None = Field(default=None, max_length=1000)
    defect_count: int | None = Field(default=None, ge=0)
    defect_notes: str | None = Field(default=None, max_length=500)
    affected_units: int | None = Field(default=None, ge=0)
    allow_insufficient_inventory: bool = False
    allow_expired_lots: bool = False
    lot_overrides: list[ComponentLotOverrideIn] = Field(default_factory=list)
    output_to_finished_goods: bool = False
    output_location_id: str | None = None
    output_quantity: int | None = Field(default=None, gt=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sku_id": "sku-id-here",
                "units_to_build": 100,
                "transaction_date": "2024-06-15",
                "output_to_finished_goods": True,
            }
        }
    )


class ReceiptTransactionIn(BaseModel):
    component_id: str
    quantity: Decimal = Field(gt=0)
    transaction_date: date
    location_id: str | None = None
    supplier: str | None = Field(default=None, max_length=255)
    cost_per_unit: Decimal | None = Field(default=None, ge=0)
    update_component_cost: bool = False
    lot_number: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None
    notes: str | None = Field(default=None, max_length=1000)


class InitialTransactionIn(BaseModel):
    component_id: str
    quantity: Decimal = Field(gt=0)
    transaction_date: date
    location_id: str | None = None
    cost_per_unit: Decimal | None = Field(default=None, ge=0)
    update_component_cost: bool = False
    lot_number: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None
    notes: str | None = Field(default=None, max_length=1000)


class AdjustmentTransactionIn(BaseModel):
    component_id: str
    quantity_change: Decimal = Field(
        ..., description="Positive adds stock, negative removes stock. Cannot be zero."
    )
    reason: str = Field(min_length=3, max_length=100)
    transaction_date: date
    location_id: str | None = None
    lot_number: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None
    lot_overrides: list[LotAllocationIn] = Field(default_factory=list)
    allow_insufficient_inventory: bool = False
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("quantity_change")
    @classmethod
    def validate_non_zero_quantity_change(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("quantity_change cannot be zero")
        return value


class TransferTransactionIn(BaseModel):
    component_id: str
    quantity: Decimal = Field(gt=0)
    from_location_id: str
    to_location_id: str
    transaction_date: date
    lot_overrides: list[LotAllocationIn] = Field(default_factory=list)
    allow_expired_lots: bool = False
    notes: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def validate_distinct_locations(self) -> "TransferTransactionIn":
        if self.from_location_id == self.to_location_id:
            raise ValueError("Cannot transfer to the same location")
        return self


class TransactionLineOut(BaseModel):
    id: str
    component_id: str
    location_id: str
    lot_id: str | None = None
    lot_number: str | None = None
    lot_expiry_date: date | None = None
    quantity_change: Decimal
    cost_per_unit: Decimal | None = None


class FinishedGoodsLineOut(BaseModel):
    id: str
    sku_id: str
    location_id: str
    quantity_change: Decimal
    cost_per_unit: Decimal | None = None


class ShortfallOut(BaseModel):
    component_id: str
    component_name: str
    sku_code: str
    required: Decimal
    available: Decimal
    shortage: Decimal
    location_id: str | None = None


class TransactionOut(BaseModel):
    id: str
    type: str
    status: str
    transaction_date: date
    sku_id: str | None = None
    bom_version_id: str | None = None
    location_id: str | None = None
    from_location_id: str | None = None
    to_location_id: str | None = None
    output_location_id: str | None = None
    output_quantity: int | None = None
    sales_channel: str | None = None
    units_built: int | None = None
    unit_bom_cost: Decimal | None = None
    total_bom_cost: Decimal | None = None
    supplier: str | None = None
    reason: str | None = None
    notes: str | None = None
    defect_count: int | None = None
    defect_notes: str | None = None
    affected_units: int | None = None
    bom_snapshot: dict[str, Any] | None = None
    created_by_id: str
    reviewed_by_id: str | None = None
    reviewed_at: datetime | None = None
    reject_reason: str | None = None
    created_at: datetime
    lines: list[TransactionLineOut]
    finished_goods_lines: list[FinishedGoodsLineOut]


class TransactionCreateOut(BaseModel):
    transaction: TransactionOut
    warnings: list[ShortfallOut] = Field(default_factory=list)
    expired_lots_used: list[dict[str, Any]] = Field(default_factory=list)


class TransactionListOut(BaseModel):
    items: list[TransactionOut]
    pagination: PaginationMeta
