from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bomledger.schemas.common import PaginationMeta


class ComponentCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku_code: str = Field(min_length=1, max_length=100)
    unit_of_measure: str = Field(default="each", max_length=30)
    cost_per_unit: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_point: int = Field(default=0, ge=0)
    lead_time_days: int = Field(default=0, ge=0)
    is_lot_tracked: bool = False
    category: str | None = Field(default=None, max_length=100)
    brand_id: str | None = None
    notes: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Bottle 250ml",
                "sku_code": "BTL-250",
                "unit_of_measure": "each",
                "cost_per_unit": "0.5000",
                "reorder_point": 200,
                "lead_time_days": 14,
                "is_lot_tracked": False,
            }
        }
    )


class ComponentUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    sku_code: str | None = Field(default=None, min_length=1, max_length=100)
    unit_of_measure: str | None = Field(default=None, max_length=30)
    cost_per_unit: Decimal | None = Field(default=None, ge=0)
    reorder_point: int | None = Field(default=None, ge=0)
    lead_time_days: int | None = Field(default=None, ge=0)
    is_lot_tracked: bool | None = None
    is_active: bool | None = None
    category: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ComponentUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ComponentOut(BaseModel):
    id: str
    name: str
    sku_code: str
    category: str | None = None
    unit_of_measure: str
    cost_per_unit: Decimal
    reorder_point: int
    lead_time_days: int
    is_lot_tracked: bool
    is_active: bool
    notes: str | None = None
    quantity_on_hand: Decimal
    reorder_status: str
    created_at: datetime


class ComponentListOut(BaseModel):
    items: list[ComponentOut]
    pagination: PaginationMeta


class ComponentLocationQuantityOut(BaseModel):
    location_id: str
    quantity: Decimal


class ComponentStockOut(BaseModel):
    component_id: str
    total: Decimal
    by_location: list[ComponentLocationQuantityOut]


class LotOut(BaseModel):
    id: str
    component_id: str
    location_id: str
    lot_number: str
    expiry_date: date | None = None
    supplier: str | None = None
    balance: Decimal
    expiry_status: str
    created_at: datetime


class LotListOut(BaseModel):
    items: list[LotOut]


class AffectedSkuOut(BaseModel):
    sku_id: str
    name: str
    internal_code: str
    quantity_used: Decimal
    transaction_count: int


class LotTraceOut(BaseModel):
    lot: LotOut
    affected_skus: list[AffectedSkuOut]
