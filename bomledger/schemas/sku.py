from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bomledger.schemas.common import PaginationMeta


class SKUCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    internal_code: str = Field(min_length=1, max_length=100)
    sales_channel: str | None = Field(default=None, max_length=50)
    external_ids: dict[str, str] | None = None
    brand_id: str | None = None
    notes: str | None = Field(default=None, max_length=500)


class SKUOut(BaseModel):
    id: str
    name: str
    internal_code: str
    sales_channel: str | None = None
    external_ids: dict[str, Any] | None = None
    is_active: bool
    max_buildable: int | None = None
    finished_goods_quantity: Decimal
    created_at: datetime


class SKUListOut(BaseModel):
    items: list[SKUOut]
    pagination: PaginationMeta


class BOMLineIn(BaseModel):
    component_id: str
    quantity_per_unit: Decimal = Field(ge=0)
    notes: str | None = Field(default=None, max_length=255)


class BOMVersionCreateIn(BaseModel):
    version_name: str = Field(min_length=1, max_length=100)
    effective_start_date: date
    is_active: bool = False
    notes: str | None = Field(default=None, max_length=500)
    defect_notes: str | None = Field(default=None, max_length=500)
    quality_metadata: dict[str, Any] | None = None
    lines: list[BOMLineIn] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "version_name": "v2 - new cap supplier",
                "effective_start_date": "2024-06-01",
                "is_active": True,
                "lines": [
                    {"component_id": "cmp-bottle", "quantity_per_unit": "3"},
                    {"component_id": "cmp-cap", "quantity_per_unit": "10"},
                ],
            }
        }
    )


class BOMVersionUpdateIn(BaseModel):
    version: int = Field(ge=1, description="Version counter last read by the caller.")
    version_name: str | None = Field(default=None, min_length=1, max_length=100)
    effective_start_date: date | None = None
    notes: str | None = Field(default=None, max_length=500)
    defect_notes: str | None = Field(default=None, max_length=500)
    quality_metadata: dict[str, Any] | None = None
    lines: list[BOMLineIn] | None = None

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "BOMVersionUpdateIn":
        if self.model_fields_set <= {"version"}:
            raise ValueError("At least one field must be provided")
        return self


class BOMVersionCloneIn(BaseModel):
    version_name: str = Field(min_length=1, max_length=100)
    effective_start_date: date | None = None


class BOMLineOut(BaseModel):
    id: str
    component_id: str
    component_name: str
    sku_code: str
    quantity_per_unit: Decimal
    cost_per_unit: Decimal
    line_cost: Decimal
    quantity_on_hand: Decimal
    notes: str | None = None


class BOMVersionOut(BaseModel):
    id: str
    sku_id: str
    version_name: str
    effective_start_date: date
    effective_end_date: date | None = None
    is_active: bool
    activated_at: datetime | None = None
    notes: str | None = None
    defect_notes: str | None = None
    quality_metadata: dict[str, Any] | None = None
    version: int
    unit_cost: Decimal
    lines: list[BOMLineOut]
    created_at: datetime


class BOMVersionListOut(BaseModel):
    items: list[BOMVersionOut]


class LimitingComponentOut(BaseModel):
    component_id: str
    component_name: str
    quantity_on_hand: Decimal
    quantity_per_unit: Decimal
    buildable_units: int


class BuildableOut(BaseModel):
    sku_id: str
    location_id: str | None = None
    max_buildable: int | None = None
    limiting_components: list[LimitingComponentOut]
