from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bomledger.schemas.common import PaginationMeta

LocationType = Literal["warehouse", "3pl", "fba", "finished_goods"]


class LocationCreateIn(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    type: LocationType = "warehouse"
    is_default: bool = False

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Finished goods bay", "type": "finished_goods"}}
    )


class LocationUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    type: LocationType | None = None
    is_active: bool | None = None
    is_default: bool | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "LocationUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class LocationOut(BaseModel):
    id: str
    name: str
    type: str
    is_default: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LocationListOut(BaseModel):
    items: list[LocationOut]
    pagination: PaginationMeta
