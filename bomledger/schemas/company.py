from pydantic import BaseModel, Field, model_validator


class CompanySettingsOut(BaseModel):
    allow_negative_inventory: bool
    enforce_lot_expiry: bool
    allow_expired_lot_override: bool
    reorder_warning_multiplier: float


class CompanySettingsUpdateIn(BaseModel):
    allow_negative_inventory: bool | None = None
    enforce_lot_expiry: bool | None = None
    allow_expired_lot_override: bool | None = None
    reorder_warning_multiplier: float | None = Field(default=None, ge=1.0, le=10.0)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "CompanySettingsUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self
