from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from bomledger.schemas.transaction import (
    AdjustmentTransactionIn,
    BuildTransactionIn,
    InitialTransactionIn,
    ReceiptTransactionIn,
    TransactionOut,
    TransferTransactionIn,
)


class BuildDraftIn(BuildTransactionIn):
    type: Literal["build"]


class ReceiptDraftIn(ReceiptTransactionIn):
    type: Literal["receipt"]


class AdjustmentDraftIn(AdjustmentTransactionIn):
    type: Literal["adjustment"]


class InitialDraftIn(InitialTransactionIn):
    type: Literal["initial"]


class TransferDraftIn(TransferTransactionIn):
    type: Literal["transfer"]


DraftCreateIn = BuildDraftIn | ReceiptDraftIn | AdjustmentDraftIn | InitialDraftIn | TransferDraftIn


class DraftRejectIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


_NON_NULL_UPDATE_FIELDS = frozenset(
    {
        "transaction_date",
        "sku_id",
        "units_to_build",
        "component_id",
        "quantity",
        "quantity_change",
        "reason",
        "from_location_id",
        "to_location_id",
        "allow_insufficient_inventory",
        "allow_expired_lots",
        "output_to_finished_goods",
        "update_component_cost",
    }
)


class DraftUpdateIn(BaseModel):
    """Fields to change on a pending draft. Only fields that apply to the draft's type are accepted."""

    transaction_date: date | None = None
    location_id: str | None = None
    notes: str | None = Field(default=None, max_length=1000)
    sku_id: str | None = None
    units_to_build: int | None = Field(default=None, gt=0)
    sales_channel: str | None = Field(default=None, max_length=50)
    defect_count: int | None = Field(default=None, ge=0)
    defect_notes: str | None = Field(default=None, max_length=500)
    affected_units: int | None = Field(default=None, ge=0)
    allow_insufficient_inventory: bool | None = None
    allow_expired_lots: bool | None = None
    output_to_finished_goods: bool | None = None
    output_location_id: str | None = None
    output_quantity: int | None = Field(default=None, gt=0)
    component_id: str | None = None
    quantity: Decimal | None = Field(default=None, gt=0)
    quantity_change: Decimal | None = None
    reason: str | None = Field(default=None, min_length=3, max_length=100)
    supplier: str | None = Field(default=None, max_length=255)
    cost_per_unit: Decimal | None = Field(default=None, ge=0)
    update_component_cost: bool | None = None
    lot_number: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None
    from_location_id: str | None = None
    to_location_id: str | None = None

    @model_validator(mode="after")
    def validate_changes(self) -> "DraftUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        cleared = sorted(name for name in self.model_fields_set & _NON_NULL_UPDATE_FIELDS if getattr(self, name) is None)
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class DraftDeleteOut(BaseModel):
    id: str
    deleted_at: datetime


class DraftBatchApproveIn(BaseModel):
    draft_ids: list[str] = Field(min_length=1, max_length=50)


class DraftBatchItemOut(BaseModel):
    id: str
    success: bool
    code: str | None = None
    error: str | None = None
    transaction: TransactionOut | None = None


class DraftBatchSummaryOut(BaseModel):
    total: int
    succeeded: int
    failed: int


class DraftBatchApproveOut(BaseModel):
    results: list[DraftBatchItemOut]
    summary: DraftBatchSummaryOut


class DraftCountOut(BaseModel):
    pending: int
