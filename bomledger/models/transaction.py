from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bomledger.db.base import Base, generate_id


class TransactionType(str, Enum):
    BUILD = "build"
    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    INITIAL = "initial"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"


class Transaction(Base):
    """
    Append-only ledger header. Only ``approved`` rows count toward on-hand
    quantities; ``approved`` and ``rejected`` are terminal. Pending drafts can
    be soft-deleted, which hides them from every listing.
    """
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TransactionStatus.APPROVED.value)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    sku_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("skus.id"), nullable=True, index=True)
    bom_version_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("bom_versions.id"), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    from_location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    to_location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    output_location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)

    sales_channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    units_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    output_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    unit_bom_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    total_bom_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(16, 4), nullable=True)
    bom_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    supplier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    defect_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    defect_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    affected_units: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Overrides the lines were planned under; approval re-validates with the same policy.
    allow_insufficient_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    allow_expired_lots: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    created_by_id: Mapped[str] = mapped_column(String(36), nullable=False)
    reviewed_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reject_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    lines: Mapped[list["TransactionLine"]] = relationship(
        "TransactionLine",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionLine.position",
    )
    finished_goods_lines: Mapped[list["FinishedGoodsLine"]] = relationship(
        "FinishedGoodsLine",
        back_populates="transaction",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_transactions_company_status_date", "company_id", "status", "transaction_date"),
        Index("ix_transactions_company_type_created_at", "company_id", "type", "created_at"),
    )


class TransactionLine(Base):
    """
    One signed quantity change of one component at one location.
    Positive = inbound, negative = consumption/outbound.
    """
    __tablename__ = "transaction_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    transaction_id: Mapped[str] = mapped_column(String(36), ForeignKey("transactions.id"), nullable=False, index=True)
    component_id: Mapped[str] = mapped_column(String(36), ForeignKey("components.id"), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    lot_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("lots.id"), nullable=True, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quantity_change: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="lines")

    __table_args__ = (
        Index("ix_transaction_lines_component_location", "component_id", "location_id"),
    )


class FinishedGoodsLine(Base):
    __tablename__ = "finished_goods_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    transaction_id: Mapped[str] = mapped_column(String(36), ForeignKey("transactions.id"), nullable=False, index=True)
    sku_id: Mapped[str] = mapped_column(String(36), ForeignKey("skus.id"), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    quantity_change: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)

    transaction: Mapped[Transaction] = relationship("Transaction", back_populates="finished_goods_lines")
