from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from bomledger.db.base import Base, generate_id


class Component(Base):
    """
    Raw input consumed by builds. ``cost_per_unit`` is the current cost and only
    prices NEW receipts and BOM cost rollups; ledger lines keep their own snapshot.
    """
    __tablename__ = "components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    brand_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku_code: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    unit_of_measure: Mapped[str] = mapped_column(String(30), nullable=False, default="each", server_default="each")
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    reorder_point: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_lot_tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("company_id", "sku_code", name="uq_components_company_sku_code"),
        Index("ix_components_company_active", "company_id", "is_active"),
    )


class Lot(Base):
    """
    A dated batch of one component at one location. The balance is never stored:
    it is the sum of approved ledger lines that reference the lot.
    """
    __tablename__ = "lots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    component_id: Mapped[str] = mapped_column(String(36), ForeignKey("components.id"), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)
    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    supplier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "component_id",
            "location_id",
            "lot_number",
            name="uq_lots_component_location_lot_number",
        ),
        Index("ix_lots_company_component_expiry", "company_id", "component_id", "expiry_date"),
    )
