from datetime import date, datetime
from decimal import Decimal
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
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bomledger.db.base import Base, generate_id


class SKU(Base):
    __tablename__ = "skus"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    brand_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    internal_code: Mapped[str] = mapped_column(String(100), nullable=False)
    sales_channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    # e.g. {"shopify": "123", "amazon_asin": "B0..."}
    external_ids: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("company_id", "internal_code", name="uq_skus_company_internal_code"),
    )


class BOMVersion(Base):
    """
    Recipe for one SKU over a date range. Lines and the effective start are frozen
    once ``activated_at`` is set; ``version`` is the optimistic-concurrency counter.
    """
    __tablename__ = "bom_versions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    sku_id: Mapped[str] = mapped_column(String(36), ForeignKey("skus.id"), nullable=False, index=True)
    version_name: Mapped[str] = mapped_column(String(100), nullable=False)
    effective_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    effective_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    defect_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    quality_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    created_by_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    lines: Mapped[list["BOMLine"]] = relationship(
        "BOMLine",
        back_populates="bom_version",
        cascade="all, delete-orphan",
        order_by="BOMLine.position",
    )

    __table_args__ = (
        Index("ix_bom_versions_sku_active", "sku_id", "is_active"),
        Index("ix_bom_versions_sku_effective_start", "sku_id", "effective_start_date"),
    )


class BOMLine(Base):
    __tablename__ = "bom_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    bom_version_id: Mapped[str] = mapped_column(String(36), ForeignKey("bom_versions.id"), nullable=False, index=True)
    component_id: Mapped[str] = mapped_column(String(36), ForeignKey("components.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    quantity_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    bom_version: Mapped[BOMVersion] = relationship("BOMVersion", back_populates="lines")
