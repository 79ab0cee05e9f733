"""create inventory ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]
    if with_updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
    return columns


def _create_index(inspector: sa.Inspector, table: str, name: str, columns: list[str]) -> None:
    if not _index_exists(inspector, table, name):
        op.create_index(name, table, columns, unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "companies"):
        op.create_table(
            "companies",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("settings", sa.JSON(), nullable=True),
            *_timestamps(with_updated=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "locations"):
        op.create_table(
            "locations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False, server_default="warehouse"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("company_id", "name", name="uq_locations_company_name"),
        )

    if not _table_exists(inspector, "components"):
        op.create_table(
            "components",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("brand_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku_code", sa.String(length=100), nullable=False),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("unit_of_measure", sa.String(length=30), nullable=False, server_default="each"),
            sa.Column("cost_per_unit", sa.Numeric(12, 4), nullable=False, server_default="0"),
            sa.Column("reorder_point", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("lead_time_days", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_lot_tracked", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("company_id", "sku_code", name="uq_components_company_sku_code"),
        )

    if not _table_exists(inspector, "lots"):
        op.create_table(
            "lots",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("component_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("lot_number", sa.String(length=100), nullable=False),
            sa.Column("expiry_date", sa.Date(), nullable=True),
            sa.Column("supplier", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.String(length=500), nullable=True),
            *_timestamps(with_updated=False),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "component_id",
                "location_id",
                "lot_number",
                name="uq_lots_component_location_lot_number",
            ),
        )

    if not _table_exists(inspector, "skus"):
        op.create_table(
            "skus",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("brand_id", sa.String(length=36), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("internal_code", sa.String(length=100), nullable=False),
            sa.Column("sales_channel", sa.String(length=50), nullable=True),
            sa.Column("external_ids", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("created_by_id", sa.String(length=36), nullable=True),
            *_timestamps(with_updated=False),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("company_id", "internal_code", name="uq_skus_company_internal_code"),
        )

    if not _table_exists(inspector, "bom_versions"):
        op.create_table(
            "bom_versions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("sku_id", sa.String(length=36), nullable=False),
            sa.Column("version_name", sa.String(length=100), nullable=False),
            sa.Column("effective_start_date", sa.Date(), nullable=False),
            sa.Column("effective_end_date", sa.Date(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("defect_notes", sa.String(length=500), nullable=True),
            sa.Column("quality_metadata", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by_id", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["sku_id"], ["skus.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "bom_lines"):
        op.create_table(
            "bom_lines",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("bom_version_id", sa.String(length=36), nullable=False),
            sa.Column("component_id", sa.String(length=36), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("quantity_per_unit", sa.Numeric(14, 4), nullable=False),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.ForeignKeyConstraint(["bom_version_id"], ["bom_versions.id"]),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="approved"),
            sa.Column("transaction_date", sa.Date(), nullable=False),
            sa.Column("sku_id", sa.String(length=36), nullable=True),
            sa.Column("bom_version_id", sa.String(length=36), nullable=True),
            sa.Column("location_id", sa.String(length=36), nullable=True),
            sa.Column("from_location_id", sa.String(length=36), nullable=True),
            sa.Column("to_location_id", sa.String(length=36), nullable=True),
            sa.Column("output_location_id", sa.String(length=36), nullable=True),
            sa.Column("sales_channel", sa.String(length=50), nullable=True),
            sa.Column("units_built", sa.Integer(), nullable=True),
            sa.Column("output_quantity", sa.Integer(), nullable=True),
            sa.Column("unit_bom_cost", sa.Numeric(14, 4), nullable=True),
            sa.Column("total_bom_cost", sa.Numeric(16, 4), nullable=True),
            sa.Column("bom_snapshot", sa.JSON(), nullable=True),
            sa.Column("supplier", sa.String(length=255), nullable=True),
            sa.Column("reason", sa.String(length=100), nullable=True),
            sa.Column("notes", sa.String(length=1000), nullable=True),
            sa.Column("defect_count", sa.Integer(), nullable=True),
            sa.Column("defect_notes", sa.String(length=500), nullable=True),
            sa.Column("affected_units", sa.Integer(), nullable=True),
            sa.Column("allow_insufficient_inventory", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("allow_expired_lots", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by_id", sa.String(length=36), nullable=False),
            sa.Column("reviewed_by_id", sa.String(length=36), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reject_reason", sa.String(length=500), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.ForeignKeyConstraint(["sku_id"], ["skus.id"]),
            sa.ForeignKeyConstraint(["bom_version_id"], ["bom_versions.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["output_location_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "transaction_lines"):
        op.create_table(
            "transaction_lines",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("transaction_id", sa.String(length=36), nullable=False),
            sa.Column("component_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("lot_id", sa.String(length=36), nullable=True),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("quantity_change", sa.Numeric(14, 4), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(12, 4), nullable=True),
            sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["lot_id"], ["lots.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "finished_goods_lines"):
        op.create_table(
            "finished_goods_lines",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("transaction_id", sa.String(length=36), nullable=False),
            sa.Column("sku_id", sa.String(length=36), nullable=False),
            sa.Column("location_id", sa.String(length=36), nullable=False),
            sa.Column("quantity_change", sa.Numeric(14, 4), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(12, 4), nullable=True),
            sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
            sa.ForeignKeyConstraint(["sku_id"], ["skus.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("company_id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            *_timestamps(with_updated=False),
            sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    _create_index(inspector, "locations", "ix_locations_company_id", ["company_id"])
    _create_index(inspector, "locations", "ix_locations_company_default", ["company_id", "is_default"])
    _create_index(inspector, "components", "ix_components_company_id", ["company_id"])
    _create_index(inspector, "components", "ix_components_company_active", ["company_id", "is_active"])
    _create_index(inspector, "lots", "ix_lots_company_id", ["company_id"])
    _create_index(inspector, "lots", "ix_lots_component_id", ["component_id"])
    _create_index(inspector, "lots", "ix_lots_location_id", ["location_id"])
    _create_index(
        inspector, "lots", "ix_lots_company_component_expiry", ["company_id", "component_id", "expiry_date"]
    )
    _create_index(inspector, "skus", "ix_skus_company_id", ["company_id"])
    _create_index(inspector, "bom_versions", "ix_bom_versions_company_id", ["company_id"])
    _create_index(inspector, "bom_versions", "ix_bom_versions_sku_id", ["sku_id"])
    _create_index(inspector, "bom_versions", "ix_bom_versions_sku_active", ["sku_id", "is_active"])
    _create_index(
        inspector, "bom_versions", "ix_bom_versions_sku_effective_start", ["sku_id", "effective_start_date"]
    )
    _create_index(inspector, "bom_lines", "ix_bom_lines_bom_version_id", ["bom_version_id"])
    _create_index(inspector, "bom_lines", "ix_bom_lines_component_id", ["component_id"])
    _create_index(inspector, "transactions", "ix_transactions_company_id", ["company_id"])
    _create_index(inspector, "transactions", "ix_transactions_sku_id", ["sku_id"])
    _create_index(
        inspector,
        "transactions",
        "ix_transactions_company_status_date",
        ["company_id", "status", "transaction_date"],
    )
    _create_index(
        inspector,
        "transactions",
        "ix_transactions_company_type_created_at",
        ["company_id", "type", "created_at"],
    )
    _create_index(inspector, "transaction_lines", "ix_transaction_lines_transaction_id", ["transaction_id"])
    _create_index(inspector, "transaction_lines", "ix_transaction_lines_component_id", ["component_id"])
    _create_index(inspector, "transaction_lines", "ix_transaction_lines_location_id", ["location_id"])
    _create_index(inspector, "transaction_lines", "ix_transaction_lines_lot_id", ["lot_id"])
    _create_index(
        inspector,
        "transaction_lines",
        "ix_transaction_lines_component_location",
        ["component_id", "location_id"],
    )
    _create_index(inspector, "finished_goods_lines", "ix_finished_goods_lines_transaction_id", ["transaction_id"])
    _create_index(inspector, "finished_goods_lines", "ix_finished_goods_lines_sku_id", ["sku_id"])
    _create_index(inspector, "finished_goods_lines", "ix_finished_goods_lines_location_id", ["location_id"])
    _create_index(inspector, "audit_logs", "ix_audit_logs_company_id", ["company_id"])
    _create_index(inspector, "audit_logs", "ix_audit_logs_actor_user_id", ["actor_user_id"])
    _create_index(inspector, "audit_logs", "ix_audit_logs_target_id", ["target_id"])
    _create_index(inspector, "audit_logs", "ix_audit_logs_company_created_at", ["company_id", "created_at"])
    _create_index(
        inspector,
        "audit_logs",
        "ix_audit_logs_company_action_created_at",
        ["company_id", "action", "created_at"],
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    for table_name in (
        "audit_logs",
        "finished_goods_lines",
        "transaction_lines",
        "transactions",
        "bom_lines",
        "bom_versions",
        "skus",
        "lots",
        "components",
        "locations",
        "companies",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
