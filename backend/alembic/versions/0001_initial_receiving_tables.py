"""Initial receiving tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    ]


def _entry_status_columns():
    return [
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("resolution_note", sa.Text()),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolved_by", sa.String(36)),
        sa.Column("reopened_at", sa.DateTime()),
        sa.Column("reopened_by", sa.String(36)),
        sa.Column("created_by", sa.String(36)),
    ]


def upgrade() -> None:
    # ── Reference data ───────────────────────────────────────
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_unidentified", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_tenant_id", "accounts", ["tenant_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("warehouse_id", sa.String(36), nullable=False),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id")),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("is_receiving_default", sa.Boolean(), server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_locations_tenant_id", "locations", ["tenant_id"])
    op.create_index("ix_locations_warehouse_id", "locations", ["warehouse_id"])

    op.create_table(
        "number_sequences",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("entity", sa.String(30), nullable=False),
        sa.Column("prefix", sa.String(50), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("tenant_id", "entity", "prefix", name="uq_number_sequence"),
    )

    op.create_table(
        "manifest_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("manifest_ref", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), server_default=""),
        sa.Column("expected_quantity", sa.Integer(), server_default="0"),
        sa.Column("vendor", sa.String(255)),
        sa.Column("sidemark", sa.String(255)),
        sa.Column("class_id", sa.String(36)),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_manifest_items_tenant_id", "manifest_items", ["tenant_id"])
    op.create_index("ix_manifest_items_manifest_ref", "manifest_items", ["manifest_ref"])
    op.create_index("ix_manifest_items_status", "manifest_items", ["status"])

    # ── Shipments ────────────────────────────────────────────
    op.create_table(
        "shipments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_number", sa.String(50), nullable=False),
        sa.Column("warehouse_id", sa.String(36), nullable=False),
        sa.Column("stage", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("exception_type", sa.String(30)),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id")),
        sa.Column("vendor_name", sa.String(255)),
        sa.Column("signed_pieces", sa.Integer()),
        sa.Column("driver_name", sa.String(255)),
        sa.Column("notes", sa.Text()),
        sa.Column("dock_intake_breakdown", sa.JSON()),
        sa.Column("no_exceptions_confirmed", sa.Boolean(), server_default=sa.false()),
        sa.Column("signature_data", sa.Text()),
        sa.Column("signature_name", sa.String(255)),
        sa.Column("signature_timestamp", sa.DateTime()),
        sa.Column("received_pieces", sa.Integer(), server_default="0"),
        sa.Column("received_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(36)),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "shipment_number", name="uq_shipment_number"),
    )
    op.create_index("ix_shipments_tenant_id", "shipments", ["tenant_id"])
    op.create_index("ix_shipments_shipment_number", "shipments", ["shipment_number"])
    op.create_index("ix_shipments_stage", "shipments", ["stage"])

    op.create_table(
        "manifest_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("manifest_item_id", sa.String(36), sa.ForeignKey("manifest_items.id"), nullable=False),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("allocated_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("reversed_at", sa.DateTime()),
    )
    op.create_index("ix_manifest_allocations_tenant_id", "manifest_allocations", ["tenant_id"])
    op.create_index("ix_manifest_allocations_manifest_item_id", "manifest_allocations", ["manifest_item_id"])
    op.create_index("ix_manifest_allocations_shipment_id", "manifest_allocations", ["shipment_id"])

    op.create_table(
        "shipment_line_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("position", sa.Integer(), server_default="0"),
        sa.Column("description", sa.String(500), server_default=""),
        sa.Column("expected_quantity", sa.Integer(), server_default="0"),
        sa.Column("received_quantity", sa.Integer(), server_default="0"),
        sa.Column("vendor", sa.String(255)),
        sa.Column("sidemark", sa.String(255)),
        sa.Column("class_id", sa.String(36)),
        sa.Column("source", sa.String(20), server_default="manual"),
        sa.Column("package_count", sa.Integer(), server_default="1"),
        sa.Column("manifest_item_id", sa.String(36), sa.ForeignKey("manifest_items.id")),
        sa.Column("allocation_id", sa.String(36), sa.ForeignKey("manifest_allocations.id")),
        sa.Column("flags", sa.JSON()),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("received_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index("ix_shipment_line_items_tenant_id", "shipment_line_items", ["tenant_id"])
    op.create_index("ix_shipment_line_items_shipment_id", "shipment_line_items", ["shipment_id"])

    op.create_table(
        "shipment_photos",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("storage_key", sa.String(500), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_shipment_photos_tenant_id", "shipment_photos", ["tenant_id"])
    op.create_index("ix_shipment_photos_shipment_id", "shipment_photos", ["shipment_id"])

    # ── Exceptions & discrepancies ───────────────────────────
    op.create_table(
        "shipment_exceptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("note", sa.Text()),
        *_entry_status_columns(),
        *_timestamps(),
    )
    op.create_index("ix_shipment_exceptions_tenant_id", "shipment_exceptions", ["tenant_id"])
    op.create_index("ix_shipment_exceptions_shipment_id", "shipment_exceptions", ["shipment_id"])
    op.create_index("ix_shipment_exceptions_code", "shipment_exceptions", ["code"])
    op.create_index("ix_shipment_exceptions_status", "shipment_exceptions", ["status"])

    op.create_table(
        "receiving_discrepancies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("discrepancy_type", sa.String(40), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("details", sa.JSON()),
        *_entry_status_columns(),
        *_timestamps(),
    )
    op.create_index("ix_receiving_discrepancies_tenant_id", "receiving_discrepancies", ["tenant_id"])
    op.create_index("ix_receiving_discrepancies_shipment_id", "receiving_discrepancies", ["shipment_id"])
    op.create_index("ix_receiving_discrepancies_discrepancy_type", "receiving_discrepancies", ["discrepancy_type"])
    op.create_index("ix_receiving_discrepancies_status", "receiving_discrepancies", ["status"])

    # ── Inventory ────────────────────────────────────────────
    op.create_table(
        "containers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("container_code", sa.String(50), nullable=False),
        sa.Column("container_type", sa.String(50), server_default="Carton"),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("warehouse_id", sa.String(36)),
        sa.Column("shipment_id", sa.String(36)),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "container_code", name="uq_container_code"),
    )
    op.create_index("ix_containers_tenant_id", "containers", ["tenant_id"])
    op.create_index("ix_containers_container_code", "containers", ["container_code"])
    op.create_index("ix_containers_shipment_id", "containers", ["shipment_id"])

    op.create_table(
        "inventory_units",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("ic_code", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id")),
        sa.Column("container_id", sa.String(36), sa.ForeignKey("containers.id")),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("accounts.id")),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column(
            "shipment_line_item_id", sa.String(36),
            sa.ForeignKey("shipment_line_items.id"), nullable=False,
        ),
        sa.Column("created_by", sa.String(36)),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "ic_code", name="uq_inventory_unit_ic_code"),
    )
    op.create_index("ix_inventory_units_tenant_id", "inventory_units", ["tenant_id"])
    op.create_index("ix_inventory_units_ic_code", "inventory_units", ["ic_code"])
    op.create_index("ix_inventory_units_status", "inventory_units", ["status"])
    op.create_index("ix_inventory_units_container_id", "inventory_units", ["container_id"])
    op.create_index("ix_inventory_units_shipment_id", "inventory_units", ["shipment_id"])
    op.create_index("ix_inventory_units_shipment_line_item_id", "inventory_units", ["shipment_line_item_id"])

    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("unit_id", sa.String(36), sa.ForeignKey("inventory_units.id"), nullable=False),
        sa.Column("movement_type", sa.String(30), nullable=False),
        sa.Column("from_location_id", sa.String(36)),
        sa.Column("to_location_id", sa.String(36)),
        sa.Column("shipment_id", sa.String(36)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_inventory_movements_tenant_id", "inventory_movements", ["tenant_id"])
    op.create_index("ix_inventory_movements_unit_id", "inventory_movements", ["unit_id"])
    op.create_index("ix_inventory_movements_shipment_id", "inventory_movements", ["shipment_id"])

    # ── Audit ────────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_logs_tenant_id", "activity_logs", ["tenant_id"])
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    for table in (
        "activity_logs",
        "inventory_movements",
        "inventory_units",
        "containers",
        "receiving_discrepancies",
        "shipment_exceptions",
        "shipment_photos",
        "shipment_line_items",
        "manifest_allocations",
        "shipments",
        "manifest_items",
        "number_sequences",
        "locations",
        "accounts",
    ):
        op.drop_table(table)
