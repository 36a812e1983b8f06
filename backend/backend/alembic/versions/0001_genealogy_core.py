"""genealogy core: reference tables, serial numbers, ledger, assemblies, material queues

Revision ID: 0001_genealogy_core
Revises:
Create Date: 2026-10-19T09:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_genealogy_core"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade():
    op.create_table(
        "ref_plant",
        _id(), _created_at(),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("next_alpha_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_ref_plant_code", "ref_plant", ["code"], unique=True)

    op.create_table(
        "ref_production_line",
        _id(), _created_at(),
        sa.Column("plant_id", sa.String(length=36), sa.ForeignKey("ref_plant.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
    )
    op.create_index("ix_ref_production_line_plant_id", "ref_production_line", ["plant_id"])

    op.create_table(
        "ref_work_center",
        _id(), _created_at(),
        sa.Column("plant_id", sa.String(length=36), sa.ForeignKey("ref_plant.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("type_name", sa.String(length=64), nullable=False, server_default="Manufacturing"),
        sa.Column("queue_type", sa.String(length=16), nullable=True),
        sa.Column("queue_version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_ref_work_center_plant_id", "ref_work_center", ["plant_id"])

    op.create_table(
        "ref_asset",
        _id(), _created_at(),
        sa.Column("work_center_id", sa.String(length=36), sa.ForeignKey("ref_work_center.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
    )
    op.create_index("ix_ref_asset_work_center_id", "ref_asset", ["work_center_id"])

    op.create_table(
        "ref_product",
        _id(), _created_at(),
        sa.Column("product_number", sa.String(length=64), nullable=False),
        sa.Column("tank_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tank_type", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("system_type", sa.String(length=24), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_ref_product_product_number", "ref_product", ["product_number"])
    op.create_index("ix_ref_product_system_type", "ref_product", ["system_type"])
    op.create_index("ix_ref_product_type_size", "ref_product", ["system_type", "tank_size"])

    op.create_table(
        "ref_vendor",
        _id(), _created_at(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("vendor_type", sa.String(length=16), nullable=False),
        sa.Column("is_lot_tracked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_ref_vendor_vendor_type", "ref_vendor", ["vendor_type"])

    op.create_table(
        "ref_operator",
        _id(), _created_at(),
        sa.Column("employee_number", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=False),
    )
    op.create_index("ix_ref_operator_employee_number", "ref_operator", ["employee_number"])

    op.create_table(
        "ref_barcode_card",
        _id(), _created_at(),
        sa.Column("card_value", sa.String(length=32), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("description", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_ref_barcode_card_card_value", "ref_barcode_card", ["card_value"], unique=True)

    op.create_table(
        "gen_serial_number",
        _id(), _created_at(),
        sa.Column("serial", sa.String(length=64), nullable=False),
        sa.Column("plant_id", sa.String(length=36), sa.ForeignKey("ref_plant.id"), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("ref_product.id"), nullable=True),
        sa.Column("mill_vendor_id", sa.String(length=36), sa.ForeignKey("ref_vendor.id"), nullable=True),
        sa.Column("processor_vendor_id", sa.String(length=36), sa.ForeignKey("ref_vendor.id"), nullable=True),
        sa.Column("heads_vendor_id", sa.String(length=36), sa.ForeignKey("ref_vendor.id"), nullable=True),
        sa.Column("heat_number", sa.String(length=64), nullable=True),
        sa.Column("coil_number", sa.String(length=64), nullable=True),
        sa.Column("lot_number", sa.String(length=64), nullable=True),
        sa.Column("rs1_changed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rs2_changed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rs3_changed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rs4_changed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_obsolete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("replace_by_sn_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("modified_by", sa.String(length=36), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_gen_serial_number_serial", "gen_serial_number", ["serial"])
    op.create_index("ix_gen_serial_number_plant_id", "gen_serial_number", ["plant_id"])
    op.create_index("ix_gen_serial_number_product_id", "gen_serial_number", ["product_id"])
    op.create_index("ix_gen_sn_plant_serial", "gen_serial_number", ["plant_id", "serial", "created_at"])

    op.create_table(
        "mes_production_record",
        _id(), _created_at(),
        sa.Column("serial_number_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=False),
        sa.Column("work_center_id", sa.String(length=36), sa.ForeignKey("ref_work_center.id"), nullable=False),
        sa.Column("asset_id", sa.String(length=36), sa.ForeignKey("ref_asset.id"), nullable=True),
        sa.Column("production_line_id", sa.String(length=36), sa.ForeignKey("ref_production_line.id"), nullable=True),
        sa.Column("operator_id", sa.String(length=36), sa.ForeignKey("ref_operator.id"), nullable=True),
        sa.Column("record_type", sa.String(length=32), nullable=True),
        sa.Column("inspection_result", sa.String(length=32), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_mes_production_record_serial_number_id", "mes_production_record", ["serial_number_id"])
    op.create_index("ix_mes_production_record_work_center_id", "mes_production_record", ["work_center_id"])
    op.create_index("ix_mes_production_record_timestamp", "mes_production_record", ["timestamp"])
    op.create_index("ix_mes_prodrec_sn_time", "mes_production_record", ["serial_number_id", "timestamp"])

    op.create_table(
        "mes_welder_log",
        _id(), _created_at(),
        sa.Column("production_record_id", sa.String(length=36), sa.ForeignKey("mes_production_record.id"), nullable=False),
        sa.Column("operator_id", sa.String(length=36), sa.ForeignKey("ref_operator.id"), nullable=False),
    )
    op.create_index("ix_mes_welder_log_production_record_id", "mes_welder_log", ["production_record_id"])
    op.create_index("ix_mes_welder_log_operator_id", "mes_welder_log", ["operator_id"])

    op.create_table(
        "qms_defect_log",
        _id(), _created_at(),
        sa.Column("serial_number_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=False),
        sa.Column("production_record_id", sa.String(length=36), sa.ForeignKey("mes_production_record.id"), nullable=True),
        sa.Column("defect_code", sa.String(length=32), nullable=False),
        sa.Column("is_repaired", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_qms_defect_log_serial_number_id", "qms_defect_log", ["serial_number_id"])

    op.create_table(
        "qms_annotation",
        _id(), _created_at(),
        sa.Column("production_record_id", sa.String(length=36), sa.ForeignKey("mes_production_record.id"), nullable=False),
        sa.Column("annotation_type", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.String(length=512), nullable=True),
    )
    op.create_index("ix_qms_annotation_production_record_id", "qms_annotation", ["production_record_id"])

    op.create_table(
        "gen_edge",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("from_sn_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=True),
        sa.Column("to_sn_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=True),
        sa.Column("production_record_id", sa.String(length=36), sa.ForeignKey("mes_production_record.id"), nullable=True),
        sa.Column("relationship", sa.String(length=24), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("tank_location", sa.String(length=64), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_gen_edge_production_record_id", "gen_edge", ["production_record_id"])
    op.create_index("ix_gen_edge_from", "gen_edge", ["from_sn_id", "relationship"])
    op.create_index("ix_gen_edge_to", "gen_edge", ["to_sn_id", "relationship"])

    op.create_table(
        "gen_assembly",
        _id(), _created_at(),
        sa.Column("serial_number_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=False, unique=True),
        sa.Column("plant_id", sa.String(length=36), sa.ForeignKey("ref_plant.id"), nullable=False),
        sa.Column("alpha_code", sa.String(length=8), nullable=False),
        sa.Column("tank_size", sa.Integer(), nullable=False),
        sa.Column("work_center_id", sa.String(length=36), sa.ForeignKey("ref_work_center.id"), nullable=False),
        sa.Column("asset_id", sa.String(length=36), sa.ForeignKey("ref_asset.id"), nullable=True),
        sa.Column("production_line_id", sa.String(length=36), sa.ForeignKey("ref_production_line.id"), nullable=False),
        sa.Column("operator_id", sa.String(length=36), sa.ForeignKey("ref_operator.id"), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_gen_assembly_plant_id", "gen_assembly", ["plant_id"])
    op.create_index("ix_gen_assembly_alpha_code", "gen_assembly", ["alpha_code"])
    op.create_index("ix_gen_assembly_is_active", "gen_assembly", ["is_active"])
    op.create_index("ix_gen_assembly_plant_alpha", "gen_assembly", ["plant_id", "alpha_code", "is_active"])

    op.create_table(
        "mq_item",
        _id(), _created_at(),
        sa.Column("work_center_id", sa.String(length=36), sa.ForeignKey("ref_work_center.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("queue_type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("card_id", sa.String(length=32), nullable=True),
        sa.Column("card_color", sa.String(length=16), nullable=True),
        sa.Column("serial_number_id", sa.String(length=36), sa.ForeignKey("gen_serial_number.id"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("quantity_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("operator_id", sa.String(length=36), sa.ForeignKey("ref_operator.id"), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_mq_item_work_center_id", "mq_item", ["work_center_id"])
    op.create_index("ix_mq_item_status", "mq_item", ["status"])
    op.create_index("ix_mq_item_card_id", "mq_item", ["card_id"])
    op.create_index("ix_mq_item_wc_status_pos", "mq_item", ["work_center_id", "status", "position"])

    op.create_table(
        "mq_transaction",
        _id(),
        sa.Column("work_center_id", sa.String(length=36), sa.ForeignKey("ref_work_center.id"), nullable=False),
        sa.Column("action", sa.String(length=24), nullable=False),
        sa.Column("item_summary", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("operator_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_mq_transaction_work_center_id", "mq_transaction", ["work_center_id"])
    op.create_index("ix_mq_txn_wc_time", "mq_transaction", ["work_center_id", "timestamp"])

    op.create_table(
        "sys_audit_log",
        _id(), _created_at(),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sys_audit_log_actor", "sys_audit_log", ["actor"])
    op.create_index("ix_sys_audit_log_action", "sys_audit_log", ["action"])
    op.create_index("ix_sys_audit_log_entity_type", "sys_audit_log", ["entity_type"])
    op.create_index("ix_sys_audit_log_entity_id", "sys_audit_log", ["entity_id"])
    op.create_index("ix_sys_audit_log_request_id", "sys_audit_log", ["request_id"])
    op.create_index("ix_audit_entity_time", "sys_audit_log", ["entity_type", "entity_id", "created_at"])

    op.create_table(
        "outbox_event",
        _id(), _created_at(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "created_at"])


def downgrade():
    for table in (
        "outbox_event",
        "sys_audit_log",
        "mq_transaction",
        "mq_item",
        "gen_assembly",
        "gen_edge",
        "qms_annotation",
        "qms_defect_log",
        "mes_welder_log",
        "mes_production_record",
        "gen_serial_number",
        "ref_barcode_card",
        "ref_operator",
        "ref_vendor",
        "ref_product",
        "ref_asset",
        "ref_work_center",
        "ref_production_line",
        "ref_plant",
    ):
        op.drop_table(table)
