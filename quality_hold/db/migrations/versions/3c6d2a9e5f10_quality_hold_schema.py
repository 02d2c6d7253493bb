"""Quality incident and shipment hold schema.

- suppliers, shipments (hold flag with owning source tag)
- supplier_delivery_records (one scorecard row per shipment)
- quality_incidents, quality_sample_cards (9 per incident)
- quality_media, quality_review_actions (append-only audit)
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3c6d2a9e5f10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOW = sa.text("CURRENT_TIMESTAMP")
FALSE = sa.text("false")
JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
GRAMS = sa.Numeric(12, 3)
PERCENT = sa.Numeric(7, 3)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_suppliers"),
        sa.UniqueConstraint("code", name="uq_suppliers_code"),
    )

    op.create_table(
        "shipments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sn", sa.Text(), nullable=False),
        sa.Column("supplier_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.Text(), nullable=True),
        sa.Column("hold_status", sa.Boolean(), server_default=FALSE, nullable=False),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("hold_source", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default=FALSE, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_shipments"),
        sa.UniqueConstraint("sn", name="uq_shipments_sn"),
        sa.ForeignKeyConstraint(
            ["supplier_id"], ["suppliers.id"], name="fk_shipments_supplier_id_suppliers", ondelete="SET NULL"
        ),
    )

    op.create_table(
        "supplier_delivery_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shipment_id", sa.Uuid(), nullable=False),
        sa.Column("supplier_id", sa.Uuid(), nullable=True),
        sa.Column("supplier_name", sa.Text(), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("has_quality_issues", sa.Boolean(), nullable=False),
        sa.Column("final_outcome", sa.Text(), nullable=False),
        sa.Column("confirmed_by_user_id", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_supplier_delivery_records"),
        sa.UniqueConstraint("shipment_id", name="uq_supplier_delivery_records_shipment_id"),
        sa.ForeignKeyConstraint(
            ["shipment_id"], ["shipments.id"],
            name="fk_supplier_delivery_records_shipment_id_shipments", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["supplier_id"], ["suppliers.id"],
            name="fk_supplier_delivery_records_supplier_id_suppliers", ondelete="SET NULL",
        ),
    )
    op.create_index(
        "ix_supplier_delivery_records_supplier_id", "supplier_delivery_records", ["supplier_id"]
    )

    op.create_table(
        "quality_incidents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shipment_id", sa.Uuid(), nullable=False),
        sa.Column("branch_id", sa.Uuid(), nullable=True),
        sa.Column("created_by_user_id", sa.Text(), nullable=False),
        sa.Column("issue_types", JSON_TYPE, nullable=False),
        sa.Column("issue_subtype", sa.Text(), nullable=True),
        sa.Column("description_short", sa.Text(), nullable=True),
        sa.Column("container_moisture_seen", sa.Boolean(), nullable=True),
        sa.Column("container_bad_smell", sa.Boolean(), nullable=True),
        sa.Column("container_torn_bags", sa.Boolean(), nullable=True),
        sa.Column("container_torn_bags_count", sa.Integer(), nullable=True),
        sa.Column("container_condensation", sa.Boolean(), nullable=True),
        sa.Column("affected_estimate_min", PERCENT, nullable=True),
        sa.Column("affected_estimate_max", PERCENT, nullable=True),
        sa.Column("affected_estimate_mode", PERCENT, nullable=True),
        sa.Column("sample_weight_g", GRAMS, nullable=True),
        sa.Column("broken_g", GRAMS, nullable=True),
        sa.Column("mold_g", GRAMS, nullable=True),
        sa.Column("foreign_g", GRAMS, nullable=True),
        sa.Column("other_g", GRAMS, nullable=True),
        sa.Column("moisture_pct", PERCENT, nullable=True),
        sa.Column("avg_defect_pct", PERCENT, nullable=True),
        sa.Column("status", sa.Text(), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default=FALSE, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_quality_incidents"),
        sa.ForeignKeyConstraint(
            ["shipment_id"], ["shipments.id"],
            name="fk_quality_incidents_shipment_id_shipments", ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_quality_incidents_shipment_id", "quality_incidents", ["shipment_id"])
    op.create_index("ix_quality_incidents_branch_id", "quality_incidents", ["branch_id"])
    op.create_index("ix_quality_incidents_status", "quality_incidents", ["status"])

    op.create_table(
        "quality_sample_cards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("incident_id", sa.Uuid(), nullable=False),
        sa.Column("sample_id", sa.Text(), nullable=False),
        sa.Column("sample_group", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("sample_weight_g", GRAMS, server_default=sa.text("1000"), nullable=False),
        sa.Column("broken_g", GRAMS, server_default=sa.text("0"), nullable=False),
        sa.Column("mold_g", GRAMS, server_default=sa.text("0"), nullable=False),
        sa.Column("foreign_g", GRAMS, server_default=sa.text("0"), nullable=False),
        sa.Column("other_g", GRAMS, server_default=sa.text("0"), nullable=False),
        sa.Column("weighing_required", sa.Boolean(), nullable=False),
        sa.Column("is_complete", sa.Boolean(), server_default=FALSE, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_quality_sample_cards"),
        sa.ForeignKeyConstraint(
            ["incident_id"], ["quality_incidents.id"],
            name="fk_quality_sample_cards_incident_id_quality_incidents", ondelete="CASCADE",
        ),
        sa.UniqueConstraint("incident_id", "sample_id", name="uq_quality_sample_cards_incident_sample"),
        sa.CheckConstraint(
            "broken_g + mold_g + foreign_g + other_g <= sample_weight_g",
            name="ck_quality_sample_cards_defects_within_weight",
        ),
    )
    op.create_index("ix_quality_sample_cards_incident_id", "quality_sample_cards", ["incident_id"])

    op.create_table(
        "quality_media",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("incident_id", sa.Uuid(), nullable=False),
        sa.Column("sample_card_id", sa.Uuid(), nullable=True),
        sa.Column("sample_id", sa.Text(), nullable=True),
        sa.Column("media_type", sa.Text(), nullable=False),
        sa.Column("slot", sa.Text(), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("watermark_text", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_quality_media"),
        sa.ForeignKeyConstraint(
            ["incident_id"], ["quality_incidents.id"],
            name="fk_quality_media_incident_id_quality_incidents", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["sample_card_id"], ["quality_sample_cards.id"],
            name="fk_quality_media_sample_card_id_quality_sample_cards", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_quality_media_incident_id", "quality_media", ["incident_id"])

    op.create_table(
        "quality_review_actions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("incident_id", sa.Uuid(), nullable=False),
        sa.Column("by_user_id", sa.Text(), nullable=False),
        sa.Column("by_role", sa.Text(), nullable=False),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("target_sample_ids", JSON_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_quality_review_actions"),
        sa.ForeignKeyConstraint(
            ["incident_id"], ["quality_incidents.id"],
            name="fk_quality_review_actions_incident_id_quality_incidents", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_quality_review_actions_incident_id", "quality_review_actions", ["incident_id"])


def downgrade() -> None:
    op.drop_index("ix_quality_review_actions_incident_id", table_name="quality_review_actions")
    op.drop_table("quality_review_actions")
    op.drop_index("ix_quality_media_incident_id", table_name="quality_media")
    op.drop_table("quality_media")
    op.drop_index("ix_quality_sample_cards_incident_id", table_name="quality_sample_cards")
    op.drop_table("quality_sample_cards")
    op.drop_index("ix_quality_incidents_status", table_name="quality_incidents")
    op.drop_index("ix_quality_incidents_branch_id", table_name="quality_incidents")
    op.drop_index("ix_quality_incidents_shipment_id", table_name="quality_incidents")
    op.drop_table("quality_incidents")
    op.drop_index("ix_supplier_delivery_records_supplier_id", table_name="supplier_delivery_records")
    op.drop_table("supplier_delivery_records")
    op.drop_table("shipments")
    op.drop_table("suppliers")
