"""builder tables: themes, schemas, templates, sections/blocks, snapshots, audit

Revision ID: 5b1e0c7d2a41
Revises:
Create Date: 2026-10-19 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b1e0c7d2a41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _state_enum():
    # VARCHAR + CHECK (native_enum=False) para no depender de TYPEs de Postgres
    return sa.Enum("draft", "live", name="graph_state", native_enum=False, create_constraint=True)


def upgrade():
    op.create_table(
        "themes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("version", sa.String(length=32), nullable=True),
        sa.Column("settings", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("key", name="uq_themes_key"),
    )

    op.create_table(
        "theme_schemas",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("theme_id", sa.Integer(), sa.ForeignKey("themes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.Enum("section", "theme", name="schema_kind", native_enum=False, create_constraint=True), nullable=False),
        sa.Column("type_key", sa.String(length=128), nullable=False),
        sa.Column("schema", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("theme_id", "kind", "type_key", name="uq_theme_schema_kind_type"),
    )
    op.create_index("ix_theme_schemas_theme_id", "theme_schemas", ["theme_id"])

    op.create_table(
        "templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("theme_id", sa.Integer(), sa.ForeignKey("themes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("draft_revision", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("live_version", sa.Integer(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("theme_id", "key", name="uq_template_theme_key"),
    )
    op.create_index("ix_templates_theme_id", "templates", ["theme_id"])

    op.create_table(
        "sections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("state", _state_enum(), nullable=False),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("section_type", sa.String(length=128), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("settings", JSONType, nullable=False),
        sa.UniqueConstraint("template_id", "state", "uid", name="uq_section_template_state_uid"),
    )
    op.create_index("ix_sections_template_id", "sections", ["template_id"])
    op.create_index("ix_sections_template_state_position", "sections", ["template_id", "state", "position"])

    op.create_table(
        "blocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("sections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("block_type", sa.String(length=128), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("settings", JSONType, nullable=False),
        sa.UniqueConstraint("section_id", "uid", name="uq_block_section_uid"),
    )
    op.create_index("ix_blocks_section_id", "blocks", ["section_id"])

    op.create_table(
        "template_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_state", _state_enum(), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column(
            "reason",
            sa.Enum("manual", "publish", "rollback", name="snapshot_reason", native_enum=False, create_constraint=True),
            nullable=False,
        ),
        sa.Column("graph", JSONType, nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_template_snapshots_template_id", "template_snapshots", ["template_id"])
    op.create_index("ix_template_snapshots_template_created", "template_snapshots", ["template_id", "created_at"])

    op.create_table(
        "builder_audit_logs",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=True),
        sa.Column("theme_id", sa.Integer(), sa.ForeignKey("themes.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "action",
            sa.Enum("mutate", "reorder", "settings", "publish", "snapshot", "rollback",
                    name="builderaction", native_enum=False, create_constraint=False),
            nullable=False,
        ),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("details", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_builder_audit_logs_template_created", "builder_audit_logs", ["template_id", "created_at"])
    op.create_index("ix_builder_audit_logs_action", "builder_audit_logs", ["action"])


def downgrade():
    op.drop_index("ix_builder_audit_logs_action", table_name="builder_audit_logs")
    op.drop_index("ix_builder_audit_logs_template_created", table_name="builder_audit_logs")
    op.drop_table("builder_audit_logs")
    op.drop_index("ix_template_snapshots_template_created", table_name="template_snapshots")
    op.drop_index("ix_template_snapshots_template_id", table_name="template_snapshots")
    op.drop_table("template_snapshots")
    op.drop_index("ix_blocks_section_id", table_name="blocks")
    op.drop_table("blocks")
    op.drop_index("ix_sections_template_state_position", table_name="sections")
    op.drop_index("ix_sections_template_id", table_name="sections")
    op.drop_table("sections")
    op.drop_index("ix_templates_theme_id", table_name="templates")
    op.drop_table("templates")
    op.drop_index("ix_theme_schemas_theme_id", table_name="theme_schemas")
    op.drop_table("theme_schemas")
    op.drop_table("themes")
