"""Application instance table

Revision ID: 20261018_01
Revises: None
Create Date: 2026-10-18
"""
# pylint: disable=no-member,invalid-name,wrong-import-order

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "application_instance",
        sa.Column("instance_id", sa.String(length=64), primary_key=True),
        sa.Column("domain_id", sa.Text(), nullable=False),
        sa.Column("language", sa.String(length=32), nullable=False),
        sa.Column("version", sa.String(length=32), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("memory_limit_mb", sa.Integer(), nullable=False, server_default=sa.text("512")),
        sa.Column("cpu_limit", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("disk_limit_mb", sa.Integer(), nullable=False, server_default=sa.text("1024")),
        sa.Column("environment_json", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("backend_kind", sa.String(length=16), nullable=False),
        sa.Column("workspace_path", sa.Text(), nullable=False),
        sa.Column("handle_json", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("diagnostics_json", sa.Text(), nullable=True),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('building', 'running', 'stopping', 'stopped', 'error')",
            name="ck_application_instance_status",
        ),
        sa.CheckConstraint("backend_kind IN ('container', 'native')", name="ck_application_instance_backend_kind"),
        sa.CheckConstraint("port BETWEEN 1 AND 65535", name="ck_application_instance_port"),
    )
    op.create_index("ix_application_instance_domain_id", "application_instance", ["domain_id"])
    op.create_index("ix_application_instance_status", "application_instance", ["status"])


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_index("ix_application_instance_status", table_name="application_instance")
    op.drop_index("ix_application_instance_domain_id", table_name="application_instance")
    op.drop_table("application_instance")
