"""Create key_history table for shadow key records.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create key_history table."""
    op.create_table(
        "key_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("litellm_key_id", sa.String(255), nullable=False),
        sa.Column("key_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("key_mask", sa.String(255), nullable=False, server_default=""),
        sa.Column("key_type", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_key_history_user_id", "key_history", ["user_id"])
    op.create_index("idx_key_history_user_key", "key_history", ["user_id", "litellm_key_id"])
    op.create_index(
        "idx_key_history_user_type_status", "key_history", ["user_id", "key_type", "status"]
    )


def downgrade() -> None:
    """Drop key_history table."""
    op.drop_index("idx_key_history_user_type_status", table_name="key_history")
    op.drop_index("idx_key_history_user_key", table_name="key_history")
    op.drop_index("idx_key_history_user_id", table_name="key_history")
    op.drop_table("key_history")
