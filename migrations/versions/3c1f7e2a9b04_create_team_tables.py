"""create_team_tables

Revision ID: 3c1f7e2a9b04
Revises:
Create Date: 2025-04-02 10:15:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c1f7e2a9b04"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One row per Square merchant, linked to the Supabase user that administers it
    op.create_table(
        "merchant_settings",
        sa.Column("square_merchant_id", sa.String(), primary_key=True),
        sa.Column("supabase_user_id", sa.String(), nullable=False),
        sa.Column("square_access_token", sa.String(), nullable=False),
        sa.Column(
            "square_connected_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("environment", sa.String(), nullable=False, server_default="production"),
    )
    op.create_index(
        "ix_merchant_settings_square_merchant_id", "merchant_settings", ["square_merchant_id"]
    )
    op.create_index(
        "ix_merchant_settings_supabase_user_id", "merchant_settings", ["supabase_user_id"]
    )

    op.create_table(
        "square_team_members",
        sa.Column("square_team_member_id", sa.String(), primary_key=True),
        sa.Column("merchant_id", sa.String(), nullable=True),
        sa.Column("supabase_user_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("given_name", sa.String(), nullable=True),
        sa.Column("family_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("is_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("level_id", sa.String(), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index(
        "ix_square_team_members_square_team_member_id",
        "square_team_members",
        ["square_team_member_id"],
    )
    op.create_index("ix_square_team_members_merchant_id", "square_team_members", ["merchant_id"])

    op.create_table(
        "team_levels",
        sa.Column("merchant_id", sa.String(), primary_key=True),
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("default_permissions", sa.JSON(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("team_levels")
    op.drop_index("ix_square_team_members_merchant_id", table_name="square_team_members")
    op.drop_index(
        "ix_square_team_members_square_team_member_id", table_name="square_team_members"
    )
    op.drop_table("square_team_members")
    op.drop_index("ix_merchant_settings_supabase_user_id", table_name="merchant_settings")
    op.drop_index("ix_merchant_settings_square_merchant_id", table_name="merchant_settings")
    op.drop_table("merchant_settings")
