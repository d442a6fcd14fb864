"""create users + mfa_codes

Revision ID: 5b1e0c7a9d42
Revises:
Create Date: 2026-10-19 10:12:41.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e0c7a9d42'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("email_hash", sa.String(64), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mfa_method", sa.Enum("email", "totp", name="mfamethod"), nullable=True),
        sa.Column("mfa_secret", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email_hash", "users", ["email_hash"], unique=True)

    # mfa_codes
    op.create_table(
        "mfa_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_mfa_codes_user_id", "mfa_codes", ["user_id"])
    op.create_index("ix_mfa_codes_user_code", "mfa_codes", ["user_id", "code"])

def downgrade() -> None:
    op.drop_index("ix_mfa_codes_user_code", table_name="mfa_codes")
    op.drop_index("ix_mfa_codes_user_id", table_name="mfa_codes")
    op.drop_table("mfa_codes")

    op.drop_index("ix_users_email_hash", table_name="users")
    op.drop_table("users")
