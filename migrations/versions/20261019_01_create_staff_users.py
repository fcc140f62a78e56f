"""create staff users

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "staff_users",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_staff_users_id", "staff_users", ["id"], unique=False)
    op.create_index("ix_staff_users_email", "staff_users", ["email"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_staff_users_email", table_name="staff_users")
    op.drop_index("ix_staff_users_id", table_name="staff_users")
    op.drop_table("staff_users")
