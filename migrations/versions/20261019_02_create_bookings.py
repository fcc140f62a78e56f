"""create bookings

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19 09:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("passport_number", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("visa_type", sa.String(length=20), nullable=False),
        sa.Column("preferred_date", sa.Date(), nullable=False),
        sa.Column("submitted_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("appointment_date", sa.Date(), nullable=True),
        sa.CheckConstraint(
            "(status = 'pending' AND appointment_date IS NULL)"
            " OR (status = 'approved' AND appointment_date IS NOT NULL)",
            name="ck_bookings_appointment_matches_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"], unique=False)
    op.create_index("ix_bookings_passport_number", "bookings", ["passport_number"], unique=False)
    op.create_index("ix_bookings_email", "bookings", ["email"], unique=False)
    op.create_index("ix_bookings_submitted_date", "bookings", ["submitted_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_bookings_submitted_date", table_name="bookings")
    op.drop_index("ix_bookings_email", table_name="bookings")
    op.drop_index("ix_bookings_passport_number", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
