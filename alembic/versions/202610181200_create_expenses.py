"""create expenses table

Revision ID: 202610181200
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610181200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("date", sa.Text(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_expenses_date", "expenses", ["date"])


def downgrade():
    op.drop_index("ix_expenses_date", table_name="expenses")
    op.drop_table("expenses")
