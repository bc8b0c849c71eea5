"""create user_events cache table

Revision ID: 0001
Revises:
Create Date: 2024-03-01 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_events",
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("events_json", sa.Text(), nullable=False),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("username"),
    )
    op.create_index(op.f("ix_user_events_username"), "user_events", ["username"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_user_events_username"), table_name="user_events")
    op.drop_table("user_events")
