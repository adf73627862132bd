"""unique stock number per store

Revision ID: 8b4e61d0c2f3
Revises: 3f1c2a9b7d10
Create Date: 2026-10-19 14:40:07.552913
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "8b4e61d0c2f3"
down_revision = "3f1c2a9b7d10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_unique_constraint(
        "uq_vehicles_store_stock_number", "vehicles", ["store_id", "stock_number"]
    )


def downgrade() -> None:
    op.drop_constraint("uq_vehicles_store_stock_number", "vehicles", type_="unique")
