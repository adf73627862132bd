"""create users, stores, vehicles and vehicle_images tables

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-19 09:12:31.418220
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg

# revision identifiers, used by Alembic.
revision = "3f1c2a9b7d10"
down_revision = None
branch_labels = None
depends_on = None

USER_ROLES = ("PHOTOGRAPHER", "ADMIN", "SUPER_ADMIN")
PROCESSING_STATUSES = ("NOT_STARTED", "IN_PROGRESS", "COMPLETED", "ERROR")
KEY_TYPES = ("FRONT_QUARTER", "FRONT", "BACK_QUARTER", "BACK", "DRIVER_SIDE", "PASSENGER_SIDE")
IMAGE_TYPES = KEY_TYPES + ("GALLERY_EXTERIOR", "GALLERY_INTERIOR", "GALLERY")


def _timestamps():
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False, server_default=""),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.Enum(*USER_ROLES, name="userrole"), nullable=False, server_default="PHOTOGRAPHER"),
        *_timestamps(),
    )

    op.create_table(
        "stores",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=False, server_default=""),
        sa.Column("brand_logos", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("image_url", sa.Text()),
        sa.Column("bg_front_quarter", sa.Text()),
        sa.Column("bg_front", sa.Text()),
        sa.Column("bg_back_quarter", sa.Text()),
        sa.Column("bg_back", sa.Text()),
        sa.Column("bg_driver_side", sa.Text()),
        sa.Column("bg_passenger_side", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "vehicles",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "store_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("stores.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stock_number", sa.Text(), nullable=False),
        sa.Column("vin", sa.String(32)),
        sa.Column(
            "processing_status",
            sa.Enum(*PROCESSING_STATUSES, name="processingstatus"),
            nullable=False,
            server_default="NOT_STARTED",
        ),
        *_timestamps(),
    )
    op.create_index("ix_vehicles_store_id", "vehicles", ["store_id"])

    op.create_table(
        "vehicle_images",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "vehicle_id",
            pg.UUID(as_uuid=True),
            sa.ForeignKey("vehicles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("image_type", sa.Enum(*IMAGE_TYPES, name="imagetype"), nullable=False, server_default="GALLERY"),
        sa.Column("original_url", sa.Text(), nullable=False),
        sa.Column("original_path", sa.Text()),
        sa.Column("processed_url", sa.Text()),
        sa.Column("optimized_url", sa.Text()),
        sa.Column("thumbnail_url", sa.Text()),
        sa.Column("thumbnail_path", sa.Text()),
        sa.Column("content_type", sa.Text()),
        sa.Column("original_filename", sa.Text()),
        sa.Column("width", sa.Integer()),
        sa.Column("height", sa.Integer()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_optimized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True)),
        sa.Column("uploaded_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_vehicle_images_vehicle_id", "vehicle_images", ["vehicle_id"])
    op.execute(
        "CREATE UNIQUE INDEX ux_vehicle_images_key_type_per_vehicle "
        "ON vehicle_images(vehicle_id, image_type) "
        "WHERE image_type IN ({})".format(", ".join(f"'{t}'" for t in KEY_TYPES))
    )


def downgrade() -> None:
    op.drop_index("ux_vehicle_images_key_type_per_vehicle", table_name="vehicle_images")
    op.drop_index("ix_vehicle_images_vehicle_id", table_name="vehicle_images")
    op.drop_table("vehicle_images")
    op.drop_index("ix_vehicles_store_id", table_name="vehicles")
    op.drop_table("vehicles")
    op.drop_table("stores")
    op.drop_table("users")
    sa.Enum(name="imagetype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="processingstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
