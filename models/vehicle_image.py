# models/vehicle_image.py
import uuid
from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, Boolean, Integer, Enum, Index, Uuid, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from services.image_types import ImageType, KEY_IMAGE_TYPES, GALLERY_IMAGE_TYPES  # noqa: F401
from .base import Base

_KEY_TYPE_SQL = "image_type IN ({})".format(", ".join(f"'{t.value}'" for t in KEY_IMAGE_TYPES))


class VehicleImage(Base):
    __tablename__ = "vehicle_images"
    __table_args__ = (
        Index("ix_vehicle_images_vehicle_id", "vehicle_id"),
        # one occupant per key slot; gallery types are unconstrained
        Index(
            "ux_vehicle_images_key_type_per_vehicle",
            "vehicle_id",
            "image_type",
            unique=True,
            postgresql_where=text(_KEY_TYPE_SQL),
            sqlite_where=text(_KEY_TYPE_SQL),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(Uuid(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    image_type = Column(Enum(ImageType), nullable=False, default=ImageType.GALLERY)
    original_url = Column(Text, nullable=False)
    original_path = Column(Text, nullable=True)          # e.g. 'stores/{sid}/vehicles/{vid}/original/{uuid}_{ms}.jpg'
    processed_url = Column(Text, nullable=True)
    optimized_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    thumbnail_path = Column(Text, nullable=True)
    content_type = Column(Text, nullable=True)
    original_filename = Column(Text)
    width = Column(Integer)
    height = Column(Integer)
    sort_order = Column(Integer, nullable=False, default=0)
    is_processed = Column(Boolean, nullable=False, default=False)
    is_optimized = Column(Boolean, nullable=False, default=False)
    processed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    uploaded_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    vehicle = relationship("Vehicle", back_populates="images")
