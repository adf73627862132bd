import uuid
from typing import Dict, Optional
from sqlalchemy import Column, Text, TIMESTAMP, JSON, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base
from .vehicle_image import ImageType


class Store(Base):
    __tablename__ = "stores"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    address = Column(Text, nullable=False, default="")
    brand_logos = Column(JSON, nullable=False, default=list)
    image_url = Column(Text, nullable=True)

    # Per-store background overrides, one per key image type
    bg_front_quarter = Column(Text, nullable=True)
    bg_front = Column(Text, nullable=True)
    bg_back_quarter = Column(Text, nullable=True)
    bg_back = Column(Text, nullable=True)
    bg_driver_side = Column(Text, nullable=True)
    bg_passenger_side = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    vehicles = relationship("Vehicle", back_populates="store")

    def background_overrides(self) -> Dict[ImageType, str]:
        """Non-empty background override URLs keyed by image type."""
        overrides = {}
        for image_type in ImageType:
            column = background_column(image_type)
            if column is None:
                continue
            url = getattr(self, column)
            if url:
                overrides[image_type] = url
        return overrides


def background_column(image_type: ImageType) -> Optional[str]:
    """Store column holding the override for a key type; None for gallery types."""
    match image_type:
        case ImageType.FRONT_QUARTER:
            return "bg_front_quarter"
        case ImageType.FRONT:
            return "bg_front"
        case ImageType.BACK_QUARTER:
            return "bg_back_quarter"
        case ImageType.BACK:
            return "bg_back"
        case ImageType.DRIVER_SIDE:
            return "bg_driver_side"
        case ImageType.PASSENGER_SIDE:
            return "bg_passenger_side"
        case ImageType.GALLERY_EXTERIOR | ImageType.GALLERY_INTERIOR | ImageType.GALLERY:
            return None
    raise ValueError(f"Unknown image type: {image_type!r}")
