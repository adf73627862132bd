import uuid
from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, String, Enum, Uuid, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base
from services.image_types import ProcessingStatus
from .vehicle_image import VehicleImage


class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (
        # stock numbers are unique within a store
        UniqueConstraint("store_id", "stock_number", name="uq_vehicles_store_stock_number"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    store_id = Column(Uuid(as_uuid=True), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False)
    stock_number = Column(Text, nullable=False)
    vin = Column(String(32), nullable=True)
    processing_status = Column(
        Enum(ProcessingStatus), nullable=False, default=ProcessingStatus.NOT_STARTED
    )
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    store = relationship("Store", back_populates="vehicles")
    images = relationship(
        "VehicleImage",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        order_by=[VehicleImage.image_type, VehicleImage.sort_order],
    )
