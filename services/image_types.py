# services/image_types.py
# Plain enums shared by the ORM models, the services and the gallery client.
# Nothing here may import SQLAlchemy.
import enum


class ImageType(str, enum.Enum):
    FRONT_QUARTER = "FRONT_QUARTER"
    FRONT = "FRONT"
    BACK_QUARTER = "BACK_QUARTER"
    BACK = "BACK"
    DRIVER_SIDE = "DRIVER_SIDE"
    PASSENGER_SIDE = "PASSENGER_SIDE"
    GALLERY_EXTERIOR = "GALLERY_EXTERIOR"
    GALLERY_INTERIOR = "GALLERY_INTERIOR"
    GALLERY = "GALLERY"  # legacy, uncategorized


# Slot order doubles as the auto-assignment order on upload.
KEY_IMAGE_TYPES = (
    ImageType.FRONT_QUARTER,
    ImageType.FRONT,
    ImageType.BACK_QUARTER,
    ImageType.BACK,
    ImageType.DRIVER_SIDE,
    ImageType.PASSENGER_SIDE,
)
GALLERY_IMAGE_TYPES = (
    ImageType.GALLERY_EXTERIOR,
    ImageType.GALLERY_INTERIOR,
    ImageType.GALLERY,
)


class ProcessingStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
