### models/__init__.py
from .base import Base
from .user import User, UserRole
from .store import Store
from .vehicle import Vehicle, ProcessingStatus
from .vehicle_image import VehicleImage, ImageType, KEY_IMAGE_TYPES, GALLERY_IMAGE_TYPES
