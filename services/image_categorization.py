# services/image_categorization.py
"""
Key-slot vs gallery rules for a vehicle's photo set.

Key images occupy one of six fixed slots and are never ordered. Gallery
images live in one of three buckets (exterior, interior and the legacy
uncategorized bucket) and carry a contiguous 0-based ``sort_order`` within
their bucket.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from services.image_types import ImageType, KEY_IMAGE_TYPES, GALLERY_IMAGE_TYPES, ProcessingStatus
from services.errors import InvalidImageType

T = TypeVar("T")


class ImageCategory(str, enum.Enum):
    KEY = "key"
    GALLERY = "gallery"


class GalleryBucket(str, enum.Enum):
    EXTERIOR = "exterior"
    INTERIOR = "interior"
    UNCATEGORIZED = "uncategorized"


def coerce_image_type(value: Any) -> ImageType:
    if isinstance(value, ImageType):
        return value
    try:
        return ImageType(str(value).strip().upper())
    except ValueError:
        raise InvalidImageType(f"Invalid image type: {value!r}") from None


def image_category(image_type: ImageType) -> ImageCategory:
    match coerce_image_type(image_type):
        case (
            ImageType.FRONT_QUARTER
            | ImageType.FRONT
            | ImageType.BACK_QUARTER
            | ImageType.BACK
            | ImageType.DRIVER_SIDE
            | ImageType.PASSENGER_SIDE
        ):
            return ImageCategory.KEY
        case ImageType.GALLERY_EXTERIOR | ImageType.GALLERY_INTERIOR | ImageType.GALLERY:
            return ImageCategory.GALLERY
    raise InvalidImageType(f"Unhandled image type: {image_type!r}")


def gallery_bucket(image_type: ImageType) -> Optional[GalleryBucket]:
    """Bucket of a gallery type; None for key types."""
    match coerce_image_type(image_type):
        case ImageType.GALLERY_EXTERIOR:
            return GalleryBucket.EXTERIOR
        case ImageType.GALLERY_INTERIOR:
            return GalleryBucket.INTERIOR
        case ImageType.GALLERY:
            return GalleryBucket.UNCATEGORIZED
        case _:
            return None


def bucket_image_type(bucket: GalleryBucket) -> ImageType:
    match bucket:
        case GalleryBucket.EXTERIOR:
            return ImageType.GALLERY_EXTERIOR
        case GalleryBucket.INTERIOR:
            return ImageType.GALLERY_INTERIOR
        case GalleryBucket.UNCATEGORIZED:
            return ImageType.GALLERY
    raise ValueError(f"Unknown gallery bucket: {bucket!r}")


def is_key_image_type(image_type: Any) -> bool:
    try:
        return image_category(image_type) is ImageCategory.KEY
    except InvalidImageType:
        return False


def is_gallery_image_type(image_type: Any) -> bool:
    try:
        return image_category(image_type) is ImageCategory.GALLERY
    except InvalidImageType:
        return False


def should_process_image(image_type: Any) -> bool:
    """Only key images get AI background replacement."""
    return is_key_image_type(image_type)


# ───────────── Ordering ───────────────────────────────────────────────────────
def array_move(items: Sequence[T], old_index: int, new_index: int) -> List[T]:
    """Remove the item at ``old_index`` and reinsert it at ``new_index``."""
    size = len(items)
    if not (0 <= old_index < size) or not (0 <= new_index < size):
        raise IndexError(f"move {old_index} -> {new_index} out of range for {size} items")
    moved = list(items)
    moved.insert(new_index, moved.pop(old_index))
    return moved


def contiguous_sort_orders(ids: Iterable[T]) -> List[Tuple[T, int]]:
    """Pair each id with its new 0..n-1 position."""
    return [(item_id, index) for index, item_id in enumerate(ids)]


def next_sort_order(existing: Iterable[int]) -> int:
    """Sort order appended after the current tail of a bucket."""
    return max(existing, default=-1) + 1


def assign_upload_types(
    count: int,
    occupied: Iterable[ImageType] = (),
    gallery_type: ImageType = ImageType.GALLERY,
) -> List[ImageType]:
    """
    Types for ``count`` untyped uploads, in upload order: empty key slots
    first (in slot order), everything else to ``gallery_type``.
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    if not is_gallery_image_type(gallery_type):
        raise InvalidImageType(f"{gallery_type!r} is not a gallery image type")
    taken = {coerce_image_type(t) for t in occupied}
    free_slots = [t for t in KEY_IMAGE_TYPES if t not in taken]
    assigned = free_slots[:count]
    return assigned + [coerce_image_type(gallery_type)] * (count - len(assigned))


# ───────────── Partitioning ───────────────────────────────────────────────────
def _attr(image: Any, name: str) -> Any:
    if isinstance(image, dict):
        return image.get(name)
    return getattr(image, name)


@dataclass
class ImagePartition:
    key_slots: Dict[ImageType, Any] = field(default_factory=lambda: {t: None for t in KEY_IMAGE_TYPES})
    gallery: Dict[GalleryBucket, List[Any]] = field(default_factory=lambda: {b: [] for b in GalleryBucket})

    def empty_slots(self) -> List[ImageType]:
        return [t for t, img in self.key_slots.items() if img is None]

    def occupied_slots(self) -> List[ImageType]:
        return [t for t, img in self.key_slots.items() if img is not None]

    def key_images(self) -> List[Any]:
        return [img for img in self.key_slots.values() if img is not None]

    def bucket(self, bucket: GalleryBucket) -> List[Any]:
        return self.gallery[bucket]


def partition_images(
    images: Iterable[Any],
    type_attr: str = "image_type",
    order_attr: str = "sort_order",
) -> ImagePartition:
    """
    Split images into key slots and sorted gallery buckets. Works on ORM rows
    or dicts. Duplicate claims on a key slot resolve to the last one seen.
    """
    partition = ImagePartition()
    for image in images:
        image_type = coerce_image_type(_attr(image, type_attr))
        bucket = gallery_bucket(image_type)
        if bucket is None:
            partition.key_slots[image_type] = image
        else:
            partition.gallery[bucket].append(image)
    for bucket, items in partition.gallery.items():
        items.sort(key=lambda img: _attr(img, order_attr) or 0)
    return partition


def derive_processing_status(key_images: Sequence[Any], failures: int = 0) -> ProcessingStatus:
    """
    Vehicle status from its key images: any failure wins, then all optimized
    means COMPLETED, some means IN_PROGRESS, none means NOT_STARTED.
    """
    if failures:
        return ProcessingStatus.ERROR
    if not key_images:
        return ProcessingStatus.NOT_STARTED
    done = sum(1 for img in key_images if _attr(img, "is_optimized") or _attr(img, "is_processed"))
    if done == len(key_images):
        return ProcessingStatus.COMPLETED
    return ProcessingStatus.IN_PROGRESS if done else ProcessingStatus.NOT_STARTED


__all__ = [
    "ImageCategory",
    "GalleryBucket",
    "ImagePartition",
    "KEY_IMAGE_TYPES",
    "GALLERY_IMAGE_TYPES",
    "coerce_image_type",
    "image_category",
    "gallery_bucket",
    "bucket_image_type",
    "is_key_image_type",
    "is_gallery_image_type",
    "should_process_image",
    "array_move",
    "contiguous_sort_orders",
    "next_sort_order",
    "assign_upload_types",
    "partition_images",
    "derive_processing_status",
]
