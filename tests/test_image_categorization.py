import random

import pytest

from models import ImageType, KEY_IMAGE_TYPES, GALLERY_IMAGE_TYPES, ProcessingStatus
from services.errors import InvalidImageType
from services.image_categorization import (
    GalleryBucket,
    ImageCategory,
    array_move,
    assign_upload_types,
    bucket_image_type,
    coerce_image_type,
    contiguous_sort_orders,
    derive_processing_status,
    gallery_bucket,
    image_category,
    is_gallery_image_type,
    next_sort_order,
    partition_images,
    should_process_image,
)


@pytest.mark.parametrize("image_type", KEY_IMAGE_TYPES)
def test_key_types_are_processed(image_type):
    assert image_category(image_type) is ImageCategory.KEY
    assert should_process_image(image_type)
    assert gallery_bucket(image_type) is None


@pytest.mark.parametrize("image_type", GALLERY_IMAGE_TYPES)
def test_gallery_types_are_never_processed(image_type):
    assert image_category(image_type) is ImageCategory.GALLERY
    assert not should_process_image(image_type)
    assert bucket_image_type(gallery_bucket(image_type)) is image_type


def test_legacy_gallery_is_uncategorized():
    assert gallery_bucket(ImageType.GALLERY) is GalleryBucket.UNCATEGORIZED


def test_coerce_accepts_strings_case_insensitively():
    assert coerce_image_type("front_quarter") is ImageType.FRONT_QUARTER
    assert coerce_image_type(" GALLERY_INTERIOR ") is ImageType.GALLERY_INTERIOR


def test_unknown_type_is_rejected():
    with pytest.raises(InvalidImageType):
        coerce_image_type("ROOF")
    assert not should_process_image("ROOF")
    assert not is_gallery_image_type(None)


def test_array_move_drag_first_to_last():
    moved = array_move(["a", "b", "c"], 0, 2)
    assert moved == ["b", "c", "a"]
    assert contiguous_sort_orders(moved) == [("b", 0), ("c", 1), ("a", 2)]


def test_array_move_leaves_input_untouched():
    items = ["a", "b", "c"]
    array_move(items, 2, 0)
    assert items == ["a", "b", "c"]


def test_array_move_out_of_range():
    with pytest.raises(IndexError):
        array_move(["a"], 0, 1)


def test_moves_keep_orders_contiguous():
    rng = random.Random(7)
    items = list(range(9))
    for _ in range(50):
        items = array_move(items, rng.randrange(len(items)), rng.randrange(len(items)))
        orders = [order for _, order in contiguous_sort_orders(items)]
        assert orders == list(range(len(items)))
    assert sorted(items) == list(range(9))


def test_next_sort_order():
    assert next_sort_order([]) == 0
    assert next_sort_order([0, 1, 4]) == 5


@pytest.mark.parametrize("count", range(0, 11))
def test_assign_upload_types_fills_key_slots_first(count):
    assigned = assign_upload_types(count)
    assert len(assigned) == count
    assert assigned[:6] == list(KEY_IMAGE_TYPES)[:count]
    assert all(t is ImageType.GALLERY for t in assigned[6:])


def test_assign_upload_types_skips_occupied_slots():
    assigned = assign_upload_types(3, occupied=[ImageType.FRONT_QUARTER, ImageType.BACK])
    assert assigned == [ImageType.FRONT, ImageType.BACK_QUARTER, ImageType.DRIVER_SIDE]


def test_assign_upload_types_rejects_key_gallery_type():
    with pytest.raises(InvalidImageType):
        assign_upload_types(1, gallery_type=ImageType.FRONT)


def test_partition_sorts_buckets_and_fills_slots():
    images = [
        {"id": "e2", "image_type": "GALLERY_EXTERIOR", "sort_order": 1},
        {"id": "f", "image_type": "FRONT", "sort_order": 0},
        {"id": "e1", "image_type": "GALLERY_EXTERIOR", "sort_order": 0},
        {"id": "u", "image_type": "GALLERY", "sort_order": 0},
    ]
    partition = partition_images(images)
    assert partition.key_slots[ImageType.FRONT]["id"] == "f"
    assert [i["id"] for i in partition.bucket(GalleryBucket.EXTERIOR)] == ["e1", "e2"]
    assert [i["id"] for i in partition.bucket(GalleryBucket.UNCATEGORIZED)] == ["u"]
    assert partition.bucket(GalleryBucket.INTERIOR) == []
    assert partition.occupied_slots() == [ImageType.FRONT]
    assert len(partition.empty_slots()) == 5


def test_partition_last_duplicate_wins_slot():
    images = [
        {"id": "old", "image_type": "BACK", "sort_order": 0},
        {"id": "new", "image_type": "BACK", "sort_order": 0},
    ]
    assert partition_images(images).key_slots[ImageType.BACK]["id"] == "new"


def test_derive_processing_status():
    done = {"is_optimized": True, "is_processed": False}
    pending = {"is_optimized": False, "is_processed": False}
    assert derive_processing_status([]) is ProcessingStatus.NOT_STARTED
    assert derive_processing_status([pending]) is ProcessingStatus.NOT_STARTED
    assert derive_processing_status([done, pending]) is ProcessingStatus.IN_PROGRESS
    assert derive_processing_status([done, done]) is ProcessingStatus.COMPLETED
    assert derive_processing_status([done], failures=1) is ProcessingStatus.ERROR
