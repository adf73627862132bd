import base64
import uuid
from unittest.mock import MagicMock

import pytest
import requests

from models import Store, Vehicle, VehicleImage, ImageType, ProcessingStatus
from services.errors import BadRequest, ConfigurationError, NotFound
from services.image_processor_service import (
    AIProcessorConfig,
    ImageProcessorService,
    ProcessingError,
    build_processing_prompt,
)

from helpers import BLOB_BASE, fake_response, processed_payload


@pytest.fixture
def processor(ctx):
    return ctx.processor


def _load(session_factory, image_id):
    with session_factory() as db:
        return db.get(VehicleImage, image_id)


def test_prompt_has_type_specific_requirement():
    prompt = build_processing_prompt(ImageType.FRONT)
    assert "Specific requirement: Maintain the straight-on front view" in prompt
    assert "Specific requirement" not in build_processing_prompt(ImageType.GALLERY)


def test_ai_config_requires_credentials():
    with pytest.raises(ConfigurationError):
        AIProcessorConfig(api_key="", api_endpoint="https://ai.test")
    with pytest.raises(ConfigurationError):
        AIProcessorConfig(api_key="k", api_endpoint="")


@pytest.mark.parametrize("image_type", [ImageType.GALLERY_EXTERIOR, ImageType.GALLERY_INTERIOR, ImageType.GALLERY])
def test_gallery_image_is_skipped_without_side_effects(image_type):
    session_factory, storage, templates, vehicles, http = (MagicMock() for _ in range(5))
    processor = ImageProcessorService(
        session_factory, storage, templates, AIProcessorConfig("k", "https://ai.test"), vehicles, http=http
    )
    result = processor.process_image(uuid.uuid4(), "https://x/y.jpg", image_type)

    assert result.success and result.skipped
    assert result.optimized_url is None
    for collaborator in (session_factory, storage, templates, vehicles, http):
        assert collaborator.mock_calls == []


def test_key_image_is_processed_and_persisted(processor, session_factory, vehicle, add_image, http, container):
    img = add_image(vehicle.id, ImageType.FRONT)
    http.get.return_value = fake_response(content=b"raw-jpeg")
    http.post.return_value = fake_response(payload=processed_payload(b"composited"))

    result = processor.process_image(img.id, img.original_url, ImageType.FRONT)

    assert result.success, result.error
    assert result.optimized_url.startswith(f"{BLOB_BASE}/stores/{vehicle.store_id}/vehicles/{vehicle.id}/optimized/")
    assert result.optimized_url.endswith(".jpg")

    http.get.assert_called_once_with(img.original_url, timeout=None)
    (endpoint,), kwargs = http.post.call_args
    assert endpoint == "https://ai.test/composite"
    assert kwargs["headers"] == {"Authorization": "Bearer test-key"}
    body = kwargs["json"]
    assert base64.b64decode(body["image"]) == b"raw-jpeg"
    assert body["backgroundTemplate"] == f"{BLOB_BASE}/backgrounds/studio-white.jpg"
    assert "Specific requirement" in body["prompt"]
    assert body["parameters"]["blendMode"] == "natural"

    container.get_blob_client.return_value.upload_blob.assert_called_once()
    assert container.get_blob_client.return_value.upload_blob.call_args.args[0] == b"composited"

    row = _load(session_factory, img.id)
    assert row.is_optimized
    assert row.optimized_url == result.optimized_url
    assert row.processed_at is not None
    assert row.original_url == img.original_url


def test_store_background_override_is_sent(processor, session_factory, store, vehicle, add_image, http):
    url = f"{BLOB_BASE}/stores/{store.id}/backgrounds/bg-back.jpg"
    with session_factory() as db:
        db.get(Store, store.id).bg_back = url
        db.commit()
    img = add_image(vehicle.id, ImageType.BACK)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())

    assert processor.process_image(img.id, img.original_url, "BACK").success
    assert http.post.call_args.kwargs["json"]["backgroundTemplate"] == url


def test_reprocessing_replaces_optimized_url(processor, session_factory, vehicle, add_image, http):
    img = add_image(vehicle.id, ImageType.DRIVER_SIDE)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())

    first = processor.process_image(img.id, img.original_url, ImageType.DRIVER_SIDE)
    second = processor.process_image(img.id, img.original_url, ImageType.DRIVER_SIDE)

    assert first.success and second.success
    row = _load(session_factory, img.id)
    assert row.is_optimized
    assert row.optimized_url == second.optimized_url


def test_download_failure_leaves_row_untouched(processor, session_factory, vehicle, add_image, http, container):
    img = add_image(vehicle.id, ImageType.FRONT_QUARTER)
    http.get.return_value = fake_response(status=404)

    result = processor.process_image(img.id, img.original_url, ImageType.FRONT_QUARTER)

    assert not result.success
    assert "Image download failed: 404" in result.error
    http.post.assert_not_called()
    container.get_blob_client.assert_not_called()
    row = _load(session_factory, img.id)
    assert not row.is_optimized and row.optimized_url is None and row.processed_at is None


def test_download_transport_error(processor, vehicle, add_image, http):
    img = add_image(vehicle.id, ImageType.FRONT)
    http.get.side_effect = requests.ConnectionError("connection refused")

    result = processor.process_image(img.id, img.original_url, ImageType.FRONT)
    assert not result.success
    assert "connection refused" in result.error


def test_ai_error_status_is_reported(processor, session_factory, vehicle, add_image, http):
    img = add_image(vehicle.id, ImageType.BACK_QUARTER)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload={"error": "quota"}, status=429)

    result = processor.process_image(img.id, img.original_url, ImageType.BACK_QUARTER)
    assert not result.success
    assert "AI API request failed: 429" in result.error
    assert not _load(session_factory, img.id).is_optimized


def test_ai_response_without_image_is_an_error(processor, session_factory, vehicle, add_image, http, container):
    img = add_image(vehicle.id, ImageType.PASSENGER_SIDE)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload={"status": "ok"})

    result = processor.process_image(img.id, img.original_url, ImageType.PASSENGER_SIDE)
    assert not result.success
    assert "missing processedImage" in result.error
    container.get_blob_client.assert_not_called()
    assert _load(session_factory, img.id).optimized_url is None


def test_upload_failure_is_reported(processor, session_factory, vehicle, add_image, http, container):
    img = add_image(vehicle.id, ImageType.FRONT)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())
    container.get_blob_client.return_value.upload_blob.side_effect = RuntimeError("storage down")

    result = processor.process_image(img.id, img.original_url, ImageType.FRONT)
    assert not result.success
    assert "Failed to upload optimized image" in result.error
    assert not _load(session_factory, img.id).is_optimized


def test_unknown_image_fails_before_download(processor, http):
    result = processor.process_image(uuid.uuid4(), "https://x/y.jpg", ImageType.FRONT)
    assert not result.success
    assert "Vehicle image not found" in result.error
    http.get.assert_not_called()


def test_result_to_dict_is_camel_case(processor, vehicle, add_image, http):
    img = add_image(vehicle.id, ImageType.FRONT)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())
    out = processor.process_image(img.id, img.original_url, ImageType.FRONT).to_dict()
    assert out["success"] is True
    assert set(out) == {"success", "optimizedUrl", "processedAt"}


# ───────────── Whole vehicle ──────────────────────────────────────────────────
def _vehicle_status(session_factory, vehicle_id):
    with session_factory() as db:
        return db.get(Vehicle, vehicle_id).processing_status


def test_process_vehicle_completes(processor, session_factory, vehicle, add_image, http):
    front = add_image(vehicle.id, ImageType.FRONT)
    back = add_image(vehicle.id, ImageType.BACK)
    gallery = add_image(vehicle.id, ImageType.GALLERY_EXTERIOR)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())

    summary = processor.process_vehicle(vehicle.id, [front.id, back.id, gallery.id])

    assert summary["success"]
    assert summary["processingStatus"] == "COMPLETED"
    assert {r["imageId"] for r in summary["results"]} == {str(front.id), str(back.id)}
    assert http.post.call_count == 2
    assert _vehicle_status(session_factory, vehicle.id) is ProcessingStatus.COMPLETED


def test_process_vehicle_partial_selection_is_in_progress(processor, session_factory, vehicle, add_image, http):
    front = add_image(vehicle.id, ImageType.FRONT)
    add_image(vehicle.id, ImageType.BACK)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())

    summary = processor.process_vehicle(vehicle.id, [front.id])
    assert summary["processingStatus"] == "IN_PROGRESS"


def test_process_vehicle_failure_sets_error(processor, session_factory, vehicle, add_image, http):
    front = add_image(vehicle.id, ImageType.FRONT)
    http.get.return_value = fake_response(status=500)

    summary = processor.process_vehicle(vehicle.id, [front.id])
    assert not summary["success"]
    assert summary["processingStatus"] == "ERROR"
    assert _vehicle_status(session_factory, vehicle.id) is ProcessingStatus.ERROR


def test_process_vehicle_validation(processor, vehicle, add_image):
    gallery = add_image(vehicle.id, ImageType.GALLERY)
    with pytest.raises(BadRequest):
        processor.process_vehicle(vehicle.id, [])
    with pytest.raises(BadRequest):
        processor.process_vehicle(vehicle.id, [gallery.id])
    with pytest.raises(NotFound):
        processor.process_vehicle(uuid.uuid4(), [gallery.id])


# ───────────── Reprocess ──────────────────────────────────────────────────────
def test_reprocess_only_runs_processed_images(processor, session_factory, vehicle, add_image, http):
    done = add_image(vehicle.id, ImageType.FRONT, is_optimized=True, optimized_url=f"{BLOB_BASE}/old.jpg")
    fresh = add_image(vehicle.id, ImageType.BACK)
    http.get.return_value = fake_response(content=b"raw")
    http.post.return_value = fake_response(payload=processed_payload())

    summary = processor.reprocess_vehicle(vehicle.id, [done.id, fresh.id])

    assert [r["imageId"] for r in summary["results"]] == [str(done.id)]
    http.get.assert_called_once_with(done.original_url, timeout=None)
    assert _load(session_factory, done.id).optimized_url != f"{BLOB_BASE}/old.jpg"
    assert _load(session_factory, fresh.id).is_optimized is False


def test_reprocess_needs_processed_images(processor, vehicle, add_image, http):
    fresh = add_image(vehicle.id, ImageType.BACK)
    with pytest.raises(BadRequest, match="No processed images found for reprocessing"):
        processor.reprocess_vehicle(vehicle.id, [fresh.id])
    with pytest.raises(NotFound):
        processor.reprocess_vehicle(uuid.uuid4(), [fresh.id])
    assert http.mock_calls == []


# ───────────── Download ───────────────────────────────────────────────────────
def test_download_processed_names_the_file(processor, store, vehicle, add_image, http):
    img = add_image(vehicle.id, ImageType.FRONT_QUARTER, optimized_url=f"{BLOB_BASE}/opt.jpg")
    http.get.return_value = fake_response(content=b"jpeg-bytes")

    data, filename = processor.download_processed(img.id)

    assert data == b"jpeg-bytes"
    assert filename == "downtown_motors_stk-1001_front_quarter_processed.jpg"
    http.get.assert_called_once_with(f"{BLOB_BASE}/opt.jpg", timeout=None)


def test_download_processed_errors(processor, vehicle, add_image, http):
    raw = add_image(vehicle.id, ImageType.FRONT)
    with pytest.raises(BadRequest, match="No processed version"):
        processor.download_processed(raw.id)
    with pytest.raises(NotFound):
        processor.download_processed(uuid.uuid4())

    done = add_image(vehicle.id, ImageType.BACK, processed_url=f"{BLOB_BASE}/p.jpg")
    http.get.return_value = fake_response(status=404)
    with pytest.raises(ProcessingError):
        processor.download_processed(done.id)


def test_download_manifest_lists_processed_images(processor, vehicle, add_image):
    done = add_image(vehicle.id, ImageType.BACK, optimized_url=f"{BLOB_BASE}/o.jpg")
    raw = add_image(vehicle.id, ImageType.FRONT)

    manifest = processor.download_manifest([done.id, raw.id])

    assert [m["imageId"] for m in manifest] == [str(done.id)]
    assert manifest[0]["downloadUrl"] == f"/api/processing/download?imageId={done.id}"
    assert manifest[0]["storeName"] == "Downtown Motors"
    with pytest.raises(NotFound):
        processor.download_manifest([raw.id])
    with pytest.raises(BadRequest):
        processor.download_manifest([])
