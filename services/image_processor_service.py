# services/image_processor_service.py
"""
AI background replacement for key vehicle images.

One call to ``process_image`` downloads the original, picks a background,
asks the compositing endpoint for a new image, uploads it and records the
result on the image row. Every failure is reported in the returned
``ProcessingResult``; nothing is written to the database unless every earlier
step succeeded. There is no retry, queue or lock: two concurrent calls on
the same image race and the last one to persist wins.
"""
import base64
import re
import binascii
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests
from sqlalchemy.orm import joinedload, sessionmaker

from models import Vehicle, VehicleImage, ImageType, ProcessingStatus
from services.background_template_service import BackgroundTemplateService
from services.blob_service import BlobStorage, vehicle_image_path
from services.errors import BadRequest, ConfigurationError, NotFound
from services.image_categorization import coerce_image_type, should_process_image
from services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)

BASE_PROMPT = (
    "Remove the background from this vehicle image.\n"
    "Then composite the vehicle onto the provided background template.\n"
    "Adjust lighting and color temperature to blend naturally with the background.\n"
    "Do not add any elements to the vehicle itself.\n"
    "Maintain the vehicle's original appearance and details."
)

PROCESSING_PARAMETERS = {
    "preserveVehicleDetails": True,
    "adjustColorTemperature": True,
    "blendMode": "natural",
}


class ProcessingError(Exception):
    """A step of the pipeline failed; the message is surfaced to the caller."""


@dataclass
class ProcessingResult:
    success: bool
    optimized_url: Optional[str] = None
    error: Optional[str] = None
    processed_at: Optional[datetime] = None
    skipped: bool = False

    def to_dict(self) -> Dict:
        out: Dict = {"success": self.success}
        if self.optimized_url:
            out["optimizedUrl"] = self.optimized_url
        if self.processed_at:
            out["processedAt"] = self.processed_at.isoformat()
        if self.skipped:
            out["skipped"] = True
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class AIProcessorConfig:
    api_key: str
    api_endpoint: str
    timeout: Optional[float] = None

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError("AI API key not configured")
        if not self.api_endpoint:
            raise ConfigurationError("AI API endpoint not configured")


def type_instruction(image_type: ImageType) -> Optional[str]:
    match image_type:
        case ImageType.FRONT_QUARTER:
            return "Ensure the front quarter angle is clearly visible with proper perspective."
        case ImageType.FRONT:
            return "Maintain the straight-on front view with symmetrical lighting."
        case ImageType.BACK_QUARTER:
            return "Preserve the rear quarter angle with clear visibility of the back."
        case ImageType.BACK:
            return "Keep the straight-on rear view with even lighting."
        case ImageType.DRIVER_SIDE:
            return "Maintain the full side profile from the driver side."
        case ImageType.PASSENGER_SIDE:
            return "Preserve the full side profile from the passenger side."
        case ImageType.GALLERY_EXTERIOR | ImageType.GALLERY_INTERIOR | ImageType.GALLERY:
            return None
    raise ValueError(f"Unknown image type: {image_type!r}")


def build_processing_prompt(image_type: ImageType) -> str:
    specific = type_instruction(coerce_image_type(image_type))
    return f"{BASE_PROMPT}\n\nSpecific requirement: {specific}" if specific else BASE_PROMPT


class ImageProcessorService:
    def __init__(
        self,
        session_factory: sessionmaker,
        storage: BlobStorage,
        templates: BackgroundTemplateService,
        ai_config: AIProcessorConfig,
        vehicles: VehicleService,
        http: Optional[requests.Session] = None,
    ):
        self._session_factory = session_factory
        self._storage = storage
        self._templates = templates
        self._ai = ai_config
        self._vehicles = vehicles
        self._http = http or requests.Session()

    def should_process_image(self, image_type) -> bool:
        return should_process_image(image_type)

    # ───────────── Single image ───────────────────────────────────────────────
    def process_image(self, image_id: uuid.UUID, original_url: str, image_type) -> ProcessingResult:
        try:
            if not self.should_process_image(image_type):
                logger.info("Skipping gallery image: %s (%s)", image_id, image_type)
                return ProcessingResult(success=True, skipped=True)
            image_type = coerce_image_type(image_type)
            logger.info("Processing image: %s (%s)", image_id, image_type.value)

            vehicle_id, store_id, store_overrides = self._find_owner(image_id)
            data = self._download_image(original_url)

            template = self._templates.select_background_template(image_type, store_overrides)
            if template is None:
                raise ConfigurationError(f"No background template found for image type: {image_type.value}")

            processed = self._remove_and_replace_background(data, image_type, template.template_url)
            optimized_url = self._upload_optimized(processed, store_id, vehicle_id)

            processed_at = datetime.now(timezone.utc)
            self._persist(image_id, optimized_url, processed_at)
            logger.info("Successfully processed image: %s", image_id)
            return ProcessingResult(success=True, optimized_url=optimized_url, processed_at=processed_at)
        except Exception as e:
            logger.error(
                "Image processing failed: operation=image-processing image=%s type=%s error=%s",
                image_id, image_type, e, exc_info=True,
            )
            return ProcessingResult(success=False, error=str(e) or type(e).__name__)

    def _find_owner(self, image_id: uuid.UUID) -> Tuple[uuid.UUID, uuid.UUID, Dict[ImageType, str]]:
        with self._session_factory() as db:
            row = (
                db.query(VehicleImage.vehicle_id, Vehicle.store_id)
                .join(Vehicle, Vehicle.id == VehicleImage.vehicle_id)
                .filter(VehicleImage.id == image_id)
                .first()
            )
            if not row:
                raise NotFound(f"Vehicle image not found: {image_id}")
            vehicle = db.get(Vehicle, row.vehicle_id)
            overrides = vehicle.store.background_overrides() if vehicle.store else {}
            return row.vehicle_id, row.store_id, overrides

    def _download_image(self, url: str) -> bytes:
        try:
            r = self._http.get(url, timeout=self._ai.timeout)
        except requests.RequestException as e:
            raise ProcessingError(f"Image download failed: {e}") from e
        if not r.ok:
            raise ProcessingError(f"Image download failed: {r.status_code} {r.reason}")
        return r.content

    def _remove_and_replace_background(self, data: bytes, image_type: ImageType, template_url: str) -> bytes:
        body = {
            "image": base64.b64encode(data).decode("ascii"),
            "backgroundTemplate": template_url,
            "prompt": build_processing_prompt(image_type),
            "parameters": dict(PROCESSING_PARAMETERS),
        }
        try:
            r = self._http.post(
                self._ai.api_endpoint,
                json=body,
                headers={"Authorization": f"Bearer {self._ai.api_key}"},
                timeout=self._ai.timeout,
            )
        except requests.RequestException as e:
            raise ProcessingError(f"Background processing failed: {e}") from e

        if not r.ok:
            raise ProcessingError(
                f"Background processing failed: AI API request failed: {r.status_code} {r.reason} - {r.text}"
            )
        try:
            payload = r.json()
        except ValueError:
            raise ProcessingError("Background processing failed: AI API returned invalid JSON") from None

        encoded = payload.get("processedImage") if isinstance(payload, dict) else None
        if not encoded:
            raise ProcessingError("Background processing failed: AI API response missing processedImage field")
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise ProcessingError("Background processing failed: processedImage is not valid base64") from None

    def _upload_optimized(self, data: bytes, store_id: uuid.UUID, vehicle_id: uuid.UUID) -> str:
        path = vehicle_image_path(store_id, vehicle_id, "optimized", "jpg")
        try:
            return self._storage.upload(data, path, "image/jpeg")
        except Exception as e:
            raise ProcessingError(f"Failed to upload optimized image: {e}") from e

    def _persist(self, image_id: uuid.UUID, optimized_url: str, processed_at: datetime) -> None:
        with self._session_factory() as db:
            rows = (
                db.query(VehicleImage)
                .filter(VehicleImage.id == image_id)
                .update(
                    {
                        "optimized_url": optimized_url,
                        "is_optimized": True,
                        "processed_at": processed_at,
                        "updated_at": processed_at,  # cache busting
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        if not rows:
            raise NotFound(f"Vehicle image not found: {image_id}")

    # ───────────── Whole vehicle ──────────────────────────────────────────────
    def _key_targets(
        self,
        vehicle_id: uuid.UUID,
        image_ids: Sequence[uuid.UUID],
        wanted: Callable[[VehicleImage], bool],
    ) -> List[Tuple[uuid.UUID, str, ImageType]]:
        with self._session_factory() as db:
            if not db.get(Vehicle, vehicle_id):
                raise NotFound("Vehicle not found")
            rows = (
                db.query(VehicleImage)
                .filter(VehicleImage.vehicle_id == vehicle_id, VehicleImage.id.in_(list(image_ids)))
                .all()
            )
            return [
                (r.id, r.original_url, r.image_type)
                for r in rows
                if should_process_image(r.image_type) and wanted(r)
            ]

    def _run_batch(self, vehicle_id: uuid.UUID, targets: Sequence[Tuple[uuid.UUID, str, ImageType]]) -> Dict:
        self._vehicles.update_processing_status(vehicle_id, ProcessingStatus.IN_PROGRESS)

        results: List[Dict] = []
        for image_id, url, image_type in targets:
            result = self.process_image(image_id, url, image_type)
            results.append({"imageId": str(image_id), "imageType": image_type.value, **result.to_dict()})

        failures = sum(1 for r in results if not r["success"])
        status = self._vehicles.refresh_processing_status(vehicle_id, failures)
        return {
            "success": failures < len(results),
            "processingStatus": status.value if status else None,
            "results": results,
        }

    def process_vehicle(self, vehicle_id: uuid.UUID, image_ids: Sequence[uuid.UUID]) -> Dict:
        """
        Process the selected key images of one vehicle in turn. The vehicle is
        flagged IN_PROGRESS up front and its final status is derived from its
        key images afterwards.
        """
        if not image_ids:
            raise BadRequest("Vehicle ID and image IDs are required")
        targets = self._key_targets(vehicle_id, image_ids, lambda r: True)
        if not targets:
            raise BadRequest("No valid key images found for processing")
        return self._run_batch(vehicle_id, targets)

    def reprocess_vehicle(self, vehicle_id: uuid.UUID, image_ids: Sequence[uuid.UUID]) -> Dict:
        """Run already processed key images again, starting from their originals."""
        if not image_ids:
            raise BadRequest("Vehicle ID and image IDs are required")
        targets = self._key_targets(vehicle_id, image_ids, lambda r: bool(r.is_optimized or r.is_processed))
        if not targets:
            raise BadRequest("No processed images found for reprocessing")
        logger.info("Reprocessing %d images on vehicle %s", len(targets), vehicle_id)
        return self._run_batch(vehicle_id, targets)

    # ───────────── Downloads ──────────────────────────────────────────────────
    def _processed_images(self, image_ids: Sequence[uuid.UUID]) -> List[VehicleImage]:
        with self._session_factory() as db:
            return (
                db.query(VehicleImage)
                .options(joinedload(VehicleImage.vehicle).joinedload(Vehicle.store))
                .filter(VehicleImage.id.in_(list(image_ids)))
                .all()
            )

    def download_processed(self, image_id: uuid.UUID) -> Tuple[bytes, str]:
        """
        Fetch the processed version of an image. Returns the bytes and an
        attachment filename; raises ProcessingError when the fetch fails.
        """
        rows = self._processed_images([image_id])
        if not rows:
            raise NotFound("Image not found")
        row = rows[0]
        url = row.optimized_url or row.processed_url
        if not url:
            raise BadRequest("No processed version available for this image")
        return self._download_image(url), processed_filename(row)

    def download_manifest(self, image_ids: Sequence[uuid.UUID]) -> List[Dict]:
        """Download links for every image in ``image_ids`` that has a processed version."""
        if not image_ids:
            raise BadRequest("Image IDs are required")
        rows = [r for r in self._processed_images(image_ids) if r.optimized_url or r.processed_url]
        if not rows:
            raise NotFound("No processed images found")
        return [
            {
                "imageId": str(r.id),
                "downloadUrl": f"/api/processing/download?imageId={r.id}",
                "filename": processed_filename(r),
                "imageType": r.image_type.value,
                "vehicleStockNumber": r.vehicle.stock_number,
                "storeName": r.vehicle.store.name,
            }
            for r in rows
        ]


def processed_filename(row: VehicleImage) -> str:
    name = f"{row.vehicle.store.name}_{row.vehicle.stock_number}_{row.image_type.value}_processed.jpg"
    return re.sub(r"[^a-zA-Z0-9._-]", "_", name).lower()
