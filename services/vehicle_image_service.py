# services/vehicle_image_service.py
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from PIL import Image
from sqlalchemy.orm import Session, sessionmaker

from models import Vehicle, VehicleImage, ImageType
from services.blob_service import BlobStorage, extension_for, vehicle_image_path
from services.errors import BadRequest, NotFound, InvalidImageType
from services.image_categorization import (
    assign_upload_types,
    coerce_image_type,
    contiguous_sort_orders,
    gallery_bucket,
    is_gallery_image_type,
    is_key_image_type,
    next_sort_order,
)

logger = logging.getLogger(__name__)

ALLOWED_CONTENT = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
THUMBNAIL_SIZE = (300, 200)


@dataclass
class UploadedFile:
    filename: str
    content_type: str
    data: bytes
    image_type: Optional[ImageType] = None


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def image_to_dict(r: VehicleImage) -> Dict:
    return {
        "id": str(r.id),
        "vehicleId": str(r.vehicle_id),
        "imageType": r.image_type.value,
        "originalUrl": r.original_url,
        "processedUrl": r.processed_url,
        "optimizedUrl": r.optimized_url,
        "thumbnailUrl": r.thumbnail_url,
        "sortOrder": r.sort_order,
        "isProcessed": r.is_processed,
        "isOptimized": r.is_optimized,
        "width": r.width,
        "height": r.height,
        "processedAt": _iso(r.processed_at),
        "uploadedAt": _iso(r.uploaded_at),
        "updatedAt": _iso(r.updated_at),
    }


def make_thumbnail(data: bytes) -> tuple[Optional[bytes], Optional[int], Optional[int]]:
    """
    Returns (jpeg_thumbnail, width, height) of the original. Probing is
    non-fatal: unreadable images come back as (None, None, None).
    """
    try:
        im = Image.open(io.BytesIO(data))
        width, height = im.size
        thumb = im.convert("RGB")
        thumb.thumbnail(THUMBNAIL_SIZE)
        buf = io.BytesIO()
        thumb.save(buf, format="JPEG", quality=85)
        return buf.getvalue(), width, height
    except Exception:
        logger.warning("Could not read image for thumbnail", exc_info=True)
        return None, None, None


def image_blob_paths(storage: BlobStorage, row: VehicleImage) -> List[str]:
    """Every blob in our container that belongs to ``row``."""
    paths = [
        row.original_path,
        row.thumbnail_path,
        storage.path_from_url(row.optimized_url),
        storage.path_from_url(row.processed_url),
    ]
    return list(dict.fromkeys(p for p in paths if p))


def delete_blobs(storage: BlobStorage, paths: Iterable[str]) -> None:
    for path in paths:
        try:
            storage.delete(path)
        except Exception:
            # don't fail the request on a blob delete; the rows are already settled
            logger.warning("Blob delete failed for %s", path, exc_info=True)


class VehicleImageService:
    def __init__(self, session_factory: sessionmaker, storage: BlobStorage, max_upload_bytes: int):
        self._session_factory = session_factory
        self._storage = storage
        self._max_upload_bytes = max_upload_bytes

    # ───────────── Queries ────────────────────────────────────────────────────
    def find_vehicle_image(self, image_id: uuid.UUID) -> Optional[VehicleImage]:
        with self._session_factory() as db:
            return db.get(VehicleImage, image_id)

    def list_images(self, vehicle_id: uuid.UUID) -> List[Dict]:
        with self._session_factory() as db:
            if not db.get(Vehicle, vehicle_id):
                raise NotFound("Vehicle not found")
            rows = (
                db.query(VehicleImage)
                .filter(VehicleImage.vehicle_id == vehicle_id)
                .order_by(VehicleImage.image_type, VehicleImage.sort_order)
                .all()
            )
            return [image_to_dict(r) for r in rows]

    def update_vehicle_image(self, image_id: uuid.UUID, fields: Mapping) -> bool:
        with self._session_factory() as db:
            rows = (
                db.query(VehicleImage)
                .filter(VehicleImage.id == image_id)
                .update(dict(fields), synchronize_session=False)
            )
            db.commit()
            return rows > 0

    # ───────────── Upload ─────────────────────────────────────────────────────
    def _validate(self, files: Sequence[UploadedFile]) -> None:
        if not files:
            raise BadRequest("No files provided")
        for f in files:
            if f.content_type not in ALLOWED_CONTENT:
                raise BadRequest(
                    f"Invalid file type: {f.content_type}. Allowed types: {', '.join(sorted(ALLOWED_CONTENT))}"
                )
            if not f.data:
                raise BadRequest(f"Empty file: {f.filename}")
            if len(f.data) > self._max_upload_bytes:
                raise BadRequest(f"File too large: {f.filename}")
            if f.image_type:
                try:
                    f.image_type = coerce_image_type(f.image_type)
                except InvalidImageType as e:
                    raise BadRequest(str(e)) from None

    def upload_images(self, vehicle_id: uuid.UUID, files: Sequence[UploadedFile]) -> List[Dict]:
        """
        Store originals (plus thumbnails) and create image rows.

        Untyped files fill the vehicle's empty key slots in slot order, the
        rest land in the uncategorized gallery. A key type that is already
        taken replaces the previous occupant.
        """
        self._validate(files)
        uploaded: List[str] = []
        replaced: List[str] = []
        with self._session_factory() as db:
            vehicle = db.get(Vehicle, vehicle_id)
            if not vehicle:
                raise NotFound("Vehicle not found")

            existing = db.query(VehicleImage).filter(VehicleImage.vehicle_id == vehicle_id).all()
            occupied = [r.image_type for r in existing if is_key_image_type(r.image_type)]
            occupied += [f.image_type for f in files if f.image_type and is_key_image_type(f.image_type)]
            auto = iter(assign_upload_types(sum(1 for f in files if not f.image_type), occupied))

            created: List[VehicleImage] = []
            try:
                for f in files:
                    image_type = coerce_image_type(f.image_type) if f.image_type else next(auto)
                    row = self._store_file(db, vehicle, f, image_type, uploaded, replaced)
                    created.append(row)
                db.commit()
            except Exception:
                # rows roll back with the session; blobs written so far must go too
                logger.warning(
                    "Upload for vehicle %s failed; removing %d new blobs", vehicle_id, len(uploaded)
                )
                delete_blobs(self._storage, uploaded)
                raise

            delete_blobs(self._storage, replaced)
            logger.info("Uploaded %d images for vehicle %s", len(created), vehicle_id)
            return [image_to_dict(r) for r in created]

    def _store_file(
        self,
        db: Session,
        vehicle: Vehicle,
        f: UploadedFile,
        image_type: ImageType,
        uploaded: List[str],
        replaced: List[str],
    ) -> VehicleImage:
        """
        Upload one file and stage its row. New blob paths go to ``uploaded``;
        blobs of a replaced key image go to ``replaced`` and are only removed
        by the caller once the transaction has committed.
        """
        if is_key_image_type(image_type):
            previous = (
                db.query(VehicleImage)
                .filter(VehicleImage.vehicle_id == vehicle.id, VehicleImage.image_type == image_type)
                .all()
            )
            for r in previous:
                logger.info("Replacing %s image %s on vehicle %s", image_type.value, r.id, vehicle.id)
                replaced.extend(image_blob_paths(self._storage, r))
                db.delete(r)
            db.flush()  # ensure deletes are staged before insert
            sort_order = 0
        else:
            orders = (
                o for (o,) in db.query(VehicleImage.sort_order)
                .filter(VehicleImage.vehicle_id == vehicle.id, VehicleImage.image_type == image_type)
            )
            sort_order = next_sort_order(orders)

        ext = extension_for(f.content_type)
        original_path = vehicle_image_path(vehicle.store_id, vehicle.id, "original", ext)
        original_url = self._storage.upload(f.data, original_path, f.content_type)
        uploaded.append(original_path)

        thumb, width, height = make_thumbnail(f.data)
        thumbnail_path = None
        thumbnail_url = original_url
        if thumb:
            thumbnail_path = vehicle_image_path(vehicle.store_id, vehicle.id, "thumbnail", "jpg")
            try:
                thumbnail_url = self._storage.upload(thumb, thumbnail_path, "image/jpeg")
                uploaded.append(thumbnail_path)
            except Exception:
                logger.warning("Thumbnail upload failed for %s; using original", original_path, exc_info=True)
                thumbnail_path = None

        row = VehicleImage(
            vehicle_id=vehicle.id,
            image_type=image_type,
            original_url=original_url,
            original_path=original_path,
            thumbnail_url=thumbnail_url,
            thumbnail_path=thumbnail_path,
            content_type=f.content_type,
            original_filename=f.filename,
            width=width,
            height=height,
            sort_order=sort_order,
            is_processed=False,
            is_optimized=False,
        )
        db.add(row)
        db.flush()
        return row

    # ───────────── Ordering ───────────────────────────────────────────────────
    def _bucket_rows(self, db: Session, vehicle_id: uuid.UUID, image_type: ImageType) -> List[VehicleImage]:
        return (
            db.query(VehicleImage)
            .filter(VehicleImage.vehicle_id == vehicle_id, VehicleImage.image_type == image_type)
            .order_by(VehicleImage.sort_order, VehicleImage.uploaded_at)
            .all()
        )

    def _renumber(self, rows: Iterable[VehicleImage]) -> None:
        for row, order in contiguous_sort_orders(list(rows)):
            row.sort_order = order

    def reorder_images(self, vehicle_id: uuid.UUID, image_updates: Sequence[Mapping]) -> List[Dict]:
        """
        Apply ``[{id, sortOrder}]`` to one gallery bucket in a single
        transaction, then close any gaps so the bucket stays 0..n-1.
        """
        if not isinstance(image_updates, (list, tuple)) or not image_updates:
            raise BadRequest("imageUpdates must be a non-empty list")
        try:
            wanted = {uuid.UUID(str(u["id"])): int(u["sortOrder"]) for u in image_updates}
        except (KeyError, TypeError, ValueError):
            raise BadRequest("Each image update needs an id and an integer sortOrder") from None

        with self._session_factory() as db:
            if not db.get(Vehicle, vehicle_id):
                raise NotFound("Vehicle not found")
            rows = (
                db.query(VehicleImage)
                .filter(VehicleImage.vehicle_id == vehicle_id, VehicleImage.id.in_(list(wanted)))
                .all()
            )
            if len(rows) != len(wanted):
                raise NotFound("One or more images not found on this vehicle")

            types = {r.image_type for r in rows}
            if len(types) != 1 or not is_gallery_image_type(next(iter(types))):
                raise BadRequest("Only images from a single gallery bucket can be reordered")
            image_type = types.pop()

            for r in rows:
                r.sort_order = wanted[r.id]
            db.flush()
            bucket = self._bucket_rows(db, vehicle_id, image_type)
            self._renumber(bucket)
            db.commit()
            return [image_to_dict(r) for r in bucket]

    def update_image_type(self, vehicle_id: uuid.UUID, image_id: uuid.UUID, image_type) -> Dict:
        """
        Move a gallery image to another gallery bucket. The image is appended
        to its new bucket and the old bucket is renumbered.
        """
        try:
            target = coerce_image_type(image_type)
        except InvalidImageType as e:
            raise BadRequest(str(e)) from None
        if not is_gallery_image_type(target):
            raise BadRequest("Images can only be recategorized into gallery buckets")

        with self._session_factory() as db:
            row = (
                db.query(VehicleImage)
                .filter(VehicleImage.id == image_id, VehicleImage.vehicle_id == vehicle_id)
                .first()
            )
            if not row:
                raise NotFound("Image not found")
            if not is_gallery_image_type(row.image_type):
                raise BadRequest("Key images cannot be recategorized")
            if row.image_type == target:
                return image_to_dict(row)

            source = row.image_type
            row.sort_order = next_sort_order(r.sort_order for r in self._bucket_rows(db, vehicle_id, target))
            row.image_type = target
            row.updated_at = datetime.now(timezone.utc)
            db.flush()
            self._renumber(self._bucket_rows(db, vehicle_id, source))
            db.commit()
            logger.info(
                "Moved image %s from %s to %s", image_id, gallery_bucket(source).value, gallery_bucket(target).value
            )
            return image_to_dict(row)

    # ───────────── Delete ─────────────────────────────────────────────────────
    def delete_image(self, vehicle_id: uuid.UUID, image_id: uuid.UUID) -> bool:
        """
        Remove an image and its blobs. Gallery buckets are renumbered; a key
        slot is simply left empty. Blobs are deleted after the commit.
        """
        with self._session_factory() as db:
            row = (
                db.query(VehicleImage)
                .filter(VehicleImage.id == image_id, VehicleImage.vehicle_id == vehicle_id)
                .first()
            )
            if not row:
                return False

            image_type = row.image_type
            paths = image_blob_paths(self._storage, row)
            db.delete(row)
            db.flush()
            if is_gallery_image_type(image_type):
                self._renumber(self._bucket_rows(db, vehicle_id, image_type))
            db.commit()
        delete_blobs(self._storage, paths)
        return True
