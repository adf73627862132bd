# services/vehicle_service.py
from __future__ import annotations
import logging
import math
import uuid
from typing import Dict, List, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload, selectinload, sessionmaker

from models import Store, Vehicle, VehicleImage, ProcessingStatus
from services.blob_service import BlobStorage
from services.errors import BadRequest, Conflict, NotFound
from services.image_categorization import derive_processing_status, partition_images
from services.vehicle_image_service import delete_blobs, image_blob_paths, image_to_dict
from utils.vin import normalize_vin, vin_error

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
DUPLICATE_STOCK_NUMBER = "Vehicle with this stock number already exists in this store"

_SORT_COLUMNS = {
    "stockNumber": Vehicle.stock_number,
    "createdAt": Vehicle.created_at,
    "processingStatus": Vehicle.processing_status,
}


def vehicle_to_dict(v: Vehicle) -> Dict:
    images = sorted(v.images, key=lambda r: (r.image_type.value, r.sort_order))
    partition = partition_images(images)
    return {
        "id": str(v.id),
        "storeId": str(v.store_id),
        "stockNumber": v.stock_number,
        "vin": v.vin,
        "processingStatus": v.processing_status.value,
        "images": [image_to_dict(r) for r in images],
        "keyImages": {
            t.value: (image_to_dict(r) if r is not None else None)
            for t, r in partition.key_slots.items()
        },
        "gallery": {
            bucket.value: [image_to_dict(r) for r in rows]
            for bucket, rows in partition.gallery.items()
        },
        "createdAt": v.created_at.isoformat() if v.created_at else None,
        "updatedAt": v.updated_at.isoformat() if v.updated_at else None,
    }


def _parse_ids(values, message: str) -> List[uuid.UUID]:
    if not isinstance(values, (list, tuple)) or not values:
        raise BadRequest(message)
    try:
        return [uuid.UUID(str(v)) for v in values]
    except ValueError:
        raise BadRequest(message) from None


def _positive_int(value, default: int, name: str) -> int:
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BadRequest(f"Invalid {name}") from None
    if number < 1:
        raise BadRequest(f"Invalid {name}")
    return number


class VehicleService:
    def __init__(self, session_factory: sessionmaker, storage: Optional[BlobStorage] = None):
        self._session_factory = session_factory
        self._storage = storage

    # ───────────── Listing ────────────────────────────────────────────────────
    def list_vehicles(
        self,
        store_id: uuid.UUID,
        page=1,
        limit=DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> Dict:
        """
        One page of a store's vehicles. ``search`` is a case-insensitive
        substring of the stock number; unknown sort fields fall back to
        ``createdAt`` and anything but ``asc`` sorts descending.
        """
        page = _positive_int(page, 1, "page")
        limit = min(_positive_int(limit, DEFAULT_PAGE_SIZE, "limit"), MAX_PAGE_SIZE)
        column = _SORT_COLUMNS.get(sort_by or "", Vehicle.created_at)
        ordering = column.asc() if (sort_order or "").lower() == "asc" else column.desc()

        with self._session_factory() as db:
            q = db.query(Vehicle).filter(Vehicle.store_id == store_id)
            if search:
                q = q.filter(Vehicle.stock_number.ilike(f"%{search.strip()}%"))
            total = q.count()
            rows = (
                q.options(selectinload(Vehicle.images))
                .order_by(ordering, Vehicle.id)
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            return {
                "data": [vehicle_to_dict(v) for v in rows],
                "totalCount": total,
                "currentPage": page,
                "totalPages": math.ceil(total / limit),
            }

    # ───────────── Create / update ────────────────────────────────────────────
    @staticmethod
    def _check_stock_number_free(db, store_id, stock_number: str, vehicle_id=None) -> None:
        q = db.query(Vehicle.id).filter(Vehicle.store_id == store_id, Vehicle.stock_number == stock_number)
        if vehicle_id is not None:
            q = q.filter(Vehicle.id != vehicle_id)
        if q.first():
            raise Conflict(DUPLICATE_STOCK_NUMBER)

    @staticmethod
    def _clean_vin(value) -> str:
        error = vin_error(value if isinstance(value, str) else None)
        if error:
            raise BadRequest(error)
        return normalize_vin(value)

    def _commit(self, db) -> None:
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict(DUPLICATE_STOCK_NUMBER) from None

    def create_vehicle(self, data: Mapping) -> Dict:
        stock_number = data.get("stockNumber")
        store_id = data.get("storeId")
        if not isinstance(stock_number, str) or not stock_number.strip() or not store_id:
            raise BadRequest("Stock number and store ID are required")
        try:
            store_id = uuid.UUID(str(store_id))
        except ValueError:
            raise BadRequest("Invalid store ID") from None
        stock_number = stock_number.strip()
        vin = self._clean_vin(data.get("vin"))

        with self._session_factory() as db:
            if not db.get(Store, store_id):
                raise NotFound("Store not found")
            self._check_stock_number_free(db, store_id, stock_number)
            v = Vehicle(store_id=store_id, stock_number=stock_number, vin=vin)
            db.add(v)
            self._commit(db)
            logger.info("Created vehicle %s (%s) in store %s", v.id, stock_number, store_id)
            return vehicle_to_dict(v)

    def update_vehicle(self, vehicle_id: uuid.UUID, data: Mapping) -> Dict:
        """Apply ``stockNumber``, ``vin`` and ``processingStatus`` when present."""
        with self._session_factory() as db:
            v = db.query(Vehicle).options(selectinload(Vehicle.images)).filter(Vehicle.id == vehicle_id).first()
            if not v:
                raise NotFound("Vehicle not found")

            if "stockNumber" in data:
                stock_number = data["stockNumber"]
                if not isinstance(stock_number, str) or not stock_number.strip():
                    raise BadRequest("Stock number cannot be empty")
                stock_number = stock_number.strip()
                if stock_number != v.stock_number:
                    self._check_stock_number_free(db, v.store_id, stock_number, v.id)
                v.stock_number = stock_number
            if "vin" in data:
                v.vin = self._clean_vin(data["vin"])
            if "processingStatus" in data:
                try:
                    v.processing_status = ProcessingStatus(data["processingStatus"])
                except ValueError:
                    raise BadRequest(
                        f"Invalid processingStatus. Valid values: {', '.join(s.value for s in ProcessingStatus)}"
                    ) from None
            self._commit(db)
            return vehicle_to_dict(v)

    # ───────────── Delete ─────────────────────────────────────────────────────
    def _image_paths(self, vehicles: Sequence[Vehicle]) -> List[str]:
        if self._storage is None:
            return []
        return [p for v in vehicles for r in v.images for p in image_blob_paths(self._storage, r)]

    def delete_vehicle(self, vehicle_id: uuid.UUID) -> bool:
        return self.bulk_delete([vehicle_id]) == 1

    def bulk_delete(self, vehicle_ids) -> int:
        """
        Delete vehicles with their images. Rows go in one transaction; blobs
        are removed afterwards and a failed blob delete is only logged.
        Unknown ids are ignored. Returns how many vehicles were deleted.
        """
        ids = _parse_ids(vehicle_ids, "vehicleIds must be a non-empty array")
        with self._session_factory() as db:
            rows = (
                db.query(Vehicle)
                .options(selectinload(Vehicle.images))
                .filter(Vehicle.id.in_(ids))
                .all()
            )
            paths = self._image_paths(rows)
            for v in rows:
                db.delete(v)
            db.commit()

        if self._storage is not None:
            delete_blobs(self._storage, paths)
        logger.info("Deleted %d vehicles (%d blobs)", len(rows), len(paths))
        return len(rows)

    def get_vehicle(self, vehicle_id: uuid.UUID) -> Optional[Dict]:
        with self._session_factory() as db:
            v = (
                db.query(Vehicle)
                .options(joinedload(Vehicle.images))
                .filter(Vehicle.id == vehicle_id)
                .first()
            )
            return vehicle_to_dict(v) if v else None

    def update_processing_status(self, vehicle_id: uuid.UUID, status: ProcessingStatus) -> bool:
        with self._session_factory() as db:
            rows = (
                db.query(Vehicle)
                .filter(Vehicle.id == vehicle_id)
                .update({"processing_status": status}, synchronize_session=False)
            )
            db.commit()
            return rows > 0

    def refresh_processing_status(self, vehicle_id: uuid.UUID, failures: int = 0) -> Optional[ProcessingStatus]:
        """Recompute the vehicle status from its key images and store it."""
        with self._session_factory() as db:
            v = db.get(Vehicle, vehicle_id)
            if not v:
                return None
            images = (
                db.query(VehicleImage)
                .filter(VehicleImage.vehicle_id == vehicle_id)
                .order_by(VehicleImage.uploaded_at)
                .all()
            )
            status = derive_processing_status(partition_images(images).key_images(), failures)
            v.processing_status = status
            db.commit()
            logger.info("Vehicle %s processing status -> %s", vehicle_id, status.value)
            return status
