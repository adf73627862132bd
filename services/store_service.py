# services/store_service.py
import logging
import uuid
from typing import Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from models import Store, Vehicle, ImageType, KEY_IMAGE_TYPES
from models.store import background_column
from services.blob_service import (
    BlobStorage,
    extension_for,
    store_background_path,
    store_image_path,
    versioned_url,
)
from services.errors import BadRequest, Conflict, NotFound, InvalidImageType
from services.image_categorization import coerce_image_type
from services.vehicle_image_service import UploadedFile

logger = logging.getLogger(__name__)

BACKGROUND_CONTENT = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
STORE_IMAGE_CONTENT = BACKGROUND_CONTENT | {"image/gif"}


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def store_to_dict(store: Store) -> Dict:
    return {
        "id": str(store.id),
        "name": store.name,
        "address": store.address,
        "brandLogos": list(store.brand_logos or []),
        "imageUrl": store.image_url,
        "createdAt": _iso(store.created_at),
        "updatedAt": _iso(store.updated_at),
    }


def backgrounds_to_dict(store: Store) -> Dict:
    overrides = store.background_overrides()
    return {
        "id": str(store.id),
        "name": store.name,
        "backgrounds": {t.value: overrides.get(t) for t in KEY_IMAGE_TYPES},
    }


def _cache_buster() -> str:
    return uuid.uuid4().hex[:12]


class StoreService:
    def __init__(self, session_factory: sessionmaker, storage: BlobStorage, max_upload_bytes: int):
        self._session_factory = session_factory
        self._storage = storage
        self._max_upload_bytes = max_upload_bytes

    def _check_file(self, f: UploadedFile, allowed: set) -> None:
        if f.content_type not in allowed:
            raise BadRequest("Invalid file type. Only JPG, PNG, and WebP images are supported")
        if not f.data:
            raise BadRequest("Empty file")
        if len(f.data) > self._max_upload_bytes:
            raise BadRequest("File size exceeds upload limit")

    def _delete_quietly(self, path: Optional[str], what: str) -> None:
        if not path:
            return
        try:
            self._storage.delete(path)
        except Exception:
            logger.warning("%s delete failed for %s", what, path, exc_info=True)

    # ───────────── Stores ─────────────────────────────────────────────────────
    def list_stores(self) -> List[Dict]:
        with self._session_factory() as db:
            return [store_to_dict(s) for s in db.query(Store).order_by(Store.name).all()]

    def get_store(self, store_id: uuid.UUID) -> Optional[Dict]:
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            return store_to_dict(store) if store else None

    @staticmethod
    def _clean_fields(data: Mapping, creating: bool) -> Dict:
        fields = {}
        for key in ("name", "address"):
            if key not in data:
                continue
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise BadRequest(f"Invalid {key}: must be a non-empty string")
            fields[key] = value.strip()
        if creating and "name" not in fields:
            raise BadRequest("Store name is required")
        if "brandLogos" in data:
            logos = data["brandLogos"]
            fields["brand_logos"] = list(logos) if isinstance(logos, list) else []
        if "imageUrl" in data:
            fields["image_url"] = data["imageUrl"] or None
        return fields

    @staticmethod
    def _check_name_free(db, name: str, store_id: Optional[uuid.UUID] = None) -> None:
        q = db.query(Store.id).filter(func.lower(Store.name) == name.lower())
        if store_id is not None:
            q = q.filter(Store.id != store_id)
        if q.first():
            raise Conflict("Conflict: A store with this name already exists")

    def create_store(self, data: Mapping) -> Dict:
        fields = self._clean_fields(data or {}, creating=True)
        with self._session_factory() as db:
            self._check_name_free(db, fields["name"])
            store = Store(**fields)
            db.add(store)
            db.commit()
            logger.info("Created store %s (%s)", store.id, store.name)
            return store_to_dict(store)

    def update_store(self, store_id: uuid.UUID, data: Mapping) -> Dict:
        fields = self._clean_fields(data or {}, creating=False)
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if not store:
                raise NotFound("Store not found")
            if "name" in fields:
                self._check_name_free(db, fields["name"], store_id)
            for key, value in fields.items():
                setattr(store, key, value)
            db.commit()
            return store_to_dict(store)

    def delete_store(self, store_id: uuid.UUID) -> None:
        """Delete an empty store together with its image and background blobs."""
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if not store:
                raise NotFound("Store not found")
            if db.query(Vehicle.id).filter(Vehicle.store_id == store_id).first():
                raise Conflict("Cannot delete store with existing vehicles")
            urls = [store.image_url, *store.background_overrides().values()]
            db.delete(store)
            db.commit()
        for url in urls:
            self._delete_quietly(self._storage.path_from_url(url), "Store blob")
        logger.info("Deleted store %s", store_id)

    # ───────────── Backgrounds ────────────────────────────────────────────────
    @staticmethod
    def _key_column(image_type) -> tuple[ImageType, str]:
        try:
            image_type = coerce_image_type(image_type)
        except InvalidImageType as e:
            raise BadRequest(str(e)) from None
        column = background_column(image_type)
        if column is None:
            raise BadRequest("Invalid image type")
        return image_type, column

    def get_backgrounds(self, store_id: uuid.UUID) -> Optional[Dict]:
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            return backgrounds_to_dict(store) if store else None

    def set_background(self, store_id: uuid.UUID, image_type, f: UploadedFile) -> str:
        """
        Upload a store's own background for one key type and return its URL.
        The URL carries a fresh ``v`` query so cached copies of an
        overwritten blob are never served.
        """
        image_type, column = self._key_column(image_type)
        self._check_file(f, BACKGROUND_CONTENT)
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if not store:
                raise NotFound("Store not found")

            path = store_background_path(store_id, image_type, extension_for(f.content_type))
            previous = self._storage.path_from_url(getattr(store, column))
            url = versioned_url(self._storage.upload(f.data, path, f.content_type), _cache_buster())
            setattr(store, column, url)
            db.commit()

        if previous != path:
            self._delete_quietly(previous, "Old background")
        logger.info("Store %s background for %s set to %s", store_id, image_type.value, path)
        return url

    def clear_background(self, store_id: uuid.UUID, image_type) -> bool:
        image_type, column = self._key_column(image_type)
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if not store:
                raise NotFound("Store not found")
            path = self._storage.path_from_url(getattr(store, column))
            had_value = bool(getattr(store, column))
            setattr(store, column, None)
            db.commit()
        self._delete_quietly(path, "Background")
        return had_value

    def set_store_image(self, store_id: uuid.UUID, f: UploadedFile) -> str:
        self._check_file(f, STORE_IMAGE_CONTENT)
        with self._session_factory() as db:
            store = db.get(Store, store_id)
            if not store:
                raise NotFound("Store not found")
            path = store_image_path(store_id, extension_for(f.content_type))
            previous = self._storage.path_from_url(store.image_url)
            url = versioned_url(self._storage.upload(f.data, path, f.content_type), _cache_buster())
            store.image_url = url
            db.commit()

        if previous != path:
            self._delete_quietly(previous, "Old store image")
        return url
