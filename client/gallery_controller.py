# client/gallery_controller.py
"""
Drag-and-drop bookkeeping for a vehicle's gallery, run on the operator's
side of the API.

Every mutation follows the same four steps: snapshot the visible images,
apply the speculative change, send the authoritative request, then either
refetch the vehicle (success) or restore the snapshot (failure). Failures
are logged only. The busy flags mirror what the UI shows while a request is
in flight; they do not serialize concurrent gestures.
"""
from __future__ import annotations

import copy
import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

import requests

from services.image_types import ImageType
from services.image_categorization import (
    array_move,
    coerce_image_type,
    contiguous_sort_orders,
    gallery_bucket,
    is_gallery_image_type,
    partition_images,
)

logger = logging.getLogger(__name__)


class GalleryApiClient:
    """Thin JSON client for the vehicle image endpoints."""

    def __init__(self, base_url: str, token: Optional[str] = None, http: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self._http = http or requests.Session()
        self._timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _call(self, method: str, path: str, **kwargs) -> Dict:
        r = self._http.request(
            method, f"{self.base_url}/{path}", headers=self._headers, timeout=self._timeout, **kwargs
        )
        r.raise_for_status()
        return r.json() if r.content else {}

    def fetch_vehicle(self, vehicle_id: str) -> Dict:
        return self._call("GET", f"vehicles/{vehicle_id}")

    def reorder(self, vehicle_id: str, image_updates: List[Dict]) -> Dict:
        return self._call("PATCH", f"vehicles/{vehicle_id}/images/reorder", json={"imageUpdates": image_updates})

    def update_image_type(self, vehicle_id: str, image_id: str, image_type: ImageType) -> Dict:
        return self._call(
            "PATCH", f"vehicles/{vehicle_id}/images/{image_id}", json={"imageType": image_type.value}
        )

    def delete_image(self, vehicle_id: str, image_id: str) -> Dict:
        return self._call("DELETE", f"vehicles/{vehicle_id}/images/{image_id}")


class DragOutcome(str, enum.Enum):
    NOOP = "noop"
    REORDERED = "reordered"
    RECATEGORIZED = "recategorized"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass
class GalleryImage:
    id: str
    image_type: ImageType
    sort_order: int
    data: Dict

    @classmethod
    def from_api(cls, data: Dict) -> "GalleryImage":
        return cls(
            id=str(data["id"]),
            image_type=coerce_image_type(data["imageType"]),
            sort_order=int(data.get("sortOrder") or 0),
            data=data,
        )


class GalleryController:
    def __init__(self, api: GalleryApiClient, vehicle: Dict):
        self._api = api
        self.vehicle_id = str(vehicle["id"])
        self.images: List[GalleryImage] = []
        self.is_reordering = False
        self.is_deleting = False
        self._load(vehicle)

    # ───────────── State ──────────────────────────────────────────────────────
    def _load(self, vehicle: Dict) -> None:
        self.vehicle = vehicle
        self.images = [GalleryImage.from_api(img) for img in vehicle.get("images", [])]

    def _find(self, image_id: Optional[str]) -> Optional[GalleryImage]:
        if image_id is None:
            return None
        return next((img for img in self.images if img.id == str(image_id)), None)

    def bucket(self, image_type: ImageType) -> List[GalleryImage]:
        image_type = coerce_image_type(image_type)
        return sorted((img for img in self.images if img.image_type == image_type), key=lambda i: i.sort_order)

    def key_slots(self) -> Dict[ImageType, Optional[GalleryImage]]:
        return partition_images(self.images).key_slots

    def _snapshot(self) -> List[GalleryImage]:
        return copy.deepcopy(self.images)

    def _replace_bucket(self, image_type: ImageType, ordered: List[GalleryImage]) -> None:
        for img, order in contiguous_sort_orders(ordered):
            img.sort_order = order
            img.data["sortOrder"] = order
        others = [img for img in self.images if img.image_type != image_type]
        self.images = others + ordered

    def _refetch(self) -> None:
        try:
            self._load(self._api.fetch_vehicle(self.vehicle_id))
        except requests.RequestException:
            logger.warning("Refetch of vehicle %s failed; keeping local state", self.vehicle_id, exc_info=True)

    @contextmanager
    def _busy(self, flag: str) -> Iterator[None]:
        setattr(self, flag, True)
        try:
            yield
        finally:
            setattr(self, flag, False)

    # ───────────── Gestures ───────────────────────────────────────────────────
    def on_drag_end(self, source_id: str, target_id: Optional[str]) -> DragOutcome:
        """
        Handle a finished drag of ``source_id`` dropped on ``target_id``
        (None when dropped on empty space or an empty bucket).
        """
        source = self._find(source_id)
        target = self._find(target_id)
        if source is None or target is None or source.id == target.id:
            return DragOutcome.NOOP
        if not is_gallery_image_type(source.image_type) or not is_gallery_image_type(target.image_type):
            return DragOutcome.NOOP

        if source.image_type == target.image_type:
            return self._reorder(source, target)
        return self._recategorize(source, target.image_type)

    def _reorder(self, source: GalleryImage, target: GalleryImage) -> DragOutcome:
        image_type = source.image_type
        ordered = self.bucket(image_type)
        old_index = ordered.index(source)
        new_index = ordered.index(target)

        snapshot = self._snapshot()
        self._replace_bucket(image_type, array_move(ordered, old_index, new_index))
        updates = [{"id": img.id, "sortOrder": img.sort_order} for img in self.bucket(image_type)]

        with self._busy("is_reordering"):
            try:
                self._api.reorder(self.vehicle_id, updates)
            except Exception:
                logger.error("Error reordering images for vehicle %s", self.vehicle_id, exc_info=True)
                self.images = snapshot
                return DragOutcome.REVERTED
            self._refetch()
        return DragOutcome.REORDERED

    def _recategorize(self, source: GalleryImage, image_type: ImageType) -> DragOutcome:
        with self._busy("is_reordering"):
            try:
                self._api.update_image_type(self.vehicle_id, source.id, image_type)
            except Exception:
                logger.error(
                    "Error moving image %s to %s", source.id, gallery_bucket(image_type).value, exc_info=True
                )
                return DragOutcome.FAILED
            self._refetch()
        return DragOutcome.RECATEGORIZED

    def delete_image(self, image_id: str) -> bool:
        image = self._find(image_id)
        if image is None:
            return False

        snapshot = self._snapshot()
        self.images = [img for img in self.images if img.id != image.id]
        if is_gallery_image_type(image.image_type):
            self._replace_bucket(image.image_type, self.bucket(image.image_type))

        with self._busy("is_deleting"):
            try:
                self._api.delete_image(self.vehicle_id, image.id)
            except Exception:
                logger.error("Error deleting image %s", image.id, exc_info=True)
                self.images = snapshot
                return False
            self._refetch()
        return True
