# services/inventory_feed_service.py
"""
CSV inventory feed for dealer management systems.

One row per vehicle that has at least one optimized image:
``VIN,StockNumber,ImageURLs`` where the URLs are joined with ``|`` in key
slot order and each carries a ``v`` cache-buster taken from the image's last
update. Quoting follows RFC 4180 and lines end with CRLF.
"""
import csv
import hmac
import io
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import selectinload, sessionmaker

from models import Vehicle, VehicleImage
from services.blob_service import versioned_url
from services.image_types import KEY_IMAGE_TYPES

logger = logging.getLogger(__name__)

FEED_HEADER = ("VIN", "StockNumber", "ImageURLs")
URL_SEPARATOR = "|"
FEED_FILENAME = "inventory-feed.csv"


class FeedAuthError(Exception):
    """Rejected feed key. ``status`` and ``code`` go straight into the response."""

    def __init__(self, message: str, status: int, code: str):
        super().__init__(message)
        self.status = status
        self.code = code


def check_feed_key(provided: Optional[str], expected: Optional[str]) -> None:
    """
    Raise FeedAuthError unless ``provided`` matches the configured key. A
    missing server key is a configuration fault and reported as such.
    """
    if not expected:
        logger.error("Inventory feed key is not configured")
        raise FeedAuthError("Server configuration error", 500, "CONFIG_ERROR")
    if not provided:
        raise FeedAuthError("API key required", 401, "MISSING_API_KEY")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Inventory feed request with an invalid key")
        raise FeedAuthError("Invalid API key", 403, "INVALID_API_KEY")


def _epoch_seconds(dt: Optional[datetime]) -> int:
    if dt is None:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _slot(image: VehicleImage) -> int:
    try:
        return KEY_IMAGE_TYPES.index(image.image_type)
    except ValueError:
        return len(KEY_IMAGE_TYPES)


def image_urls(images: Iterable[VehicleImage]) -> List[str]:
    """Cache-busted optimized URLs in key slot order."""
    optimized = sorted((r for r in images if r.optimized_url), key=lambda r: (_slot(r), r.sort_order))
    return [versioned_url(r.optimized_url, _epoch_seconds(r.updated_at)) for r in optimized]


class InventoryFeedService:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def generate_feed(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\r\n")
        writer.writerow(FEED_HEADER)

        rows = 0
        with self._session_factory() as db:
            vehicles = (
                db.query(Vehicle)
                .options(selectinload(Vehicle.images))
                .filter(Vehicle.images.any(VehicleImage.optimized_url.isnot(None)))
                .order_by(Vehicle.stock_number)
                .all()
            )
            for v in vehicles:
                urls = image_urls(v.images)
                if not urls:
                    continue
                writer.writerow((v.vin or "", v.stock_number, URL_SEPARATOR.join(urls)))
                rows += 1

        logger.info("Generated inventory feed with %d vehicles", rows)
        return buf.getvalue()
