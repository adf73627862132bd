# services/blob_service.py
import logging
import time
import uuid
from typing import Optional
from urllib.parse import urlparse

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContainerClient, ContentSettings

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"  # 1 year

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


# ────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────
def extension_for(content_type: str, fallback: str = "jpg") -> str:
    return _EXTENSIONS.get((content_type or "").lower(), fallback)


def vehicle_image_path(store_id, vehicle_id, category: str, extension: str) -> str:
    """
    Pathing: stores/{sid}/vehicles/{vid}/{category}/{uuid}_{ms}.{ext}
    category is one of original | thumbnail | optimized.
    """
    stamp = int(time.time() * 1000)
    return f"stores/{store_id}/vehicles/{vehicle_id}/{category}/{uuid.uuid4()}_{stamp}.{extension}"


def store_image_path(store_id, extension: str) -> str:
    return f"stores/{store_id}/store-image.{extension}"


def store_background_path(store_id, image_type, extension: str) -> str:
    type_name = getattr(image_type, "value", image_type)
    return f"stores/{store_id}/backgrounds/bg-{str(type_name).lower()}.{extension}"


def versioned_url(url: str, version) -> str:
    """
    Append a ``v`` cache-buster. Blobs uploaded to a fixed path are served
    with a one year max-age, so every overwrite needs a fresh URL.
    """
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}v={version}"


# ────────────────────────────────────────────────────────────
# Public API
# ────────────────────────────────────────────────────────────
class BlobStorage:
    """Public-read blob container holding originals, thumbnails and results."""

    def __init__(self, container_client: ContainerClient, public_base_url: Optional[str] = None):
        self._container = container_client
        self.base_url = (public_base_url or container_client.url).rstrip("/")

    @classmethod
    def from_connection_string(
        cls,
        conn_str: str,
        container: str,
        cdn_domain: Optional[str] = None,
    ) -> "BlobStorage":
        bsc = BlobServiceClient.from_connection_string(conn_str)
        client = bsc.get_container_client(container)
        try:
            client.create_container(public_access="blob")
        except ResourceExistsError:
            pass
        base = f"https://{cdn_domain}" if cdn_domain else None
        return cls(client, base)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def path_from_url(self, url: Optional[str]) -> Optional[str]:
        """Blob path for a URL this container served, else None."""
        if not url or not url.startswith(self.base_url + "/"):
            return None
        return urlparse(url).path[len(urlparse(self.base_url).path):].lstrip("/") or None

    def upload(self, data: bytes, path: str, content_type: str) -> str:
        """Upload raw bytes and return the public URL."""
        blob = self._container.get_blob_client(path)
        blob.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type, cache_control=CACHE_CONTROL),
        )
        logger.debug("Uploaded %d bytes to %s", len(data), path)
        return self.public_url(path)

    def delete(self, path: str) -> None:
        """Delete a blob; a missing blob is not an error."""
        try:
            self._container.delete_blob(path, delete_snapshots="include")
        except ResourceNotFoundError:
            logger.warning("Blob not found on delete: %s", path)
