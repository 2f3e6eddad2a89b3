"""
Image cleanup against Supabase Storage.

Images are uploaded by the front end straight to the bucket; the API only
ever deletes them (product removed, profile picture replaced or account
deleted). Deletes are best-effort and must never fail the request that
triggered them.
"""
import logging
from typing import Iterable, List, Optional
from urllib.parse import unquote

import requests

import config

logger = logging.getLogger(__name__)

# object URLs look like {url}/storage/v1/object/[public/|sign/|authenticated/]{bucket}/{key}
ACCESS_SEGMENTS = ("public/", "sign/", "authenticated/")


class SupabaseStorage:
    def __init__(self, url: str, service_key: str, bucket: str = "images", timeout: float = 10):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout

    def object_key(self, image_url: str) -> Optional[str]:
        """Path of the object inside the bucket, or None for foreign URLs."""
        prefix = f"{self.url}/storage/v1/object/"
        if not image_url or not image_url.startswith(prefix):
            return None
        path = image_url[len(prefix):].split("?", 1)[0]
        if path.startswith(ACCESS_SEGMENTS):
            path = path.split("/", 1)[1]
        bucket, _, key = path.partition("/")
        if bucket != self.bucket:
            return None
        key = unquote(key)
        if not key or ".." in key.split("/"):
            return None
        return key

    def object_keys(self, image_urls: Iterable[str]) -> List[str]:
        keys = []
        for url in image_urls or []:
            key = self.object_key(url)
            if key and key not in keys:
                keys.append(key)
        return keys

    def remove(self, keys: List[str]) -> None:
        response = requests.delete(
            f"{self.url}/storage/v1/object/{self.bucket}",
            json={"prefixes": keys},
            headers={
                "Authorization": f"Bearer {self.service_key}",
                "apikey": self.service_key,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()


def get_storage() -> Optional[SupabaseStorage]:
    """FastAPI dependency; None when no storage credentials are configured."""
    if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
        return None
    return SupabaseStorage(
        config.SUPABASE_URL,
        config.SUPABASE_SERVICE_ROLE_KEY,
        bucket=config.SUPABASE_BUCKET,
        timeout=config.STORAGE_TIMEOUT_SECONDS,
    )


def discard_images(storage: Optional[SupabaseStorage], image_urls: Iterable[str]) -> int:
    """Delete the given images from the bucket, logging instead of raising.

    Returns the number of object keys sent to the store for deletion.
    """
    image_urls = list(image_urls or [])
    if storage is None:
        if image_urls:
            logger.debug("Image storage not configured, skipping cleanup of %d image(s)", len(image_urls))
        return 0
    keys = storage.object_keys(image_urls)
    if not keys:
        return 0
    try:
        storage.remove(keys)
    except requests.RequestException as exc:
        logger.warning("Image storage delete failed (continuing): %s", exc)
        return 0
    logger.info("Deleted %d image(s) from storage", len(keys))
    return len(keys)
