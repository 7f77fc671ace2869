import logging
from typing import Optional

from google.api_core.exceptions import NotFound
from google.cloud import storage
from google.cloud.storage.client import Client

from dubbing.core.config import settings
from dubbing.engines.base import ObjectStore

logger = logging.getLogger(__name__)

_storage_client: Optional[Client] = None
_object_store: Optional[ObjectStore] = None

ONE_YEAR_CACHE = "public, max-age=31536000"
ONE_DAY_CACHE = "public, max-age=86400"
NO_CACHE = "no-cache"


def dubbed_video_key(source_id) -> str:
    return f"videos/dubbed/{source_id}.mp4"


def thumbnail_key(source_id) -> str:
    return f"videos/thumbnails/{source_id}.jpg"


def subtitles_key(source_id) -> str:
    return f"videos/subtitles/{source_id}.vtt"


def hls_prefix(source_id) -> str:
    return f"videos/hls/{source_id}/"


def hls_key(source_id, filename: str) -> str:
    return f"{hls_prefix(source_id)}{filename}"


def get_storage_client() -> Client:
    """
    Get or create a Google Cloud Storage client.

    Returns:
        Client: Google Cloud Storage client instance
    """
    global _storage_client
    if _storage_client is None:
        if settings.GOOGLE_APPLICATION_CREDENTIALS:
            _storage_client = storage.Client.from_service_account_json(
                settings.GOOGLE_APPLICATION_CREDENTIALS
            )
        else:
            _storage_client = storage.Client(project=settings.GOOGLE_CLOUD_PROJECT_ID or None)
    return _storage_client


class GCSObjectStore(ObjectStore):
    """Object store backed by a Google Cloud Storage bucket."""

    def __init__(self, bucket_name: Optional[str] = None, client: Optional[Client] = None):
        self.bucket_name = bucket_name or settings.GOOGLE_CLOUD_STORAGE_BUCKET
        self._client = client

    @property
    def bucket(self):
        client = self._client or get_storage_client()
        return client.bucket(self.bucket_name)

    def public_url(self, key: str) -> str:
        return f"{settings.GOOGLE_STORAGE_BASE_URL}/{self.bucket_name}/{key}"

    def put(self, key: str, data: bytes, content_type: str, cache_control: Optional[str] = None) -> str:
        """
        Upload bytes to Google Cloud Storage.

        Args:
            key: Name of the blob in the bucket
            data: Object contents
            content_type: Content type of the object
            cache_control: Cache-Control header served with the object (optional)

        Returns:
            str: Public URL of the uploaded object
        """
        try:
            blob = self.bucket.blob(key)
            if cache_control:
                blob.cache_control = cache_control
            blob.upload_from_string(data, content_type=content_type)

            url = self.public_url(key)
            logger.info(f"File uploaded to {url}")
            return url

        except Exception:
            logger.exception(f"Failed to upload file to {key}")
            raise

    def delete(self, key: str) -> None:
        """
        Delete an object from Google Cloud Storage. A missing object is not an error.

        Args:
            key: Name of the blob to delete
        """
        try:
            self.bucket.blob(key).delete()
            logger.info(f"File {key} deleted from bucket {self.bucket_name}")
        except NotFound:
            logger.debug(f"File {key} already absent from bucket {self.bucket_name}")

    def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object whose name starts with a prefix.

        Args:
            prefix: Key prefix, usually a folder such as ``videos/hls/<id>/``

        Returns:
            int: Number of deleted objects
        """
        client = self._client or get_storage_client()
        deleted = 0
        for blob in client.list_blobs(self.bucket_name, prefix=prefix):
            try:
                blob.delete()
                deleted += 1
            except NotFound:
                continue
        logger.info(f"Deleted {deleted} files under {prefix}")
        return deleted


def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        _object_store = GCSObjectStore()
    return _object_store
