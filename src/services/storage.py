"""
MinIO Object Storage Service
Referral file storage behind presigned URLs
Source: https://min.io/docs/minio/linux/developers/python/minio-py.html
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from anyio import to_thread
from minio import Minio
from minio.error import S3Error

from src.api.config import Settings, settings as default_settings
from src.services.referrals.errors import ExternalServiceError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class DocumentStorage(Protocol):
    """Object storage contract used by the referral services."""

    async def sign_upload(self, key: str, content_type: str) -> tuple[str, datetime]: ...

    async def sign_download(self, key: str) -> str: ...

    async def delete(self, key: str) -> None: ...

    async def fetch_bytes(self, key: str) -> bytes: ...


class ReferralStorage:
    """
    MinIO storage for uploaded referral documents.

    Clients upload directly with a presigned PUT URL; the service only signs
    URLs, reads bytes back for text extraction and deletes objects.
    """

    def __init__(self, app_settings: Optional[Settings] = None, client: Optional[Minio] = None):
        self._settings = app_settings or default_settings
        self.bucket = self._settings.MINIO_BUCKET_REFERRALS
        self.client = client or Minio(
            self._settings.MINIO_ENDPOINT,
            access_key=self._settings.MINIO_ACCESS_KEY,
            secret_key=self._settings.MINIO_SECRET_KEY,
            secure=self._settings.MINIO_SECURE,
            region=self._settings.MINIO_REGION,
        )
        self._bucket_ready = False
        logger.info(f"MinIO client initialized: {self._settings.MINIO_ENDPOINT}")

    def _ensure_bucket_sync(self) -> None:
        if self._bucket_ready:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    async def ensure_bucket(self) -> None:
        """Ensure the referrals bucket exists."""
        try:
            await to_thread.run_sync(self._ensure_bucket_sync)
        except S3Error as e:
            logger.error(f"Error ensuring bucket {self.bucket}: {e}")
            raise ExternalServiceError(f"Storage unavailable: {e}", "storage", e) from e

    async def sign_upload(self, key: str, content_type: str) -> tuple[str, datetime]:
        """
        Presign a PUT URL for a direct client upload.

        Returns:
            (url, expires_at)
        """
        expiry = timedelta(seconds=self._settings.UPLOAD_URL_EXPIRY_SECONDS)
        try:
            await to_thread.run_sync(self._ensure_bucket_sync)
            url = await to_thread.run_sync(
                lambda: self.client.presigned_put_object(self.bucket, key, expires=expiry)
            )
        except S3Error as e:
            logger.error(f"Error generating upload URL for {key}: {e}")
            raise ExternalServiceError(f"Failed to sign upload URL: {e}", "storage", e) from e
        # PUT URLs carry no content type; the client sends its own header
        logger.debug(f"Signed upload URL for {key} ({content_type})")
        return url, datetime.now(timezone.utc) + expiry

    async def sign_download(self, key: str) -> str:
        """Presign a GET URL for reading a stored document."""
        expiry = timedelta(seconds=self._settings.DOWNLOAD_URL_EXPIRY_SECONDS)
        try:
            return await to_thread.run_sync(
                lambda: self.client.presigned_get_object(self.bucket, key, expires=expiry)
            )
        except S3Error as e:
            logger.error(f"Error generating download URL for {key}: {e}")
            raise ExternalServiceError(f"Failed to sign download URL: {e}", "storage", e) from e

    async def delete(self, key: str) -> None:
        try:
            await to_thread.run_sync(self.client.remove_object, self.bucket, key)
        except S3Error as e:
            logger.error(f"Error deleting file {key}: {e}")
            raise ExternalServiceError(f"Failed to delete object: {e}", "storage", e) from e

    async def fetch_bytes(self, key: str) -> bytes:
        """Read a whole object into memory (uploads are capped at 20 MB)."""
        try:
            return await to_thread.run_sync(self._fetch_bytes_sync, key)
        except S3Error as e:
            logger.error(f"Error downloading file {key}: {e}")
            raise ExternalServiceError(f"Failed to fetch document: {e}", "storage", e) from e

    # ------------------------------------------------------------------
    # Blocking helpers (run via anyio.to_thread)
    # ------------------------------------------------------------------

    def _fetch_bytes_sync(self, key: str) -> bytes:
        response = self.client.get_object(self.bucket, key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()


# Singleton instance
_storage: Optional[ReferralStorage] = None


def get_referral_storage() -> ReferralStorage:
    """Get or create the singleton storage service."""
    global _storage
    if _storage is None:
        _storage = ReferralStorage()
    return _storage
