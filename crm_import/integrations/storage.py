"""
S3-compatible storage for uploaded import files (AWS S3, Backblaze B2, MinIO, etc.).
Uses boto3 for all providers.
"""
import logging
import re
import time
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from crm_import.core.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Raised when the storage client cannot be created."""
    pass


class StorageUploadError(StorageError):
    """Raised when file upload fails."""
    pass


class StorageDownloadError(StorageError):
    """Raised when file download fails."""
    pass


def build_object_key(file_name: str, folder: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    """Storage key for an upload: ``<folder>/<epoch ms>_<sanitized name>``."""
    folder = folder if folder is not None else settings.storage_folder
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    safe_name = _UNSAFE_KEY_CHARS.sub("_", file_name).strip("_") or "upload"
    return f"{folder}/{stamp}_{safe_name}"


def get_storage_client():
    """
    Get an S3-compatible storage client.

    Raises:
        StorageConnectionError: If configuration is incomplete or the client
            cannot be created
    """
    if not all([settings.storage_access_key_id, settings.storage_secret_access_key, settings.storage_bucket_name]):
        raise StorageConnectionError(
            "Storage configuration is incomplete. Please set STORAGE_ACCESS_KEY_ID, "
            "STORAGE_SECRET_ACCESS_KEY, and STORAGE_BUCKET_NAME in your environment."
        )

    config = Config(
        signature_version='s3v4',
        retries={'max_attempts': 3, 'mode': 'standard'}
    )

    client_kwargs = {
        'service_name': 's3',
        'aws_access_key_id': settings.storage_access_key_id,
        'aws_secret_access_key': settings.storage_secret_access_key,
        'config': config,
    }

    # Non-AWS providers (B2, MinIO, ...) need an explicit endpoint
    if settings.storage_endpoint_url:
        client_kwargs['endpoint_url'] = settings.storage_endpoint_url
    if settings.storage_region:
        client_kwargs['region_name'] = settings.storage_region

    try:
        return boto3.client(**client_kwargs)
    except (BotoCoreError, ValueError) as e:
        logger.error("Failed to create storage client: %s", e)
        raise StorageConnectionError(f"Failed to connect to storage: {e}") from e


class FileStorage:
    """Interface the upload and execute endpoints depend on."""

    def upload(self, file_content: bytes, file_path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def download(self, file_path: str) -> bytes:
        raise NotImplementedError


class S3FileStorage(FileStorage):
    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.storage_bucket_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def upload(self, file_content: bytes, file_path: str) -> Dict[str, Any]:
        """
        Upload a file.

        Returns:
            Dictionary with ``file_id`` (ETag), ``file_path`` and ``size``

        Raises:
            StorageUploadError: If upload fails
        """
        try:
            response = self.client.put_object(Bucket=self.bucket, Key=file_path, Body=file_content)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            logger.error("Storage upload failed: %s - %s", error_code, e)
            raise StorageUploadError(f"Upload failed: {e}") from e
        except BotoCoreError as e:
            logger.error("Unexpected error during upload: %s", e)
            raise StorageUploadError(f"Upload failed: {e}") from e

        return {
            "file_id": response.get('ETag', '').strip('"'),
            "file_path": file_path,
            "size": len(file_content),
        }

    def download(self, file_path: str) -> bytes:
        """
        Raises:
            StorageDownloadError: If the object is missing or download fails
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=file_path)
            return response['Body'].read()
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'NoSuchKey':
                raise StorageDownloadError(f"File not found: {file_path}") from e
            logger.error("Storage download failed: %s - %s", error_code, e)
            raise StorageDownloadError(f"Download failed: {e}") from e
        except BotoCoreError as e:
            logger.error("Unexpected error during download: %s", e)
            raise StorageDownloadError(f"Download failed: {e}") from e
