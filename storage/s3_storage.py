"""
S3 Storage
Bucket-backed storage for any S3-compatible object store
"""
import asyncio
from typing import Any, Optional
from urllib.parse import urljoin, urlparse

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from core.config import config, S3Settings
from core.exceptions import StorageError
from data.models import StorageMode, StoredObject
from utils.logger import get_logger
from .base import StorageBackend, encode_json

_MISSING_CODES = {'404', 'NoSuchKey', 'NotFound'}
# HEAD without read grants (write-only upload credentials)
_FORBIDDEN_CODES = {'403', 'Forbidden', 'AccessDenied'}


def build_public_url(settings: S3Settings, key: str) -> str:
    """
    Public URL of an already-prefixed key

    Order: explicit public base URL, then the custom endpoint (path-style or
    virtual-host), then the AWS regional hostname.
    """
    trimmed_key = key.lstrip('/')

    if settings.public_base_url:
        base = settings.public_base_url if settings.public_base_url.endswith('/') else f"{settings.public_base_url}/"
        return urljoin(base, trimmed_key)

    if settings.endpoint:
        endpoint = urlparse(settings.endpoint)
        if settings.force_path_style:
            return f"{endpoint.scheme}://{endpoint.netloc}/{settings.bucket}/{trimmed_key}"
        return f"{endpoint.scheme}://{settings.bucket}.{endpoint.netloc}/{trimmed_key}"

    return f"https://{settings.bucket}.s3.{settings.region}.amazonaws.com/{trimmed_key}"


class S3Storage(StorageBackend):
    """
    S3 storage backend

    boto3 clients are thread-safe, so blocking calls are pushed to worker
    threads with asyncio.to_thread and run concurrently.
    """

    mode = StorageMode.S3

    def __init__(self, settings: Optional[S3Settings] = None, client: Any = None, json_cache_control: Optional[str] = None):
        self.settings = settings or config.require_s3_config()
        self.json_cache_control = json_cache_control or config.json_cache_control
        self.logger = get_logger("s3_storage")
        self.client = client or self._create_client()
        self.logger.info(f"S3Storage initialized - Bucket: {self.settings.bucket} (region: {self.settings.region})")

    def _create_client(self):
        return boto3.client(
            's3',
            region_name=self.settings.region,
            endpoint_url=self.settings.endpoint,
            aws_access_key_id=self.settings.access_key_id,
            aws_secret_access_key=self.settings.secret_access_key,
            config=BotoConfig(
                s3={'addressing_style': 'path' if self.settings.force_path_style else 'auto'},
                retries={'max_attempts': 3, 'mode': 'standard'}
            )
        )

    @property
    def bucket(self) -> Optional[str]:
        return self.settings.bucket

    def object_key(self, key: str) -> str:
        """Apply the configured path prefix"""
        clean_key = key.lstrip('/')
        prefix = (self.settings.path_prefix or '').strip('/')
        return f"{prefix}/{clean_key}" if prefix else clean_key

    def public_url(self, key: str) -> str:
        return build_public_url(self.settings, self.object_key(key))

    async def exists(self, key: str) -> bool:
        object_key = self.object_key(key)
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.settings.bucket, Key=object_key)
            return True
        except ClientError as e:
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code in _MISSING_CODES:
                return False
            if code in _FORBIDDEN_CODES:
                self.logger.warning(f"No read access to s3://{self.settings.bucket}/{object_key} ({code}), uploading without dedup check")
                return False
            raise StorageError(f"Cannot check s3://{self.settings.bucket}/{object_key}: {e}", component='s3_storage') from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot check s3://{self.settings.bucket}/{object_key}: {e}", component='s3_storage') from e

    async def put_bytes(
        self,
        key: str,
        content: bytes,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None
    ) -> StoredObject:
        object_key = self.object_key(key)
        if not content:
            return StoredObject(storageKey=key, publicUrl=build_public_url(self.settings, object_key))

        params = {'Bucket': self.settings.bucket, 'Key': object_key, 'Body': content}
        if content_type:
            params['ContentType'] = content_type
        if cache_control:
            params['CacheControl'] = cache_control

        try:
            await asyncio.to_thread(self.client.put_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload to s3://{self.settings.bucket}/{object_key} failed: {e}", component='s3_storage') from e

        self.logger.debug(f"Uploaded {len(content)} bytes to s3://{self.settings.bucket}/{object_key}")
        return StoredObject(storageKey=key, publicUrl=build_public_url(self.settings, object_key))

    async def put_json(self, key: str, value: Any) -> StoredObject:
        return await self.put_bytes(key, encode_json(value), 'application/json', self.json_cache_control)
