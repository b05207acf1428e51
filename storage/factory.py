"""
Storage backend selection, once per run
"""
from typing import Optional

from core.config import Config, config as default_config
from utils.logger import logger
from .base import StorageBackend


def create_storage(settings: Optional[Config] = None, public_base_url: Optional[str] = None) -> StorageBackend:
    """Bucket storage when S3 is fully configured, local disk otherwise"""
    settings = settings or default_config

    if settings.is_s3_configured():
        from .s3_storage import S3Storage
        logger.info("Storage mode: s3")
        return S3Storage(settings.require_s3_config(), json_cache_control=settings.json_cache_control)

    from .local_storage import LocalStorage
    logger.info("Storage mode: local")
    return LocalStorage(
        root=settings.local_root,
        public_base_url=public_base_url,
        public_prefix=settings.local_public_prefix,
        json_cache_control=settings.json_cache_control
    )
