"""
Custom exceptions for Script Asset Mirror
"""
from typing import Optional, Any, Dict


class MirrorError(Exception):
    """Base exception for the asset mirroring pipeline"""

    def __init__(self, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.component = component
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(MirrorError):
    """Configuration errors"""
    pass


class ValidationError(MirrorError):
    """Script document rejected before any work was done"""

    def __init__(self, message: str, issues: Optional[list] = None, **kwargs):
        self.issues = list(issues or [])
        super().__init__(message, component=kwargs.pop('component', 'validator'), **kwargs)


class NoAssetsFound(MirrorError):
    """Planning produced no fetchable image URLs"""

    def __init__(self, message: str = "No image URLs were found in the provided script.", **kwargs):
        super().__init__(message, component=kwargs.pop('component', 'planner'), **kwargs)


class AssetDownloadFailed(MirrorError):
    """Every allowed route for one asset failed"""

    def __init__(self, url: str, last_error: Optional[str] = None, **kwargs):
        self.url = url
        self.last_error = last_error
        hint = f" ({last_error})" if last_error else ""
        super().__init__(
            f"Failed to download image: {url}{hint}",
            component=kwargs.pop('component', 'coordinator'),
            **kwargs
        )


class StorageError(MirrorError):
    """Storage backend errors"""
    pass


class VariantError(MirrorError):
    """Thumbnail generation failed"""
    pass


class RunCancelled(MirrorError):
    """The caller's abort signal fired while a run was in flight"""
    pass
