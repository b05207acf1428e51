"""
Variant Generator
Square thumbnails for character images
"""
import asyncio
import io

from PIL import Image, ImageOps

from core.exceptions import VariantError
from utils.logger import logger

THUMBNAIL_SIZE = 256

# Formats Pillow can only save in RGB/L
_RGB_ONLY_FORMATS = {'JPEG', 'BMP'}


class ThumbnailGenerator:
    """Center-cropped square thumbnails, same format as the source image"""

    def __init__(self, size: int = THUMBNAIL_SIZE):
        self.size = size
        self.logger = logger

    def render(self, content: bytes) -> bytes:
        """Blocking resize; call through generate() from async code"""
        with Image.open(io.BytesIO(content)) as image:
            image_format = image.format or 'PNG'
            thumbnail = ImageOps.fit(image, (self.size, self.size), method=Image.Resampling.LANCZOS)

        if image_format in _RGB_ONLY_FORMATS and thumbnail.mode not in ('RGB', 'L'):
            thumbnail = thumbnail.convert('RGB')

        buffer = io.BytesIO()
        thumbnail.save(buffer, format=image_format)
        return buffer.getvalue()

    async def generate(self, content: bytes) -> bytes:
        """
        Build the thumbnail off the event loop

        Raises:
            VariantError: the bytes could not be decoded or re-encoded
        """
        try:
            return await asyncio.to_thread(self.render, content)
        except (OSError, ValueError, KeyError, Image.DecompressionBombError) as e:
            raise VariantError(f"Thumbnail generation failed: {e}", component='variants') from e
