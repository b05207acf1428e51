"""
Helper utilities for Script Asset Mirror
Name folding, hashing, URL and extension handling
"""
import hashlib
import mimetypes
import posixpath
import random
import re
import unicodedata
from typing import Any, List, Optional, Sequence, TypeVar, Union
from urllib.parse import urlparse

T = TypeVar('T')

_URL_PATTERN = re.compile(r'^https?://', re.IGNORECASE)


def is_likely_url(value: Any) -> bool:
    """True only for strings that start with an absolute http(s) scheme"""
    return isinstance(value, str) and bool(_URL_PATTERN.match(value))


def to_friendly_segment(value: Any, fallback: str) -> str:
    """
    Fold a display name to letters, digits and single underscores

    Accents are stripped before folding. Non-strings and names that fold to
    nothing return the fallback unchanged.
    """
    if not isinstance(value, str):
        return fallback
    trimmed = value.strip()
    if not trimmed:
        return fallback

    decomposed = unicodedata.normalize('NFKD', trimmed)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    normalized = re.sub(r'[^a-zA-Z0-9]+', '_', stripped)
    normalized = re.sub(r'_+', '_', normalized).strip('_')

    return normalized if normalized else fallback


def sanitize_key_segment(value: str) -> str:
    """Replace everything outside word characters, dots and dashes"""
    return re.sub(r'[^\w.-]', '_', value, flags=re.ASCII)


def hash_content(content: Union[str, bytes]) -> str:
    """First 16 hex chars of the SHA-256 digest"""
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()[:16]


def resolve_extension(url: str, content_type: Optional[str]) -> str:
    """
    Pick a file extension for a fetched asset

    The URL path wins, then the declared content type, then "bin".
    """
    path = urlparse(url).path
    ext = posixpath.splitext(path)[1].lstrip('.')
    if ext:
        return ext

    if not content_type:
        return 'bin'

    mime = content_type.split(';', 1)[0].strip().lower()
    guessed = mimetypes.guess_extension(mime) if mime else None
    return guessed.lstrip('.') if guessed else 'bin'


def shuffled(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """Shuffled copy; the input is left untouched"""
    result = list(items)
    (rng or random).shuffle(result)
    return result


def format_bytes(bytes_value: float) -> str:
    """Format bytes to human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_value < 1024.0:
            return f"{bytes_value:.1f} {unit}"
        bytes_value /= 1024.0
    return f"{bytes_value:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable format"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = seconds // 60
    remaining_seconds = seconds % 60
    return f"{minutes:.0f}m {remaining_seconds:.0f}s"
