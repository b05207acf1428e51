"""
Script Rewriter
Clone-then-patch application of mirrored URLs onto the script document
"""
import copy
from typing import Any, Dict, List, Tuple

from utils.logger import logger
from .models import AssetUploadResult


def split_results(results: List[AssetUploadResult]) -> Tuple[List[AssetUploadResult], Dict[tuple, AssetUploadResult]]:
    """Originals in order, thumbnails indexed by (scriptIndex, variantIndex-or-0)"""
    originals = []
    thumbnails: Dict[tuple, AssetUploadResult] = {}
    for result in results:
        if result.is_thumbnail:
            thumbnails[result.slot] = result
        else:
            originals.append(result)
    return originals, thumbnails


def rewrite_script(script: List[Any], results: List[AssetUploadResult]) -> Tuple[List[Any], List[Any]]:
    """
    Build the full-resolution and preview copies of a script

    Args:
        script: Original document, never mutated
        results: Flat result list, originals and thumbnails mixed

    Returns:
        (rewritten, rewritten_256). The preview copy prefers the thumbnail
        URL for character images and falls back to the original URL.
        Logos and backgrounds get the original URL in both copies.
    """
    rewritten = copy.deepcopy(script)
    rewritten_256 = copy.deepcopy(script)
    originals, thumbnails = split_results(results)

    patched = 0
    for asset in originals:
        if asset.scriptIndex >= len(rewritten):
            continue
        entry = rewritten[asset.scriptIndex]
        entry_256 = rewritten_256[asset.scriptIndex]
        if not isinstance(entry, dict) or not isinstance(entry_256, dict):
            continue

        if asset.field == "image":
            thumbnail = thumbnails.get(asset.slot)
            preview_url = thumbnail.publicUrl if thumbnail else asset.publicUrl

            if isinstance(entry.get("image"), list):
                position = asset.variantIndex or 0
                entry["image"][position] = asset.publicUrl
                if isinstance(entry_256.get("image"), list):
                    entry_256["image"][position] = preview_url
            else:
                entry["image"] = asset.publicUrl
                entry_256["image"] = preview_url
        else:
            entry[asset.field] = asset.publicUrl
            entry_256[asset.field] = asset.publicUrl
        patched += 1

    logger.debug(f"Rewrote {patched} field(s), {len(thumbnails)} thumbnail(s) available")
    return rewritten, rewritten_256
