"""
Asset Planner
Walks a script document and turns its image URLs into fetch plans, no I/O
"""
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import NoAssetsFound
from utils.logger import logger
from utils.helpers import is_likely_url, to_friendly_segment
from .models import AssetPlan, EntryType

META_ID = "meta"
META_FIELDS = (("logo", "Logo"), ("background", "Background"))

TEAM_ALIGNMENT = {
    "townsfolk": "Good",
    "outsider": "Good",
    "minion": "Evil",
    "demon": "Evil",
    "fabled": "Fabled",
}


def character_alignment_label(team: Any, variant_index: int, total_variants: int) -> str:
    """
    Label for one character image

    Several images mean an explicit alignment set, so position decides and
    the team is ignored. A lone image takes its label from the team.
    """
    if total_variants > 1:
        if variant_index == 0:
            return "Good"
        if variant_index == 1:
            return "Evil"
        return f"Variant{variant_index + 1}"

    if isinstance(team, str):
        return TEAM_ALIGNMENT.get(team.lower(), "Neutral")

    return "Variant"


def is_script_character(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    if not isinstance(entry.get("id"), str):
        return False
    image = entry.get("image")
    return isinstance(image, (str, list))


def is_meta(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    entry_id = entry.get("id")
    if isinstance(entry_id, str) and entry_id.lower() == META_ID:
        return True
    return isinstance(entry.get("logo"), str) or isinstance(entry.get("background"), str)


class AssetPlanner:
    """
    Produces the ordered plan list for a script

    Plans come out in document order; within a character, in image order;
    within the meta entry, logo before background.
    """

    def __init__(self):
        self.logger = logger

    def collect(self, script: List[Any], script_name: str) -> Tuple[List[AssetPlan], Optional[Dict[str, Any]]]:
        """
        Collect asset plans from a script document

        Args:
            script: Validated script document
            script_name: Fallback name seeding the meta storage segment

        Returns:
            (plans, meta_entry); meta_entry is the last meta-like entry or None

        Raises:
            NoAssetsFound: when no entry yields a plan
        """
        plans: List[AssetPlan] = []
        meta_entry: Optional[Dict[str, Any]] = None

        for index, entry in enumerate(script):
            if is_script_character(entry):
                plans.extend(self._plan_character(index, entry))
            elif is_meta(entry):
                meta_entry = entry
                plans.extend(self._plan_meta(index, entry, script_name))

        if not plans:
            raise NoAssetsFound()

        self.logger.info(f"Planned {len(plans)} asset(s) from {len(script)} script entries")
        return plans, meta_entry

    def _plan_character(self, index: int, entry: Dict[str, Any]) -> List[AssetPlan]:
        entry_id = entry["id"]
        display_name = entry.get("name") if isinstance(entry.get("name"), str) else entry_id
        name_segment = to_friendly_segment(display_name, entry_id)
        image_field = entry["image"]

        if isinstance(image_field, str):
            urls = [(0, image_field)]
            total = 1
        else:
            urls = list(enumerate(image_field))
            total = len(image_field)

        plans = []
        for variant_index, url in urls:
            # Sparse arrays are fine, only the URL slots get plans
            if not is_likely_url(url):
                continue
            label = character_alignment_label(entry.get("team"), variant_index, total)
            plans.append(AssetPlan(
                scriptIndex=index,
                entryType=EntryType.CHARACTER,
                entryId=entry_id,
                entryName=display_name,
                field="image",
                originalUrl=url,
                fileBaseName=f"{name_segment}_{label}",
                variantIndex=variant_index,
                variantLabel=label,
            ))

        return plans

    def _plan_meta(self, index: int, entry: Dict[str, Any], script_name: str) -> List[AssetPlan]:
        script_segment = to_friendly_segment(entry.get("name"), script_name)
        entry_id = entry["id"] if isinstance(entry.get("id"), str) else f"meta-{index}"
        entry_name = entry["name"] if isinstance(entry.get("name"), str) else "Meta"

        plans = []
        for field_name, label in META_FIELDS:
            url = entry.get(field_name)
            if not is_likely_url(url):
                continue
            plans.append(AssetPlan(
                scriptIndex=index,
                entryType=EntryType.META,
                entryId=entry_id,
                entryName=entry_name,
                field=field_name,
                originalUrl=url,
                fileBaseName=f"{script_segment}_{label}",
                variantLabel=label,
            ))

        return plans


def collect_asset_plans(script: List[Any], script_name: str) -> Tuple[List[AssetPlan], Optional[Dict[str, Any]]]:
    """Module-level shortcut for AssetPlanner().collect"""
    return AssetPlanner().collect(script, script_name)
