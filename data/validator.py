"""
Script Document Validator
Structural checks run before planning so bad uploads fail without side effects
"""
import json
from typing import Any, Dict, List, Union

from core.exceptions import ValidationError
from utils.logger import logger


class DataValidator:
    """
    Structural validation for script documents

    A script is a JSON array. Entries are either bare character ids (strings)
    or objects; object entries that carry image-bearing attributes must hold
    them in the expected shapes. URL-ness is not checked here, the planner
    skips anything that is not an absolute http(s) URL.
    """

    def __init__(self):
        self.logger = logger

    def parse_script(self, raw: Union[str, bytes]) -> List[Any]:
        """Decode raw upload text and validate it"""
        try:
            document = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Script is not valid JSON: {e}")

        return self.validate_script(document)

    def validate_script(self, document: Any) -> List[Any]:
        """
        Validate a decoded script document

        Args:
            document: Decoded JSON value

        Returns:
            The same document, for chaining

        Raises:
            ValidationError: carrying every issue found
        """
        if not isinstance(document, list):
            raise ValidationError("Script JSON must be an array of entries.")

        issues: List[str] = []
        for index, entry in enumerate(document):
            if isinstance(entry, str):
                continue
            if not isinstance(entry, dict):
                issues.append(f"entry {index}: expected an object or a character id string")
                continue
            issues.extend(self._validate_entry(index, entry))

        if issues:
            self.logger.warning(f"Script rejected with {len(issues)} issue(s)")
            raise ValidationError(
                f"Script did not match the required schema: {'; '.join(issues)}",
                issues=issues
            )

        self.logger.debug(f"Script validation passed ({len(document)} entries)")
        return document

    def _validate_entry(self, index: int, entry: Dict[str, Any]) -> List[str]:
        issues = []

        if 'id' in entry and not isinstance(entry['id'], str):
            issues.append(f"entry {index}: 'id' must be a string")

        if 'name' in entry and entry['name'] is not None and not isinstance(entry['name'], str):
            issues.append(f"entry {index}: 'name' must be a string")

        if 'image' in entry:
            image = entry['image']
            if isinstance(image, list):
                bad = [i for i, item in enumerate(image) if item is not None and not isinstance(item, str)]
                if bad:
                    issues.append(f"entry {index}: 'image' items {bad} must be strings")
            elif not isinstance(image, str):
                issues.append(f"entry {index}: 'image' must be a string or an array of strings")

        for singleton in ('logo', 'background'):
            if singleton in entry and entry[singleton] is not None and not isinstance(entry[singleton], str):
                issues.append(f"entry {index}: '{singleton}' must be a string")

        if 'team' in entry and entry['team'] is not None and not isinstance(entry['team'], str):
            issues.append(f"entry {index}: 'team' must be a string")

        return issues
