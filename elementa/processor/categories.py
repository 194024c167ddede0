"""Maps raw hierarchical category strings to destination category ids."""

import re
from typing import Dict, List, Optional

from elementa.monitoring.logger import StructuredLogger

COMMON_DELIMITERS = [" > ", " | ", ">", "|", "/", "->", "-"]

_FALLBACK_PATTERN = r"\>|\||,|;|/|-"


def _leaf(category: str, delimiter: str) -> str:
    """Last non-empty trimmed segment after splitting on delimiter."""
    segments = [part.strip() for part in category.split(delimiter)]
    segments = [part for part in segments if part]
    return segments[-1] if segments else ""


class CategoryNormalizer:
    """
    Resolves a category string against a connection's category map.

    Lookup order, first hit wins:
    1. Leaf segment for each candidate delimiter (user delimiter first)
    2. Whole trimmed string
    3. String trimmed a second time
    """

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger

    def _debug(self, event: str, **kwargs) -> None:
        if self.logger:
            self.logger.debug(event, **kwargs)

    @staticmethod
    def candidate_delimiters(user_delimiter: Optional[str]) -> List[str]:
        candidates = [user_delimiter] if user_delimiter else []
        candidates.extend(COMMON_DELIMITERS)
        seen = set()
        ordered = []
        for delimiter in candidates:
            if delimiter not in seen:
                seen.add(delimiter)
                ordered.append(delimiter)
        return ordered

    def normalize(
        self,
        category_string: Optional[str],
        user_delimiter: Optional[str],
        category_map: Dict[str, int],
    ) -> Optional[int]:
        """
        Return the destination category id for a raw category string.

        None means "skip categorization" and is not an error.
        """
        if category_string is None:
            return None
        category = str(category_string).strip()
        if not category:
            return None

        delimiters = self.candidate_delimiters(user_delimiter)
        for delimiter in delimiters:
            leaf = _leaf(category, delimiter)
            if leaf and leaf in category_map:
                self._debug("category_match", strategy="leaf", delimiter=delimiter,
                            leaf=leaf, category_id=category_map[leaf])
                return category_map[leaf]

        if category in category_map:
            self._debug("category_match", strategy="full", category=category,
                        category_id=category_map[category])
            return category_map[category]

        trimmed = category.strip()
        if trimmed in category_map:
            self._debug("category_match", strategy="trimmed", category=trimmed,
                        category_id=category_map[trimmed])
            return category_map[trimmed]

        self._debug("category_no_match", category=category, tried_delimiters=delimiters,
                    available_categories=list(category_map.keys()))
        return None

    @staticmethod
    def extract_leaf(category_key: Optional[str], delimiter: Optional[str] = None) -> str:
        """Leaf node of a category key, splitting on delimiter plus | , ; / -."""
        if not category_key:
            return ""

        if delimiter:
            pattern = re.escape(delimiter) + r"|\||,|;|/|-"
        else:
            pattern = _FALLBACK_PATTERN

        parts = [part.strip() for part in re.split(pattern, category_key)]
        parts = [part for part in parts if part]
        if not parts:
            return category_key.strip()
        return parts[-1]
