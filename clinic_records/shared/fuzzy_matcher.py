# clinic_records/shared/fuzzy_matcher.py
"""
Autocomplete suggestion filter over pre-ranked history text
"""
from typing import Iterable, List, Optional

from clinic_records.shared.text_normalizer import matches


def suggest(query: Optional[str], candidates: Iterable[str], limit: int) -> List[str]:
    """
    Keep candidates matching the query, in their incoming (ranked) order, up to `limit`.
    Nothing is suggested until the user has typed something.
    """
    if not query or not query.strip() or limit <= 0:
        return []

    suggestions = []
    for candidate in candidates:
        if matches(query, candidate):
            suggestions.append(candidate)
            if len(suggestions) >= limit:
                break
    return suggestions
