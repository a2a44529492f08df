# clinic_records/shared/text_normalizer.py
"""
Arabic / Latin Text Normalization
Canonical form used to match free clinical text typed with or without tashkeel
"""
import re
from typing import Optional

# Tashkeel and Quranic annotation marks
ARABIC_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670\u06D6-\u06ED]")

# Letter folds, applied in order
LETTER_FOLDS = (
    (re.compile(r"[آأإٱ]"), "ا"),   # Alef variants
    (re.compile(r"[ة]"), "ه"),       # Teh Marbuta
    (re.compile(r"[ى]"), "ي"),       # Alef Maksura
    (re.compile(r"[ؤئء]"), "ء"),     # Hamza carriers
)


def remove_arabic_diacritics(text: str) -> str:
    return ARABIC_DIACRITICS.sub("", text)


def normalize(text: Optional[str]) -> str:
    """
    Canonicalize text for matching.

    trim → strip diacritics → fold Alef / Teh Marbuta / Alef Maksura / Hamza → lower-case.
    Stripping can expose edge whitespace ("دواء ً"), so the result is trimmed again
    to keep normalize(normalize(x)) == normalize(x).
    """
    if not text:
        return ""

    normalized = remove_arabic_diacritics(text.strip())
    for pattern, replacement in LETTER_FOLDS:
        normalized = pattern.sub(replacement, normalized)

    return normalized.lower().strip()


def matches(query: Optional[str], candidate: Optional[str]) -> bool:
    """
    True when the candidate contains the query, or when any query token and any
    candidate token contain one another (clinical text has no fixed word order
    and words are often typed partially).
    """
    normalized_query = normalize(query)
    normalized_candidate = normalize(candidate)

    if normalized_query in normalized_candidate:
        return True

    candidate_tokens = normalized_candidate.split()
    return any(
        query_token in candidate_token or candidate_token in query_token
        for query_token in normalized_query.split()
        for candidate_token in candidate_tokens
    )
