import re
from difflib import SequenceMatcher

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str | None) -> str:
    """Lower-case a description and collapse punctuation and whitespace."""
    if not description:
        return ""
    normalized = description.lower().replace("&", " and ")
    normalized = _NON_ALNUM.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def description_similarity(desc1: str | None, desc2: str | None) -> float:
    """
    Similarity between two transaction descriptions in [0, 1].

    Identical normalized text scores 1.0 and containment scores 0.9.
    Anything else blends word overlap (70%) with character similarity (30%).
    Empty text on either side scores 0.0. The result does not depend on
    argument order.
    """
    norm1 = normalize_description(desc1)
    norm2 = normalize_description(desc2)

    if not norm1 or not norm2:
        return 0.0

    if norm1 == norm2:
        return 1.0

    if norm1 in norm2 or norm2 in norm1:
        return 0.9

    words1 = norm1.split(" ")
    words2 = norm2.split(" ")
    common = len(set(words1) & set(words2))
    word_overlap = common / max(len(words1), len(words2))

    # SequenceMatcher is order sensitive
    first, second = sorted((norm1, norm2))
    character_similarity = SequenceMatcher(None, first, second).ratio()

    return min(1.0, word_overlap * 0.7 + character_similarity * 0.3)
