"""
similarity.py
--------------
Edit-distance similarity between free-text descriptions.
"""

from rapidfuzz.distance import Levenshtein


def string_similarity(a: str | None, b: str | None) -> float:
    """
    Levenshtein similarity in [0, 1]: 1 - distance / max(len(a), len(b)).

    Comparison is case-insensitive and ignores surrounding whitespace.
    Identical strings score 1.0; if only one side is empty the score is 0.0.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    distance = Levenshtein.distance(s1, s2)
    return 1.0 - distance / max(len(s1), len(s2))
