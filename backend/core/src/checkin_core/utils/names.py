"""Person name normalization and fuzzy comparison (Jaro-Winkler)."""

import re
from dataclasses import dataclass

NAME_SUFFIXES = {"jr", "sr", "ii", "iii", "iv"}

# Fuzzy match thresholds, applied independently
FUZZY_OVERALL_THRESHOLD = 0.88
FUZZY_LAST_THRESHOLD = 0.90
FUZZY_FIRST_THRESHOLD = 0.85


@dataclass(frozen=True)
class NameScore:
    first: float
    last: float

    @property
    def overall(self) -> float:
        return (self.first + self.last) / 2

    @property
    def passes(self) -> bool:
        return (
            self.overall >= FUZZY_OVERALL_THRESHOLD
            and self.last >= FUZZY_LAST_THRESHOLD
            and self.first >= FUZZY_FIRST_THRESHOLD
        )


def normalize_name(value: str | None) -> str:
    """Lowercase, strip punctuation, collapse spaces, drop generational suffixes."""
    if not value:
        return ""
    cleaned = re.sub(r"[^a-z0-9 ]+", " ", value.lower())
    tokens = cleaned.split()
    while tokens and tokens[-1] in NAME_SUFFIXES:
        tokens.pop()
    return " ".join(tokens)


def split_name(full_name: str | None) -> tuple[str, str]:
    """(first, last) tokens of a normalized full name."""
    tokens = normalize_name(full_name).split()
    if not tokens:
        return "", ""
    if len(tokens) == 1:
        return tokens[0], ""
    return tokens[0], tokens[-1]


def jaro(s1: str, s2: str) -> float:
    """Jaro similarity in [0, 1]."""
    if s1 == s2:
        return 1.0 if s1 else 0.0
    len1, len2 = len(s1), len(s2)
    if not len1 or not len2:
        return 0.0

    window = max(max(len1, len2) // 2 - 1, 0)
    matched1 = [False] * len1
    matched2 = [False] * len2

    matches = 0
    for i, ch in enumerate(s1):
        lo = max(0, i - window)
        hi = min(i + window + 1, len2)
        for j in range(lo, hi):
            if not matched2[j] and s2[j] == ch:
                matched1[i] = matched2[j] = True
                matches += 1
                break

    if not matches:
        return 0.0

    transpositions = 0
    j = 0
    for i in range(len1):
        if not matched1[i]:
            continue
        while not matched2[j]:
            j += 1
        if s1[i] != s2[j]:
            transpositions += 1
        j += 1

    t = transpositions / 2
    return (matches / len1 + matches / len2 + (matches - t) / matches) / 3


def jaro_winkler(s1: str, s2: str, prefix_scale: float = 0.1, max_prefix: int = 4) -> float:
    """Jaro-Winkler similarity, boosting a shared prefix of up to `max_prefix` chars."""
    similarity = jaro(s1, s2)
    prefix = 0
    for a, b in zip(s1[:max_prefix], s2[:max_prefix]):
        if a != b:
            break
        prefix += 1
    return similarity + prefix * prefix_scale * (1 - similarity)


def score_names(
    first_a: str | None, last_a: str | None, first_b: str | None, last_b: str | None
) -> NameScore:
    """Best of the direct and the swapped first/last pairing.

    Some records store names last-first; the swap keeps those matchable.
    """
    fa, la = normalize_name(first_a), normalize_name(last_a)
    fb, lb = normalize_name(first_b), normalize_name(last_b)

    direct = NameScore(first=jaro_winkler(fa, fb), last=jaro_winkler(la, lb))
    swapped = NameScore(first=jaro_winkler(fa, lb), last=jaro_winkler(la, fb))
    return direct if direct.overall >= swapped.overall else swapped


def names_equal(first_a: str | None, last_a: str | None, first_b: str | None, last_b: str | None) -> bool:
    """Case-insensitive exact comparison of normalized first and last names."""
    return (
        normalize_name(first_a) == normalize_name(first_b)
        and normalize_name(last_a) == normalize_name(last_b)
        and bool(normalize_name(last_a))
    )
