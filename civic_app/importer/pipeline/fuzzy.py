"""
Pure fuzzy-matching helpers used to rank resolver suggestions.

Nothing here touches the database: callers pass the query and the candidate
labels, and get back ranked ``Suggestion`` values. Scores are on rapidfuzz's
0..100 scale.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterable, Sequence, Tuple, Union

from rapidfuzz import fuzz, utils

DEFAULT_MIN_SCORE = 60.0
DEFAULT_LIMIT = 5

# token_set ignores missing words ("Mayor" ~ "City Mayor"); token_sort does not.
TOKEN_SET_WEIGHT = 0.5
TOKEN_SORT_WEIGHT = 0.5

Candidate = Union[str, Tuple[Hashable, str]]


@dataclass(frozen=True)
class Suggestion:
    """A ranked candidate label with its similarity score."""

    value: str
    score: float
    key: Hashable | None = None


def _clean_text(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_label(value: object | None) -> str:
    """Lower-case, punctuation-free, single-spaced form of ``value``."""

    return " ".join(utils.default_process(_clean_text(value)).split())


def compact_label(value: object | None) -> str:
    """``normalize_label`` with all whitespace removed ("Vice-Mayor" == "vice mayor" == "ViceMayor")."""

    return normalize_label(value).replace(" ", "")


def similarity(query: object | None, candidate: object | None) -> float:
    """Blend of token-set and token-sort ratios between two labels (0..100)."""

    left = normalize_label(query)
    right = normalize_label(candidate)
    if not left or not right:
        return 0.0
    if compact_label(left) == compact_label(right):
        return 100.0
    score = TOKEN_SET_WEIGHT * fuzz.token_set_ratio(left, right) + TOKEN_SORT_WEIGHT * fuzz.token_sort_ratio(
        left, right
    )
    return float(max(0.0, min(100.0, score)))


def _iter_candidates(candidates: Iterable[Candidate]) -> Iterable[tuple[Hashable | None, str]]:
    for candidate in candidates:
        if isinstance(candidate, tuple):
            key, label = candidate
        else:
            key, label = None, candidate
        label_text = _clean_text(label)
        if label_text:
            yield key, label_text


def rank_suggestions(
    query: object | None,
    candidates: Iterable[Candidate],
    *,
    limit: int = DEFAULT_LIMIT,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[Suggestion]:
    """
    Rank ``candidates`` against ``query``.

    Candidates are plain labels or ``(key, label)`` pairs. Labels scoring at or
    below ``min_score`` are dropped, duplicates (case-insensitive) keep their
    best score, and at most ``limit`` suggestions are returned, best first.
    """

    if limit <= 0 or not normalize_label(query):
        return []

    best: dict[str, Suggestion] = {}
    for key, label in _iter_candidates(candidates):
        score = round(similarity(query, label), 2)
        if score <= min_score:
            continue
        dedupe_key = label.casefold()
        current = best.get(dedupe_key)
        if current is None or score > current.score:
            best[dedupe_key] = Suggestion(value=label, score=score, key=key)

    ranked = sorted(best.values(), key=lambda suggestion: (-suggestion.score, suggestion.value.casefold()))
    return ranked[:limit]


def suggestion_labels(suggestions: Sequence[Suggestion]) -> list[str]:
    return [suggestion.value for suggestion in suggestions]
