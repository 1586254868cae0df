# ollama_assistant/context/scorers.py
# small scoring heuristics shared by history ranking, suggestion ranking and jump analysis

import os
from typing import Optional


def same_file(a: Optional[str], b: Optional[str]) -> bool:
    """Path equality that ignores case on case-insensitive platforms and redundant separators."""
    if not a or not b:
        return False
    return os.path.normcase(os.path.normpath(a)) == os.path.normcase(os.path.normpath(b))


def relevance_score(entry_file: str, entry_line: int, current_file: str, current_line: int,
                    cross_file_weight: float = 0.05) -> float:
    """
    Proximity score for a history entry.
    Same file: 1 / (1 + line distance), so the caret line itself scores 1.0.
    Other files: a fixed, smaller weight.
    """
    if same_file(entry_file, current_file):
        return 1.0 / (1.0 + abs(entry_line - current_line))
    return cross_file_weight


def recency_weight(rank: int) -> float:
    """rank 0 is the newest entry."""
    return 1.0 / (1.0 + max(0, rank))


def levenshtein_with_cutoff(a: str, b: str, max_dist: Optional[int] = None) -> int:
    """
    Compute Levenshtein distance with optional early exit when distance
    exceeds max_dist.
    Returns the computed distance (max_dist + 1 once the cutoff is hit).
    """
    if a == b:
        return 0

    # ensure a is the longer string to simplify indexing
    if len(a) < len(b):
        a, b = b, a

    la, lb = len(a), len(b)

    # bounding: if length difference > max_dist, we can bail early
    if max_dist is not None and la - lb > max_dist:
        return max_dist + 1

    prev = list(range(lb + 1))

    for i in range(1, la + 1):
        ca = a[i - 1]
        curr = [i]
        row_min = curr[0]

        for j in range(1, lb + 1):
            cb = b[j - 1]
            ins = curr[j - 1] + 1
            delete = prev[j] + 1
            replace = prev[j - 1] + (0 if ca == cb else 1)
            val = ins if ins < delete else delete
            if replace < val:
                val = replace
            curr.append(val)
            if val < row_min:
                row_min = val

        if max_dist is not None and row_min > max_dist:
            return max_dist + 1
        prev = curr
    return prev[-1]


def prefix_distance(suggestion: str, line_prefix: str, max_dist: int = 64) -> int:
    """Edit distance between a suggestion's first line and the stripped text left of the caret."""
    first = (suggestion or "").strip().splitlines()[0] if (suggestion or "").strip() else ""
    prefix = (line_prefix or "").strip()
    if not prefix:
        return len(first) if len(first) <= max_dist else max_dist + 1
    return levenshtein_with_cutoff(first, prefix, max_dist)
