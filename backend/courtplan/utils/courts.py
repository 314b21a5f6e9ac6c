"""
Parser for bulk court labels.

Accepts "1,5,6" or ["1", "5", "6"]. A plain string must never be iterated
character by character (list("1,5,6") -> ['1', ',', '5', ...]).
"""
from typing import List, Optional, Union


def parse_court_labels(labels: Optional[Union[str, List[str]]]) -> List[str]:
    """
    Normalize court labels to a list of unique, non-empty strings.

    - None or "" -> []
    - "1, 5,,6" -> ["1", "5", "6"]
    - ["1", " 5 ", 6] -> ["1", "5", "6"]
    - Duplicates keep their first position.
    """
    if labels is None:
        return []
    if isinstance(labels, str):
        parts = labels.split(",")
    elif isinstance(labels, list):
        parts = [str(x) for x in labels]
    else:
        return []
    cleaned = [p.strip() for p in parts if p.strip()]
    return list(dict.fromkeys(cleaned))


def next_sort_order(existing: List[int]) -> int:
    """Sort order for a court appended after the existing ones."""
    return (max(existing) + 1) if existing else 1
