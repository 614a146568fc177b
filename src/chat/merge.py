"""
Incremental Answer Merging
==========================
Folds streamed answer fragments into a single answer buffer.

The upstream service may send cumulative text (the whole answer so far),
deltas, or re-sent overlapping spans, and does not say which. `combine`
handles all three without a mode flag:

    >>> combine("hello", "hello world")     # cumulative
    'hello world'
    >>> combine("hello world", "hello")     # rollback / duplicate
    'hello world'
    >>> combine("hello wo", "world")        # delta with overlap
    'hello world'
"""

import re

from .config import MAX_OVERLAP_SCAN


# A word followed by one or more whitespace-separated copies of itself.
# [^\W_] is a Unicode letter or digit.
REPEATED_WORD_PATTERN = re.compile(r"\b((?:[^\W_]|['’])+)(?:\s+\1\b)+")


def find_overlap(current: str, fragment: str, max_scan: int = MAX_OVERLAP_SCAN) -> int:
    """
    Length of the longest suffix of `current` that is also a prefix of `fragment`.

    Only lengths up to `max_scan` are examined, so the cost is bounded
    regardless of how long the accumulated answer grows.
    """
    limit = min(len(current), len(fragment), max_scan)
    for length in range(limit, 0, -1):
        if current.endswith(fragment[:length]):
            return length
    return 0


def combine(current: str, fragment: str, max_scan: int = MAX_OVERLAP_SCAN) -> str:
    """Merge one fragment into the accumulated answer."""
    if not current:
        return fragment
    if not fragment:
        return current

    # Upstream sent the whole answer so far
    if fragment.startswith(current):
        return fragment

    # Stale or duplicate resend
    if fragment in current:
        return current

    overlap = find_overlap(current, fragment, max_scan)
    return current + fragment[overlap:]


def collapse_repeated_words(text: str) -> str:
    """Collapse "word word" seams left by overlapping fragments."""
    return REPEATED_WORD_PATTERN.sub(r"\1", text)


def merge_fragment(current: str, fragment: str, max_scan: int = MAX_OVERLAP_SCAN) -> str:
    """`combine` followed by the repeated-word cleanup."""
    return collapse_repeated_words(combine(current, fragment, max_scan))
