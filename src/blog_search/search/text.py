"""
Text Scoring and Presentation Helpers

Pure functions used by the database search engine to rank, summarize and
highlight documents in-process. The scoring is a heuristic hand score, not a
formal IR model; its constants are part of the engine's observable behavior.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from ..constants import HIGHLIGHT_POST_TAG, HIGHLIGHT_PRE_TAG
from ..db.models import SearchIndex


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

TITLE_MATCH_FACTOR = 10.0
TITLE_PREFIX_BONUS = 5.0
KEYWORD_MATCH_FACTOR = 8.0
CONTENT_MATCH_FACTOR = 5.0
TERM_FREQUENCY_BONUS = 0.1
MIN_SCORE = 0.1
EMPTY_QUERY_SCORE = 1.0

SUMMARY_MAX_LENGTH = 200
SUMMARY_BACKOFF_RATIO = 0.8
SUMMARY_ELLIPSIS = "…"

FRAGMENT_SIZE = 100
MAX_FRAGMENTS_PER_TERM = 3
FRAGMENT_ELLIPSIS = "..."


def split_terms(query: Optional[str]) -> List[str]:
    return query.split() if query else []


def _term_pattern(term: str) -> "re.Pattern[str]":
    return re.compile(re.escape(term), re.IGNORECASE)


def _mark(text: str, pattern: "re.Pattern[str]") -> str:
    return pattern.sub(lambda m: f"{HIGHLIGHT_PRE_TAG}{m.group(0)}{HIGHLIGHT_POST_TAG}", text)


# ---------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------

def calculate_relevance_score(document: SearchIndex, terms: Sequence[str]) -> float:
    """
    Score a document against query terms.

    Per term: a title hit adds ``title_weight * 10`` (+5 when the title
    starts with the term), a keyword hit adds ``keyword_weight * 8`` and a
    content hit adds ``content_weight * 5`` plus 0.1 per occurrence.

    Returns 1.0 for an empty term list; otherwise never less than 0.1.
    """
    if not terms:
        return EMPTY_QUERY_SCORE

    title = (document.title or "").lower()
    content = (document.content or "").lower()
    keywords = (document.keywords or "").lower()

    score = 0.0
    for term in terms:
        normalized = term.lower()

        if normalized in title:
            score += document.title_weight * TITLE_MATCH_FACTOR
            if title.startswith(normalized):
                score += TITLE_PREFIX_BONUS

        if normalized in keywords:
            score += document.keyword_weight * KEYWORD_MATCH_FACTOR

        if normalized in content:
            score += document.content_weight * CONTENT_MATCH_FACTOR
            score += content.count(normalized) * TERM_FREQUENCY_BONUS

    return max(score, MIN_SCORE)


def get_matched_fields(document: SearchIndex, terms: Sequence[str]) -> List[str]:
    """Fields containing at least one term, in first-seen order."""
    fields = {
        "title": (document.title or "").lower(),
        "content": (document.content or "").lower(),
        "keywords": (document.keywords or "").lower(),
    }
    matched: List[str] = []
    for term in terms:
        normalized = term.lower()
        for name, value in fields.items():
            if normalized in value and name not in matched:
                matched.append(name)
    return matched


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------

def generate_summary(content: Optional[str], max_length: int = SUMMARY_MAX_LENGTH) -> Optional[str]:
    """
    Truncate content for display.

    Content up to `max_length` characters (or None) is returned unmodified.
    Longer content is cut at `max_length`; if the last space before the cut
    lies past 80% of the limit, the cut backs off to that space. An ellipsis
    is appended.
    """
    if content is None or len(content) <= max_length:
        return content

    summary = content[:max_length]
    last_space = summary.rfind(" ")
    if last_space > max_length * SUMMARY_BACKOFF_RATIO:
        summary = summary[:last_space]

    return summary + SUMMARY_ELLIPSIS


# ---------------------------------------------------------------------
# Highlighting
# ---------------------------------------------------------------------

def extract_highlight_fragments(
    content: str,
    term: str,
    fragment_size: int = FRAGMENT_SIZE,
    max_fragments: int = MAX_FRAGMENTS_PER_TERM,
) -> List[str]:
    """
    Up to `max_fragments` windows of `fragment_size` characters around the
    first matches of `term`, each highlighted and ellipsized when cut.
    """
    pattern = _term_pattern(term)
    fragments: List[str] = []

    for match in pattern.finditer(content):
        if len(fragments) >= max_fragments:
            break

        start = max(0, match.start() - fragment_size // 2)
        length = min(fragment_size, len(content) - start)
        fragment = _mark(content[start:start + length], pattern)

        if start > 0:
            fragment = FRAGMENT_ELLIPSIS + fragment
        if start + length < len(content):
            fragment += FRAGMENT_ELLIPSIS

        fragments.append(fragment)

    return fragments


def generate_highlights(document: SearchIndex, terms: Sequence[str]) -> Dict[str, List[str]]:
    """
    Highlighted title variants and content fragments, keyed by field.
    """
    highlights: Dict[str, List[str]] = {}

    for term in terms:
        pattern = _term_pattern(term)

        if document.title:
            highlighted_title = _mark(document.title, pattern)
            if highlighted_title != document.title:
                highlights.setdefault("title", []).append(highlighted_title)

        if document.content:
            fragments = extract_highlight_fragments(document.content, term)
            if fragments:
                highlights.setdefault("content", []).extend(fragments)

    return highlights
