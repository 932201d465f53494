"""
Relevance Scorer

Scores work items against a free-text query by token overlap with the title
and with the discussion text (comments + description).

    score = 0.6 * title_overlap + 0.4 * discussion_overlap

Overlap is the fraction of query tokens present in the text's token set.
Matches below MATCH_THRESHOLD are dropped; the rest are ranked by score with
fetch order breaking ties.
"""

import html
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .detail_fetcher import WorkItemRecord, discussion_text

TITLE_WEIGHT = 0.6
DISCUSSION_WEIGHT = 0.4
MATCH_THRESHOLD = 0.30
MIN_TOKEN_LENGTH = 2
EXCERPT_LENGTH = 120
ELLIPSIS = "..."

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class ScoredMatch:
    """A work item at or above the match threshold"""
    id: int
    title: str
    state: str
    score: float
    excerpt: str

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "state": self.state,
            "score": round(self.score, 3),
            "excerpt": self.excerpt,
        }


def normalize_text(text: Optional[str]) -> str:
    """Strip markup tags, collapse whitespace, lowercase."""
    if not text:
        return ""
    stripped = html.unescape(_TAG_RE.sub(" ", text))
    return _WHITESPACE_RE.sub(" ", stripped).strip().lower()


def tokenize(text: Optional[str], min_length: int = MIN_TOKEN_LENGTH) -> List[str]:
    """Alphanumeric runs of at least `min_length` from normalized text."""
    return [t for t in _TOKEN_RE.findall(normalize_text(text)) if len(t) >= min_length]


def overlap(query_tokens: List[str], text_tokens: Iterable[str]) -> float:
    """Fraction of query tokens (duplicates counted) found in the text tokens."""
    if not query_tokens:
        return 0.0
    vocabulary = set(text_tokens)
    found = sum(1 for token in query_tokens if token in vocabulary)
    return found / len(query_tokens)


def score_text(
    query_tokens: List[str],
    title: str,
    discussion: str,
    min_length: int = MIN_TOKEN_LENGTH,
) -> float:
    """Weighted title/discussion overlap in [0, 1]."""
    title_overlap = overlap(query_tokens, tokenize(title, min_length))
    discussion_overlap = overlap(query_tokens, tokenize(discussion, min_length))
    return TITLE_WEIGHT * title_overlap + DISCUSSION_WEIGHT * discussion_overlap


def make_excerpt(query: str, discussion: str, length: int = EXCERPT_LENGTH) -> str:
    """
    Window of `length` characters around the first occurrence of the query
    phrase in the normalized discussion; the leading characters otherwise.
    """
    text = normalize_text(discussion)
    phrase = normalize_text(query)
    position = text.find(phrase) if phrase else -1

    if position < 0:
        if len(text) <= length:
            return text
        return text[:length] + ELLIPSIS

    center = position + len(phrase) // 2
    start = max(0, center - length // 2)
    end = min(len(text), start + length)
    start = max(0, end - length)

    excerpt = text[start:end]
    if start > 0:
        excerpt = ELLIPSIS + excerpt
    if end < len(text):
        excerpt = excerpt + ELLIPSIS
    return excerpt


def score_work_item(
    query: str,
    record: WorkItemRecord,
    comments: Dict[int, str],
    min_length: int = MIN_TOKEN_LENGTH,
) -> Optional[ScoredMatch]:
    """
    Score one record; None when the query has no tokens or the score is
    under the threshold.
    """
    query_tokens = tokenize(query, min_length)
    if not query_tokens:
        return None

    discussion = discussion_text(record, comments)
    score = score_text(query_tokens, record.title, discussion, min_length)
    if score < MATCH_THRESHOLD:
        return None

    return ScoredMatch(
        id=record.id,
        title=record.title,
        state=record.state,
        score=score,
        excerpt=make_excerpt(query, discussion),
    )


def rank_work_items(
    query: str,
    records: List[WorkItemRecord],
    comments: Dict[int, str],
    min_length: int = MIN_TOKEN_LENGTH,
) -> List[ScoredMatch]:
    """Score, threshold and rank records (stable: fetch order breaks ties)."""
    matches = []
    for record in records:
        match = score_work_item(query, record, comments, min_length)
        if match is not None:
            matches.append(match)
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches
