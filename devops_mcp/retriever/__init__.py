"""
Retriever - Work item relevance search and temporal filtering

Key Components:
- resolve_ids: WIQL-based candidate id resolution
- DetailFetcher: Work item details and discussion text
- rank_work_items: Token-overlap relevance ranking
- FilterParser: Natural-language date window / status filter
- WorkItemRetriever: Tool-level pipelines

Pipeline:
1. Resolve candidate ids (most recently changed first, capped)
2. Fetch details sequentially, comments concurrently
3. Rank by relevance or filter by date window and status
"""

from .id_resolver import IdResolution, build_wiql, extract_ids, resolve_ids
from .detail_fetcher import DetailFetcher, FetchedBatch, WorkItemRecord, discussion_text
from .relevance import ScoredMatch, rank_work_items, score_work_item
from .temporal_filter import DerivedFilter, FilterMatch, FilterParser, FilterSpec
from .date_discovery import discover_date
from .work_items import WorkItemRetriever

__all__ = [
    "IdResolution",
    "build_wiql",
    "extract_ids",
    "resolve_ids",
    "DetailFetcher",
    "FetchedBatch",
    "WorkItemRecord",
    "discussion_text",
    "ScoredMatch",
    "rank_work_items",
    "score_work_item",
    "DerivedFilter",
    "FilterMatch",
    "FilterParser",
    "FilterSpec",
    "discover_date",
    "WorkItemRetriever",
]
