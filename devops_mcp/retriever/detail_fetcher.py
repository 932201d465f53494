"""
Detail Fetcher

Expands work item ids into full records and their discussion text.

- Details: one request per id, strictly sequential; a failed id is skipped
  with a warning and the rest of the batch continues
- Comments: one request per id, all in flight at once; a failed request
  degrades to an empty discussion for that id
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.notifier import Notifier
from ..common.results import ToolResult
from ..gateway.client import DevOpsGateway

logger = logging.getLogger("devops_mcp.retriever.detail_fetcher")

SUMMARY_FIELDS = ("System.Id", "System.Title", "System.State")
SUMMARY_CHUNK = 200


@dataclass(frozen=True)
class WorkItemRecord:
    """A fetched work item. Not cached across calls."""
    id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    relations: List[Any] = field(default_factory=list)

    @property
    def title(self) -> str:
        return str(self.fields.get("System.Title") or "")

    @property
    def state(self) -> str:
        return str(self.fields.get("System.State") or "")

    @property
    def description(self) -> str:
        return str(self.fields.get("System.Description") or "")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], fallback_id: Optional[int] = None) -> "WorkItemRecord":
        item_id = payload.get("id", fallback_id)
        return cls(
            id=int(item_id) if item_id is not None else -1,
            fields=payload.get("fields") or {},
            relations=payload.get("relations") or [],
        )


@dataclass
class FetchedBatch:
    """Records in fetch order plus the id -> comment text accumulation map."""
    records: List[WorkItemRecord] = field(default_factory=list)
    comments: Dict[int, str] = field(default_factory=dict)
    skipped_ids: List[int] = field(default_factory=list)


def discussion_text(record: WorkItemRecord, comments: Dict[int, str]) -> str:
    """Comment bodies (as returned) followed by the description field."""
    parts = [comments.get(record.id, ""), record.description]
    return "\n".join(part for part in parts if part)


def _comment_bodies(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    bodies = []
    for comment in payload.get("comments") or []:
        if isinstance(comment, dict) and comment.get("text"):
            bodies.append(str(comment["text"]))
    return "\n".join(bodies)


class DetailFetcher:
    """
    Fetches work item details and comments through the gateway.
    """

    def __init__(self, gateway: DevOpsGateway, notifier: Optional[Notifier] = None):
        self._gateway = gateway
        self._notifier = notifier or Notifier()

    async def fetch_one(self, work_item_id: int) -> Tuple[Optional[WorkItemRecord], Optional[ToolResult]]:
        """Fetch one work item with fields and relations."""
        result = await self._gateway.execute(
            "GET",
            self._gateway.api_url(f"wit/workitems/{work_item_id}", params={"$expand": "all"}),
            notifier=self._notifier,
        )
        if result.is_error:
            return None, result
        if not isinstance(result.json, dict):
            return None, ToolResult.failure(f"Work item {work_item_id}: response was not a JSON object")
        return WorkItemRecord.from_payload(result.json, fallback_id=work_item_id), None

    async def fetch_details(self, ids: Sequence[int]) -> Tuple[List[WorkItemRecord], List[int]]:
        """
        Fetch details for each id, one request at a time.

        Returns:
            (records in id order, ids that were skipped)
        """
        records = []
        skipped = []
        for work_item_id in ids:
            record, error = await self.fetch_one(work_item_id)
            if error is not None:
                skipped.append(work_item_id)
                await self._notifier.warning(
                    f"Skipping work item {work_item_id}: {error.text.splitlines()[0] if error.text else 'fetch failed'}"
                )
                continue
            records.append(record)
        return records, skipped

    async def fetch_comment_text(self, work_item_id: int) -> str:
        """Comment bodies for one work item, or "" when the fetch fails."""
        try:
            result = await self._gateway.execute(
                "GET",
                self._gateway.api_url(
                    f"wit/workItems/{work_item_id}/comments",
                    api_version=self._gateway.config.comments_api_version,
                ),
                notifier=self._notifier,
            )
        except Exception as e:
            logger.warning(f"Comment fetch for {work_item_id} raised: {e}")
            return ""
        if result.is_error:
            logger.info(f"No comments for work item {work_item_id}: {result.text[:200]}")
            return ""
        return _comment_bodies(result.json)

    async def fetch_comments(self, ids: Sequence[int]) -> Dict[int, str]:
        """Fetch comments for all ids concurrently."""
        comments: Dict[int, str] = {}

        async def _collect(work_item_id: int) -> None:
            comments[work_item_id] = await self.fetch_comment_text(work_item_id)

        await asyncio.gather(*(_collect(work_item_id) for work_item_id in ids))
        return comments

    async def fetch_batch(self, ids: Sequence[int]) -> FetchedBatch:
        """Details (sequential) then comments (concurrent) for a capped id set."""
        records, skipped = await self.fetch_details(ids)
        comments = await self.fetch_comments(ids)
        return FetchedBatch(records=records, comments=comments, skipped_ids=skipped)

    async def fetch_summaries(
        self,
        ids: Sequence[int],
        fields: Sequence[str] = SUMMARY_FIELDS,
    ) -> Tuple[List[WorkItemRecord], Optional[ToolResult]]:
        """
        Fetch a field subset for many ids via `workitems?ids=` in chunks.

        Any failed chunk fails the whole call.
        """
        records = []
        for start in range(0, len(ids), SUMMARY_CHUNK):
            chunk = ids[start:start + SUMMARY_CHUNK]
            result = await self._gateway.execute(
                "GET",
                self._gateway.api_url(
                    "wit/workitems",
                    params={
                        "ids": ",".join(str(i) for i in chunk),
                        "fields": ",".join(fields),
                    },
                ),
                notifier=self._notifier,
            )
            if result.is_error:
                return records, result
            payload = result.json if isinstance(result.json, dict) else {}
            for item in payload.get("value") or []:
                if isinstance(item, dict):
                    records.append(WorkItemRecord.from_payload(item))
        return records, None
