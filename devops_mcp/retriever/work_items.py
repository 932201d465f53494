"""
Work Item Retriever

Composes the gateway, ID resolver and detail fetcher into the tool-level
operations. Every operation returns a ToolResult and never raises.

Pipelines:
- search_discussions: resolve ids (cap 100) → fetch → relevance ranking
- filter_work_items: resolve ids (cap 200) → fetch → temporal/status filter
- get_work_item: single-id lookup with discussion text
- list_by_type: WIQL by type (uncapped) → chunked summary lines
- request: one gateway call with an optional `$skip` cursor
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..common.config import QueryConfig
from ..common.notifier import Notifier
from ..common.results import ToolResult, ValidationError
from ..gateway.client import DevOpsGateway
from .detail_fetcher import DetailFetcher
from .id_resolver import resolve_ids
from .relevance import rank_work_items
from .temporal_filter import FilterSpec, FilterParser, filter_work_items

logger = logging.getLogger("devops_mcp.retriever.work_items")


class WorkItemRetriever:
    """
    Answers work item questions against Azure DevOps.

    Holds no per-call state: records and derived structures live only for
    the duration of one operation.
    """

    def __init__(self, gateway: DevOpsGateway, query_config: Optional[QueryConfig] = None):
        """
        Initialize retriever.

        Args:
            gateway: Gateway for all REST calls
            query_config: Caps, token length and target date field names
        """
        self._gateway = gateway
        self._config = query_config or QueryConfig()

    @property
    def project(self) -> Optional[str]:
        return self._gateway.config.project or None

    async def search_discussions(
        self,
        query: str,
        work_item_type: Optional[str] = None,
        ids: Optional[Sequence[int]] = None,
        notifier: Optional[Notifier] = None,
    ) -> ToolResult:
        """
        Rank work items by how well their title and discussion match `query`.

        Args:
            query: Free-text query phrase
            work_item_type: Optional type restriction for id resolution
            ids: Explicit candidate ids (skips id resolution)
            notifier: Progress channel

        Returns:
            ToolResult listing ScoredMatch entries, best first
        """
        notifier = notifier or Notifier()
        try:
            resolution = await resolve_ids(
                self._gateway, notifier, self._config.search_cap,
                work_item_type=work_item_type, project=self.project, ids=ids,
            )
            if not resolution.ok:
                return resolution.error
            if not resolution.ids:
                return ToolResult.success("No work items found to search.", json={"query": query, "matches": []})

            await notifier.info(f"Scanning {len(resolution.ids)} work items for '{query}'")
            batch = await DetailFetcher(self._gateway, notifier).fetch_batch(resolution.ids)
            matches = rank_work_items(
                query, batch.records, batch.comments, self._config.min_token_length
            )

            payload = {
                "query": query,
                "scanned": len(batch.records),
                "skipped": batch.skipped_ids,
                "matches": [m.as_dict() for m in matches],
            }
            if not matches:
                return ToolResult.success(
                    f"No work items matched '{query}' (scanned {len(batch.records)}).", json=payload
                )

            lines = [f"Found {len(matches)} work items matching '{query}' (scanned {len(batch.records)}):", ""]
            for match in matches:
                lines.append(f"#{match.id} [{match.state}] {match.title} (score {match.score:.2f})")
                if match.excerpt:
                    lines.append(f"    {match.excerpt}")
            return ToolResult.success("\n".join(lines), json=payload)
        except Exception as e:
            logger.error("Discussion search failed: %s", e, exc_info=True)
            return ToolResult.failure(f"Discussion search failed: {e}")

    async def filter_work_items(
        self,
        spec: FilterSpec,
        work_item_type: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        now: Optional[datetime] = None,
    ) -> ToolResult:
        """
        Filter work items by date window and status.

        Args:
            spec: Phrase and explicit constraints
            work_item_type: Optional type restriction for id resolution
            notifier: Progress channel
            now: Reference time for relative phrases

        Returns:
            ToolResult listing FilterMatch entries in fetch order
        """
        notifier = notifier or Notifier()
        try:
            derived = FilterParser(self._config.target_date_fields).parse(spec, now)
            resolution = await resolve_ids(
                self._gateway, notifier, self._config.filter_cap,
                work_item_type=work_item_type, project=self.project, ids=spec.restrict_ids,
            )
            if not resolution.ok:
                return resolution.error
            if not resolution.ids:
                return ToolResult.success("No work items found to filter.", json={"matches": []})

            await notifier.info(f"Filtering {len(resolution.ids)} work items ({derived.describe()})")
            batch = await DetailFetcher(self._gateway, notifier).fetch_batch(resolution.ids)
            matches = filter_work_items(batch.records, derived)

            payload = {
                "filter": derived.describe(),
                "scanned": len(batch.records),
                "skipped": batch.skipped_ids,
                "matches": [m.as_dict() for m in matches],
            }
            if not matches:
                return ToolResult.success(
                    f"No work items matched the filter ({derived.describe()}).", json=payload
                )

            lines = [f"{len(matches)} work items match ({derived.describe()}):", ""]
            for match in matches:
                when = f" - {match.date.astimezone(derived.tz).date().isoformat()} ({match.date_field})" if match.date else ""
                lines.append(f"#{match.id} [{match.state}] {match.title}{when}")
            return ToolResult.success("\n".join(lines), json=payload)
        except Exception as e:
            logger.error("Work item filter failed: %s", e, exc_info=True)
            return ToolResult.failure(f"Work item filter failed: {e}")

    async def get_work_item(self, work_item_id: int, notifier: Optional[Notifier] = None) -> ToolResult:
        """Fetch one work item with its discussion text. A failed fetch is the result."""
        notifier = notifier or Notifier()
        try:
            fetcher = DetailFetcher(self._gateway, notifier)
            record, error = await fetcher.fetch_one(work_item_id)
            if error is not None:
                return error
            comments = await fetcher.fetch_comments([record.id])
            discussion = comments.get(record.id, "")

            lines = [
                f"ID: {record.id}",
                f"Title: {record.title}",
                f"State: {record.state}",
                f"Type: {record.fields.get('System.WorkItemType', '')}",
            ]
            if record.description:
                lines += ["", "Description:", record.description]
            if discussion:
                lines += ["", "Discussion:", discussion]
            payload = {
                "id": record.id,
                "fields": record.fields,
                "relations": record.relations,
                "discussion": discussion,
            }
            return ToolResult.success("\n".join(lines), json=payload)
        except Exception as e:
            logger.error("Work item lookup failed: %s", e, exc_info=True)
            return ToolResult.failure(f"Work item lookup failed: {e}")

    async def list_by_type(self, work_item_type: str, notifier: Optional[Notifier] = None) -> ToolResult:
        """`ID: n, Title: t, State: s` lines for every work item of a type."""
        notifier = notifier or Notifier()
        try:
            # Every id the query returns; summaries are fetched in chunks
            resolution = await resolve_ids(
                self._gateway, notifier, None,
                work_item_type=work_item_type, project=self.project,
            )
            if not resolution.ok:
                return resolution.error
            if not resolution.ids:
                return ToolResult.success(f"No {work_item_type} work items found.", json={"workItems": []})

            await notifier.info(f"Listing {len(resolution.ids)} {work_item_type} work items")
            records, error = await DetailFetcher(self._gateway, notifier).fetch_summaries(resolution.ids)
            if error is not None:
                return error

            lines = []
            for record in records:
                if record.fields:
                    lines.append(f"ID: {record.id}, Title: {record.title}, State: {record.state}")
                else:
                    lines.append(f"ID: {record.id}, fields are undefined.")
            payload = {
                "workItems": [
                    {"id": r.id, "title": r.title, "state": r.state} for r in records
                ]
            }
            return ToolResult.success("\n".join(lines), json=payload)
        except Exception as e:
            logger.error("List by type failed: %s", e, exc_info=True)
            return ToolResult.failure(f"Error fetching {work_item_type} work items: {e}")

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        skip: Optional[str] = None,
        notifier: Optional[Notifier] = None,
    ) -> ToolResult:
        """
        Pass one request through the gateway.

        Args:
            method: GET, POST or PATCH
            path: Absolute URL, or a path relative to the organization URL
            body: Optional JSON body
            skip: Continuation value from a previous hint
        """
        notifier = notifier or Notifier()
        try:
            url = self._resolve_url(path, skip)
        except ValidationError as e:
            return ToolResult.failure(str(e))
        return await self._gateway.execute(method, url, body=body, notifier=notifier)

    def _resolve_url(self, path: str, skip: Optional[str]) -> str:
        path = (path or "").strip()
        if not path:
            raise ValidationError("path is required")
        if skip and not str(skip).isdigit():
            raise ValidationError(f"skip must be a non-negative integer, got {skip!r}")
        if path.startswith(("http://", "https://")):
            url = path
        else:
            url = f"{self._gateway.config.org_url}/{path.lstrip('/')}"

        parts = urlsplit(url)
        query = parse_qsl(parts.query, keep_blank_values=True)
        if skip:
            # A continuation URL passed back verbatim already carries the old cursor
            query = [(key, value) for key, value in query if key != "$skip"]
            query.append(("$skip", str(skip)))
        if not any(key == "api-version" for key, _ in query):
            query.append(("api-version", self._gateway.config.api_version))
        return urlunsplit(parts._replace(query=urlencode(query, safe="$,")))

    async def close(self) -> None:
        """Release the gateway's HTTP client."""
        await self._gateway.close()
