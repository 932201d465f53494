"""
Azure DevOps MCP Server.

Transport: stdio only.

Expected MCP Tool Return Format:
{
    "ok": bool,
    "isError": bool,
    "content": [{"type": "text", "text": str}],
    "json": Any              # Present when the response carried JSON
}
"""

import argparse
import logging
import signal
import sys
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncIterator, Dict, List, Literal, Optional

from dotenv import load_dotenv
from fastmcp import Context, FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..common.config import ServerConfig, load_config
from ..common.notifier import ContextNotifier
from ..common.results import ToolResult, ValidationError
from ..gateway.client import create_gateway
from ..retriever.temporal_filter import FilterSpec, parse_bound
from ..retriever.work_items import WorkItemRetriever

logger = logging.getLogger("devops_mcp.server")

NOT_CONFIGURED = (
    "Azure DevOps is not configured. Set AZDO_ORG_URL, AZDO_PROJECT and AZDO_PAT "
    "environment variables and restart the MCP server."
)


class MCPServerApp:
    """
    Main application class for the MCP server.

    Tools are thin wrappers: argument checks and notification wiring here,
    pipelines in WorkItemRetriever.
    """
    def __init__(
            self,
            retriever: Optional[WorkItemRetriever] = None,
            mcp_server_name: str = "azure-devops-mcp-server",
        ) -> None:
        """
        Initializes the MCPServerApp.
        Args:
            retriever (WorkItemRetriever): Pipelines bound to a gateway. None runs in degraded mode.
            mcp_server_name (str): The name of the MCP server.
        """
        self.retriever = retriever
        self.mcp = FastMCP(name=mcp_server_name, lifespan=self._lifespan)

        def _unavailable() -> Dict[str, Any]:
            return ToolResult.failure(NOT_CONFIGURED).as_payload()

        # ---------- MCP Tools: Search Discussions ---------- #
        @self.mcp.tool(
            name="search_work_item_discussions",
            description=(
                "Find work items whose title, comments and description match a free-text query. "
                "Scans the 100 most recently changed work items (or the given ids) and returns "
                "matches ranked by relevance with an excerpt of the matching discussion."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_search_work_item_discussions(
            query: Annotated[str, Field(description="free-text query, e.g. 'login timeout'")],
            ctx: Context,
            work_item_type: Annotated[Optional[str], Field(description="restrict to a work item type like Bug, Task, User Story")] = None,
            ids: Annotated[Optional[List[int]], Field(description="explicit work item ids to search instead of querying")] = None,
        ) -> Dict[str, Any]:
            """
            MCP tool for relevance search over work item discussions.

            Args:
                query (str): Query phrase.
                work_item_type (str): Optional type filter.
                ids (List[int]): Optional explicit candidate ids.

            Returns:
                Dict[str, Any]: Tagged result with ranked matches.
            """
            if self.retriever is None:
                return _unavailable()
            result = await self.retriever.search_discussions(
                query, work_item_type=work_item_type, ids=ids, notifier=ContextNotifier(ctx)
            )
            return result.as_payload()

        # ---------- MCP Tools: Filter Work Items ---------- #
        @self.mcp.tool(
            name="filter_work_items",
            description=(
                "Filter work items by date and status. Understands phrases like 'overdue', "
                "'last month', 'completed in March', 'open', 'done' and 'target date'. "
                "Explicit start/end dates and status are applied on top of the phrase."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_filter_work_items(
            ctx: Context,
            query: Annotated[Optional[str], Field(description="natural-language filter, e.g. 'open items past due'")] = None,
            start_date: Annotated[Optional[str], Field(description="inclusive start date (ISO, e.g. 2024-09-01)")] = None,
            end_date: Annotated[Optional[str], Field(description="inclusive end date (ISO, e.g. 2024-09-30)")] = None,
            status: Annotated[Optional[str], Field(description="exact work item state, e.g. Active")] = None,
            ids: Annotated[Optional[List[int]], Field(description="explicit work item ids to filter")] = None,
            work_item_type: Annotated[Optional[str], Field(description="restrict to a work item type")] = None,
        ) -> Dict[str, Any]:
            """
            MCP tool for temporal/status filtering.

            Returns:
                Dict[str, Any]: Tagged result with matching work items and their dates.
            """
            if self.retriever is None:
                return _unavailable()
            try:
                spec = FilterSpec(
                    query_phrase=query,
                    explicit_start=parse_bound(start_date),
                    explicit_end=parse_bound(end_date, end=True),
                    explicit_status=status,
                    restrict_ids=list(ids or []),
                )
            except ValidationError as exc:
                return ToolResult.failure(f"Invalid filter argument: {exc}").as_payload()
            result = await self.retriever.filter_work_items(
                spec, work_item_type=work_item_type, notifier=ContextNotifier(ctx)
            )
            return result.as_payload()

        # ---------- MCP Tools: Get Work Item ---------- #
        @self.mcp.tool(
            name="get_work_item",
            description="Get one work item with its fields, relations and discussion text.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_get_work_item(
            work_item_id: Annotated[int, Field(description="work item id")],
            ctx: Context,
        ) -> Dict[str, Any]:
            if self.retriever is None:
                return _unavailable()
            result = await self.retriever.get_work_item(work_item_id, notifier=ContextNotifier(ctx))
            return result.as_payload()

        # ---------- MCP Tools: List By Type ---------- #
        @self.mcp.tool(
            name="get_work_item_list_by_type",
            description="Fetches a list of work items by type from Azure DevOps.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_get_work_item_list_by_type(
            work_item_type: Annotated[str, Field(description="work item type like Bug, Task, User Story")],
            ctx: Context,
        ) -> Dict[str, Any]:
            if self.retriever is None:
                return _unavailable()
            result = await self.retriever.list_by_type(work_item_type, notifier=ContextNotifier(ctx))
            return result.as_payload()

        # ---------- MCP Tools: Raw Request ---------- #
        @self.mcp.tool(
            name="devops_request",
            description=(
                "Send one request to the Azure DevOps REST API. When more results are available "
                "the response ends with a skip value; pass it back as `skip` to get the next page."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_devops_request(
            path: Annotated[str, Field(description="URL or path relative to the organization, e.g. 'MyProject/_apis/wit/workitemtypes'")],
            ctx: Context,
            method: Annotated[Literal["GET", "POST", "PATCH"], Field(description="HTTP method")] = "GET",
            body: Annotated[Optional[Any], Field(description="JSON body for POST/PATCH")] = None,
            skip: Annotated[Optional[str], Field(description="continuation value from a previous response")] = None,
        ) -> Dict[str, Any]:
            if self.retriever is None:
                return _unavailable()
            result = await self.retriever.request(
                method, path, body=body, skip=skip, notifier=ContextNotifier(ctx)
            )
            return result.as_payload()

    @asynccontextmanager
    async def _lifespan(self, server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
        """Server session lifespan: the gateway's HTTP client is closed on shutdown."""
        try:
            yield {}
        finally:
            if self.retriever is not None:
                try:
                    await self.retriever.close()
                except Exception as e:
                    logger.warning(f"Failed to close Azure DevOps client: {e}")

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def build_app(config: ServerConfig) -> MCPServerApp:
    """Wire gateway, retriever and server from a loaded configuration."""
    gateway = create_gateway(config.devops)
    retriever = WorkItemRetriever(gateway, config.query) if gateway is not None else None
    if retriever is None:
        logger.warning("Starting in degraded mode: Azure DevOps connection not configured")
    return MCPServerApp(retriever=retriever, mcp_server_name=config.server_name)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the Azure DevOps MCP server (stdio).")
    parser.add_argument("--server-name", default=None, help="Advertised MCP server name.")
    parser.add_argument("--org-url", default=None, help="Organization URL, e.g. https://dev.azure.com/myorg")
    parser.add_argument("--project", default=None, help="Project name.")
    parser.add_argument("--log-level", default="INFO", help="Logging level for stderr output.")
    args = parser.parse_args(argv)

    # stdout carries the MCP protocol
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )

    config = load_config()
    if args.server_name:
        config.server_name = args.server_name
    if args.org_url:
        config.devops.org_url = args.org_url.rstrip("/")
    if args.project:
        config.devops.project = args.project

    logger.info(f"Organization: {config.devops.org_url or '(unset)'}, project: {config.devops.project or '(unset)'}")
    app = build_app(config)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
