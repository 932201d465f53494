"""
ID Resolver

Turns an optional work item type / project scope into a bounded list of
candidate work item ids via a WIQL query. Most recently changed items come
first, so a truncated candidate set keeps the most active work.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from ..common.notifier import Notifier
from ..common.results import ToolResult
from ..gateway.client import DevOpsGateway

logger = logging.getLogger("devops_mcp.retriever.id_resolver")

@dataclass
class IdResolution:
    """Candidate ids, or the gateway error that stopped resolution."""
    ok: bool
    ids: List[int] = field(default_factory=list)
    error: Optional[ToolResult] = None


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_wiql(work_item_type: Optional[str] = None, project: Optional[str] = None) -> str:
    """Build the fixed id-selecting WIQL query."""
    predicates = []
    if work_item_type:
        predicates.append(f"[System.WorkItemType] = {_quote(work_item_type)}")
    if project:
        predicates.append(f"[System.TeamProject] = {_quote(project)}")

    query = "SELECT [System.Id] FROM WorkItems"
    if predicates:
        query += " WHERE " + " AND ".join(predicates)
    return query + " ORDER BY [System.ChangedDate] DESC"


def extract_ids(payload: Any) -> List[int]:
    """Pull numeric ids out of a WIQL response, dropping anything else."""
    if not isinstance(payload, dict):
        return []
    ids = []
    for item in payload.get("workItems") or []:
        if not isinstance(item, dict):
            continue
        item_id = item.get("id")
        if isinstance(item_id, int) and not isinstance(item_id, bool):
            ids.append(item_id)
    return ids


async def resolve_ids(
    gateway: DevOpsGateway,
    notifier: Notifier,
    cap: Optional[int],
    work_item_type: Optional[str] = None,
    project: Optional[str] = None,
    ids: Optional[Sequence[int]] = None,
) -> IdResolution:
    """
    Resolve candidate ids, capped for the downstream per-id fan-out.

    Args:
        gateway: Gateway used for the WIQL call
        notifier: Progress channel
        cap: Maximum number of ids returned; None keeps every id
        work_item_type: Optional [System.WorkItemType] filter
        project: Optional [System.TeamProject] filter
        ids: Caller-supplied ids; when given, no query is issued

    Returns:
        IdResolution with the (truncated) id list or the gateway error
    """
    if ids:
        return IdResolution(ok=True, ids=list(ids)[:cap])

    wiql = build_wiql(work_item_type, project)
    logger.debug(f"WIQL: {wiql}")
    result = await gateway.execute(
        "POST",
        gateway.api_url("wit/wiql"),
        body={"query": wiql},
        notifier=notifier,
    )
    if result.is_error:
        return IdResolution(ok=False, error=result)

    resolved = extract_ids(result.json)
    if cap is not None and len(resolved) > cap:
        logger.info(f"Truncating {len(resolved)} candidates to {cap}")
    return IdResolution(ok=True, ids=resolved[:cap])
