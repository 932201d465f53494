"""
Azure DevOps REST Gateway

Executes a single HTTP request against the Azure DevOps REST API and turns
whatever comes back into a tagged ToolResult.

Uses httpx.AsyncClient for async communication. The client is created lazily
on first use and kept for the lifetime of the gateway.

Contract:
- Never raises: every failure becomes ToolResult(is_error=True)
- Continuation links are surfaced as a `skip` hint, never followed
- Parsed JSON is attached to the result next to its text rendering
"""

import base64
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from ..common.config import DevOpsConfig
from ..common.notifier import Notifier
from ..common.results import HttpError, NetworkError, ParseError, ToolResult, ValidationError

logger = logging.getLogger("devops_mcp.gateway")

ALLOWED_METHODS = ("GET", "POST", "PATCH")
VERBATIM_CONTENT_TYPES = ("text/plain", "application/xml")
CONTINUATION_FIELDS = ("@odata.nextLink", "nextLink")


def build_auth_header(pat: str) -> str:
    """Basic auth header for a personal access token (empty user name)."""
    token = base64.b64encode(f":{pat}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def extract_skip(payload: Any) -> Optional[str]:
    """
    Return the `$skip` value embedded in a continuation link, if any.

    Args:
        payload: Parsed JSON body

    Returns:
        The skip value as a string, or None when there is no continuation
    """
    if not isinstance(payload, dict):
        return None
    for name in CONTINUATION_FIELDS:
        link = payload.get(name)
        if not isinstance(link, str) or not link:
            continue
        query = parse_qs(urlparse(link).query)
        values = query.get("$skip") or query.get("skip")
        if values:
            return values[0]
    return None


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise ParseError(f"Response body is not JSON: {e}") from e


def _pretty_body(text: str) -> str:
    try:
        return json.dumps(_parse_json(text), indent=2)
    except ParseError:
        return text


class DevOpsGateway:
    """
    Async HTTP gateway for the Azure DevOps REST API.

    Usage:
        gateway = DevOpsGateway(config.devops)
        result = await gateway.execute("GET", gateway.api_url("wit/workitems/42"), notifier=notifier)
        await gateway.close()
    """

    def __init__(
        self,
        config: DevOpsConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the gateway.

        Args:
            config: Organization URL, project, PAT and API versions
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": build_auth_header(self.config.pat),
            "Accept": "application/json, text/xml",
            "Prefer": "odata.maxpagesize=100",
        }

    def _ensure_client(self) -> httpx.AsyncClient:
        """Create the async HTTP client if not yet created."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def api_url(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
        project_scoped: bool = True,
    ) -> str:
        """
        Build an `_apis` URL for the configured organization.

        Args:
            path: Path below `_apis/` (e.g. "wit/wiql")
            params: Extra query parameters
            api_version: Overrides the configured api-version
            project_scoped: Prefix the path with the configured project
        """
        base = self.config.org_url.rstrip("/")
        if project_scoped and self.config.project:
            base = f"{base}/{self.config.project}"
        query = dict(params or {})
        query["api-version"] = api_version or self.config.api_version
        return f"{base}/_apis/{path.lstrip('/')}?{urlencode(query, safe='$,')}"

    async def execute(
        self,
        method: str,
        url: str,
        body: Any = None,
        notifier: Optional[Notifier] = None,
    ) -> ToolResult:
        """
        Execute one request and classify the outcome.

        Args:
            method: GET, POST or PATCH
            url: Absolute request URL
            body: JSON-serializable body (or a pre-encoded string)
            notifier: Progress channel back to the MCP client

        Returns:
            ToolResult; is_error is set for transport failures and non-2xx
        """
        notifier = notifier or Notifier()
        try:
            method = method.upper()
            if method not in ALLOWED_METHODS:
                raise ValidationError(f"Unsupported HTTP method: {method}")

            await notifier.info(f"{method} {url}")
            response = await self._send(method, url, body)
            return await self._to_result(response, notifier)
        except HttpError as e:
            await notifier.error(f"Request failed with HTTP {e.status} {e.reason}")
            return ToolResult.failure(str(e), status=e.status)
        except Exception as e:
            logger.error(f"{method} {url} failed: {e}")
            return ToolResult.failure(f"Error executing request: {e}")

    async def _send(self, method: str, url: str, body: Any) -> httpx.Response:
        headers = self.headers
        content = None
        if body is not None:
            headers["Content-Type"] = (
                "application/json-patch+json" if method == "PATCH" else "application/json"
            )
            content = body if isinstance(body, str) else json.dumps(body)

        client = self._ensure_client()
        try:
            return await client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e

    async def _to_result(self, response: httpx.Response, notifier: Notifier) -> ToolResult:
        status = response.status_code

        if status == 204:
            return ToolResult.success("Request succeeded with no content (204).", status=status)

        text = response.text
        if not 200 <= status < 300:
            raise HttpError(status, response.reason_phrase, _pretty_body(text) if text else response.reason_phrase)

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type in VERBATIM_CONTENT_TYPES:
            return ToolResult.success(text, status=status)

        try:
            data = _parse_json(text)
        except ParseError as e:
            # Unstructured body is still a successful call
            logger.debug(f"{e} ({content_type or 'no content-type'})")
            return ToolResult.success(text, status=status)

        rendered = json.dumps(data, indent=2)
        skip = extract_skip(data)
        if skip is not None:
            rendered += f"\n\nMore results are available. Call again with skip={skip} to fetch the next page."
            await notifier.info(f"More results available, resume with skip={skip}")

        return ToolResult.success(rendered, json=data, status=status)


def create_gateway(config: DevOpsConfig) -> Optional[DevOpsGateway]:
    """
    Factory function to create a gateway when the connection is configured.

    Returns:
        DevOpsGateway if org URL and PAT are set, None otherwise
    """
    if not config.org_url or not config.pat:
        logger.info("Azure DevOps not configured (AZDO_ORG_URL or AZDO_PAT missing)")
        return None
    return DevOpsGateway(config)
