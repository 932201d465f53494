"""
Tagged results and error taxonomy shared by the gateway and the pipelines.

Every operation returns a ToolResult; exceptions are converted at the
gateway and pipeline boundaries and never reach the MCP transport.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class DevOpsError(Exception):
    """Base error for Azure DevOps operations."""
    pass


class NetworkError(DevOpsError):
    """Request could not be sent or the response could not be received."""
    pass


class HttpError(DevOpsError):
    """Non-2xx response."""

    def __init__(self, status: int, reason: str, body: str):
        super().__init__(f"HTTP {status} {reason}:\n{body}")
        self.status = status
        self.reason = reason
        self.body = body


class ParseError(DevOpsError):
    """Body was not valid JSON where structure was expected."""
    pass


class ValidationError(DevOpsError):
    """Malformed caller argument."""
    pass


@dataclass
class ToolResult:
    """Tagged result: text content plus the parsed JSON when there is one."""
    is_error: bool = False
    content: List[Dict[str, str]] = field(default_factory=list)
    json: Any = None
    status: Optional[int] = None

    @classmethod
    def success(cls, text: str, json: Any = None, status: Optional[int] = None) -> "ToolResult":
        return cls(is_error=False, content=[{"type": "text", "text": text}], json=json, status=status)

    @classmethod
    def failure(cls, text: str, json: Any = None, status: Optional[int] = None) -> "ToolResult":
        return cls(is_error=True, content=[{"type": "text", "text": text}], json=json, status=status)

    @property
    def text(self) -> str:
        """All text content joined together"""
        return "\n".join(part.get("text", "") for part in self.content)

    def as_payload(self) -> Dict[str, Any]:
        """Render for the MCP tool response."""
        payload = {
            "ok": not self.is_error,
            "isError": self.is_error,
            "content": list(self.content),
        }
        if self.json is not None:
            payload["json"] = self.json
        if self.status is not None:
            payload["status"] = self.status
        return payload
