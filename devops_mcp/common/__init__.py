"""
DevOps MCP Common Module

Shared infrastructure for the gateway, retriever pipelines and server.
"""

from .config import ServerConfig, DevOpsConfig, QueryConfig, load_config
from .notifier import Notifier, ContextNotifier
from .results import (
    ToolResult,
    DevOpsError,
    NetworkError,
    HttpError,
    ParseError,
    ValidationError,
)

__all__ = [
    "ServerConfig",
    "DevOpsConfig",
    "QueryConfig",
    "load_config",
    "Notifier",
    "ContextNotifier",
    "ToolResult",
    "DevOpsError",
    "NetworkError",
    "HttpError",
    "ParseError",
    "ValidationError",
]
