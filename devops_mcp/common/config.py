"""
Configuration Management for the DevOps MCP server

Loads configuration from ~/.devops-mcp/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("devops_mcp.config")

# Default config paths
CONFIG_DIR = Path.home() / ".devops-mcp"
CONFIG_PATH = CONFIG_DIR / "config.json"

DEFAULT_TARGET_DATE_FIELDS = [
    "Microsoft.VSTS.Scheduling.TargetDate",
    "Microsoft.VSTS.Scheduling.DueDate",
    "Target Date",
    "TargetDate",
    "Due Date",
    "DueDate",
]


@dataclass
class DevOpsConfig:
    """Azure DevOps connection configuration"""
    org_url: str = ""
    project: str = ""
    pat: str = ""
    api_version: str = "7.1"
    comments_api_version: str = "7.1-preview.4"
    timeout: float = 30.0


@dataclass
class QueryConfig:
    """Relevance search and temporal filter configuration"""
    search_cap: int = 100  # discussion search fan-out bound
    filter_cap: int = 200  # temporal/status filter fan-out bound
    min_token_length: int = 2
    target_date_fields: List[str] = field(default_factory=lambda: list(DEFAULT_TARGET_DATE_FIELDS))


@dataclass
class ServerConfig:
    """Main configuration"""
    devops: DevOpsConfig = field(default_factory=DevOpsConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    server_name: str = "azure-devops-mcp-server"


def _parse_devops_config(data: dict) -> DevOpsConfig:
    """Parse devops section from config dict"""
    devops_data = data.get("devops", {})
    return DevOpsConfig(
        org_url=devops_data.get("org_url", ""),
        project=devops_data.get("project", ""),
        pat=devops_data.get("pat", ""),
        api_version=devops_data.get("api_version", "7.1"),
        comments_api_version=devops_data.get("comments_api_version", "7.1-preview.4"),
        timeout=devops_data.get("timeout", 30.0),
    )


def _parse_query_config(data: dict) -> QueryConfig:
    """Parse query section from config dict"""
    query_data = data.get("query", {})
    return QueryConfig(
        search_cap=query_data.get("search_cap", 100),
        filter_cap=query_data.get("filter_cap", 200),
        min_token_length=query_data.get("min_token_length", 2),
        target_date_fields=query_data.get("target_date_fields", list(DEFAULT_TARGET_DATE_FIELDS)),
    )


def _split_field_list(raw: str) -> List[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


def load_config(config_path: Path = None) -> ServerConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (DEVOPS_MCP_CONFIG or ~/.devops-mcp/config.json)
    3. Default values
    """
    config = ServerConfig()

    if config_path is None:
        env_path = os.getenv("DEVOPS_MCP_CONFIG")
        config_path = Path(env_path).expanduser() if env_path else CONFIG_PATH

    # Load from config file if exists
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)

            config.devops = _parse_devops_config(data)
            config.query = _parse_query_config(data)
            config.server_name = data.get("server_name", config.server_name)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {config_path}: {e}")

    # Environment variable overrides
    if os.getenv("AZDO_ORG_URL"):
        config.devops.org_url = os.getenv("AZDO_ORG_URL")
    if os.getenv("AZDO_PROJECT"):
        config.devops.project = os.getenv("AZDO_PROJECT")
    if os.getenv("AZDO_PAT"):
        config.devops.pat = os.getenv("AZDO_PAT")
    if os.getenv("AZDO_API_VERSION"):
        config.devops.api_version = os.getenv("AZDO_API_VERSION")
    if os.getenv("AZDO_TIMEOUT"):
        config.devops.timeout = float(os.getenv("AZDO_TIMEOUT"))

    if os.getenv("AZDO_TARGET_DATE_FIELDS"):
        config.query.target_date_fields = _split_field_list(os.getenv("AZDO_TARGET_DATE_FIELDS"))
    if os.getenv("DEVOPS_MCP_SEARCH_CAP"):
        config.query.search_cap = int(os.getenv("DEVOPS_MCP_SEARCH_CAP"))
    if os.getenv("DEVOPS_MCP_FILTER_CAP"):
        config.query.filter_cap = int(os.getenv("DEVOPS_MCP_FILTER_CAP"))

    if os.getenv("MCP_SERVER_NAME"):
        config.server_name = os.getenv("MCP_SERVER_NAME")

    config.devops.org_url = config.devops.org_url.rstrip("/")
    return config
