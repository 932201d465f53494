"""
Azure DevOps MCP Server

Tool-style operations over Azure DevOps work items: discussion relevance
search, natural-language date/status filtering, and work item lookups.

Usage:
    from devops_mcp.common import load_config
    from devops_mcp.gateway import DevOpsGateway
    from devops_mcp.retriever import WorkItemRetriever
"""

__version__ = "1.0.0"
