from .client import (
    DevOpsGateway,
    build_auth_header,
    extract_skip,
    create_gateway,
)

__all__ = [
    "DevOpsGateway",
    "build_auth_header",
    "extract_skip",
    "create_gateway",
]
