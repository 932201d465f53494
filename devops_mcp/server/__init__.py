from .server import MCPServerApp, build_app, main

__all__ = ["MCPServerApp", "build_app", "main"]
