from agent.tools.fetch_schema import (
    TOOL_NAME,
    ToolInvocation,
    ToolResult,
    build_fetch_schema_tool,
    fetch_schema,
)

__all__ = [
    "TOOL_NAME",
    "ToolInvocation",
    "ToolResult",
    "build_fetch_schema_tool",
    "fetch_schema",
]
