"""MCP (Model Context Protocol) JSON-RPC 2.0 message handling.

Only the request/response layer lives here; transport framing (SSE,
stdio) is out of scope. tools/call runs through the same ToolExecutor as
the chat assistant, so permissions, audit (AI_AGENT) and conversation
memory apply unchanged.
"""

import json
import logging
from typing import Any

from src.assistant.tools import ToolExecutor

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "crm-core", "version": "0.1.0"}

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class McpError(Exception):
    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }


def _result(request_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


class McpHandler:
    """Dispatches one JSON-RPC message for one authenticated caller."""

    def __init__(self, executor: ToolExecutor) -> None:
        self._executor = executor

    async def handle(self, message: Any) -> dict[str, Any] | None:
        """Response for *message*, or None for a notification."""
        if not isinstance(message, dict) or message.get("jsonrpc") != JSONRPC_VERSION:
            return error_response(None, INVALID_REQUEST, "Invalid JSON-RPC request")
        method = message.get("method")
        if not isinstance(method, str):
            return error_response(message.get("id"), INVALID_REQUEST, "Missing method")

        # Requests without an id are notifications and get no response
        is_notification = "id" not in message
        request_id = message.get("id")
        params = message.get("params") or {}

        try:
            result = await self._dispatch(method, params)
        except McpError as exc:
            if is_notification:
                return None
            return error_response(request_id, exc.code, exc.message)
        if is_notification:
            return None
        return _result(request_id, result)

    async def _dispatch(self, method: str, params: Any) -> dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": SERVER_INFO,
                "capabilities": {"tools": {"listChanged": False}},
            }
        if method == "ping":
            return {}
        if method.startswith("notifications/"):
            return {}
        if method == "tools/list":
            return {"tools": self._list_tools()}
        if method == "tools/call":
            return await self._call_tool(params)
        raise McpError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": d["name"],
                "description": d["description"],
                "inputSchema": d["input_schema"],
            }
            for d in self._executor.registry.definitions()
        ]

    async def _call_tool(self, params: Any) -> dict[str, Any]:
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise McpError(INVALID_PARAMS, "tools/call requires a tool name")
        name = params["name"]
        if name not in self._executor.registry:
            raise McpError(INVALID_PARAMS, f"Unknown tool: {name}")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise McpError(INVALID_PARAMS, "arguments must be an object")

        output = await self._executor.execute(name, arguments)
        await self._executor.write_summary(model="mcp", message_count=1)
        logger.info("MCP tool %s success=%s", name, output.get("success"))
        return {
            "content": [{"type": "text", "text": json.dumps(output, default=str)}],
            "isError": not output.get("success", False),
        }
