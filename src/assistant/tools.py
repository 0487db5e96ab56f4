"""Assistant tool registry and executor.

Tools are thin adapters over the record mutation pipeline, so an AI call is
checked, validated and audited exactly like the equivalent HTTP request.
The executor binds a caller with actor_type AI_AGENT and one request id
per turn; every audit entry written during the turn shares that id.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from src.access.errors import AccessError, ValidationFailed
from src.audit.writer import AuditLogWriter
from src.memory.conversation import ConversationMemoryStore, extract_entity_from_tool_result
from src.memory.search_cache import SearchResultCache
from src.models.access import Caller, PermissionContext
from src.models.audit import CreateAuditLogParams
from src.models.common import ActionType, ActorType, AuditAction, AuditModule, Workspace
from src.models.conversation import ToolCallRecord
from src.models.records import RECORD_MODULES, RecordModule
from src.pipeline.mutations import RecordMutationPipeline

logger = logging.getLogger(__name__)

TOOL_MODULES: tuple[str, ...] = ("leads", "contacts", "accounts", "tickets", "tasks")
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 50

ToolHandler = Callable[["ToolExecutor", dict[str, Any]], Awaitable[dict[str, Any]]]


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    module: RecordModule
    input_schema: dict[str, Any]
    handler: ToolHandler

    def definition(self) -> dict[str, Any]:
        """Shape shared by the Messages API and MCP tools/list."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def _entity_label(module: RecordModule) -> str:
    return module.entity_type.title()


def id_key(module: RecordModule) -> str:
    """Result key carrying the record id, e.g. ``leadId``."""
    return f"{module.entity_type.lower()}Id"


def _search_schema(module: RecordModule) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": f"Text matched against {', '.join(module.search_fields)}",
            },
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": MAX_SEARCH_LIMIT,
                "default": DEFAULT_SEARCH_LIMIT,
            },
        },
        "required": ["query"],
    }


def _update_schema(module: RecordModule) -> dict[str, Any]:
    schema = module.update_schema.model_json_schema()
    schema.setdefault("properties", {})[id_key(module)] = {
        "type": "string",
        "format": "uuid",
        "description": f"ID of the {module.entity_type.lower()} to update",
    }
    schema["required"] = [id_key(module)]
    return schema


def _parse_id(raw: Any) -> UUID:
    try:
        return UUID(str(raw))
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("Invalid input", details=["A valid record id is required"]) from exc


def _summary(module: RecordModule, record: dict[str, Any]) -> dict[str, Any]:
    return {"id": record["id"], "name": module.display_name(record), **record}


def _access_scope(ctx: PermissionContext) -> str:
    """Cache key part for what the caller may see of a module."""
    view = ctx.view_fields.to_json()
    return f"{ctx.record_visibility.value}:{'*' if view is None else ','.join(view)}"


def _create_handler(module: RecordModule) -> ToolHandler:
    async def handler(executor: "ToolExecutor", args: dict[str, Any]) -> dict[str, Any]:
        record = await executor.pipeline.create_record(executor.caller, module.name, args)
        name = module.display_name(record)
        return {
            "success": True,
            id_key(module): record["id"],
            "message": (
                f'Created {module.entity_type.lower()} "{name}" (ID: {record["id"]})'
            ),
            "entity": {"id": record["id"], "name": name},
        }

    return handler


def _search_handler(module: RecordModule) -> ToolHandler:
    async def handler(executor: "ToolExecutor", args: dict[str, Any]) -> dict[str, Any]:
        query = str(args.get("query") or "").strip()
        limit = max(1, min(int(args.get("limit") or DEFAULT_SEARCH_LIMIT), MAX_SEARCH_LIMIT))
        # Authorize before the cache so a revoked role never gets a cached page
        _, ctx = await executor.pipeline.authorize(
            executor.caller, module.name, ActionType.VIEW,
        )
        cache = executor.search_cache
        key = None
        if cache is not None:
            key = cache.key(
                executor.caller.org_id, module.name, executor.caller.user_id,
                f"{query}|{limit}|{_access_scope(ctx)}",
            )
            cached = cache.get(key)
            if cached is not None:
                return cached

        page = await executor.pipeline.list_records(
            executor.caller, module.name, limit=limit, search=query or None,
        )
        items = [_summary(module, r) for r in page.data]
        result: dict[str, Any] = {"success": True, "count": len(items), module.name: items}
        if len(items) == 1:
            result["id"] = items[0]["id"]
            result["name"] = items[0]["name"]
            result["entity"] = {"id": items[0]["id"], "name": items[0]["name"]}
        if cache is not None:
            cache.set(key, result)
        return result

    return handler


def _update_handler(module: RecordModule) -> ToolHandler:
    async def handler(executor: "ToolExecutor", args: dict[str, Any]) -> dict[str, Any]:
        payload = dict(args)
        record_id = _parse_id(payload.pop(id_key(module), None) or payload.pop("id", None))
        record = await executor.pipeline.update_record(
            executor.caller, module.name, record_id, payload,
        )
        name = module.display_name(record)
        return {
            "success": True,
            id_key(module): record["id"],
            "message": f'Updated {module.entity_type.lower()} "{name}"',
            "entity": {"id": record["id"], "name": name},
        }

    return handler


class ToolRegistry:
    """Name → tool lookup for the record-backed assistant tools."""

    def __init__(self, modules: tuple[str, ...] = TOOL_MODULES) -> None:
        self._tools: dict[str, Tool] = {}
        for name in modules:
            module = RECORD_MODULES[name]
            label = _entity_label(module)
            plural = module.name.title()
            self._add(Tool(
                name=f"create{label}",
                description=f"Create a new {label.lower()} record.",
                module=module,
                input_schema=module.create_schema.model_json_schema(),
                handler=_create_handler(module),
            ))
            self._add(Tool(
                name=f"search{plural}",
                description=(
                    f"Search {module.name} by {', '.join(module.search_fields)}. "
                    "Returns only records the user may see."
                ),
                module=module,
                input_schema=_search_schema(module),
                handler=_search_handler(module),
            ))
            self._add(Tool(
                name=f"update{label}",
                description=f"Update fields of an existing {label.lower()}.",
                module=module,
                input_schema=_update_schema(module),
                handler=_update_handler(module),
            ))

    def _add(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [t.definition() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


@dataclass
class ToolExecutor:
    """Runs tools for one assistant turn on behalf of one user.

    Results are always dicts; failures come back as
    ``{"success": False, "message": ...}`` instead of raising.
    """

    registry: ToolRegistry
    pipeline: RecordMutationPipeline
    caller: Caller
    audit: AuditLogWriter
    memory: ConversationMemoryStore | None = None
    search_cache: SearchResultCache | None = None
    session_id: str | None = None
    clock: Callable[[], float] = time.time
    tools_called: list[str] = field(default_factory=list)

    @classmethod
    def for_user(
        cls,
        *,
        user_id: str,
        org_id: str,
        request_id: str,
        **kwargs: Any,
    ) -> "ToolExecutor":
        caller = Caller(
            user_id=user_id,
            org_id=org_id,
            actor_type=ActorType.AI_AGENT,
            request_id=request_id,
        )
        return cls(caller=caller, **kwargs)

    async def execute(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        args = dict(args or {})
        tool = self.registry.get(name)
        self.tools_called.append(name)
        if tool is None:
            result = {"success": False, "message": f"Unknown tool: {name}"}
        else:
            result = await self._run(tool, args)
        await self._remember(tool, name, args, result)
        return result

    async def _run(self, tool: Tool, args: dict[str, Any]) -> dict[str, Any]:
        try:
            return await tool.handler(self, args)
        except AccessError as exc:
            logger.info("Tool %s rejected: %s", tool.name, exc.message)
            result: dict[str, Any] = {"success": False, "message": exc.message}
            if exc.details:
                result["details"] = exc.details
            return result
        except Exception:
            logger.exception("Tool %s failed", tool.name)
            return {"success": False, "message": f"Failed to run {tool.name}"}

    async def _remember(self, tool: Tool | None, name: str, args: dict[str, Any],
                        result: dict[str, Any]) -> None:
        if self.memory is None or self.session_id is None:
            return
        now = self.clock()
        await self.memory.save_conversation_context(
            self.caller.org_id,
            self.session_id,
            self.caller.user_id,
            tool_call=ToolCallRecord(name=name, args=args, result=result, timestamp=now),
            entity=extract_entity_from_tool_result(name, result, now=now),
            workspace=tool.module.workspace if tool is not None else None,
        )

    async def write_summary(
        self,
        *,
        model: str,
        message_count: int,
        workspace: Workspace | None = None,
        finish_reason: str | None = None,
        error: str | None = None,
    ) -> None:
        """One AI_EXECUTION entry per turn; record-level entries share its request id."""
        metadata: dict[str, Any] = {
            "model": model,
            "workspace": workspace.value if workspace else None,
            "tools_called": list(self.tools_called),
            "message_count": message_count,
        }
        if finish_reason is not None:
            metadata["finish_reason"] = finish_reason
        if error is not None:
            metadata["error"] = error
        await self.audit.create_audit_log(
            CreateAuditLogParams(
                org_id=self.caller.org_id,
                action=AuditAction.AI_EXECUTION,
                module=AuditModule.SYSTEM,
                actor_type=ActorType.AI_AGENT,
                actor_id=self.caller.user_id,
                request_id=self.caller.request_id,
                metadata=metadata,
            )
        )
