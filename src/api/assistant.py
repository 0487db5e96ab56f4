"""Assistant endpoints.

POST   /v1/ai/chat                     — one assistant turn
DELETE /v1/ai/sessions/{session_id}    — forget a conversation
POST   /v1/mcp                         — MCP JSON-RPC 2.0 messages

Both endpoints only authenticate the caller. Each tool call is checked by
the mutation pipeline like any other AI_AGENT call.
"""

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.api.dependencies import (
    get_audit_writer,
    get_caller,
    get_memory_store,
    get_model_client,
    get_pipeline,
    get_search_cache,
    get_tool_registry,
)
from src.assistant.agent import AssistantAgent, ModelClient
from src.assistant.mcp import INVALID_REQUEST, McpHandler, error_response
from src.assistant.tools import ToolExecutor, ToolRegistry
from src.audit.writer import AuditLogWriter
from src.config.settings import Settings, get_settings
from src.memory.conversation import ConversationMemoryStore
from src.memory.search_cache import SearchResultCache
from src.models.access import Caller
from src.models.common import Workspace
from src.pipeline.mutations import RecordMutationPipeline

router = APIRouter(prefix="/v1", tags=["assistant"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=10_000)
    session_id: str | None = Field(default=None, max_length=200)
    workspace: Workspace | None = None


class ChatResponse(BaseModel):
    success: bool
    response: str
    session_id: str
    request_id: str
    tools_called: list[str]
    tool_results: list[dict[str, Any]]
    model_used: str
    error: str | None = None


class ClearSessionResponse(BaseModel):
    success: bool


def _executor(
    caller: Caller,
    session_id: str | None,
    *,
    registry: ToolRegistry,
    pipeline: RecordMutationPipeline,
    audit: AuditLogWriter,
    memory: ConversationMemoryStore,
    search_cache: SearchResultCache,
) -> ToolExecutor:
    return ToolExecutor.for_user(
        user_id=caller.user_id,
        org_id=caller.org_id,
        request_id=caller.request_id or str(uuid.uuid4()),
        registry=registry,
        pipeline=pipeline,
        audit=audit,
        memory=memory,
        search_cache=search_cache,
        session_id=session_id,
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@router.post("/ai/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
    registry: ToolRegistry = Depends(get_tool_registry),
    audit: AuditLogWriter = Depends(get_audit_writer),
    memory: ConversationMemoryStore = Depends(get_memory_store),
    search_cache: SearchResultCache = Depends(get_search_cache),
    client: ModelClient = Depends(get_model_client),
    settings: Settings = Depends(get_settings),
) -> ChatResponse:
    session_id = body.session_id or str(uuid.uuid4())
    executor = _executor(
        caller, session_id,
        registry=registry, pipeline=pipeline, audit=audit,
        memory=memory, search_cache=search_cache,
    )
    agent = AssistantAgent(
        client,
        max_steps=settings.AI_MAX_STEPS,
        timeout_seconds=settings.AI_REQUEST_TIMEOUT_SECONDS,
        memory=memory,
    )
    result = await agent.run(executor, body.message, workspace=body.workspace)
    return ChatResponse(
        success=result.success,
        response=result.response,
        session_id=session_id,
        request_id=executor.caller.request_id,
        tools_called=result.tools_called,
        tool_results=result.tool_results,
        model_used=result.model_used,
        error=result.error,
    )


@router.delete("/ai/sessions/{session_id}", response_model=ClearSessionResponse)
async def clear_session(
    session_id: str,
    caller: Caller = Depends(get_caller),
    memory: ConversationMemoryStore = Depends(get_memory_store),
) -> ClearSessionResponse:
    cleared = await memory.clear_conversation_context(caller.org_id, session_id)
    return ClearSessionResponse(success=cleared)


# ---------------------------------------------------------------------------
# MCP
# ---------------------------------------------------------------------------


@router.post("/mcp", response_model=None)
async def mcp_message(
    message: Any = Body(default=None),
    x_session_id: str | None = Header(default=None),
    caller: Caller = Depends(get_caller),
    pipeline: RecordMutationPipeline = Depends(get_pipeline),
    registry: ToolRegistry = Depends(get_tool_registry),
    audit: AuditLogWriter = Depends(get_audit_writer),
    memory: ConversationMemoryStore = Depends(get_memory_store),
    search_cache: SearchResultCache = Depends(get_search_cache),
) -> Response:
    if message is None:
        return JSONResponse(
            error_response(None, INVALID_REQUEST, "Empty request body"), status_code=400,
        )
    executor = _executor(
        caller, x_session_id,
        registry=registry, pipeline=pipeline, audit=audit,
        memory=memory, search_cache=search_cache,
    )
    reply = await McpHandler(executor).handle(message)
    if reply is None:
        return Response(status_code=204)
    return JSONResponse(reply)
