"""Assistant agent — Anthropic Messages API loop over the CRM tools.

One chat turn:
- loads the session's conversation memory and prepends its summary to the
  system prompt
- alternates model calls and tool execution for at most ``max_steps``
  model round-trips
- bounds the whole turn (tool calls included) by ``timeout_seconds``
- saves the user and assistant messages back to memory
- writes one AI_EXECUTION audit summary

A timeout ends the turn with a timeout message. Tool side effects that
already committed stay committed.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from src.assistant.tools import ToolExecutor
from src.memory.conversation import ConversationMemoryStore, build_context_summary
from src.models.common import Workspace
from src.models.conversation import ChatMessage

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

NOT_CONFIGURED_MESSAGE = "AI is not configured. Please set ANTHROPIC_API_KEY."
TIMEOUT_MESSAGE = (
    "The request took too long and was stopped. "
    "Any changes already made were saved; please check before retrying."
)
EMPTY_RESPONSE = "I processed your request but have no additional response."

CRM_SYSTEM_PROMPT = """You are the CRM assistant for a sales, customer success, marketing and HR team.

Use the available tools to create, search and update leads, contacts,
accounts, tickets and tasks. Never invent record IDs: search first when the
user refers to an existing record by name, or use the recent records below.
Tool results tell you whether an action succeeded; report failures plainly.
Keep answers short and factual."""


# ---------------------------------------------------------------------------
# Intent helpers
# ---------------------------------------------------------------------------

_WORKSPACE_KEYWORDS: tuple[tuple[Workspace, tuple[str, ...]], ...] = (
    (Workspace.CS, ("ticket", "support", "health score", "playbook", "at risk",
                    "customer success")),
    (Workspace.MARKETING, ("campaign", "segment", "form", "marketing", "audience",
                           "email blast")),
    (Workspace.SALES, ("lead", "opportunity", "pipeline", "deal", "sales", "prospect")),
    (Workspace.HR, ("employee", "leave", "payroll", "hiring")),
)

_ACTION_VERBS = (
    "create", "add", "make", "new", "update", "edit", "change", "modify",
    "delete", "remove", "search", "find", "show", "list", "get",
    "complete", "finish", "close", "send", "schedule",
)
_ENTITY_NOUNS = (
    "lead", "contact", "account", "task", "opportunity", "ticket", "note",
    "campaign", "segment", "form", "playbook",
)


def detect_workspace(message: str) -> Workspace | None:
    lower = message.lower()
    for workspace, keywords in _WORKSPACE_KEYWORDS:
        if any(k in lower for k in keywords):
            return workspace
    return None


def requires_tool(message: str) -> bool:
    """True for clear action requests, e.g. "create a lead for ..."."""
    lower = message.lower()
    return any(v in lower for v in _ACTION_VERBS) and any(n in lower for n in _ENTITY_NOUNS)


# ---------------------------------------------------------------------------
# Model client
# ---------------------------------------------------------------------------


class ModelError(Exception):
    """The model provider returned an unusable response."""


@dataclass
class ToolUse:
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ModelTurn:
    content: list[dict[str, Any]]
    stop_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(b.get("text", "") for b in self.content if b.get("type") == "text")

    @property
    def tool_uses(self) -> list[ToolUse]:
        return [
            ToolUse(id=b["id"], name=b["name"], input=b.get("input") or {})
            for b in self.content
            if b.get("type") == "tool_use"
        ]


class ModelClient(Protocol):
    model: str

    @property
    def configured(self) -> bool: ...

    async def create(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ModelTurn: ...


class AnthropicClient:
    """Minimal Messages API client. Disabled when no API key is set."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        http: httpx.AsyncClient | None = None,
        api_url: str = ANTHROPIC_API_URL,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._http = http or httpx.AsyncClient(timeout=60.0)
        self._owns_http = http is None
        self._api_url = api_url

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def create(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "auto",
    ) -> ModelTurn:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = {"type": tool_choice}
        resp = await self._http.post(
            self._api_url,
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json=body,
        )
        resp.raise_for_status()
        data = resp.json()
        content = data.get("content")
        if not isinstance(content, list):
            raise ModelError("Messages API response has no content")
        return ModelTurn(content=content, stop_reason=data.get("stop_reason"))

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


@dataclass
class AgentResult:
    success: bool
    response: str
    tools_called: list[str] = field(default_factory=list)
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    model_used: str = "none"
    error: str | None = None


class AssistantAgent:
    def __init__(
        self,
        client: ModelClient,
        *,
        max_steps: int = 5,
        timeout_seconds: float = 120.0,
        memory: ConversationMemoryStore | None = None,
    ) -> None:
        self._client = client
        self.max_steps = max_steps
        self.timeout_seconds = timeout_seconds
        self._memory = memory

    async def _system_prompt(self, org_id: str, session_id: str | None) -> tuple[str, list[dict]]:
        if self._memory is None or session_id is None:
            return CRM_SYSTEM_PROMPT, []
        context = await self._memory.get_conversation_context(org_id, session_id)
        if context is None:
            return CRM_SYSTEM_PROMPT, []
        history = [
            {"role": m.role, "content": m.content}
            for m in context.messages
            if m.role in ("user", "assistant") and isinstance(m.content, str)
        ]
        summary = build_context_summary(context)
        system = f"{CRM_SYSTEM_PROMPT}\n\n{summary}" if summary else CRM_SYSTEM_PROMPT
        return system, history

    async def run(
        self,
        executor: ToolExecutor,
        message: str,
        *,
        workspace: Workspace | None = None,
    ) -> AgentResult:
        if not self._client.configured:
            return AgentResult(
                success=False, response=NOT_CONFIGURED_MESSAGE, error="AI not configured",
            )

        caller = executor.caller
        workspace = workspace or detect_workspace(message)
        system, history = await self._system_prompt(caller.org_id, executor.session_id)
        messages = [*history, {"role": "user", "content": message}]
        result = AgentResult(success=False, response=EMPTY_RESPONSE, model_used=self._client.model)
        finish_reason: str | None = None

        logger.info(
            "Assistant turn started org=%s user=%s request=%s",
            caller.org_id, caller.user_id, caller.request_id,
        )
        try:
            async with asyncio.timeout(self.timeout_seconds):
                finish_reason = await self._loop(executor, system, messages, message, result)
            result.success = True
        except TimeoutError:
            logger.warning("Assistant turn timed out after %ss", self.timeout_seconds)
            result.response = TIMEOUT_MESSAGE
            result.error = "timeout"
        except (httpx.HTTPError, ModelError) as exc:
            logger.exception("Assistant model call failed")
            result.response = f"I encountered an error: {exc}. Please try again."
            result.error = str(exc)

        result.tools_called = list(executor.tools_called)
        await executor.write_summary(
            model=self._client.model,
            message_count=len(messages),
            workspace=workspace,
            finish_reason=finish_reason,
            error=result.error,
        )
        if self._memory is not None and executor.session_id is not None:
            await self._memory.save_conversation_context(
                caller.org_id,
                executor.session_id,
                caller.user_id,
                messages=[
                    ChatMessage(role="user", content=message),
                    ChatMessage(role="assistant", content=result.response),
                ],
                workspace=workspace,
            )
        return result

    async def _loop(
        self,
        executor: ToolExecutor,
        system: str,
        messages: list[dict[str, Any]],
        message: str,
        result: AgentResult,
    ) -> str | None:
        tools = executor.registry.definitions()
        tool_choice = "any" if requires_tool(message) else "auto"
        turn: ModelTurn | None = None

        for step in range(self.max_steps):
            turn = await self._client.create(
                system=system, messages=messages, tools=tools, tool_choice=tool_choice,
            )
            messages.append({"role": "assistant", "content": turn.content})
            if turn.text:
                result.response = turn.text

            uses = turn.tool_uses
            if not uses:
                break
            blocks = []
            for use in uses:
                output = await executor.execute(use.name, use.input)
                result.tool_results.append(output)
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": use.id,
                    "content": _tool_result_text(output),
                    "is_error": not output.get("success", False),
                })
            messages.append({"role": "user", "content": blocks})
            # Force only the first step; later steps may answer in text
            tool_choice = "auto"
            logger.debug("Assistant step %d ran %d tools", step + 1, len(uses))

        return turn.stop_reason if turn is not None else None


def _tool_result_text(output: dict[str, Any]) -> str:
    return json.dumps(output, default=str)
