"""Record mutation pipeline shared by HTTP routes and assistant tools.

Every mutating operation runs these steps in order:
  1. caller must be authenticated                      → 401
  2. permission context for (module, action)           → 403
  3. single-record ops: fetch (404), visibility guard  → 403
  4. payload schema validation                         → 400
  5. edit-field validation against the edit mask       → 403
  6. mutate and commit
  7. audit entry in its own transaction (best-effort)
  8. side-effect triggers handed to the dispatcher
  9. field-filtered result

Permission and validation failures are terminal and leave no partial
write behind. Audit and trigger failures never reach the caller.
"""

import logging
import math
from functools import partial
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from src.access.errors import (
    ConflictState,
    NotFound,
    PermissionDenied,
    RecordAccessDenied,
    Unauthenticated,
    ValidationFailed,
)
from src.access.fields import (
    RECORD_ALWAYS_ALLOWED,
    filter_array_to_allowed_fields,
    filter_to_allowed_fields,
    validate_edit_fields,
)
from src.access.guard import can_access_record
from src.access.resolver import PermissionResolver
from src.audit.writer import AuditLogWriter
from src.db.tables import RecordRow
from src.memory.search_cache import SearchResultCache
from src.models.access import Caller, PermissionContext
from src.models.audit import CreateAuditLogParams
from src.models.common import ActionType, AuditAction
from src.models.records import RecordModule, RecordPage, get_record_module, record_to_dict
from src.pipeline.playbooks import PlaybookEngine
from src.pipeline.triggers import TriggerDispatcher
from src.repositories.records import RecordRepository

logger = logging.getLogger(__name__)


def _changed_to(before: dict, after: dict, key: str, value: str) -> bool:
    return after.get(key) == value and before.get(key) != value


def _validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    return to_jsonable_python(exc.errors(include_url=False, include_context=False))


class RecordMutationPipeline:
    def __init__(
        self,
        session: AsyncSession,
        resolver: PermissionResolver,
        audit: AuditLogWriter,
        *,
        dispatcher: TriggerDispatcher | None = None,
        playbooks: PlaybookEngine | None = None,
        search_cache: SearchResultCache | None = None,
        hide_denied_records: bool = False,
    ) -> None:
        self._session = session
        self._records = RecordRepository(session)
        self._resolver = resolver
        self._audit = audit
        self._dispatcher = dispatcher
        self._playbooks = playbooks
        self._search_cache = search_cache
        self._hide_denied = hide_denied_records

    # ------------------------------------------------------------------
    # Steps 1-5
    # ------------------------------------------------------------------

    def _module(self, name: str) -> RecordModule:
        module = get_record_module(name)
        if module is None:
            raise NotFound(f"Unknown module: {name}")
        return module

    async def authorize(self, caller: Caller | None, module_name: str,
                       action: ActionType) -> tuple[RecordModule, PermissionContext]:
        if caller is None or not caller.user_id or not caller.org_id:
            raise Unauthenticated()
        module = self._module(module_name)
        ctx = await self._resolver.get_permission_context(
            caller.user_id, caller.org_id, module.name, action,
        )
        if not ctx.allowed:
            raise PermissionDenied(f"You don't have permission to {action.value} {module.name}")
        return module, ctx

    async def _load_visible(self, caller: Caller, module: RecordModule,
                            ctx: PermissionContext, record_id: UUID) -> RecordRow:
        row = await self._records.get(caller.org_id, module.name, record_id)
        if row is None:
            raise NotFound(f"{module.entity_type.title()} not found")
        if not can_access_record(ctx.record_visibility, caller.user_id, row.assigned_to_id):
            if self._hide_denied:
                raise NotFound(f"{module.entity_type.title()} not found")
            raise RecordAccessDenied()
        return row

    @staticmethod
    def _validate(schema: type[BaseModel], payload: Any) -> BaseModel:
        if not isinstance(payload, dict):
            raise ValidationFailed("Invalid input", details=["Request body must be a JSON object"])
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise ValidationFailed("Invalid input", details=_validation_details(exc)) from exc

    async def _check_unique(self, caller: Caller, module: RecordModule,
                            data: dict[str, Any], exclude_id: UUID | None = None) -> None:
        for key in module.unique_keys:
            value = data.get(key)
            if value in (None, ""):
                continue
            clash = await self._records.find_by_data_key(
                caller.org_id, module.name, key, str(value), exclude_id=exclude_id,
            )
            if clash is not None:
                raise ConflictState(
                    f"A {module.entity_type.lower()} with this {key} already exists",
                    details=[key],
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_records(
        self,
        caller: Caller | None,
        module_name: str,
        *,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        filters: dict[str, str] | None = None,
    ) -> RecordPage:
        module, ctx = await self.authorize(caller, module_name, ActionType.VIEW)
        # Filtering or searching on a hidden field would reveal it through the total
        hidden = sorted(k for k in filters or {} if not ctx.view_fields.allows(k))
        if hidden:
            raise PermissionDenied(
                f"You don't have permission to filter by these fields: {', '.join(hidden)}",
                details=hidden,
            )
        rows, total = await self._records.list_visible(
            caller.org_id,
            module.name,
            visibility_filter=ctx.visibility_filter,
            search=search,
            search_fields=tuple(f for f in module.search_fields if ctx.view_fields.allows(f)),
            filters=filters,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return RecordPage(
            data=filter_array_to_allowed_fields((record_to_dict(r) for r in rows), ctx.view_fields),
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    async def get_record(self, caller: Caller | None, module_name: str,
                         record_id: UUID) -> dict[str, Any]:
        module, ctx = await self.authorize(caller, module_name, ActionType.VIEW)
        row = await self._load_visible(caller, module, ctx, record_id)
        return filter_to_allowed_fields(record_to_dict(row), ctx.view_fields)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_record(self, caller: Caller | None, module_name: str,
                            payload: Any) -> dict[str, Any]:
        module, ctx = await self.authorize(caller, module_name, ActionType.CREATE)
        validated = self._validate(module.create_schema, payload)
        validate_edit_fields(payload, ctx.edit_fields, RECORD_ALWAYS_ALLOWED)

        data = validated.model_dump(mode="json", exclude={"assigned_to_id"})
        await self._check_unique(caller, module, data)
        row = await self._records.create(
            org_id=caller.org_id,
            module=module.name,
            data=data,
            assigned_to_id=validated.assigned_to_id or caller.user_id,
            created_by_id=caller.user_id,
        )
        await self._session.commit()
        result = record_to_dict(row)
        logger.info("Created %s %s in org %s", module.name, row.record_id, caller.org_id)

        await self._write_audit(caller, module, AuditAction.CREATE, row, None, result)
        self._after_write(caller, module, row, None)
        return filter_to_allowed_fields(result, ctx.view_fields)

    async def update_record(self, caller: Caller | None, module_name: str,
                            record_id: UUID, payload: Any) -> dict[str, Any]:
        module, ctx = await self.authorize(caller, module_name, ActionType.EDIT)
        row = await self._load_visible(caller, module, ctx, record_id)
        validated = self._validate(module.update_schema, payload)
        validate_edit_fields(payload, ctx.edit_fields, RECORD_ALWAYS_ALLOWED)

        previous = record_to_dict(row)
        previous_data = dict(row.data or {})
        changes = validated.model_dump(mode="json", exclude_unset=True)
        assigned_to_id = changes.pop("assigned_to_id", row.assigned_to_id)
        if "custom_fields" in changes:
            changes["custom_fields"] = {
                **(previous_data.get("custom_fields") or {}),
                **(changes["custom_fields"] or {}),
            }
        data = {**previous_data, **changes}
        await self._check_unique(caller, module, changes, exclude_id=row.record_id)

        await self._records.update(row, data=data, assigned_to_id=assigned_to_id)
        await self._session.commit()
        result = record_to_dict(row)

        await self._write_audit(caller, module, AuditAction.UPDATE, row, previous, result)
        self._after_write(caller, module, row, previous_data)
        return filter_to_allowed_fields(result, ctx.view_fields)

    async def delete_record(self, caller: Caller | None, module_name: str,
                            record_id: UUID) -> dict[str, Any]:
        module, ctx = await self.authorize(caller, module_name, ActionType.DELETE)
        row = await self._load_visible(caller, module, ctx, record_id)

        previous = record_to_dict(row)
        await self._records.delete(row)
        await self._session.commit()
        logger.info("Deleted %s %s in org %s", module.name, record_id, caller.org_id)

        await self._write_audit(caller, module, AuditAction.DELETE, row, previous, None)
        self._invalidate_search(caller, module)
        return {"success": True}

    # ------------------------------------------------------------------
    # Steps 7-8
    # ------------------------------------------------------------------

    async def _write_audit(self, caller: Caller, module: RecordModule, action: AuditAction,
                           row: RecordRow, previous: dict | None, new: dict | None) -> None:
        await self._audit.create_audit_log(
            CreateAuditLogParams(
                org_id=caller.org_id,
                action=action,
                module=module.audit_module,
                record_id=str(row.record_id),
                actor_type=caller.actor_type,
                actor_id=caller.user_id,
                previous_state=previous,
                new_state=new,
                request_id=caller.request_id,
            )
        )

    def _invalidate_search(self, caller: Caller, module: RecordModule) -> None:
        if self._search_cache is not None:
            self._search_cache.invalidate(caller.org_id, module.name)

    def _after_write(self, caller: Caller, module: RecordModule, row: RecordRow,
                     previous_data: dict | None) -> None:
        self._invalidate_search(caller, module)
        if self._dispatcher is None or self._playbooks is None:
            return
        for name, job in self._side_effects(caller, module, row, previous_data):
            self._dispatcher.enqueue(name, job)

    def _side_effects(self, caller: Caller, module: RecordModule, row: RecordRow,
                      previous_data: dict | None) -> list[tuple[str, Any]]:
        data = row.data or {}
        before = previous_data or {}
        engine = self._playbooks
        activity = partial(
            engine.record_activity,
            org_id=caller.org_id,
            module=module.name,
            record_id=row.record_id,
            workspace=module.workspace,
            performed_by_id=caller.user_id,
            performed_by_type=caller.actor_type,
        )
        effects: list[tuple[str, Any]] = []

        if previous_data is None:
            effects.append((
                f"{module.name}.created",
                partial(
                    activity,
                    type=f"{module.entity_type}_CREATED",
                    subject=f"{module.entity_type.title()} created: {module.display_name(data)}",
                ),
            ))
            return effects

        if module.name == "leads" and _changed_to(before, data, "status", "CONVERTED"):
            effects.append((
                "leads.converted",
                partial(
                    activity,
                    type="LEAD_CONVERTED",
                    subject=f"Lead converted: {module.display_name(data)}",
                ),
            ))
        if module.name == "accounts" and _changed_to(before, data, "type", "CUSTOMER"):
            effects.append((
                "playbooks.new_customer",
                partial(engine.trigger_new_customer, caller.org_id, row.record_id),
            ))
        if (module.name == "tickets" and data.get("account_id")
                and _changed_to(before, data, "priority", "URGENT")):
            effects.append((
                "playbooks.ticket_escalation",
                partial(
                    engine.trigger_ticket_escalation,
                    caller.org_id, UUID(data["account_id"]), row.record_id,
                ),
            ))
        return effects
