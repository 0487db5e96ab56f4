"""Customer-success playbook models."""

from enum import StrEnum

from pydantic import Field

from src.models.common import CRMBase


class PlaybookTrigger(StrEnum):
    NEW_CUSTOMER = "NEW_CUSTOMER"
    TICKET_ESCALATION = "TICKET_ESCALATION"
    HEALTH_DROP = "HEALTH_DROP"
    RENEWAL_APPROACHING = "RENEWAL_APPROACHING"
    MANUAL = "MANUAL"


class AssigneeType(StrEnum):
    CSM = "CSM"
    ACCOUNT_OWNER = "ACCOUNT_OWNER"
    UNASSIGNED = "UNASSIGNED"


class PlaybookStep(CRMBase):
    order: int = Field(..., ge=1)
    day_offset: int = Field(default=0, ge=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    task_type: str = "OTHER"
    assignee_type: AssigneeType = AssigneeType.CSM


class TriggerConfig(CRMBase):
    days_before_renewal: int | None = Field(default=None, ge=1)
    health_score_threshold: int | None = Field(default=None, ge=0, le=100)


class CreatePlaybookRequest(CRMBase):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    trigger: PlaybookTrigger
    trigger_config: TriggerConfig | None = None
    steps: list[PlaybookStep] = Field(..., min_length=1)
    is_active: bool = True


class PlaybookStartResult(CRMBase):
    success: bool
    run_id: str | None = None
    error: str | None = None
