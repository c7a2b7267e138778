from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ApplicationStatus = Literal["draft", "submitted", "under_review", "accepted", "rejected"]

# Forward order of the review lifecycle; terminal states share a rank
STATUS_RANK: Dict[str, int] = {
    "draft": 0,
    "submitted": 1,
    "under_review": 2,
    "accepted": 3,
    "rejected": 3,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordMetadata(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    current_step: int = 1
    total_steps: int
    completed_steps: List[int] = Field(default_factory=list)
    last_saved: str = ""
    status: ApplicationStatus = "draft"
    application_id: Optional[str] = None
    submitted_at: Optional[str] = None


class StepDefinition(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    title: str
    description: str = ""
    is_required: bool = True
    validation_fields: List[str] = Field(default_factory=list)


class FieldError(BaseModel):
    field: str
    message: str


class SubmissionRecord(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    application_id: str
    applicant_id: str = "unknown"
    submitted_at: str
    updated_at: str
    status: ApplicationStatus = "submitted"
    data: Dict[str, Any] = Field(default_factory=dict)
    minimal: bool = False
    reviewer_note: Optional[str] = None

    @property
    def applicant_name(self) -> str:
        info = self.data.get("personalInfo") or {}
        return f"{info.get('firstName', '')} {info.get('lastName', '')}".strip()

    @property
    def applicant_email(self) -> str:
        info = self.data.get("personalInfo") or {}
        return str(info.get("email") or "")

    def to_json_obj(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SyncStatus(BaseModel):
    state: Literal["synced", "degraded"]
    reason: Optional[Literal["not_configured", "network", "conflict", "timeout", "error"]] = None
    detail: Optional[str] = None

    @classmethod
    def synced(cls) -> "SyncStatus":
        return cls(state="synced")

    @classmethod
    def degraded(cls, reason: str, detail: Optional[str] = None) -> "SyncStatus":
        return cls(state="degraded", reason=reason, detail=detail)

    @property
    def is_degraded(self) -> bool:
        return self.state == "degraded"


class BroadcastEvent(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    storage_key: str
    new_value: Any = None
    origin_tab_id: str


class AuditEvent(BaseModel):
    subject_id: str
    step: str
    status: Literal["ok", "warning", "error"]
    ts_iso: str  # UTC ISO 8601
    ts_ns: int   # monotonic clock nanoseconds
    input_digest: Optional[str] = None
    output_digest: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    prev_event_hash: str
    event_hash: str


class Notification(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    user_id: str
    type: str
    title: str
    message: str
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    is_read: bool = False
    read_at: Optional[str] = None
    created_at: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
