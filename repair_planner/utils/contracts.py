# repair_planner/utils/contracts.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from repair_planner.utils.agent_helpers import match_keys_case_insensitive, to_int_lenient, to_str_list

WORK_ORDER_TYPES = ("corrective", "preventive", "emergency")
PRIORITIES = ("critical", "high", "medium", "low")
STATUSES = ("open", "assigned", "in_progress", "on_hold", "completed", "cancelled")

LenientInt = Annotated[int, BeforeValidator(to_int_lenient)]
StrList = Annotated[List[str], BeforeValidator(to_str_list)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """
    Base for records stored as lower-camel-case JSON documents.
    Incoming keys are matched case-insensitively; nulls fall back to defaults.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _match_field_names(cls, data: Any) -> Any:
        names: Dict[str, str] = {}
        for name, info in cls.model_fields.items():
            names[name.lower()] = name
            if info.alias:
                names[info.alias.lower()] = name
        return match_keys_case_insensitive(data, names)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class DiagnosedFault(Document):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    fault_type: str = ""
    machine_id: str = ""
    severity: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Technician(Document):
    id: str = ""
    name: str = ""
    department: str = ""
    skills: StrList = Field(default_factory=list)
    is_available: bool = True
    next_available_at: Optional[datetime] = None


class Part(Document):
    id: str = ""
    part_number: str = ""
    description: Optional[str] = None
    quantity_available: LenientInt = Field(default=0, ge=0)
    category: Optional[str] = None
    location: Optional[str] = None


class PartUsage(Document):
    part_id: str = ""
    part_number: str = ""
    quantity: LenientInt = 1


class RepairTask(Document):
    sequence: LenientInt = 0
    title: str = ""
    description: Optional[str] = None
    estimated_duration_minutes: LenientInt = 0
    required_skills: StrList = Field(default_factory=list)
    safety_notes: Optional[str] = None


class WorkOrder(Document):
    id: Optional[str] = None
    work_order_number: str = ""
    machine_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    estimated_duration: LenientInt = 0
    parts_used: List[PartUsage] = Field(default_factory=list)
    tasks: List[RepairTask] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
