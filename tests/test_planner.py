from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from repair_planner.errors import EmptyAgentResponseError, WorkOrderParseError
from repair_planner.planner import (
    RepairPlanner,
    normalize_work_order,
    parse_work_order,
    resolve_part_ids,
    select_technician,
)
from repair_planner.tools.fault_mapping import FaultMapping
from repair_planner.tools.store_connect import DocumentStore
from repair_planner.utils.contracts import DiagnosedFault, Part, PartUsage, RepairTask, Technician, WorkOrder

from conftest import StubAgent

SENSOR_MAPPING = FaultMapping(skills={"sensor_fault": ("instrumentation",)}, parts={"sensor_fault": ()})

AGENT_REPLY = (
    "I reviewed the fault and the crew. Here is the work order:\n"
    '```json {"workOrderNumber":"WO-1","machineId":"M1","tasks":'
    '[{"sequence":1,"title":"Inspect","estimatedDurationMinutes":-10}]}```\n'
    "Tell me if you need a different technician."
)


@pytest.fixture
def fault() -> DiagnosedFault:
    return DiagnosedFault(id="fault-1", fault_type="sensor_fault", machine_id="M1",
                          severity="high", confidence=0.87)


def _tech(tech_id: str, skills: list[str], available: bool = True, next_at: datetime | None = None) -> Technician:
    return Technician(id=tech_id, name=tech_id.upper(), department="curing", skills=skills,
                      is_available=available, next_available_at=next_at)


# ----------------------------------------------------------------------
# Pure steps
# ----------------------------------------------------------------------
def test_normalize_clamps_durations_and_fills_defaults(fault: DiagnosedFault):
    wo = WorkOrder(tasks=[RepairTask(sequence=1, estimated_duration_minutes=-5),
                          RepairTask(sequence=2, estimated_duration_minutes=30)])
    now = datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc)
    normalize_work_order(wo, fault, now=now)

    assert [t.estimated_duration_minutes for t in wo.tasks] == [0, 30]
    assert wo.priority == "medium"
    assert wo.status == "open"
    assert wo.type == "corrective"
    assert wo.id
    assert wo.machine_id == "M1"
    assert wo.created_at == wo.updated_at == now
    assert wo.estimated_duration == 30
    assert wo.work_order_number.startswith("WO-20250304-")
    assert wo.title == "sensor_fault on M1"


def test_normalize_keeps_valid_agent_values(fault: DiagnosedFault):
    wo = WorkOrder(id="wo-9", machine_id="M9", priority="High", status="In Progress", type="preventive",
                   work_order_number="WO-9", title="Replace sensor", estimated_duration=120)
    normalize_work_order(wo, fault)
    assert (wo.id, wo.machine_id, wo.priority, wo.status, wo.type) == ("wo-9", "M9", "high", "in_progress", "preventive")
    assert (wo.work_order_number, wo.title, wo.estimated_duration) == ("WO-9", "Replace sensor", 120)


def test_normalize_replaces_unknown_categories():
    critical = DiagnosedFault(id="f", machine_id="M1", severity="Critical")
    wo = WorkOrder(priority="urgent", status="whatever", type="fix-it", parts_used=[PartUsage(part_number="X", quantity=0)])
    normalize_work_order(wo, critical)
    assert (wo.priority, wo.status, wo.type) == ("medium", "open", "emergency")
    assert wo.parts_used[0].quantity == 1


def test_higher_skill_overlap_beats_earlier_availability():
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    t1 = _tech("t1", ["instrumentation", "temperature_control"])
    t2 = _tech("t2", ["instrumentation", "temperature_control", "tire_curing_press"], next_at=tomorrow)
    required = ["tire_curing_press", "temperature_control", "instrumentation"]
    assert select_technician([t1, t2], required).id == "t2"


def test_unavailable_technicians_are_excluded():
    t1 = _tech("t1", ["instrumentation", "temperature_control"])
    t3 = _tech("t3", ["instrumentation", "temperature_control", "tire_curing_press"], available=False)
    required = ["tire_curing_press", "temperature_control", "instrumentation"]
    assert select_technician([t3, t1], required).id == "t1"
    assert select_technician([t3], required) is None


def test_ties_prefer_no_timestamp_then_earliest():
    soon = datetime(2025, 1, 1, 9, 0)  # naive values are read as UTC
    later = datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc)
    t_later = _tech("later", ["Instrumentation"], next_at=later)
    t_soon = _tech("soon", ["instrumentation"], next_at=soon)
    t_free = _tech("free", ["INSTRUMENTATION"])
    assert select_technician([t_later, t_soon, t_free], ["instrumentation"]).id == "free"
    assert select_technician([t_later, t_soon], ["instrumentation"]).id == "soon"


def test_resolve_part_ids():
    inventory = [Part(id="abc123", part_number="TCP-HTR-4KW", quantity_available=2),
                 Part(id="dup", part_number="tcp-htr-4kw", quantity_available=1)]
    wo = WorkOrder(parts_used=[PartUsage(part_number="tcp-htr-4kw", quantity=1),
                               PartUsage(part_id="keep-me", part_number="UNKNOWN-1", quantity=1),
                               PartUsage(part_id="", part_number="", quantity=1)])
    resolve_part_ids(wo, inventory)
    assert [u.part_id for u in wo.parts_used] == ["abc123", "keep-me", ""]


def test_parse_errors_keep_raw_and_cleaned_text():
    with pytest.raises(WorkOrderParseError) as info:
        parse_work_order("raw {oops", "{oops")
    assert info.value.raw_text == "raw {oops"
    assert info.value.cleaned_text == "{oops"
    assert "{oops" in str(info.value)

    with pytest.raises(WorkOrderParseError):
        parse_work_order("[1, 2]", "[1, 2]")
    with pytest.raises(WorkOrderParseError):
        parse_work_order("x", '{"tasks": [{"estimatedDurationMinutes": "soon"}]}')


@pytest.mark.parametrize("cleaned", [
    '{"tasks": [{"estimatedDurationMinutes": "1e400"}]}',
    '{"tasks": [{"estimatedDurationMinutes": 1e999}]}',
    '{"estimatedDuration": Infinity}',
])
def test_out_of_range_numbers_are_parse_errors(cleaned: str):
    raw = f"Here you go: {cleaned}"
    with pytest.raises(WorkOrderParseError) as info:
        parse_work_order(raw, cleaned)
    assert info.value.raw_text == raw
    assert info.value.cleaned_text == cleaned


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------
async def _seed(store: DocumentStore) -> None:
    await store.upsert_technician(_tech("t-generalist", ["general_maintenance"]))
    await store.upsert_technician(_tech("t-instr", ["Instrumentation"]))
    await store.upsert_part(Part(id="abc123", part_number="TCP-HTR-4KW", quantity_available=4, category="curing"))


async def test_end_to_end_work_order(store: DocumentStore, fault: DiagnosedFault):
    await _seed(store)
    agent = StubAgent(AGENT_REPLY)
    planner = RepairPlanner(store, agent, SENSOR_MAPPING)

    wo = await planner.plan_and_create_work_order(fault)

    assert wo.id
    assert wo.work_order_number == "WO-1"
    assert wo.tasks[0].estimated_duration_minutes == 0
    assert wo.status == "open"
    assert wo.priority == "medium"
    assert wo.assigned_to == "t-instr"

    saved = await store.get_work_order(wo.id)
    assert saved is not None
    assert saved.work_order_number == "WO-1"
    assert saved.tasks[0].estimated_duration_minutes == 0

    prompt = agent.prompts[0]
    assert "FaultType: sensor_fault" in prompt
    assert "RequiredSkills: [instrumentation]" in prompt
    assert "- t-instr: T-INSTR; skills=[Instrumentation]; available=True" in prompt
    assert "t-generalist" not in prompt
    assert "PartsInventoryCount: 1" in prompt


async def test_agent_assignment_and_parts_are_resolved(store: DocumentStore, fault: DiagnosedFault):
    await _seed(store)
    reply = json.dumps({
        "workOrderNumber": "WO-2", "assignedTo": "t-generalist", "priority": "critical",
        "estimatedDuration": "90",
        "partsUsed": [{"partNumber": "TCP-HTR-4KW", "quantity": "2"}, {"partNumber": "MISSING-9", "quantity": 1}],
    })
    planner = RepairPlanner(store, StubAgent(f"Plan: {reply} -- end"), SENSOR_MAPPING)

    wo = await planner.plan_and_create_work_order(fault.model_dump())

    assert wo.assigned_to == "t-generalist"
    assert wo.priority == "critical"
    assert wo.estimated_duration == 90
    assert [(u.part_id, u.quantity) for u in wo.parts_used] == [("abc123", 2), ("", 1)]


async def test_falls_back_to_all_technicians(store: DocumentStore):
    await store.upsert_technician(_tech("t-busy", ["banbury_mixer"], available=False))
    await store.upsert_technician(_tech("t-any", ["tire_extruder"]))
    agent = StubAgent('{"workOrderNumber": "WO-3"}')
    planner = RepairPlanner(store, agent)
    unknown = DiagnosedFault(id="f-3", fault_type="never_seen_before", machine_id="M3")

    wo = await planner.plan_and_create_work_order(unknown)

    assert "t-busy" in agent.prompts[0] and "t-any" in agent.prompts[0]
    assert "RequiredSkills: [general_maintenance]" in agent.prompts[0]
    assert wo.assigned_to == "t-any"


async def test_no_available_technician_leaves_assignment_empty(store: DocumentStore, fault: DiagnosedFault):
    await store.upsert_technician(_tech("t-off", ["instrumentation"], available=False))
    planner = RepairPlanner(store, StubAgent('{"workOrderNumber": "WO-4"}'), SENSOR_MAPPING)
    wo = await planner.plan_and_create_work_order(fault)
    assert not wo.assigned_to
    assert await store.get_work_order(wo.id) is not None


async def test_missing_fault_is_rejected_before_any_io(store: DocumentStore):
    agent = StubAgent("{}")
    with pytest.raises(ValueError):
        await RepairPlanner(store, agent).plan_and_create_work_order(None)
    assert agent.prompts == []


@pytest.mark.parametrize("reply", ["", "   \n"])
async def test_empty_agent_response_is_fatal(store: DocumentStore, fault: DiagnosedFault, reply: str):
    planner = RepairPlanner(store, StubAgent(reply), SENSOR_MAPPING)
    with pytest.raises(EmptyAgentResponseError) as info:
        await planner.plan_and_create_work_order(fault)
    assert info.value.fault_id == "fault-1"
    assert await store.list_work_orders() == []


async def test_unparseable_response_persists_nothing(store: DocumentStore, fault: DiagnosedFault):
    planner = RepairPlanner(store, StubAgent("Sorry, I cannot build a plan for this machine."), SENSOR_MAPPING)
    with pytest.raises(WorkOrderParseError) as info:
        await planner.plan_and_create_work_order(fault)
    assert info.value.raw_text == "Sorry, I cannot build a plan for this machine."
    assert info.value.cleaned_text == "Sorry, I cannot build a plan for this machine."
    assert await store.list_work_orders() == []


async def test_infinite_duration_reply_persists_nothing(store: DocumentStore, fault: DiagnosedFault):
    reply = '```json\n{"workOrderNumber": "WO-5", "tasks": [{"estimatedDurationMinutes": "1e400"}]}\n```'
    planner = RepairPlanner(store, StubAgent(reply), SENSOR_MAPPING)
    with pytest.raises(WorkOrderParseError) as info:
        await planner.plan_and_create_work_order(fault)
    assert info.value.raw_text == reply
    assert info.value.cleaned_text.startswith('{"workOrderNumber": "WO-5"')
    assert await store.list_work_orders() == []


class HangingAgent:
    name = "HangingAgent"

    def __init__(self):
        self.started = asyncio.Event()

    async def invoke(self, prompt: str) -> str:
        self.started.set()
        await asyncio.sleep(3600)
        return "{}"


async def test_cancellation_propagates_without_persisting(store: DocumentStore, fault: DiagnosedFault):
    agent = HangingAgent()
    planner = RepairPlanner(store, agent, SENSOR_MAPPING)
    task = asyncio.create_task(planner.plan_and_create_work_order(fault))
    await asyncio.wait_for(agent.started.wait(), timeout=5)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert await store.list_work_orders() == []
