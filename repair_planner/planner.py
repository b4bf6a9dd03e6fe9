# repair_planner/planner.py
"""
Fault-to-work-order planning pipeline.

gather_context -> build_prompt -> invoke_agent -> extract_json -> deserialize
-> normalize -> assign_technician -> resolve_parts -> persist

Any failing step aborts the run; nothing is persisted before the last step.
"""
from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError

from repair_planner.errors import EmptyAgentResponseError, WorkOrderParseError
from repair_planner.prompts import build_prompt
from repair_planner.tools.fault_mapping import FaultMapping
from repair_planner.tools.llm_planner import PlannerAgent
from repair_planner.tools.store_connect import DocumentStore
from repair_planner.utils.agent_helpers import extract_json_from_agent
from repair_planner.utils.contracts import (
    PRIORITIES,
    STATUSES,
    WORK_ORDER_TYPES,
    DiagnosedFault,
    Part,
    Technician,
    WorkOrder,
    utc_now,
)
from repair_planner.utils.graph import PlanningState, make_planning_app
from repair_planner.utils.logger import get_logger

log = get_logger(__name__)

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_work_order(raw_text: str, cleaned_text: str) -> WorkOrder:
    try:
        payload = json.loads(cleaned_text)
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        return WorkOrder.model_validate(payload)
    except (ValueError, OverflowError, ValidationError) as e:
        raise WorkOrderParseError(f"Failed to parse agent response: {e}", raw_text, cleaned_text) from e


def _pick(value: Optional[str], allowed: Sequence[str], default: str) -> str:
    key = (value or "").strip().lower().replace(" ", "_").replace("-", "_")
    return key if key in allowed else default


def normalize_work_order(wo: WorkOrder, fault: DiagnosedFault, now: Optional[datetime] = None) -> WorkOrder:
    """Fill defaults and clamp values the agent got wrong."""
    now = now or utc_now()
    if not (wo.id or "").strip():
        wo.id = str(uuid.uuid4())
    if not (wo.machine_id or "").strip():
        wo.machine_id = fault.machine_id
    wo.created_at = now
    wo.updated_at = now

    wo.priority = _pick(wo.priority, PRIORITIES, "medium")
    wo.status = _pick(wo.status, STATUSES, "open")
    wo.type = _pick(wo.type, WORK_ORDER_TYPES,
                    "emergency" if fault.severity.strip().lower() == "critical" else "corrective")

    for task in wo.tasks:
        if task.estimated_duration_minutes < 0:
            task.estimated_duration_minutes = 0
    for usage in wo.parts_used:
        if usage.quantity < 1:
            usage.quantity = 1
    if wo.estimated_duration <= 0:
        wo.estimated_duration = sum(task.estimated_duration_minutes for task in wo.tasks)

    if not wo.work_order_number.strip():
        wo.work_order_number = f"WO-{now:%Y%m%d}-{wo.id.replace('-', '')[:6].upper()}"
    if not wo.title.strip():
        wo.title = f"{fault.fault_type or 'repair'} on {wo.machine_id}"
    return wo


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EARLIEST
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def select_technician(technicians: Iterable[Technician], required_skills: Iterable[str]) -> Optional[Technician]:
    """
    Most qualified available technician: most skills in common with
    `required_skills` (case-insensitive), then earliest nextAvailableAt with
    no value counting as available now. Ties keep input order.
    """
    wanted = {s.lower() for s in required_skills}
    available = [t for t in technicians if t.is_available]
    if not available:
        return None
    ranked = sorted(
        available,
        key=lambda t: (-sum(1 for s in t.skills if s.lower() in wanted), _as_utc(t.next_available_at)),
    )
    return ranked[0]


def resolve_part_ids(wo: WorkOrder, inventory: Iterable[Part]) -> WorkOrder:
    by_number: Dict[str, Part] = {}
    for part in inventory:
        by_number.setdefault(part.part_number.lower(), part)
    for usage in wo.parts_used:
        if not usage.part_number.strip():
            continue
        part = by_number.get(usage.part_number.lower())
        if part is not None:
            usage.part_id = part.id
    return wo


class RepairPlanner:

    def __init__(self, store: DocumentStore, agent: PlannerAgent, fault_mapping: Optional[FaultMapping] = None):
        self.store = store
        self.agent = agent
        self.fault_mapping = fault_mapping or FaultMapping()
        self.app = make_planning_app({
            "gather_context": self._gather_context,
            "build_prompt": self._build_prompt,
            "invoke_agent": self._invoke_agent,
            "extract_json": self._extract_json,
            "deserialize": self._deserialize,
            "normalize": self._normalize,
            "assign_technician": self._assign_technician,
            "resolve_parts": self._resolve_parts,
            "persist": self._persist,
        })

    async def plan_and_create_work_order(self, fault: DiagnosedFault | Mapping[str, Any]) -> WorkOrder:
        if fault is None:
            raise ValueError("fault is required")
        if not isinstance(fault, DiagnosedFault):
            fault = DiagnosedFault.model_validate(fault)

        log.info("Planning repair for %s, fault=%s", fault.machine_id, fault.fault_type)
        state = await self.app.ainvoke({"fault": fault})
        wo = state["work_order"]
        log.info("Created WorkOrder %s for fault %s", wo.work_order_number, fault.id)
        return wo

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------
    async def _gather_context(self, state: PlanningState) -> dict:
        fault = state["fault"]
        skills = self.fault_mapping.required_skills(fault.fault_type)
        parts = self.fault_mapping.required_parts(fault.fault_type)

        technicians = await self.store.query_technicians_by_skills(skills)
        if not technicians:
            log.info("No technician matches %s; falling back to all technicians", skills)
            technicians = await self.store.list_technicians()
        inventory = await self.store.list_parts()
        return {
            "required_skills": skills,
            "required_parts": parts,
            "technicians": technicians,
            "inventory": inventory,
        }

    async def _build_prompt(self, state: PlanningState) -> dict:
        prompt = build_prompt(state["fault"], state["required_skills"], state["required_parts"],
                              state["technicians"], state["inventory"])
        return {"prompt": prompt}

    async def _invoke_agent(self, state: PlanningState) -> dict:
        fault = state["fault"]
        log.info("Invoking agent '%s'", getattr(self.agent, "name", type(self.agent).__name__))
        text = await self.agent.invoke(state["prompt"]) or ""
        if not text.strip():
            log.error("Agent returned empty response for fault %s", fault.id)
            raise EmptyAgentResponseError(fault.id)
        return {"raw_response": text}

    async def _extract_json(self, state: PlanningState) -> dict:
        raw = state["raw_response"]
        cleaned = extract_json_from_agent(raw)
        log.debug("Raw agent response: %s", raw)
        log.debug("Cleaned agent response: %s", cleaned)
        return {"cleaned_response": cleaned}

    async def _deserialize(self, state: PlanningState) -> dict:
        try:
            wo = parse_work_order(state["raw_response"], state["cleaned_response"])
        except WorkOrderParseError as e:
            log.error("Failed to parse agent response. Raw response: %s. Cleaned response: %s",
                      e.raw_text, e.cleaned_text)
            raise
        return {"work_order": wo}

    async def _normalize(self, state: PlanningState) -> dict:
        return {"work_order": normalize_work_order(state["work_order"], state["fault"])}

    async def _assign_technician(self, state: PlanningState) -> dict:
        wo = state["work_order"]
        if (wo.assigned_to or "").strip():
            return {"work_order": wo}
        best = select_technician(state["technicians"], state["required_skills"])
        if best is None:
            log.warning("No available technician for work order %s", wo.work_order_number)
        else:
            wo.assigned_to = best.id
        return {"work_order": wo}

    async def _resolve_parts(self, state: PlanningState) -> dict:
        return {"work_order": resolve_part_ids(state["work_order"], state["inventory"])}

    async def _persist(self, state: PlanningState) -> dict:
        return {"work_order": await self.store.upsert_work_order(state["work_order"])}


# -------- global accessor (so tools reuse the same instance) --------
_LOCK = threading.RLock()
_PLANNER: RepairPlanner | None = None


def get_repair_planner() -> RepairPlanner:
    global _PLANNER
    if _PLANNER is None:
        with _LOCK:
            if _PLANNER is None:
                from repair_planner.tools.llm_planner import ClaudePlannerAgent
                from repair_planner.tools.store_connect import get_store
                _PLANNER = RepairPlanner(store=get_store(), agent=ClaudePlannerAgent())
    return _PLANNER


if __name__ == '__main__':
    import asyncio
    import sys

    from repair_planner.utils.logger import init_logging

    async def _main(path: str) -> None:
        with open(path, "r", encoding="utf-8") as f:
            fault = DiagnosedFault.model_validate(json.load(f))
        planner = get_repair_planner()
        await planner.store.ensure_containers()
        try:
            wo = await planner.plan_and_create_work_order(fault)
            print(json.dumps(wo.to_document(), indent=2))
        finally:
            await planner.store.close()

    init_logging()
    asyncio.run(_main(sys.argv[1]))
