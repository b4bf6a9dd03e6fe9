# repair_planner/prompts.py
from __future__ import annotations

from typing import Sequence

from repair_planner.utils.contracts import DiagnosedFault, Part, Technician

AGENT_NAME = "RepairPlannerAgent"

AGENT_INSTRUCTIONS = """\
You are a Repair Planner Agent for tire manufacturing equipment.
Generate a repair plan with tasks, timeline, and resource allocation.
Return the response as valid JSON matching the WorkOrder schema.

Output JSON with these fields:
- workOrderNumber, machineId, title, description
- type: "corrective" | "preventive" | "emergency"
- priority: "critical" | "high" | "medium" | "low"
- status, assignedTo (technician id or null), notes
- estimatedDuration: integer (minutes, e.g. 60 not "60 minutes")
- partsUsed: [{ partId, partNumber, quantity }]
- tasks: [{ sequence, title, description, estimatedDurationMinutes (integer), requiredSkills, safetyNotes }]

IMPORTANT: All duration fields must be integers representing minutes (e.g. 90), not strings.

Rules:
- Assign the most qualified available technician
- Include only relevant parts; empty array if none needed
- Tasks must be ordered and actionable
"""


def _technician_line(t: Technician) -> str:
    return f"- {t.id}: {t.name}; skills=[{','.join(t.skills)}]; available={t.is_available}"


def build_prompt(
    fault: DiagnosedFault,
    skills: Sequence[str],
    parts: Sequence[str],
    technicians: Sequence[Technician],
    inventory: Sequence[Part],
) -> str:
    """The only per-call input the agent sees; its instructions are fixed."""
    tech_summary = "\n".join(_technician_line(t) for t in technicians)
    parts_summary = ", ".join(parts) if parts else "[]"

    return (
        "DiagnosedFault:\n"
        f"Id: {fault.id}\n"
        f"FaultType: {fault.fault_type}\n"
        f"MachineId: {fault.machine_id}\n"
        f"Severity: {fault.severity}\n"
        f"Confidence: {fault.confidence}\n"
        f"Notes: {fault.notes or ''}\n"
        "\n"
        f"RequiredSkills: [{', '.join(skills)}]\n"
        f"RequiredParts: [{parts_summary}]\n"
        "\n"
        "AvailableTechnicians:\n"
        f"{tech_summary}\n"
        "\n"
        f"PartsInventoryCount: {len(inventory)}\n"
        "\n"
        "Produce a JSON WorkOrder matching the schema and rules registered for this agent."
    )
