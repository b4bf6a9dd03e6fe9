# repair_planner/errors.py
from __future__ import annotations


class RepairPlannerError(Exception):
    pass


class DocumentStoreError(RepairPlannerError):
    """Store or network failure raised by the document store gateway."""


class EmptyAgentResponseError(RepairPlannerError):

    def __init__(self, fault_id: str):
        super().__init__(f"Agent returned empty response for fault {fault_id!r}")
        self.fault_id = fault_id


class WorkOrderParseError(RepairPlannerError, ValueError):
    """
    The agent response could not be turned into a WorkOrder.
    Both the raw agent text and the extracted JSON candidate are kept for diagnosis.
    """

    def __init__(self, message: str, raw_text: str, cleaned_text: str):
        super().__init__(message)
        self.raw_text = raw_text
        self.cleaned_text = cleaned_text

    def __str__(self) -> str:
        return f"{self.args[0]} | raw={self.raw_text!r} | cleaned={self.cleaned_text!r}"
