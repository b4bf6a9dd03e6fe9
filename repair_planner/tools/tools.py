# repair_planner/tools/tools.py
from langchain_core.tools import tool

from repair_planner.planner import get_repair_planner


@tool("plan_repair")
async def plan_repair_tool(fault: dict) -> dict:
    """Plan the repair of a diagnosed fault and save the resulting work order.
    Input is the fault record (id, faultType, machineId, severity, confidence, notes)."""
    planner = get_repair_planner()
    await planner.store.ensure_containers()
    wo = await planner.plan_and_create_work_order(fault)
    return wo.to_document()


@tool("deduct_part_quantity")
async def deduct_part_quantity_tool(part_number: str, quantity: int) -> bool:
    """Reserve stock for a part. Returns false when stock is short, the part is unknown,
    or the record changed concurrently (retry is up to the caller)."""
    planner = get_repair_planner()
    return await planner.store.try_deduct_part_quantity(part_number, quantity)
