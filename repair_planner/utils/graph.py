# repair_planner/utils/graph.py

from typing import Awaitable, Callable, List, Mapping, TypedDict

from langgraph.graph import END, START, StateGraph

from repair_planner.utils.contracts import DiagnosedFault, Part, Technician, WorkOrder

# linear: each step runs once, in this order
PIPELINE_STEPS = (
    "gather_context",
    "build_prompt",
    "invoke_agent",
    "extract_json",
    "deserialize",
    "normalize",
    "assign_technician",
    "resolve_parts",
    "persist",
)


class PlanningState(TypedDict, total=False):
    fault: DiagnosedFault
    required_skills: List[str]
    required_parts: List[str]
    technicians: List[Technician]
    inventory: List[Part]
    prompt: str
    raw_response: str
    cleaned_response: str
    work_order: WorkOrder


PlanningNode = Callable[[PlanningState], Awaitable[dict]]


def make_planning_app(nodes: Mapping[str, PlanningNode]):
    missing = [step for step in PIPELINE_STEPS if step not in nodes]
    if missing:
        raise ValueError(f"missing pipeline nodes: {missing}")

    graph = StateGraph(PlanningState)
    for step in PIPELINE_STEPS:
        graph.add_node(step, nodes[step])
    graph.add_edge(START, PIPELINE_STEPS[0])
    for current, following in zip(PIPELINE_STEPS, PIPELINE_STEPS[1:]):
        graph.add_edge(current, following)
    graph.add_edge(PIPELINE_STEPS[-1], END)
    return graph.compile()
