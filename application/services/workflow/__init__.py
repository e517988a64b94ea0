from application.services.workflow.engine import StatusWorkflowEngine
from application.services.workflow.transition_graph import (
    DAILY_REPORT_GRAPH,
    GRAPHS,
    PROJECT_GRAPH,
    TransitionEdge,
    TransitionGraph,
    graph_for,
)

__all__ = [
    "DAILY_REPORT_GRAPH",
    "GRAPHS",
    "PROJECT_GRAPH",
    "StatusWorkflowEngine",
    "TransitionEdge",
    "TransitionGraph",
    "graph_for",
]
