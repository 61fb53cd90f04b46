"""DAG workflow orchestration and the article analysis workflow."""

from .orchestrator import FunctionNode, WorkflowEdge, WorkflowNode, WorkflowOrchestrator, WorkflowResult

__all__ = [
    "FunctionNode",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowOrchestrator",
    "WorkflowResult",
]
