"""
Workflow Orchestrator
=====================

Small DAG executor used to compose analysis steps. Nodes are registered once
at startup, edges declare "to depends on from", and ``execute`` runs the
topological order from an entry node onwards, one node at a time.

Execution is sequential even for independent branches; node outputs feed
later nodes through a shallow dict merge.
"""

import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

from ..utils.logging import get_logger_for_component
from ..utils.exceptions import (
    CircularDependencyError,
    ConfigurationError,
    ErrorCode,
    FeedLensError,
    WorkflowError,
)

NodeCallable = Callable[..., Union[Any, Awaitable[Any]]]


@runtime_checkable
class WorkflowNode(Protocol):
    """Anything with an id, a name and an ``execute(input, context)`` method.

    A node may also define ``on_error(error, input, context)`` returning a
    substitute output; without it a failure aborts the rest of the run.
    """

    id: str
    name: str

    def execute(self, input: Any, context: Any) -> Any: ...


@dataclass
class FunctionNode:
    """Workflow node wrapping plain (sync or async) callables."""
    id: str
    execute: NodeCallable
    name: str = ""
    on_error: Optional[NodeCallable] = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = self.id


@dataclass(frozen=True)
class WorkflowEdge:
    """``to`` depends on ``from_``."""
    from_: str
    to: str


@dataclass
class WorkflowResult:
    success: bool
    output: Any = None
    error: Optional[BaseException] = None
    execution_time_ms: int = 0
    node_results: Dict[str, Any] = field(default_factory=dict)
    workflow_id: str = "default"
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retries: int = 0

    @property
    def metadata(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "executed_at": self.executed_at,
            "retries": self.retries,
        }


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def merge_inputs(inputs: Iterable[Any]) -> Any:
    """Shallow-merge node inputs, later dict keys win.

    ``None`` is skipped and a non-dict value replaces everything merged so far.
    """
    merged: Any = {}
    for item in inputs:
        if item is None:
            continue
        if not isinstance(item, dict):
            merged = item
            continue
        if isinstance(merged, dict):
            merged = {**merged, **item}
        else:
            merged = dict(item)
    return merged


class WorkflowOrchestrator:
    """Registers nodes and edges and runs them in dependency order."""

    def __init__(self, workflow_id: str = "default"):
        self.workflow_id = workflow_id
        self._nodes: Dict[str, WorkflowNode] = {}
        self._edges: List[WorkflowEdge] = []
        self.logger = get_logger_for_component("workflow")

    def register_node(self, node: WorkflowNode) -> None:
        """Add or replace a node by id."""
        self._nodes[node.id] = node

    def register_nodes(self, nodes: Iterable[WorkflowNode]) -> None:
        for node in nodes:
            self.register_node(node)

    def add_edge(self, edge: WorkflowEdge) -> None:
        """Declare a dependency. Repeating an edge has no effect."""
        if edge not in self._edges:
            self._edges.append(edge)

    def add_edges(self, edges: Iterable[WorkflowEdge]) -> None:
        for edge in edges:
            self.add_edge(edge)

    def connect(self, *node_ids: str) -> None:
        """Chain nodes: ``connect("a", "b", "c")`` adds a->b and b->c."""
        for from_id, to_id in zip(node_ids, node_ids[1:]):
            self.add_edge(WorkflowEdge(from_id, to_id))

    def _dependencies(self) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {node_id: [] for node_id in self._nodes}
        for edge in self._edges:
            graph.setdefault(edge.to, []).append(edge.from_)
        return graph

    def topological_sort(self) -> List[str]:
        """Kahn's algorithm over all registered nodes.

        Raises:
            ConfigurationError: An edge names an unregistered node
            CircularDependencyError: The graph has a cycle
        """
        for edge in self._edges:
            for node_id in (edge.from_, edge.to):
                if node_id not in self._nodes:
                    raise ConfigurationError(
                        f"Edge {edge.from_} -> {edge.to} references unknown node {node_id!r}",
                        error_code=ErrorCode.WORKFLOW_UNKNOWN_NODE,
                    )

        in_degree = {node_id: len(deps) for node_id, deps in self._dependencies().items()}
        downstream: Dict[str, List[str]] = {node_id: [] for node_id in self._nodes}
        for edge in self._edges:
            downstream[edge.from_].append(edge.to)

        ready = [node_id for node_id, degree in in_degree.items() if degree == 0]
        order: List[str] = []
        while ready:
            node_id = ready.pop(0)
            order.append(node_id)
            for child in downstream[node_id]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)

        if len(order) != len(self._nodes):
            blocked = sorted(set(self._nodes) - set(order))
            raise CircularDependencyError(
                "Workflow contains circular dependency",
                context={"nodes": blocked},
            )
        return order

    def validate(self) -> List[str]:
        """Check the graph at setup time; returns the execution order."""
        return self.topological_sort()

    async def execute(self, entry_node_id: str, initial_input: Any, context: Any = None) -> WorkflowResult:
        """Run from ``entry_node_id`` to the end of the topological order.

        Failures are reported in the result, never raised.
        """
        start = time.perf_counter()
        node_results: Dict[str, Any] = {}
        result = WorkflowResult(success=False, workflow_id=self.workflow_id, node_results=node_results)

        try:
            order = self.topological_sort()
            if entry_node_id not in self._nodes:
                raise ConfigurationError(
                    f"Unknown entry node: {entry_node_id}",
                    error_code=ErrorCode.WORKFLOW_UNKNOWN_NODE,
                )

            to_run = order[order.index(entry_node_id):]
            dependencies = self._dependencies()

            for node_id in to_run:
                node_input = merge_inputs(
                    [initial_input] + [node_results.get(dep) for dep in dependencies[node_id]]
                )
                node_results[node_id] = await self._execute_node(
                    self._nodes[node_id], node_input, context
                )

            result.success = True
            result.output = node_results[to_run[-1]]

        except Exception as e:
            result.error = e
            self.logger.warning(f"Workflow {self.workflow_id} failed: {e}")

        result.execution_time_ms = int((time.perf_counter() - start) * 1000)
        return result

    async def _execute_node(self, node: WorkflowNode, node_input: Any, context: Any) -> Any:
        try:
            return await _maybe_await(node.execute(node_input, context))
        except Exception as e:
            on_error = getattr(node, "on_error", None)
            if on_error is None:
                if isinstance(e, FeedLensError):
                    raise
                raise WorkflowError(f"Node {node.id} failed: {e}", node_id=node.id) from e

            self.logger.info(f"Node {node.id} failed, using its recovery output: {e}")
            return await _maybe_await(on_error(e, node_input, context))

    def clear(self) -> None:
        self._nodes.clear()
        self._edges.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "node_count": len(self._nodes),
            "edge_count": len(self._edges),
            "node_ids": list(self._nodes),
        }
