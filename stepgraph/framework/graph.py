# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Strategy graphs - immutable descriptions of an agent's behavior.

A strategy is a directed graph of nodes connected by optionally conditional
edges, with a designated start and finish node. Strategies are built with
``StrategyGraph`` and frozen by ``compile()``.

Design Principles:
    - Nodes are identified by object, named by string. Names are usually
      unique; ``Strategy.unique_names`` records whether they are, because
      features that address nodes by name (checkpointing) require it.
    - Edges leaving a node keep their declaration order, which is the order
      the engine evaluates them in.
    - Conditions see both the input and the output of the node they leave.

Example:
    from stepgraph.framework.graph import StrategyGraph

    graph = StrategyGraph("review")
    draft = graph.add_node("draft", write_draft, input_type=str, output_type=str)
    check = graph.add_node("check", check_draft, input_type=str, output_type=bool)
    done = graph.add_node("done", publish, input_type=str, output_type=str)

    graph.add_edge(draft, check)
    graph.add_edge(check, draft, condition=lambda inp, ok: not ok, transform=lambda _: "retry")
    graph.add_edge(check, done, condition=lambda inp, ok: ok, transform=lambda _: "approved")
    graph.set_entry_point(draft).set_finish_point(done)

    strategy = graph.compile()
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union
from collections.abc import Awaitable, Callable

from stepgraph.core.errors import GraphValidationError

if TYPE_CHECKING:
    from stepgraph.framework.context import RunContext

logger = logging.getLogger(__name__)

NodeFunc = Callable[["RunContext", Any], Union[Any, Awaitable[Any]]]
EdgeCondition = Callable[[Any, Any], Union[bool, Awaitable[bool]]]
EdgeTransform = Callable[[Any], Any]


@dataclass(eq=False)
class Node:
    """A unit of execution with a single input/output contract.

    Attributes:
        name: Node name (the id used by events and checkpoints)
        func: Transform ``(context, input) -> output``, sync or async
        input_type: Declared input type
        output_type: Declared output type
        metadata: Additional node metadata
    """

    name: str
    func: NodeFunc
    input_type: type = object
    output_type: type = object
    metadata: dict[str, Any] = field(default_factory=dict)

    async def execute(self, context: "RunContext", value: Any) -> Any:
        """Run the node transform, awaiting it if it suspends.

        Args:
            context: Run context of the current run
            value: Node input

        Returns:
            Node output
        """
        result = self.func(context, value)
        if inspect.isawaitable(result):
            return await result
        return result

    def __repr__(self) -> str:
        return f"Node({self.name!r})"


@dataclass(eq=False)
class Edge:
    """Directed, optionally conditional transition between two nodes.

    Attributes:
        source: Node the edge leaves
        target: Node the edge enters
        condition: Predicate over ``(input, output)`` of the source node;
            ``None`` matches unconditionally
        transform: Maps the source output to the target input; identity if ``None``
    """

    source: Node
    target: Node
    condition: Optional[EdgeCondition] = None
    transform: Optional[EdgeTransform] = None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    async def matches(self, node_input: Any, node_output: Any) -> bool:
        """Check whether this edge accepts the source node's input/output pair."""
        if self.condition is None:
            return True
        result = self.condition(node_input, node_output)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def forward(self, node_output: Any) -> Any:
        """Value handed to the target node when this edge is taken."""
        if self.transform is None:
            return node_output
        return self.transform(node_output)

    def __repr__(self) -> str:
        kind = "conditional" if self.is_conditional else "normal"
        return f"Edge({self.source.name!r} -> {self.target.name!r}, {kind})"


class Strategy:
    """Immutable, validated strategy graph ready for execution.

    Created by ``StrategyGraph.compile()``.
    """

    def __init__(
        self,
        name: str,
        nodes: list[Node],
        edges: list[Edge],
        start: Node,
        finish: Node,
    ):
        self._name = name
        self._nodes = tuple(nodes)
        self._edges = tuple(edges)
        self._start = start
        self._finish = finish

        outgoing: dict[Node, list[Edge]] = {node: [] for node in self._nodes}
        for edge in self._edges:
            outgoing[edge.source].append(edge)
        self._outgoing = {node: tuple(out) for node, out in outgoing.items()}

        names = [node.name for node in self._nodes]
        self._unique_names = len(names) == len(set(names))
        self._by_name: dict[str, Node] = {}
        for node in self._nodes:
            self._by_name.setdefault(node.name, node)

    @property
    def name(self) -> str:
        return self._name

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[Edge, ...]:
        return self._edges

    @property
    def start(self) -> Node:
        return self._start

    @property
    def finish(self) -> Node:
        return self._finish

    @property
    def unique_names(self) -> bool:
        """True if all node names are pairwise distinct."""
        return self._unique_names

    def outgoing(self, node: Node) -> tuple[Edge, ...]:
        """Edges leaving ``node`` in declaration order."""
        return self._outgoing.get(node, ())

    def find_node(self, name: str) -> Optional[Node]:
        """Find a node by name (first declared one if names repeat)."""
        return self._by_name.get(name)

    def get_graph_schema(self) -> dict[str, Any]:
        """Get graph structure as dictionary.

        Returns:
            Dictionary describing nodes and edges
        """
        return {
            "name": self._name,
            "nodes": [node.name for node in self._nodes],
            "edges": [
                {
                    "source": edge.source.name,
                    "target": edge.target.name,
                    "type": "conditional" if edge.is_conditional else "normal",
                }
                for edge in self._edges
            ],
            "start": self._start.name,
            "finish": self._finish.name,
            "unique_names": self._unique_names,
        }

    def __repr__(self) -> str:
        return f"Strategy({self._name!r}, nodes={len(self._nodes)}, edges={len(self._edges)})"


NodeRef = Union[Node, str]


class StrategyGraph:
    """Builder for strategies.

    ``add_node`` returns the created ``Node`` so that nodes sharing a name can
    still be wired unambiguously; the other builder methods return ``self``
    for chaining. Names passed instead of nodes must be unambiguous.

    Example:
        graph = StrategyGraph("linear")
        graph.add_node("a", step_a)
        graph.add_node("b", step_b)
        graph.add_edge("a", "b")
        graph.set_entry_point("a").set_finish_point("b")
        strategy = graph.compile()
    """

    def __init__(self, name: str):
        """Initialize StrategyGraph.

        Args:
            name: Strategy name (reported in lifecycle events)
        """
        self._name = name
        self._nodes: list[Node] = []
        self._edges: list[Edge] = []
        self._entry_point: Optional[Node] = None
        self._finish_point: Optional[Node] = None

    def add_node(
        self,
        name: str,
        func: NodeFunc,
        *,
        input_type: type = object,
        output_type: type = object,
        **metadata: Any,
    ) -> Node:
        """Add a node to the graph.

        Args:
            name: Node name
            func: Node transform ``(context, input) -> output``
            input_type: Declared input type
            output_type: Declared output type
            **metadata: Additional metadata

        Returns:
            The created node
        """
        node = Node(
            name=name,
            func=func,
            input_type=input_type,
            output_type=output_type,
            metadata=metadata,
        )
        self._nodes.append(node)
        logger.debug(f"Added node: {name}")
        return node

    def add_edge(
        self,
        source: NodeRef,
        target: NodeRef,
        condition: Optional[EdgeCondition] = None,
        transform: Optional[EdgeTransform] = None,
    ) -> "StrategyGraph":
        """Add an edge between nodes.

        Args:
            source: Source node or its name
            target: Target node or its name
            condition: Optional predicate over ``(input, output)`` of the source
            transform: Optional mapping from source output to target input

        Returns:
            Self for chaining
        """
        edge = Edge(
            source=self._resolve(source),
            target=self._resolve(target),
            condition=condition,
            transform=transform,
        )
        self._edges.append(edge)
        logger.debug(f"Added edge: {edge.source.name} -> {edge.target.name}")
        return self

    def set_entry_point(self, node: NodeRef) -> "StrategyGraph":
        """Set the start node.

        Args:
            node: Node to start execution from

        Returns:
            Self for chaining
        """
        self._entry_point = self._resolve(node)
        return self

    def set_finish_point(self, node: NodeRef) -> "StrategyGraph":
        """Set the finish node; its output is the result of the run.

        Args:
            node: Node that finishes the graph

        Returns:
            Self for chaining
        """
        self._finish_point = self._resolve(node)
        return self

    def compile(self) -> Strategy:
        """Validate the graph and freeze it into a ``Strategy``.

        Raises:
            GraphValidationError: If the graph is invalid (all problems listed)
        """
        errors = self._validate()
        if errors:
            raise GraphValidationError(errors)

        assert self._entry_point is not None and self._finish_point is not None
        strategy = Strategy(
            name=self._name,
            nodes=list(self._nodes),
            edges=list(self._edges),
            start=self._entry_point,
            finish=self._finish_point,
        )
        if not strategy.unique_names:
            logger.debug(f"Strategy '{self._name}' has repeated node names")
        return strategy

    def _resolve(self, ref: NodeRef) -> Node:
        if isinstance(ref, Node):
            if not any(node is ref for node in self._nodes):
                raise ValueError(f"Node '{ref.name}' does not belong to this graph")
            return ref

        matches = [node for node in self._nodes if node.name == ref]
        if not matches:
            raise ValueError(f"Node '{ref}' not found")
        if len(matches) > 1:
            raise ValueError(f"Node name '{ref}' is ambiguous; pass the Node object instead")
        return matches[0]

    def _validate(self) -> list[str]:
        """Validate graph structure.

        Returns:
            List of error messages
        """
        errors = []

        if not self._nodes:
            errors.append("Graph has no nodes")

        if self._entry_point is None:
            errors.append("No entry point set")
        if self._finish_point is None:
            errors.append("No finish point set")

        # Every node except the finish node needs a way out
        sources = {edge.source for edge in self._edges}
        for node in self._nodes:
            if node is not self._finish_point and node not in sources:
                errors.append(f"Node '{node.name}' has no outgoing edges")

        # Check all nodes are reachable
        reachable = self._find_reachable()
        for node in self._nodes:
            if node not in reachable and node is not self._entry_point:
                errors.append(f"Node '{node.name}' is unreachable")

        return errors

    def _find_reachable(self) -> set[Node]:
        """Find all reachable nodes from entry point."""
        if self._entry_point is None:
            return set()

        reachable: set[Node] = set()
        to_visit = [self._entry_point]

        while to_visit:
            node = to_visit.pop()
            if node in reachable:
                continue

            reachable.add(node)
            to_visit.extend(edge.target for edge in self._edges if edge.source is node)

        return reachable


__all__ = [
    "Node",
    "Edge",
    "Strategy",
    "StrategyGraph",
]
