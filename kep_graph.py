from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

Payload = Hashable
Predicate = Callable[[Payload, Payload], bool]


@dataclass(frozen=True)
class DirectedEdge:
    """Arc to a target node. The weight is carried but never read by matching."""

    target: "Node"
    weight: int = 1

    def __str__(self) -> str:
        return f" --{self.weight}--> {self.target.unwrap()}"


@dataclass(eq=False)
class Node:
    """
    Wrapper around one exchange pair.

    Neighbors are stored as payloads rather than nodes; the owning
    `ExchangeGraph` resolves them on demand, so removing a node never leaves
    another node holding a dangling object.
    """

    payload: Payload
    _neighbors: List[Payload] = field(default_factory=list, repr=False)

    def add_neighbor(self, payload: Payload) -> None:
        self._neighbors.append(payload)

    def get_neighbors(self) -> Tuple[Payload, ...]:
        return tuple(self._neighbors)

    def unwrap(self) -> Payload:
        return self.payload

    get_pair = unwrap

    def get_edges(self, graph: "ExchangeGraph") -> List[DirectedEdge]:
        """Materialize arcs to neighbors still present in `graph`."""
        edges: List[DirectedEdge] = []
        for neighbor in self._neighbors:
            target = graph.get_node(neighbor)
            if target is not None:
                edges.append(DirectedEdge(target))
        return edges

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, Node):
            return NotImplemented
        return self.payload == other.payload

    def __hash__(self) -> int:
        return hash(self.payload)


class ExchangeGraph:
    """Directed compatibility graph keyed by payload, in insertion order."""

    def __init__(self) -> None:
        self._nodes: Dict[Payload, Node] = {}

    def create_node(self, payload: Payload) -> Node:
        if payload in self._nodes:
            raise ValueError(f"Node for {payload!r} already present")
        node = Node(payload)
        self._nodes[payload] = node
        return node

    def get_node(self, payload: Payload) -> Optional[Node]:
        return self._nodes.get(payload)

    def has_node(self, node: Node) -> bool:
        return node.payload in self._nodes

    def remove_node(self, node: Node) -> None:
        # adjacency lists elsewhere keep the payload; lookups then return None
        self._nodes.pop(node.payload, None)

    def get_nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def get_size(self) -> int:
        return len(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.get_nodes())

    def __contains__(self, node: object) -> bool:
        return isinstance(node, Node) and self.has_node(node)


def _default_predicate(pair: Payload, other: Payload) -> bool:
    return bool(pair.can_receive(other))


def build_graph(
    payloads: Iterable[Payload],
    can_receive: Optional[Predicate] = None,
) -> ExchangeGraph:
    """
    Build the directed compatibility graph over `payloads`.

    Parameters
    ----------
    payloads : Iterable
        Exchange pairs. Each must be hashable and appear only once.
    can_receive : callable, optional
        `can_receive(p, q)` is True when q is an acceptable counterpart for p.
        Defaults to `p.can_receive(q)`.

    Returns
    -------
    ExchangeGraph
        One node per payload; q is a neighbor of p whenever the predicate holds
        for p != q. Neighbor order follows the input order.
    """
    predicate = can_receive or _default_predicate
    pairs = list(payloads)
    graph = ExchangeGraph()
    for pair in pairs:
        graph.create_node(pair)

    edge_count = 0
    for pair in pairs:
        node = graph.get_node(pair)
        for other in pairs:
            # pairs can be compatible with themselves; a self arc is never an exchange
            if other == pair:
                continue
            if predicate(pair, other):
                node.add_neighbor(other)
                edge_count += 1

    logger.debug("graph_built", nodes=graph.get_size(), edges=edge_count)
    return graph
