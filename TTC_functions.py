from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

import pulp
import structlog

from kep_graph import ExchangeGraph, Node, Payload, Predicate, build_graph
from kep_settings import get_settings

logger = structlog.get_logger(__name__)

Matches = Dict[Payload, Payload]


def find_cycle(graph: ExchangeGraph, root: Node) -> List[Node]:
    """
    Return the first simple cycle found by depth-first search from `root`.

    Three-colour DFS: nodes on the current path are *visiting*, fully explored
    nodes are *finished*. `travel` records the DFS-tree parent of every node
    entered. An arc into a visiting node closes a cycle; that node becomes the
    cycle root and `travel[cycle_root]` is overwritten with the node that
    closed it, so walking `travel` backwards from it returns to the root.

    Neighbors that no longer resolve in `graph` (matched earlier in the run)
    are skipped. Uses an explicit stack instead of recursion.

    Returns
    -------
    list[Node]
        `[n0, ..., nk-1]` where n0 -> n1 -> ... -> nk-1 -> n0 are arcs, or an
        empty list if no cycle is reachable.
    """
    visiting: Set[Node] = set()
    finished: Set[Node] = set()
    travel: Dict[Node, Optional[Node]] = {}

    visiting.add(root)
    travel[root] = None
    stack = [(root, iter(root.get_neighbors()))]
    cycle_root: Optional[Node] = None

    while stack and cycle_root is None:
        current, neighbors = stack[-1]
        for neighbor_pair in neighbors:
            neighbor = graph.get_node(neighbor_pair)
            if neighbor is None:
                continue
            if neighbor in visiting:
                travel[neighbor] = current
                cycle_root = neighbor
                break
            if neighbor in finished:
                continue
            visiting.add(neighbor)
            travel[neighbor] = current
            stack.append((neighbor, iter(neighbor.get_neighbors())))
            break
        else:
            stack.pop()
            visiting.discard(current)
            finished.add(current)

    cycle: List[Node] = []
    if cycle_root is None:
        return cycle
    prev = travel[cycle_root]
    while prev != cycle_root:
        cycle.append(prev)
        prev = travel[prev]
    cycle.append(cycle_root)
    cycle.reverse()
    return cycle


def _cycle_matches(cycle: Sequence[Node]) -> Matches:
    size = len(cycle)
    return {cycle[i].unwrap(): cycle[(i + 1) % size].unwrap() for i in range(size)}


def greedy_matches(
    payloads: Sequence[Payload],
    capacity: int,
    graph: ExchangeGraph,
) -> Optional[Matches]:
    """
    Greedy, capacity-bounded Top Trading Cycle matching.

    Every node present when the run starts is tried once, in graph order. A
    cycle found from it is committed if it fits in the remaining surgery slots;
    its nodes are then removed from `graph`. Nodes whose cycle does not fit stay
    in the graph and may still be picked up by a later node's cycle.

    Parameters
    ----------
    payloads : Sequence
        The pairs the graph was built from. Only used to tell an empty input
        apart from one that produced no matches.
    capacity : int
        Total number of pairs that may be matched. Zero or negative rejects
        every cycle.
    graph : ExchangeGraph
        Live compatibility graph; mutated in place.

    Returns
    -------
    dict or None
        `match[p] = q` meaning p's patient receives q's donor kidney, or None
        when `payloads` is empty.
    """
    if len(payloads) == 0:
        return None

    matches: Matches = {}
    remaining_slots = capacity
    committed = 0
    # removals below must not disturb the order in which start nodes are tried
    snapshot = graph.get_nodes()

    for node in snapshot:
        if not graph.has_node(node):
            continue
        cycle = find_cycle(graph, node)
        cycle_size = len(cycle)
        if cycle_size == 0:
            continue
        if cycle_size > remaining_slots:
            logger.debug(
                "cycle_rejected",
                start=str(node.unwrap()),
                length=cycle_size,
                remaining_slots=remaining_slots,
            )
            continue

        remaining_slots -= cycle_size
        matches.update(_cycle_matches(cycle))
        for member in cycle:
            graph.remove_node(member)
        committed += 1
        logger.debug(
            "cycle_committed",
            start=str(node.unwrap()),
            length=cycle_size,
            remaining_slots=remaining_slots,
        )

    logger.info(
        "greedy_match_complete",
        matched=len(matches),
        cycles=committed,
        remaining_slots=remaining_slots,
    )
    return matches


def match_hospital(hospital, graph: Optional[ExchangeGraph] = None) -> Optional[Matches]:
    """Run the greedy matcher over a hospital's pairs bounded by its surgery slots."""
    pairs = hospital.get_pairs()
    if graph is None:
        graph = build_graph(pairs)
    return greedy_matches(pairs, hospital.get_max_surgeries(), graph)


def enumerate_cycles(
    graph: ExchangeGraph,
    max_cycle_length: int,
) -> List[Tuple[Node, ...]]:
    """
    Enumerate all directed simple cycles of length 2..max_cycle_length.

    Each cycle is listed once, starting at its member that comes first in
    graph order. Only live nodes are considered.
    """
    if max_cycle_length < 2:
        raise ValueError("max_cycle_length must be at least 2")

    nodes = graph.get_nodes()
    position = {node: idx for idx, node in enumerate(nodes)}
    successors: Dict[Node, List[Node]] = {}
    for node in nodes:
        targets: List[Node] = []
        for edge in node.get_edges(graph):
            if edge.target not in targets:
                targets.append(edge.target)
        successors[node] = targets

    cycles: List[Tuple[Node, ...]] = []

    def extend(start: Node, path: List[Node], on_path: Set[Node]) -> None:
        for nxt in successors[path[-1]]:
            if nxt == start:
                if len(path) >= 2:
                    cycles.append(tuple(path))
                continue
            if nxt in on_path or position[nxt] < position[start]:
                continue
            if len(path) < max_cycle_length:
                path.append(nxt)
                on_path.add(nxt)
                extend(start, path, on_path)
                on_path.discard(nxt)
                path.pop()

    for start in nodes:
        extend(start, [start], {start})
    return cycles


def make_pulp_solver(
    solver: Optional[str] = None,
    time_limit: Optional[int] = None,
    msg: bool = False,
) -> pulp.LpSolver:
    """
    Solver for the benchmark IP.

    The cycle-cover model is a pure binary program, so any MILP backend works.
    Only Gurobi is recognised by name; every other value, and a Gurobi that
    cannot be loaded, gives the CBC binary bundled with PuLP. `time_limit`
    caps wall-clock seconds; a capped solve may end NotSolved with an
    incumbent, which `optimal_matches` accepts.
    """
    if (solver or "CBC").upper() == "GUROBI":
        try:
            return pulp.GUROBI(msg=msg, timeLimit=time_limit)
        except pulp.PulpSolverError:
            logger.warning("gurobi_unavailable", fallback="CBC")
    elif solver and solver.upper() != "CBC":
        logger.warning("unknown_solver", solver=solver, fallback="CBC")
    return pulp.PULP_CBC_CMD(msg=msg, timeLimit=time_limit)


def optimal_matches(
    graph: ExchangeGraph,
    capacity: int,
    max_cycle_length: Optional[int] = None,
    solver: Optional[str] = None,
    time_limit: Optional[int] = None,
) -> Matches:
    """
    Maximum-cardinality benchmark for the greedy matcher.

    Solves the cycle-formulation IP: choose vertex-disjoint cycles of length
    at most `max_cycle_length` whose total length fits in `capacity`,
    maximising the number of matched pairs. `graph` is not modified.
    """
    settings = get_settings()
    max_cycle_length = max_cycle_length if max_cycle_length is not None else settings.max_cycle_length
    solver = solver or settings.solver
    time_limit = time_limit if time_limit is not None else settings.time_limit

    cycles = enumerate_cycles(graph, max_cycle_length)
    if not cycles or capacity <= 0:
        return {}

    problem = pulp.LpProblem("CapacitatedCycleCover", pulp.LpMaximize)
    y_vars = {
        cid: pulp.LpVariable(f"y_{cid}", lowBound=0, upBound=1, cat="Binary")
        for cid in range(len(cycles))
    }
    problem += pulp.lpSum(y_vars[cid] * len(cycle) for cid, cycle in enumerate(cycles))

    by_node: Dict[Node, List[int]] = {}
    for cid, cycle in enumerate(cycles):
        for node in cycle:
            by_node.setdefault(node, []).append(cid)
    for idx, node in enumerate(graph.get_nodes()):
        relevant = [y_vars[cid] for cid in by_node.get(node, [])]
        if len(relevant) > 1:
            problem += pulp.lpSum(relevant) <= 1, f"disjoint_{idx}"
    problem += (
        pulp.lpSum(y_vars[cid] * len(cycle) for cid, cycle in enumerate(cycles)) <= int(capacity),
        "capacity",
    )

    problem.solve(make_pulp_solver(solver, time_limit=time_limit))
    if problem.status not in (pulp.LpStatusOptimal, pulp.LpStatusNotSolved):
        raise RuntimeError(f"Benchmark solve failed: {pulp.LpStatus[problem.status]}")

    matches: Matches = {}
    for cid, var in y_vars.items():
        if var.value() is not None and var.value() > 0.5:
            matches.update(_cycle_matches(cycles[cid]))
    logger.info("optimal_match_complete", matched=len(matches), cycles_considered=len(cycles))
    return matches


def compare_with_optimal(
    payloads: Sequence[Payload],
    capacity: int,
    can_receive: Optional[Predicate] = None,
    max_cycle_length: Optional[int] = None,
    solver: Optional[str] = None,
) -> Dict[str, object]:
    """Run the greedy matcher and the IP benchmark on separate graphs and report the gap."""
    greedy = greedy_matches(payloads, capacity, build_graph(payloads, can_receive)) or {}
    optimal = optimal_matches(
        build_graph(payloads, can_receive),
        capacity,
        max_cycle_length=max_cycle_length,
        solver=solver,
    )
    return {
        "greedy": greedy,
        "optimal": optimal,
        "greedy_matched": len(greedy),
        "optimal_matched": len(optimal),
        "gap": len(optimal) - len(greedy),
    }


def visualize_matching(
    graph: ExchangeGraph,
    matches: Optional[Mapping[Payload, Payload]] = None,
    layout: str = "spring",
    seed: Optional[int] = None,
    ax=None,
    node_size: int = 500,
) -> Tuple["matplotlib.figure.Figure", "matplotlib.axes.Axes"]:
    """
    Draw the compatibility graph with matched pairs highlighted.

    Parameters
    ----------
    graph : ExchangeGraph
        Graph to draw. Draw it before running the greedy matcher, which
        removes matched nodes.
    matches : Mapping, optional
        Result of a matching run; matched nodes are coloured and the arcs they
        receive along are drawn bold.
    layout : {'spring', 'kamada_kawai', 'circular'}
        Network layout algorithm.
    seed : int, optional
        Random seed passed to the layout routine when supported.
    ax : matplotlib.axes.Axes, optional
        Existing axes to draw on. A new figure/axes pair is created if omitted.
    node_size : int
        Node marker size passed to the NetworkX drawing util.

    Notes
    -----
    `networkx` and `matplotlib.pyplot` are imported lazily.
    """
    import matplotlib.pyplot as plt
    import networkx as nx

    matches = matches or {}
    G = nx.DiGraph()
    nodes = graph.get_nodes()
    G.add_nodes_from(str(node.unwrap()) for node in nodes)
    matched_arcs = []
    for node in nodes:
        for edge in node.get_edges(graph):
            u, v = str(node.unwrap()), str(edge.target.unwrap())
            G.add_edge(u, v, weight=edge.weight)
            if matches.get(node.unwrap()) == edge.target.unwrap():
                matched_arcs.append((u, v))

    if layout == "spring":
        pos = nx.spring_layout(G, seed=seed)
    elif layout == "kamada_kawai":
        pos = nx.kamada_kawai_layout(G)
    elif layout == "circular":
        pos = nx.circular_layout(G)
    else:
        raise ValueError("Unsupported layout")

    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 6))
    else:
        fig = ax.figure

    node_colors = [
        "tab:green" if node.unwrap() in matches else "lightgrey" for node in nodes
    ]
    matched_count = sum(1 for node in nodes if node.unwrap() in matches)
    nx.draw_networkx_nodes(
        G,
        pos,
        node_color=node_colors,
        node_size=node_size,
        ax=ax,
        edgecolors="black",
    )
    nx.draw_networkx_labels(G, pos, ax=ax, font_size=8)
    nx.draw_networkx_edges(G, pos, ax=ax, arrows=True, arrowstyle="->", arrowsize=12, alpha=0.4)
    if matched_arcs:
        nx.draw_networkx_edges(
            G, pos, edgelist=matched_arcs, ax=ax, arrows=True, arrowstyle="->", arrowsize=14, width=2.5
        )

    ax.set_axis_off()
    ax.set_title(f"Compatibility graph: {matched_count} of {len(nodes)} pairs matched")
    return fig, ax
