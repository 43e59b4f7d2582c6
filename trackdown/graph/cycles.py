"""
Cycle detection over id -> [id] adjacency maps.
"""

from typing import Iterable


def build_adjacency(edges: Iterable[tuple[str, str]]) -> dict[str, list[str]]:
    """Adjacency map from (source, target) pairs, preserving first-seen order."""
    graph: dict[str, list[str]] = {}
    for source, target in edges:
        graph.setdefault(source, [])
        graph.setdefault(target, [])
        if target not in graph[source]:
            graph[source].append(target)
    return graph


def find_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """Return the first cycle found by depth-first search, or None.

    Nodes are visited in the map's insertion order and neighbours in list
    order, so the result is deterministic. The cycle is the ordered path of
    ids from the first repeated node, without repeating it at the end:
    A -> B -> C -> A is reported as [A, B, C].
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        visited.add(node)
        on_stack.add(node)
        stack.append(node)
        for neighbour in graph.get(node, []):
            if neighbour in on_stack:
                return stack[stack.index(neighbour):]
            if neighbour not in visited:
                found = visit(neighbour)
                if found:
                    return found
        on_stack.discard(node)
        stack.pop()
        return None

    for node in list(graph):
        if node not in visited:
            found = visit(node)
            if found:
                return list(found)
    return None


def find_all_cycles(graph: dict[str, list[str]]) -> list[list[str]]:
    """Every distinct cycle reachable by DFS back-edges.

    Rotations of the same cycle are reported once.
    """
    cycles: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()
    visited: set[str] = set()
    on_stack: set[str] = set()
    stack: list[str] = []

    def canonical(cycle: list[str]) -> tuple[str, ...]:
        pivot = cycle.index(min(cycle))
        return tuple(cycle[pivot:] + cycle[:pivot])

    def visit(node: str) -> None:
        visited.add(node)
        on_stack.add(node)
        stack.append(node)
        for neighbour in graph.get(node, []):
            if neighbour in on_stack:
                cycle = stack[stack.index(neighbour):]
                key = canonical(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(list(cycle))
            elif neighbour not in visited:
                visit(neighbour)
        on_stack.discard(node)
        stack.pop()

    for node in list(graph):
        if node not in visited:
            visit(node)
    return cycles
