"""Tests for trackdown.graph.cycles module."""

from trackdown.graph.cycles import build_adjacency, find_all_cycles, find_cycle


class TestFindCycle:
    """Test find_cycle."""

    def test_acyclic(self):
        graph = build_adjacency([("A", "B"), ("B", "C"), ("A", "C")])
        assert find_cycle(graph) is None

    def test_reports_path_from_repeated_node(self):
        graph = build_adjacency([("A", "B"), ("B", "C"), ("C", "A")])
        assert find_cycle(graph) == ["A", "B", "C"]

    def test_tail_before_cycle_not_included(self):
        graph = build_adjacency([("X", "A"), ("A", "B"), ("B", "A")])
        assert find_cycle(graph) == ["A", "B"]

    def test_self_loop(self):
        assert find_cycle({"A": ["A"]}) == ["A"]

    def test_diamond_is_not_a_cycle(self):
        """Revisiting a finished node is not a back edge."""
        graph = build_adjacency([("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")])
        assert find_cycle(graph) is None


class TestFindAllCycles:
    """Test find_all_cycles."""

    def test_two_disjoint_cycles(self):
        graph = build_adjacency([("A", "B"), ("B", "A"), ("C", "D"), ("D", "C")])
        assert find_all_cycles(graph) == [["A", "B"], ["C", "D"]]

    def test_rotation_reported_once(self):
        graph = build_adjacency([("A", "B"), ("B", "C"), ("C", "A")])
        assert len(find_all_cycles(graph)) == 1


class TestBuildAdjacency:
    """Test build_adjacency."""

    def test_dedupes_and_keeps_order(self):
        graph = build_adjacency([("A", "B"), ("A", "B"), ("A", "C")])
        assert graph == {"A": ["B", "C"], "B": [], "C": []}
