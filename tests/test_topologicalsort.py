import pytest

from topologicalsort import Node, TopologicalSorter, Sorted, CircularDependency


def node(key, *dependencies):
    return Node(keys=[key], dependencies=list(dependencies), data=key)


def keys(layers):
    return [sorted(n.data for n in layer) for layer in layers]


class TestTopologicalSorter:

    def test_layers(self):
        graph = [node("c", "b"), node("b", "a"), node("a"), node("d", "a")]

        result = TopologicalSorter().sort(graph)

        assert isinstance(result, Sorted)
        assert keys(result.sorted_list) == [["a"], ["b", "d"], ["c"]]

    def test_unknown_dependencies_are_satisfied(self):
        result = TopologicalSorter().sort([node("a", "int", "size_t")])

        assert keys(result.sorted_list) == [["a"]]

    def test_ignore_names(self):
        graph = [node("a", "b"), node("b", "a")]

        result = TopologicalSorter(ignore_names={"a"}).sort(graph)

        assert isinstance(result, Sorted)
        assert keys(result.sorted_list) == [["b"], ["a"]]

    def test_self_dependency_is_not_a_cycle(self):
        result = TopologicalSorter().sort([node("list", "list")])

        assert isinstance(result, Sorted)

    def test_cycle(self):
        graph = [node("a"), node("b", "c"), node("c", "b"), node("d", "b")]

        result = TopologicalSorter().sort(graph)

        assert isinstance(result, CircularDependency)
        assert keys(result.sorted_list) == [["a"]]
        assert sorted(n.data for n in result.remaining_graph) == ["b", "c", "d"]

    def test_node_with_several_keys(self):
        graph = [Node(keys=["x", "y"], dependencies=[], data="xy"), node("z", "y")]

        assert keys(TopologicalSorter().sort(graph).sorted_list) == [["xy"], ["z"]]

    @pytest.mark.parametrize("graph", [[], [node("a")]])
    def test_trivial_graphs(self, graph):
        result = TopologicalSorter().sort(graph)

        assert isinstance(result, Sorted)
        assert sum(len(layer) for layer in result.sorted_list) == len(graph)
