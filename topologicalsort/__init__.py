from dataclasses import dataclass
from typing import Hashable, Optional


@dataclass
class Node:
    keys: list[Hashable]
    dependencies: list[Hashable]
    data: Optional


@dataclass(frozen=True)
class SorterResult:
    sorted_list: list[list[Node]]


@dataclass(frozen=True)
class CircularDependency(SorterResult):
    remaining_graph: list[Node]


@dataclass(frozen=True)
class Sorted(SorterResult):
    pass


class TopologicalSorter:
    """Orders a graph into layers; nodes of a layer depend only on earlier layers.

    Dependencies that no node of the graph provides, and those listed in
    ``ignore_names``, are treated as already satisfied.
    """

    def __init__(self, ignore_names: Optional[set[Hashable]] = None):
        self.ignore_names: set[Hashable] = set(ignore_names or ())

    def sort(self, graph: list[Node]) -> SorterResult:
        sorted_list: list[list[Node]] = []
        remaining_graph = graph
        provided = {key for node in graph for key in node.keys}
        eliminated_dependencies = self.ignore_names | {dependency
                                                       for node in graph
                                                       for dependency in node.dependencies
                                                       if dependency not in provided}

        while len(remaining_graph) > 0:
            independent = [node for node in remaining_graph
                           if self._get_filtered_dependency_count(node, eliminated_dependencies) == 0]
            if len(independent) == 0:
                return CircularDependency(sorted_list, remaining_graph)
            sorted_list.append(independent)
            remaining_graph = [node
                               for node in remaining_graph
                               if self._get_filtered_dependency_count(node, eliminated_dependencies) > 0]
            eliminated_dependencies.update(key for node in independent for key in node.keys)

        sorted_count = sum(len(sub_list) for sub_list in sorted_list)
        if len(graph) != sorted_count:
            raise RuntimeError(f"Lost {len(graph) - sorted_count} nodes while sorting")

        return Sorted(sorted_list)

    def _get_filtered_dependency_count(self, node: Node, names_to_be_ignored: set[Hashable]) -> int:
        # a node depending on itself is not blocked by itself
        return len([dependency for dependency in node.dependencies
                    if dependency not in names_to_be_ignored and dependency not in node.keys])
