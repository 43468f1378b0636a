import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from parallel.cache import OnceCache, ReentrantComputation
from topologicalsort import Node, TopologicalSorter, CircularDependency

logger = logging.getLogger(__name__)


def run_layered(graph: list[Node], compute: Callable[[Node], None], workers: int = 1):
    """Calls ``compute`` for every node, dependencies first.

    With more than one worker each dependency layer is fanned out on a thread
    pool and finished before the next layer starts, so a worker never waits on
    a value another worker is still computing. Nodes caught in a dependency
    cycle run last, one after the other.
    """
    result = TopologicalSorter().sort(graph)
    layers = result.sorted_list
    logger.debug("Scheduling %d nodes in %d layers with %d workers",
                 len(graph), len(layers), workers)

    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for layer in layers:
                futures = [pool.submit(compute, node) for node in layer]
                for future in as_completed(futures):
                    future.result()
    else:
        for layer in layers:
            for node in layer:
                compute(node)

    if isinstance(result, CircularDependency):
        logger.debug("%d nodes are part of a dependency cycle", len(result.remaining_graph))
        for node in result.remaining_graph:
            compute(node)
