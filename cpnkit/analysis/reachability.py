import logging
from collections import deque
from typing import Any, Callable, Optional, Set

import networkx as nx

from cpnkit.cpn.cpn_imp import CPN, Marking
from cpnkit.cpn.exceptions import FiringError

logger = logging.getLogger(__name__)


def equiv_marking_to_key(marking: Marking) -> Any:
    """
    Canonical representative of the equivalence class of a marking.

    Two markings are equivalent when they hold the same tokens in the same
    order in every place. Supply another function to build_reachability_graph
    to merge more states.
    """
    return marking.key()


def build_reachability_graph(
        cpn: CPN,
        max_states: Optional[int] = None,
        marking_equiv_func: Callable[[Marking], Any] = equiv_marking_to_key
) -> nx.DiGraph:
    """
    Build the reachability graph of the net from its current marking.

    Every enabled transition is fired from every reached marking, breadth
    first. The net is put back in its starting marking before returning.

    Parameters:
      cpn: The Colored Petri Net
      max_states: Stop discovering new markings once this many are known.
      marking_equiv_func: Returns the canonical key of a marking.

    Returns:
      A DiGraph whose nodes are marking keys, with a 'marking' attribute
      holding the Marking. Edges carry the name of the fired transition in
      their 'transition' attribute.
    """
    RG = nx.DiGraph()
    visited: Set[Any] = set()
    queue = deque()

    initial_marking = cpn.get_marking()
    init_key = marking_equiv_func(initial_marking)
    RG.add_node(init_key, marking=initial_marking)
    visited.add(init_key)
    queue.append(init_key)

    try:
        while queue:
            current_key = queue.popleft()
            current_marking = RG.nodes[current_key]["marking"]

            cpn.set_marking(current_marking)
            enabled = cpn.get_enabled_transitions()

            for trans in enabled:
                cpn.set_marking(current_marking)
                try:
                    trans.execute()
                except FiringError as e:
                    logger.debug("Skipping %s from %s: %s", trans.name, current_key, e)
                    continue
                successor_marking = cpn.get_marking()

                succ_key = marking_equiv_func(successor_marking)
                if succ_key not in visited:
                    if max_states is not None and len(visited) >= max_states:
                        continue
                    RG.add_node(succ_key, marking=successor_marking)
                    visited.add(succ_key)
                    queue.append(succ_key)

                RG.add_edge(current_key, succ_key, transition=trans.name)
    finally:
        cpn.set_marking(initial_marking)

    logger.debug("Reachability graph: %d marking(s), %d edge(s)", RG.number_of_nodes(), RG.number_of_edges())
    return RG


def dead_markings(RG: nx.DiGraph):
    """Markings of the graph from which no transition can fire."""
    return [RG.nodes[n]["marking"] for n in RG.nodes if RG.out_degree(n) == 0]
