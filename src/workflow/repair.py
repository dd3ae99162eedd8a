""" Deterministic repair transformations for candidate workflow graphs. """

import copy
import logging
from typing import Callable, List, Optional, Set, Tuple

from src.workflow.catalog import TYPE_ALIASES, NodeCatalog, default_catalog
from src.workflow.models import (
    Connection, Defect, DefectKind, NodeInstance, NodeTypeSpec, WorkflowGraph,
)
from src.workflow.validator import is_empty

logger = logging.getLogger(__name__)


class RepairEngine:
    """
    Applies one pass of repair transformations to a graph, in place.

    Transformations run in a fixed priority order: default-fill,
    prune-dangling, type-substitute, cycle-break. Each one is total: it either
    fixes the defects it targets or leaves the graph untouched.
    """

    def __init__(self, catalog: Optional[NodeCatalog] = None):
        self.catalog = catalog or default_catalog()
        self._transformations: List[Tuple[str, Callable[[WorkflowGraph, List[Defect]], List[str]]]] = [
            ("default-fill", self._default_fill),
            ("prune-dangling", self._prune_dangling),
            ("type-substitute", self._type_substitute),
            ("cycle-break", self._cycle_break),
        ]

    def repair(self, graph: WorkflowGraph, defects: List[Defect]) -> Tuple[WorkflowGraph, List[str]]:
        applied: List[str] = []
        for name, transform in self._transformations:
            changes = transform(graph, defects)
            if changes:
                applied.extend(changes)
            else:
                logger.debug("Repair %s not applicable to %r", name, graph.name)
        return graph, applied

    # -------------------------
    # TRANSFORMATIONS
    # -------------------------

    def _default_fill(self, graph: WorkflowGraph, defects: List[Defect]) -> List[str]:
        changes = []
        for defect in defects:
            if defect.kind != DefectKind.MISSING_REQUIRED_PARAM or defect.param is None:
                continue
            node = graph.get_node(defect.node_id or "")
            if node is None:
                continue
            spec = self.catalog.lookup(node.type_id)
            if spec is None or defect.param not in spec.defaults:
                continue
            node.params[defect.param] = copy.deepcopy(spec.defaults[defect.param])
            changes.append(f"default-fill:{node.id}.{defect.param}")
        return changes

    def _prune_dangling(self, graph: WorkflowGraph, defects: List[Defect]) -> List[str]:
        ids = graph.node_ids()
        changes = []
        for conn in list(graph.connections):
            if conn.from_node_id not in ids or conn.to_node_id not in ids:
                graph.remove_connection(conn)
                changes.append(f"prune-dangling:{conn.ref}")
        return changes

    def _type_substitute(self, graph: WorkflowGraph, defects: List[Defect]) -> List[str]:
        targets = {d.node_id for d in defects if d.kind == DefectKind.UNKNOWN_TYPE}
        changes = []
        for node in graph.nodes:
            if node.id not in targets or self.catalog.lookup(node.type_id) is not None:
                continue
            spec = self._substitute_for(graph, node)
            if spec is None:
                logger.debug("No substitute for type %r on node %r", node.type_id, node.id)
                continue
            old_type = node.type_id
            node.type_id = spec.type_id
            for param in spec.required_params:
                if param in spec.defaults and is_empty(node.params.get(param)):
                    node.params[param] = copy.deepcopy(spec.defaults[param])
            changes.append(f"type-substitute:{node.id}:{old_type}->{spec.type_id}")
        return changes

    def _cycle_break(self, graph: WorkflowGraph, defects: List[Defect]) -> List[str]:
        if not any(d.kind == DefectKind.CYCLE for d in defects):
            return []
        changes = []
        cycle = graph.find_cycle()
        while cycle:
            victim = _closing_edge(cycle)
            graph.remove_connection(victim)
            changes.append(f"cycle-break:{victim.ref}")
            cycle = graph.find_cycle()
        return changes

    # -------------------------
    # HELPERS
    # -------------------------

    def _substitute_for(self, graph: WorkflowGraph, node: NodeInstance) -> Optional[NodeTypeSpec]:
        """ First alias whose port counts accommodate the node's existing connections. """
        out_ports = [c.from_port for c in graph.connections if c.from_node_id == node.id]
        in_ports = [c.to_port for c in graph.connections if c.to_node_id == node.id]
        for type_id in self._candidate_types(node.type_id):
            spec = self.catalog.lookup(type_id)
            if spec is None:
                continue
            if out_ports and not all(0 <= p < spec.output_ports for p in out_ports):
                continue
            if in_ports and not all(0 <= p < spec.input_ports for p in in_ports):
                continue
            return spec
        return None

    def _candidate_types(self, type_id: str) -> List[str]:
        candidates = list(TYPE_ALIASES.get(type_id, ()))
        # tolerate case slips such as "n8n-nodes-base.HttpRequest"
        lowered = type_id.lower()
        seen: Set[str] = set(candidates)
        for known in self.catalog.type_ids():
            if lowered and known.lower() in (lowered, "n8n-nodes-base." + lowered) and known not in seen:
                candidates.append(known)
                seen.add(known)
        return candidates


def _closing_edge(cycle: List[Connection]) -> Connection:
    """ Highest from_port wins; ties go to the later edge, ending at the back edge. """
    victim = cycle[0]
    for conn in cycle[1:]:
        if conn.from_port >= victim.from_port:
            victim = conn
    return victim
