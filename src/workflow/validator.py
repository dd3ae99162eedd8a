"""
Structural and semantic checks for candidate workflow graphs.

``validate`` runs a fixed battery of checks and returns the defects in a
stable order, so identical graphs always produce identical defect lists.
A graph is valid when none of its defects are blocking.
"""

import logging
from collections import Counter
from typing import Any, List, Optional

from src.workflow.catalog import NodeCatalog, default_catalog
from src.workflow.models import Defect, DefectKind, Severity, WorkflowGraph

logger = logging.getLogger(__name__)


def validate(graph: WorkflowGraph, catalog: Optional[NodeCatalog] = None) -> List[Defect]:
    catalog = catalog or default_catalog()
    defects: List[Defect] = []
    defects.extend(_check_duplicate_ids(graph))
    defects.extend(_check_unknown_types(graph, catalog))
    defects.extend(_check_required_params(graph, catalog))
    defects.extend(_check_port_arity(graph, catalog))
    defects.extend(_check_dangling(graph))
    defects.extend(_check_trigger(graph, catalog))
    defects.extend(_check_cycle(graph))
    defects.extend(_check_orphans(graph, catalog))
    logger.debug("Validated %r: %d blocking, %d warnings",
                 graph.name, len(blocking(defects)), len(defects) - len(blocking(defects)))
    return defects


def blocking(defects: List[Defect]) -> List[Defect]:
    return [d for d in defects if d.is_blocking]


def is_valid(defects: List[Defect]) -> bool:
    return not blocking(defects)


def reliability_score(defects: List[Defect]) -> int:
    """ 100 minus 20 per blocking defect and 5 per warning, clamped to 0..100. """
    score = 100
    for defect in defects:
        score -= 20 if defect.is_blocking else 5
    return max(0, min(100, score))


# -------------------------
# CHECKS
# -------------------------

def _check_duplicate_ids(graph: WorkflowGraph) -> List[Defect]:
    counts = Counter(node.id for node in graph.nodes)
    defects = []
    reported = set()
    for node in graph.nodes:
        if counts[node.id] > 1 and node.id not in reported:
            reported.add(node.id)
            defects.append(Defect(
                kind=DefectKind.DUPLICATE_ID,
                node_id=node.id,
                detail=f"Node id '{node.id}' is used by {counts[node.id]} nodes",
            ))
    return defects


def _check_unknown_types(graph: WorkflowGraph, catalog: NodeCatalog) -> List[Defect]:
    defects = []
    for node in graph.nodes:
        if catalog.lookup(node.type_id) is None:
            shown = node.type_id or "<missing>"
            defects.append(Defect(
                kind=DefectKind.UNKNOWN_TYPE,
                node_id=node.id,
                detail=f"Node '{node.id}' has unknown type '{shown}'",
            ))
    return defects


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _check_required_params(graph: WorkflowGraph, catalog: NodeCatalog) -> List[Defect]:
    defects = []
    for node in graph.nodes:
        spec = catalog.lookup(node.type_id)
        if spec is None:
            continue
        for param in spec.required_params:
            if is_empty(node.params.get(param)):
                defects.append(Defect(
                    kind=DefectKind.MISSING_REQUIRED_PARAM,
                    node_id=node.id,
                    param=param,
                    detail=f"Node '{node.id}' ({spec.display_name}) requires parameter '{param}'",
                ))
    return defects


def _check_port_arity(graph: WorkflowGraph, catalog: NodeCatalog) -> List[Defect]:
    defects = []
    for conn in graph.connections:
        source = graph.get_node(conn.from_node_id)
        target = graph.get_node(conn.to_node_id)
        if source is not None:
            spec = catalog.lookup(source.type_id)
            if spec is not None and not 0 <= conn.from_port < spec.output_ports:
                defects.append(Defect(
                    kind=DefectKind.PORT_ARITY_MISMATCH,
                    node_id=source.id,
                    connection_ref=conn.ref,
                    detail=(f"Output port {conn.from_port} out of range for '{source.id}' "
                            f"({spec.output_ports} outputs)"),
                ))
        if target is not None:
            spec = catalog.lookup(target.type_id)
            if spec is not None and not 0 <= conn.to_port < spec.input_ports:
                defects.append(Defect(
                    kind=DefectKind.PORT_ARITY_MISMATCH,
                    node_id=target.id,
                    connection_ref=conn.ref,
                    detail=(f"Input port {conn.to_port} out of range for '{target.id}' "
                            f"({spec.input_ports} inputs)"),
                ))
    return defects


def _check_dangling(graph: WorkflowGraph) -> List[Defect]:
    ids = graph.node_ids()
    defects = []
    for conn in graph.connections:
        missing = [e for e in (conn.from_node_id, conn.to_node_id) if e not in ids]
        if missing:
            shown = ", ".join(repr(m) for m in missing)
            defects.append(Defect(
                kind=DefectKind.DANGLING_CONNECTION,
                connection_ref=conn.ref,
                detail=f"Connection {conn.ref} references missing node(s) {shown}",
            ))
    return defects


def _check_trigger(graph: WorkflowGraph, catalog: NodeCatalog) -> List[Defect]:
    if graph.trigger_ids(catalog):
        return []
    return [Defect(kind=DefectKind.NO_TRIGGER, detail="Workflow has no trigger node")]


def _check_cycle(graph: WorkflowGraph) -> List[Defect]:
    cycle = graph.find_cycle()
    if not cycle:
        return []
    path = " -> ".join([c.from_node_id for c in cycle] + [cycle[-1].to_node_id])
    return [Defect(
        kind=DefectKind.CYCLE,
        connection_ref=cycle[-1].ref,
        detail=f"Cycle detected: {path}",
    )]


def _check_orphans(graph: WorkflowGraph, catalog: NodeCatalog) -> List[Defect]:
    # without a trigger every node is unreachable; NoTrigger already covers that
    if not graph.trigger_ids(catalog):
        return []
    reachable = graph.reachable_from_triggers(catalog)
    return [
        Defect(
            kind=DefectKind.ORPHANED_NODE,
            severity=Severity.WARNING,
            node_id=node.id,
            detail=f"Node '{node.id}' is not reachable from any trigger",
        )
        for node in graph.nodes
        if node.id not in reachable
    ]
