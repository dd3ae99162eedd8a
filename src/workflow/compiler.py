""" Build a WorkflowGraph from a candidate returned by a template or synthesis source. """

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from src.errors import CandidateUnparseable
from src.workflow.models import Connection, GraphStatus, NodeInstance, WorkflowGraph
from src.workflow.schema import ConnectionSpec, NodeSpec, connection_spec, node_spec, validate_candidate

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Untitled Workflow"


def load_candidate(raw: Union[str, bytes, Dict[str, Any]], owner_id: Optional[str] = None,
                   name: Optional[str] = None) -> WorkflowGraph:
    """
    Load a candidate graph from a dict or JSON/YAML text.

    Accepts both the graph shape (``nodes[].typeId``, ``connections[].fromNodeId``)
    and n8n's native export shape (``nodes[].type``, ``connections`` keyed by
    source node name). Missing types and endpoints are kept as empty strings so
    they surface as defects instead of failing the load.
    """
    data = _parse(raw)

    if "nodes" not in data:
        raise CandidateUnparseable("Missing required top-level field: nodes")
    if data.get("connections") is None:
        data = {**data, "connections": []}

    spec = validate_candidate(data)

    nodes = [_node_from_spec(node_spec(entry), index) for index, entry in enumerate(spec.nodes)]
    if isinstance(spec.connections, dict):
        connections = _connections_from_n8n_map(spec.connections, nodes)
    else:
        connections = [_connection_from_spec(connection_spec(c)) for c in spec.connections]

    graph = WorkflowGraph(
        name=name or spec.name or DEFAULT_NAME,
        owner_id=owner_id,
        nodes=nodes,
        connections=connections,
        status=GraphStatus.DRAFT,
    )
    logger.debug("Loaded candidate %r with %d nodes and %d connections",
                 graph.name, len(nodes), len(connections))
    return graph


def _parse(raw: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            raise CandidateUnparseable("Candidate is empty")
        raw = _load_text(raw)
    if not isinstance(raw, dict):
        raise CandidateUnparseable(f"Candidate must be a mapping, got {type(raw).__name__}")
    return raw


def _load_text(text: str) -> Any:
    # JSON allows tabs as whitespace where YAML does not, so try it first
    try:
        return json.loads(text)
    except ValueError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CandidateUnparseable(f"Candidate is not valid JSON or YAML: {e}") from e


def _node_from_spec(spec: NodeSpec, index: int) -> NodeInstance:
    node_id = spec.id or spec.name or f"node_{index}"
    return NodeInstance(
        id=node_id,
        type_id=spec.type_id or "",
        params=dict(spec.params or {}),
        position=_coerce_position(spec.position),
        name=spec.name or node_id,
    )


def _connection_from_spec(conn: ConnectionSpec) -> Connection:
    return Connection(
        from_node_id=conn.from_node_id or "",
        from_port=_coerce_port(conn.from_port),
        to_node_id=conn.to_node_id or "",
        to_port=_coerce_port(conn.to_port),
    )


def _connections_from_n8n_map(conn_map: Dict[str, Any], nodes: List[NodeInstance]) -> List[Connection]:
    """
    n8n keys connections by source node *name*:
    ``{"Source": {"main": [[{"node": "Target", "type": "main", "index": 0}], ...]}}``
    where the outer list position is the source output port.
    """
    name_to_id = {node.name: node.id for node in nodes}
    connections: List[Connection] = []
    for source_name, outputs in conn_map.items():
        from_id = name_to_id.get(str(source_name), str(source_name))
        main = outputs.get("main") if isinstance(outputs, dict) else None
        if not isinstance(main, list):
            # no usable outputs; keep a dangling marker so the defect is visible
            connections.append(Connection(from_id, 0, "", 0))
            continue
        for from_port, group in enumerate(main):
            if not isinstance(group, list):
                continue
            for target in group:
                if not isinstance(target, dict):
                    continue
                target_name = str(target.get("node") or "")
                connections.append(Connection(
                    from_node_id=from_id,
                    from_port=from_port,
                    to_node_id=name_to_id.get(target_name, target_name),
                    to_port=_coerce_port(target.get("index", 0)),
                ))
    return connections


def _coerce_port(value: Any) -> int:
    # bool is an int subclass but never a valid port
    if isinstance(value, bool):
        return -1
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def _coerce_position(value: Any) -> Optional[Tuple[int, int]]:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        try:
            return int(value[0]), int(value[1])
        except (TypeError, ValueError):
            return None
    return None
