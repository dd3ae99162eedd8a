import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from src.workflow.catalog import NodeCatalog, default_catalog
from src.workflow.models import WorkflowGraph


def _auto_layout(graph: WorkflowGraph) -> Dict[str, Tuple[int, int]]:
    """
    Very simple layout: put nodes without a position in a vertical column.
    Returns a mapping from node.id -> (x, y).
    """
    positions = {}
    x = 400
    y = 200
    dy = 150
    for node in graph.nodes:
        if node.position is not None:
            positions[node.id] = node.position
        else:
            positions[node.id] = (x, y)
            y += dy
    return positions


def _display_names(graph: WorkflowGraph) -> Dict[str, str]:
    # n8n keys connections by node name, so names must be unique
    names: Dict[str, str] = {}
    used = set()
    for node in graph.nodes:
        name = node.name if node.name not in used else node.id
        suffix = 2
        while name in used:
            name = f"{node.name} {suffix}"
            suffix += 1
        used.add(name)
        names[node.id] = name
    return names


def graph_to_n8n(graph: WorkflowGraph, catalog: Optional[NodeCatalog] = None) -> Dict[str, Any]:
    """
    Convert a validated WorkflowGraph into an n8n workflow JSON dict.
    """
    catalog = catalog or default_catalog()
    positions = _auto_layout(graph)
    names = _display_names(graph)

    n8n_nodes: List[Dict[str, Any]] = []
    for node in graph.nodes:
        x, y = positions[node.id]
        n8n_nodes.append({
            "id": node.id,
            "name": names[node.id],
            "type": node.type_id,
            "typeVersion": 1,
            "position": [x, y],
            "parameters": dict(node.params),
        })

    n8n_connections: Dict[str, Any] = {}
    for conn in graph.connections:
        if conn.from_node_id not in names or conn.to_node_id not in names:
            continue
        source = names[conn.from_node_id]
        spec = catalog.lookup(graph.get_node(conn.from_node_id).type_id)
        width = max(spec.output_ports if spec else 1, conn.from_port + 1)
        main = n8n_connections.setdefault(source, {"main": []})["main"]
        while len(main) < width:
            main.append([])
        main[conn.from_port].append({
            "node": names[conn.to_node_id],
            "type": "main",
            "index": conn.to_port,
        })

    return {
        "name": graph.name,
        "nodes": n8n_nodes,
        "connections": n8n_connections,
        "settings": {"executionOrder": "v1"},
    }


def graph_to_n8n_file(graph: WorkflowGraph, json_path: Path) -> None:
    """ Convert a graph to n8n JSON and write it, for import through the n8n editor. """
    json_path.write_text(json.dumps(graph_to_n8n(graph), indent=2))
