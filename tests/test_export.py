"""Tests for WorkflowGraph to n8n JSON export."""

import json

from src.integrations.n8n.export import graph_to_n8n, graph_to_n8n_file
from src.workflow.catalog import BASE
from src.workflow.models import Connection, NodeInstance, WorkflowGraph


def _branching_graph():
    graph = WorkflowGraph(name="Branch", owner_id="u1")
    graph.add_node(NodeInstance("t", BASE + "manualTrigger", position=(100, 100), name="Start"))
    graph.add_node(NodeInstance("check", BASE + "if", name="Check"))
    graph.add_node(NodeInstance("no", BASE + "noOp", name="Done"))
    graph.add_node(NodeInstance("no2", BASE + "noOp", name="Done"))
    graph.add_connection(Connection("t", 0, "check", 0))
    graph.add_connection(Connection("check", 1, "no2", 0))
    return graph


def test_nodes_carry_type_parameters_and_layout():
    data = graph_to_n8n(_branching_graph())

    assert data["name"] == "Branch"
    assert data["settings"] == {"executionOrder": "v1"}
    first, second, third, _ = data["nodes"]
    assert first == {"id": "t", "name": "Start", "type": BASE + "manualTrigger", "typeVersion": 1,
                     "position": [100, 100], "parameters": {}}
    assert second["position"] == [400, 200]
    assert third["position"] == [400, 350]


def test_duplicate_display_names_fall_back_to_ids():
    names = [n["name"] for n in graph_to_n8n(_branching_graph())["nodes"]]
    assert names == ["Start", "Check", "Done", "no2"]


def test_connections_are_keyed_by_name_and_padded_to_port_count():
    connections = graph_to_n8n(_branching_graph())["connections"]

    assert connections["Start"] == {"main": [[{"node": "Check", "type": "main", "index": 0}]]}
    assert connections["Check"] == {"main": [[], [{"node": "no2", "type": "main", "index": 0}]]}


def test_write_to_file(tmp_path):
    path = tmp_path / "wf.json"
    graph_to_n8n_file(_branching_graph(), path)
    assert json.loads(path.read_text())["name"] == "Branch"


def test_name_that_matches_another_id_gets_a_suffix():
    graph = WorkflowGraph(name="Clash", owner_id="u1")
    graph.add_node(NodeInstance("t", BASE + "manualTrigger", name="Start"))
    graph.add_node(NodeInstance("a", BASE + "noOp", name="b"))
    graph.add_node(NodeInstance("b", BASE + "noOp", name="b"))
    graph.add_connection(Connection("t", 0, "a", 0))
    graph.add_connection(Connection("a", 0, "b", 0))

    data = graph_to_n8n(graph)

    assert [n["name"] for n in data["nodes"]] == ["Start", "b", "b 2"]
    assert data["connections"]["Start"] == {"main": [[{"node": "b", "type": "main", "index": 0}]]}
    assert data["connections"]["b"] == {"main": [[{"node": "b 2", "type": "main", "index": 0}]]}
    assert "b 2" not in data["connections"]
