"""Tests for owner namespacing and idempotent deployment."""

import pytest

from src.integrations.n8n.gateway import (
    DeploymentGateway, namespace_graph, namespace_name, namespace_path, namespace_prefix,
)
from src.workflow.catalog import BASE
from src.workflow.models import Connection, NodeInstance, WorkflowGraph

from helpers import InMemoryWorkflowEngine


def _hook_graph(owner_id, name="Daily Report", path="report"):
    graph = WorkflowGraph(name=name, owner_id=owner_id)
    graph.add_node(NodeInstance("hook", BASE + "webhook", params={"path": path}))
    graph.add_node(NodeInstance("ack", BASE + "respondToWebhook", params={"respondWith": "json"}))
    graph.add_connection(Connection("hook", 0, "ack", 0))
    return graph


def test_namespace_helpers_are_idempotent():
    assert namespace_prefix("u1") == "[USR-u1] "
    assert namespace_name("u1", "Report") == "[USR-u1] Report"
    assert namespace_name("u1", namespace_name("u1", "Report")) == "[USR-u1] Report"
    assert namespace_path("u1", "/report") == "usr-u1/report"
    assert namespace_path("u1", namespace_path("u1", "report")) == "usr-u1/report"


def test_namespace_graph_copies_and_prefixes():
    graph = _hook_graph("u1")

    namespaced = namespace_graph(graph)

    assert namespaced.name == "[USR-u1] Daily Report"
    assert namespaced.get_node("hook").params["path"] == "usr-u1/report"
    assert graph.name == "Daily Report"
    assert graph.get_node("hook").params["path"] == "report"
    assert namespace_graph(namespaced).to_dict() == namespaced.to_dict()


def test_namespace_graph_requires_owner():
    with pytest.raises(ValueError, match="no owner"):
        namespace_graph(_hook_graph(None))


def test_different_owners_never_collide(gateway, engine):
    first = gateway.deploy(_hook_graph("u1"))
    second = gateway.deploy(_hook_graph("u2"))

    assert first.success and second.success
    assert first.namespaced_name != second.namespaced_name
    assert first.external_id != second.external_id
    assert first.webhook_paths == ["usr-u1/report"]
    assert second.webhook_paths == ["usr-u2/report"]
    assert engine.list_existing_names(namespace_prefix("u1")) == {"[USR-u1] Daily Report"}


def test_deploy_twice_upserts(gateway, engine):
    first = gateway.deploy(_hook_graph("u1"))
    second = gateway.deploy(_hook_graph("u1"))

    assert first.external_id == second.external_id
    assert (first.created, second.created) == (True, False)
    assert engine.calls == 2
    assert len(engine.workflows) == 1


def test_deploy_sends_n8n_shape(gateway, engine):
    result = gateway.deploy(_hook_graph("u1"))

    sent = engine.workflows[result.external_id]
    assert sent["name"] == "[USR-u1] Daily Report"
    assert sent["nodes"][0]["type"] == BASE + "webhook"
    assert sent["nodes"][0]["parameters"]["path"] == "usr-u1/report"
    assert sent["connections"] == {"hook": {"main": [[{"node": "ack", "type": "main", "index": 0}]]}}


def test_engine_failure_is_a_failed_result():
    result = DeploymentGateway(InMemoryWorkflowEngine(reject=True)).deploy(_hook_graph("u1"))

    assert result.success is False
    assert result.error_kind == "rejected"
    assert result.external_id is None
    assert result.namespaced_name == "[USR-u1] Daily Report"
