"""Tests for the generation orchestrator state machine."""

import json
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from src.config import Settings
from src.generation.orchestrator import (
    GENERIC_FAILURE, MAX_REPAIR_ATTEMPTS, GenerationOrchestrator, GenerationResult, PipelineState,
)
from src.generation.sources import LLMCandidateSource
from src.integrations.n8n.client import N8nClient
from src.integrations.n8n.gateway import DeploymentGateway
from src.llm_api import LLMClient
from src.workflow.catalog import BASE
from src.workflow.models import DefectKind, GraphStatus
from src.workflow.validator import blocking, validate

from helpers import InMemoryWorkflowEngine, StaticSource, edge, node


def _orchestrator(candidate, **kwargs):
    kwargs.setdefault("deploy_timeout", 5)
    return GenerationOrchestrator(StaticSource(candidate), **kwargs)


class OneFillPerPass:
    """Repair engine stand-in that fixes a single missing parameter per pass."""

    def repair(self, graph, defects):
        for defect in defects:
            if defect.kind == DefectKind.MISSING_REQUIRED_PARAM:
                graph.get_node(defect.node_id).params[defect.param] = "https://x.test"
                return graph, [f"fill:{defect.node_id}.{defect.param}"]
        return graph, []


# -------------------------
# GENERATION
# -------------------------

def test_valid_candidate_is_ready_without_repair():
    orchestrator = _orchestrator({
        "name": "Ping",
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest", url="https://x.test")],
        "connections": [edge("t", "h")],
    })

    result = orchestrator.generate("ping a url", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.graph.status == GraphStatus.VALIDATED
    assert result.repair_attempts == 0
    assert result.validation_passes == 1
    assert result.graph.owner_id == "u1"


def test_missing_param_with_default_is_ready_after_one_pass():
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h")],
    })

    result = orchestrator.generate("fetch something", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.defects == []
    assert result.repair_attempts == 1
    assert result.audit_trail[0].transformations_applied == ["default-fill:h.url"]
    assert result.graph.status == GraphStatus.REPAIRED


def test_dangling_connection_without_trigger_falls_back():
    orchestrator = _orchestrator({
        "name": "Broken",
        "nodes": [node("a", "set"), node("b", "noOp")],
        "connections": [edge("a", "b"), edge("a", "ghost")],
    })

    result = orchestrator.generate("do a thing", owner_id="u1")

    assert result.state == PipelineState.FALLBACK_READY
    assert result.fallback_reason == "no_progress"
    assert result.audit_trail[0].transformations_applied == ["prune-dangling:a[0]->ghost[0]"]
    assert [d.kind for d in result.audit_trail[0].defects_after] == [DefectKind.NO_TRIGGER]
    assert [d.kind for d in result.candidate_defects] == [DefectKind.NO_TRIGGER]
    assert result.graph.status == GraphStatus.FALLBACK
    assert result.graph.name == "Broken"
    assert result.graph.owner_id == "u1"
    assert blocking(validate(result.graph)) == []


@pytest.mark.parametrize("raw", ["{not json", "", "[1, 2, 3]", {"name": "no nodes"}])
def test_unparseable_candidate_falls_back_without_repair(raw):
    result = _orchestrator(raw).generate("anything", owner_id="u1")

    assert result.state == PipelineState.FALLBACK_READY
    assert result.fallback_reason == "CandidateUnparseable"
    assert result.repair_attempts == 0
    assert result.validation_passes == 0


def test_unavailable_candidate_falls_back():
    result = _orchestrator(None).generate("anything", owner_id="u1", name="Mine")

    assert result.state == PipelineState.FALLBACK_READY
    assert result.fallback_reason == "CandidateUnavailable"
    assert result.graph.name == "Mine"


def test_tab_indented_json_candidate_is_ready():
    candidate = {
        "name": "Ping",
        "nodes": [node("t", "manualTrigger"), node("n", "noOp")],
        "connections": [edge("t", "n")],
    }

    result = _orchestrator(json.dumps(candidate, indent="\t")).generate("ping", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.repair_attempts == 0


def test_numeric_node_ids_are_ready():
    result = _orchestrator({
        "nodes": [
            {"id": 1, "typeId": BASE + "manualTrigger", "params": {}},
            {"id": 2, "typeId": BASE + "noOp", "params": {}},
        ],
        "connections": [{"fromNodeId": 1, "fromPort": 0, "toNodeId": 2, "toPort": 0}],
    }).generate("ping", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.repair_attempts == 0
    assert result.graph.node_ids() == {"1", "2"}


def test_malformed_connection_entry_is_pruned():
    result = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("n", "noOp")],
        "connections": [edge("t", "n"), "garbage"],
    }).generate("ping", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.repair_attempts == 1
    assert result.audit_trail[0].transformations_applied == ["prune-dangling:[0]->[0]"]
    assert [c.ref for c in result.graph.connections] == ["t[0]->n[0]"]


def test_llm_gateway_html_reply_falls_back():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>", headers={"Content-Type": "text/html"})

    settings = Settings(llm_api_key="test-key", llm_base_url="https://llm.test/v1")
    llm = LLMClient(settings=settings, http_client=httpx.Client(transport=httpx.MockTransport(handler)))

    result = GenerationOrchestrator(LLMCandidateSource(llm)).generate("anything", owner_id="u1")

    assert result.state == PipelineState.FALLBACK_READY
    assert result.fallback_reason == "CandidateUnavailable"


def test_three_node_cycle_is_broken():
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("a", "set"), node("b", "set"), node("c", "set")],
        "connections": [edge("t", "a"), edge("a", "b"), edge("b", "c"), edge("c", "a")],
    })

    result = orchestrator.generate("loop", owner_id="u1")

    assert result.state == PipelineState.READY
    assert result.audit_trail[0].transformations_applied == ["cycle-break:c[0]->a[0]"]
    assert not result.graph.detect_cycle()


def test_repair_exhaustion_after_max_attempts():
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger")] + [node(f"h{i}", "httpRequest") for i in range(4)],
        "connections": [edge("t", f"h{i}") for i in range(4)],
    })
    orchestrator.repair_engine = OneFillPerPass()

    result = orchestrator.generate("fetch four things", owner_id="u1")

    assert result.state == PipelineState.FALLBACK_READY
    assert result.fallback_reason == "repair_exhausted"
    assert result.repair_attempts == MAX_REPAIR_ATTEMPTS
    assert result.validation_passes == MAX_REPAIR_ATTEMPTS + 1
    assert len(blocking(result.candidate_defects)) == 1


CANDIDATES = [
    {"nodes": [node("t", "manualTrigger"), node("h", "httpRequest")], "connections": [edge("t", "h")]},
    {"nodes": [node("a", "set")], "connections": [edge("a", "x"), edge("y", "a")]},
    {"nodes": [node("t", "webhook"), node("g", "gmail"), node("g", "slack")],
     "connections": [edge("t", "g"), edge("g", "t")]},
    {"nodes": [node("t", "cron"), node("ai", "openAi"), node("s", "switch")],
     "connections": [edge("t", "ai"), edge("ai", "s", from_port=3), edge("s", "ai", from_port=3)]},
    {"nodes": [{"id": "x"}, {"typeId": "mystery"}], "connections": [{"fromPort": "a"}]},
]


@pytest.mark.parametrize("candidate", CANDIDATES)
def test_passes_are_bounded_and_monotonic(candidate):
    result = _orchestrator(candidate).generate("whatever", owner_id="u1")

    assert result.state in (PipelineState.READY, PipelineState.FALLBACK_READY)
    assert result.validation_passes <= MAX_REPAIR_ATTEMPTS + 1
    for attempt in result.audit_trail[:-1]:
        assert len(blocking(attempt.defects_after)) < len(blocking(attempt.defects_before))
    if result.state == PipelineState.READY:
        assert blocking(validate(result.graph)) == []
    else:
        assert result.graph.status == GraphStatus.FALLBACK


def test_execution_log_records_each_stage():
    result = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h")],
    }).generate("fetch", owner_id="u1")

    messages = [entry["message"] for entry in result.execution_log]
    assert messages[0].startswith("[GEN] Request")
    assert any(m.startswith("[VAL] Pass 2") for m in messages)
    assert any(m.startswith("[FIX] Attempt 1") for m in messages)
    assert all("timestamp" in entry for entry in result.execution_log)


def test_concurrent_requests_do_not_share_state():
    orchestrator = _orchestrator({
        "name": "Daily Report",
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h")],
    })
    owners = [f"u{i}" for i in range(8)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda owner: orchestrator.generate("report", owner_id=owner), owners))

    assert [r.graph.owner_id for r in results] == owners
    assert all(r.state == PipelineState.READY for r in results)
    assert len({id(r.graph) for r in results}) == len(owners)


# -------------------------
# DEPLOYMENT
# -------------------------

def test_run_deploys_ready_graph(gateway, engine, store):
    orchestrator = _orchestrator({
        "name": "Ping",
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest", url="https://x.test")],
        "connections": [edge("t", "h")],
    }, gateway=gateway, store=store)

    result = orchestrator.run("ping", owner_id="u1", request_id="req-1")

    assert result.state == PipelineState.DEPLOYED
    assert result.graph.status == GraphStatus.DEPLOYED
    assert result.deployment.external_id == "wf-1"
    assert result.deployment.namespaced_name == "[USR-u1] Ping"
    assert "[USR-u1] Ping" in engine.ids
    record = store.get("u1", "req-1")
    assert record.state == "deployed"
    assert record.external_id == "wf-1"


def test_fallback_graph_is_deployable(gateway, engine):
    result = _orchestrator(None, gateway=gateway).run("anything", owner_id="u2", name="Starter")

    assert result.state == PipelineState.DEPLOYED
    assert "[USR-u2] Starter" in engine.ids


def test_two_owners_same_name_do_not_collide(engine, gateway):
    orchestrator = _orchestrator({
        "name": "Daily Report",
        "nodes": [node("t", "scheduleTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h")],
    }, gateway=gateway)

    first = orchestrator.run("daily report", owner_id="u1")
    second = orchestrator.run("daily report", owner_id="u2")

    assert first.deployment.namespaced_name != second.deployment.namespaced_name
    assert first.deployment.external_id != second.deployment.external_id
    assert engine.list_existing_names("[USR-u1] ") == {"[USR-u1] Daily Report"}
    assert engine.list_existing_names("[USR-u2] ") == {"[USR-u2] Daily Report"}


def test_redeploy_is_idempotent(engine, gateway):
    orchestrator = _orchestrator({
        "name": "Ping",
        "nodes": [node("t", "manualTrigger"), node("n", "noOp")],
        "connections": [edge("t", "n")],
    }, gateway=gateway)

    first = orchestrator.run("ping", owner_id="u1")
    second = orchestrator.run("ping", owner_id="u1")

    assert first.deployment.external_id == second.deployment.external_id
    assert first.deployment.created is True
    assert second.deployment.created is False
    assert len(engine.workflows) == 1


def test_deploy_timeout_fails_without_retry():
    engine = InMemoryWorkflowEngine(delay=0.5)
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("n", "noOp")],
        "connections": [edge("t", "n")],
    }, gateway=DeploymentGateway(engine), deploy_timeout=0.05)

    result = orchestrator.run("slow", owner_id="u1")

    assert result.state == PipelineState.FAILED
    assert result.error_kind == "timeout"
    assert result.graph.status == GraphStatus.FAILED
    assert GENERIC_FAILURE in result.user_message
    assert result.correlation_id in result.user_message


def test_rejected_deploy_hides_internal_detail(store):
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h")],
    }, gateway=DeploymentGateway(InMemoryWorkflowEngine(reject=True)), store=store)

    result = orchestrator.run("fetch", owner_id="u1", request_id="req-9")

    assert result.state == PipelineState.FAILED
    assert result.error_kind == "rejected"
    assert "engine refused" not in result.user_message
    assert "url" not in result.user_message
    assert store.get("u1", "req-9").error_kind == "rejected"


def test_deploy_requires_gateway_and_terminal_state(gateway):
    with pytest.raises(ValueError, match="No deployment gateway"):
        _orchestrator(None).deploy(GenerationResult(request_id="r", owner_id="u1", intent="x"))

    with pytest.raises(ValueError, match="Cannot deploy"):
        _orchestrator(None, gateway=gateway).deploy(GenerationResult(request_id="r", owner_id="u1", intent="x"))


def test_store_keeps_audit_trail(store):
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("h", "httpRequest")],
        "connections": [edge("t", "h"), edge("h", "ghost")],
    }, store=store)

    orchestrator.generate("fetch", owner_id="u1", request_id="req-2")

    record = store.get("u1", "req-2")
    assert record.state == "ready"
    assert record.audit_trail == [{
        "attempt_number": 1,
        "defects_before": ["MissingRequiredParam", "DanglingConnection"],
        "transformations_applied": ["default-fill:h.url", "prune-dangling:h[0]->ghost[0]"],
        "defects_after": [],
    }]
    assert store.get("u2", "req-2") is None


def test_n8n_non_json_reply_fails_deploy():
    def handler(request):
        return httpx.Response(200, text="<html>proxy</html>", headers={"Content-Type": "text/html"})

    api = "https://n8n.test/api/v1"
    client = N8nClient(
        settings=Settings(n8n_api_url=api, n8n_api_key="secret"),
        http_client=httpx.Client(base_url=api, transport=httpx.MockTransport(handler)),
        sleep=lambda seconds: None,
    )
    orchestrator = _orchestrator({
        "nodes": [node("t", "manualTrigger"), node("n", "noOp")],
        "connections": [edge("t", "n")],
    }, gateway=DeploymentGateway(client))

    result = orchestrator.run("ping", owner_id="u1")

    assert result.state == PipelineState.FAILED
    assert result.error_kind == "rejected"
    assert "proxy" not in result.user_message
