"""
Generation orchestrator: turns a user intent into a deployable workflow.

The orchestrator drives each request through a small state machine:
1. Draft          - ask the candidate source for a workflow and load it
2. Validated      - run the validator
3. Repairing      - apply one repair pass, then validate again (bounded)
4. Ready          - no blocking defects remain
   FallbackReady  - repair could not converge; the safe graph is substituted
5. Deployed       - the deployment gateway accepted the graph
   Failed         - the gateway rejected it or ran out of time
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from src.config import get_settings
from src.errors import CandidateUnavailable, CandidateUnparseable
from src.generation.sources import CandidateSource
from src.integrations.n8n.gateway import DeploymentGateway, DeploymentResult
from src.persistence.store import GenerationRecord, RecordStore
from src.workflow.catalog import NodeCatalog, default_catalog
from src.workflow.compiler import DEFAULT_NAME, load_candidate
from src.workflow.fallback import fallback_graph
from src.workflow.models import Defect, GraphStatus, RepairAttempt, WorkflowGraph
from src.workflow.repair import RepairEngine
from src.workflow.validator import blocking, validate

logger = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS = 3

GENERIC_FAILURE = "We could not create this automation. Please adjust your request and try again."


class PipelineState(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    REPAIRING = "repairing"
    READY = "ready"
    FALLBACK_READY = "fallback_ready"
    DEPLOYED = "deployed"
    FAILED = "failed"


TERMINAL_STATES = {PipelineState.READY, PipelineState.FALLBACK_READY,
                   PipelineState.DEPLOYED, PipelineState.FAILED}


@dataclass
class GenerationResult:
    """Everything one generation request produced. Owned by that request only."""
    request_id: str
    owner_id: str
    intent: str
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: PipelineState = PipelineState.DRAFT
    graph: Optional[WorkflowGraph] = None
    defects: List[Defect] = field(default_factory=list)
    # last defects seen on the candidate before falling back; diagnostic only
    candidate_defects: List[Defect] = field(default_factory=list)
    audit_trail: List[RepairAttempt] = field(default_factory=list)
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    validation_passes: int = 0
    fallback_reason: Optional[str] = None
    deployment: Optional[DeploymentResult] = None
    error_kind: Optional[str] = None
    user_message: str = ""

    @property
    def repair_attempts(self) -> int:
        return len(self.audit_trail)


class GenerationOrchestrator:
    """
    Holds only read-only collaborators, so one instance can serve concurrent
    requests; all per-request state lives on the GenerationResult.
    """

    def __init__(self, source: CandidateSource, gateway: Optional[DeploymentGateway] = None,
                 catalog: Optional[NodeCatalog] = None, store: Optional[RecordStore] = None,
                 deploy_timeout: Optional[float] = None):
        self.source = source
        self.gateway = gateway
        self.catalog = catalog or default_catalog()
        self.repair_engine = RepairEngine(self.catalog)
        self.store = store
        self._deploy_timeout = deploy_timeout

    @property
    def deploy_timeout(self) -> float:
        if self._deploy_timeout is None:
            self._deploy_timeout = get_settings().deploy_timeout_seconds
        return self._deploy_timeout

    def run(self, intent: str, owner_id: str, name: Optional[str] = None,
            request_id: Optional[str] = None) -> GenerationResult:
        """ Generate and, if a gateway is configured, deploy. """
        result = self.generate(intent, owner_id, name=name, request_id=request_id)
        if self.gateway is not None:
            result = self.deploy(result)
        return result

    # -------------------------
    # GENERATION
    # -------------------------

    def generate(self, intent: str, owner_id: str, name: Optional[str] = None,
                 request_id: Optional[str] = None) -> GenerationResult:
        result = GenerationResult(request_id=request_id or uuid.uuid4().hex, owner_id=owner_id, intent=intent)
        self._log(result, f"[GEN] Request {result.request_id} for owner {owner_id}: {intent[:60]}")

        try:
            candidate = self.source.request_candidate(intent)
            graph = load_candidate(candidate, owner_id=owner_id, name=name)
        except (CandidateUnavailable, CandidateUnparseable) as e:
            self._log(result, f"[GEN] No usable candidate ({type(e).__name__}): {e}")
            self._fallback(result, name or DEFAULT_NAME, reason=type(e).__name__)
            return self._finish(result)

        result.graph = graph
        defects = self._validate(result, graph)

        while True:
            blockers = blocking(defects)
            if not blockers:
                graph.status = GraphStatus.REPAIRED if result.audit_trail else GraphStatus.VALIDATED
                result.state = PipelineState.READY
                result.defects = defects
                self._log(result, f"[GEN] Ready after {result.repair_attempts} repair pass(es)")
                break

            if result.repair_attempts >= MAX_REPAIR_ATTEMPTS:
                self._log(result, f"[GEN] {len(blockers)} blocking defect(s) left after "
                                  f"{MAX_REPAIR_ATTEMPTS} repair passes")
                result.candidate_defects = defects
                self._fallback(result, graph.name, reason="repair_exhausted")
                break

            defects = self._repair(result, graph, defects)

            if len(blocking(defects)) >= len(blockers):
                self._log(result, "[GEN] Repair made no progress, falling back")
                result.candidate_defects = defects
                self._fallback(result, graph.name, reason="no_progress")
                break

        return self._finish(result)

    def _validate(self, result: GenerationResult, graph: WorkflowGraph) -> List[Defect]:
        defects = validate(graph, self.catalog)
        result.validation_passes += 1
        result.state = PipelineState.VALIDATED
        graph.status = GraphStatus.VALIDATED
        self._log(result, f"[VAL] Pass {result.validation_passes}: "
                          f"{len(blocking(defects))} blocking, {len(defects)} total")
        return defects

    def _repair(self, result: GenerationResult, graph: WorkflowGraph, defects: List[Defect]) -> List[Defect]:
        result.state = PipelineState.REPAIRING
        attempt = RepairAttempt(attempt_number=result.repair_attempts + 1, defects_before=defects)
        _, attempt.transformations_applied = self.repair_engine.repair(graph, defects)
        self._log(result, f"[FIX] Attempt {attempt.attempt_number}: "
                          f"{', '.join(attempt.transformations_applied) or 'nothing applicable'}")
        attempt.defects_after = self._validate(result, graph)
        result.audit_trail.append(attempt)
        return attempt.defects_after

    def _fallback(self, result: GenerationResult, name: str, reason: str) -> None:
        result.graph = fallback_graph(result.owner_id, name)
        result.defects = []
        result.fallback_reason = reason
        result.state = PipelineState.FALLBACK_READY
        self._log(result, f"[GEN] Using fallback workflow ({reason})")

    # -------------------------
    # DEPLOYMENT
    # -------------------------

    def deploy(self, result: GenerationResult) -> GenerationResult:
        """
        Hand a Ready/FallbackReady graph to the gateway within the deploy
        budget. Timeouts are not retried here.
        """
        if self.gateway is None:
            raise ValueError("No deployment gateway configured")
        if result.state not in (PipelineState.READY, PipelineState.FALLBACK_READY):
            raise ValueError(f"Cannot deploy a request in state {result.state.value}")

        self._log(result, f"[DEP] Deploying {result.graph.name!r} (budget {self.deploy_timeout}s)")
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self.gateway.deploy, result.graph)
            deployment = future.result(timeout=self.deploy_timeout)
        except FutureTimeout:
            deployment = DeploymentResult(success=False, error="Deployment timed out", error_kind="timeout")
        finally:
            # don't wait for a call that overran its budget
            pool.shutdown(wait=False)

        result.deployment = deployment
        if deployment.success:
            result.graph.status = GraphStatus.DEPLOYED
            result.state = PipelineState.DEPLOYED
            self._log(result, f"[DEP] Deployed as {deployment.external_id}")
        else:
            result.graph.status = GraphStatus.FAILED
            result.state = PipelineState.FAILED
            result.error_kind = deployment.error_kind or "error"
            self._log(result, f"[DEP] Failed ({result.error_kind}): {deployment.error}")
        return self._finish(result)

    # -------------------------
    # HELPERS
    # -------------------------

    def _finish(self, result: GenerationResult) -> GenerationResult:
        result.user_message = _user_message(result)
        if self.store is not None:
            self.store.put(_to_record(result))
        return result

    def _log(self, result: GenerationResult, message: str) -> None:
        result.execution_log.append({"timestamp": time.time(), "message": message})
        logger.info("%s %s", result.correlation_id[:8], message)


def _user_message(result: GenerationResult) -> str:
    # defect detail is diagnostic only and never shown to the user
    if result.state == PipelineState.FAILED:
        return f"{GENERIC_FAILURE} (reference: {result.correlation_id})"
    if result.state == PipelineState.DEPLOYED:
        return f"Your automation '{result.graph.name}' is live."
    if result.state == PipelineState.FALLBACK_READY:
        return (f"We set up a starter workflow '{result.graph.name}' you can build on "
                f"(reference: {result.correlation_id}).")
    return f"Your automation '{result.graph.name}' is ready to deploy."


def _to_record(result: GenerationResult) -> GenerationRecord:
    graph = result.graph
    return GenerationRecord(
        owner_id=result.owner_id,
        request_id=result.request_id,
        workflow_name=graph.name if graph else "",
        state=result.state.value,
        graph=graph.to_dict() if graph else {},
        audit_trail=[
            {
                "attempt_number": a.attempt_number,
                "defects_before": [d.kind.value for d in a.defects_before],
                "transformations_applied": list(a.transformations_applied),
                "defects_after": [d.kind.value for d in a.defects_after],
            }
            for a in result.audit_trail
        ],
        external_id=result.deployment.external_id if result.deployment else None,
        correlation_id=result.correlation_id,
        error_kind=result.error_kind,
    )
