"""Fakes for the engine and candidate collaborators, shared by the tests."""

import itertools
import threading
import time
from typing import Any, Dict, Set

from src.errors import CandidateUnavailable, DeploymentRejected
from src.generation.sources import CandidateSource
from src.integrations.n8n.gateway import WorkflowEngine
from src.workflow.catalog import BASE


class InMemoryWorkflowEngine(WorkflowEngine):
    """Upserts by workflow name, like the n8n client does."""

    def __init__(self, delay: float = 0.0, reject: bool = False):
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.ids: Dict[str, str] = {}
        self.calls = 0
        self.delay = delay
        self.reject = reject
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def create_or_update_workflow(self, workflow: Dict[str, Any]) -> str:
        if self.delay:
            time.sleep(self.delay)
        if self.reject:
            raise DeploymentRejected("engine refused the workflow")
        with self._lock:
            self.calls += 1
            name = workflow["name"]
            if name not in self.ids:
                self.ids[name] = f"wf-{next(self._counter)}"
            self.workflows[self.ids[name]] = workflow
            return self.ids[name]

    def list_existing_names(self, namespace_prefix: str) -> Set[str]:
        with self._lock:
            return {n for n in self.ids if n.startswith(namespace_prefix)}


class StaticSource(CandidateSource):
    """Returns the same candidate for every intent."""

    def __init__(self, candidate):
        self.candidate = candidate

    def request_candidate(self, intent: str):
        if self.candidate is None:
            raise CandidateUnavailable("nothing configured")
        return self.candidate


def node(node_id: str, short_type: str, **params) -> Dict[str, Any]:
    return {"id": node_id, "typeId": BASE + short_type, "params": params}


def edge(src: str, dest: str, from_port: int = 0, to_port: int = 0) -> Dict[str, Any]:
    return {"fromNodeId": src, "fromPort": from_port, "toNodeId": dest, "toPort": to_port}
