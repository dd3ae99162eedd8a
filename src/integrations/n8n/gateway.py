"""
Deployment gateway: owner namespacing plus idempotent upsert to the workflow engine.

Every externally visible identifier is prefixed with the owner's tag before it
leaves the process, so two owners can never collide on a shared n8n instance:
the workflow name becomes ``[USR-<owner>] <name>`` and webhook paths become
``usr-<owner>/<path>``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from src.errors import DeploymentError
from src.integrations.n8n.export import graph_to_n8n
from src.workflow.catalog import BASE
from src.workflow.models import WorkflowGraph

logger = logging.getLogger(__name__)

WEBHOOK_TYPE = BASE + "webhook"


class WorkflowEngine(ABC):
    """ The hosted execution engine, as seen by the gateway. """

    @abstractmethod
    def create_or_update_workflow(self, workflow: Dict[str, Any]) -> str:
        """ Upsert by workflow name; return the engine's workflow id. """

    @abstractmethod
    def list_existing_names(self, namespace_prefix: str) -> Set[str]:
        """ Names of existing workflows that start with ``namespace_prefix``. """


@dataclass
class DeploymentResult:
    success: bool
    external_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    namespaced_name: Optional[str] = None
    webhook_paths: List[str] = field(default_factory=list)
    created: bool = False


def namespace_prefix(owner_id: str) -> str:
    return f"[USR-{owner_id}] "


def namespace_name(owner_id: str, name: str) -> str:
    prefix = namespace_prefix(owner_id)
    return name if name.startswith(prefix) else prefix + name


def namespace_path(owner_id: str, path: str) -> str:
    prefix = f"usr-{owner_id}/"
    path = path.lstrip("/")
    return path if path.startswith(prefix) else prefix + path


def namespace_graph(graph: WorkflowGraph) -> WorkflowGraph:
    """ Return a namespaced copy of ``graph``; applying it twice changes nothing. """
    if not graph.owner_id:
        raise ValueError(f"Workflow '{graph.name}' has no owner to namespace by")
    namespaced = graph.copy()
    namespaced.name = namespace_name(graph.owner_id, graph.name)
    for node in namespaced.nodes:
        if node.type_id == WEBHOOK_TYPE and isinstance(node.params.get("path"), str):
            node.params["path"] = namespace_path(graph.owner_id, node.params["path"])
    return namespaced


class DeploymentGateway:
    def __init__(self, engine: WorkflowEngine):
        self.engine = engine

    def deploy(self, graph: WorkflowGraph) -> DeploymentResult:
        """
        Namespace ``graph`` and upsert it by namespaced name.

        Engine failures come back as an unsuccessful result rather than an
        exception.
        """
        namespaced = namespace_graph(graph)
        webhook_paths = [n.params["path"] for n in namespaced.nodes
                         if n.type_id == WEBHOOK_TYPE and isinstance(n.params.get("path"), str)]
        try:
            existing = self.engine.list_existing_names(namespace_prefix(graph.owner_id))
            created = namespaced.name not in existing
            external_id = self.engine.create_or_update_workflow(graph_to_n8n(namespaced))
        except DeploymentError as e:
            logger.warning("Deployment of %r failed (%s): %s", namespaced.name, e.kind, e)
            return DeploymentResult(success=False, error=str(e), error_kind=e.kind,
                                    namespaced_name=namespaced.name, webhook_paths=webhook_paths)

        logger.info("%s %r as %s", "Created" if created else "Updated", namespaced.name, external_id)
        return DeploymentResult(success=True, external_id=external_id,
                                namespaced_name=namespaced.name, webhook_paths=webhook_paths,
                                created=created)
