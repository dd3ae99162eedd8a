""" The minimal pre-validated workflow used when a candidate cannot be repaired. """

from src.workflow.catalog import BASE, default_catalog
from src.workflow.models import Connection, GraphStatus, NodeInstance, WorkflowGraph
from src.workflow.validator import blocking, validate


def _build_safe_graph() -> WorkflowGraph:
    graph = WorkflowGraph(name="Fallback Workflow")
    graph.add_node(NodeInstance(id="trigger", type_id=BASE + "manualTrigger",
                                position=(250, 300), name="Manual Trigger"))
    graph.add_node(NodeInstance(id="respond", type_id=BASE + "noOp",
                                position=(450, 300), name="No Operation"))
    graph.add_connection(Connection("trigger", 0, "respond", 0))
    return graph


SAFE_GRAPH = _build_safe_graph()


def assert_fallback_safe() -> None:
    """Raise if the safe graph has any blocking defect against the default catalog."""
    defects = blocking(validate(SAFE_GRAPH, default_catalog()))
    if defects:
        raise RuntimeError(f"Fallback graph is not valid: {[d.detail for d in defects]}")


def fallback_graph(owner_id: str, name: str) -> WorkflowGraph:
    """ A fresh copy of the safe graph retagged for the requesting owner. """
    graph = SAFE_GRAPH.copy()
    graph.name = name
    graph.owner_id = owner_id
    graph.status = GraphStatus.FALLBACK
    return graph


assert_fallback_safe()
