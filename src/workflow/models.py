""" Data models for candidate workflow graphs, defects and repair records. """

import copy
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from src.errors import DuplicateIdError, OwnerImmutableError, UnknownEndpointError

if TYPE_CHECKING:
    from src.workflow.catalog import NodeCatalog


class GraphStatus(str, Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    REPAIRED = "repaired"
    FALLBACK = "fallback"
    DEPLOYED = "deployed"
    FAILED = "failed"


class Severity(str, Enum):
    BLOCKING = "blocking"
    WARNING = "warning"


class DefectKind(str, Enum):
    MISSING_REQUIRED_PARAM = "MissingRequiredParam"
    DANGLING_CONNECTION = "DanglingConnection"
    PORT_ARITY_MISMATCH = "PortArityMismatch"
    NO_TRIGGER = "NoTrigger"
    CYCLE = "Cycle"
    UNKNOWN_TYPE = "UnknownType"
    DUPLICATE_ID = "DuplicateId"
    ORPHANED_NODE = "OrphanedNode"


@dataclass(frozen=True)
class NodeTypeSpec:
    """ Static definition of one kind of workflow node. """
    type_id: str
    required_params: Tuple[str, ...] = ()
    optional_params: Mapping[str, Any] = field(default_factory=dict)
    input_ports: int = 1
    output_ports: int = 1
    # defaults for required params, used when repairing a candidate
    defaults: Mapping[str, Any] = field(default_factory=dict)
    display_name: str = ""

    def __post_init__(self):
        # catalog entries are shared process-wide; hand out read-only views
        object.__setattr__(self, "optional_params", MappingProxyType(copy.deepcopy(dict(self.optional_params))))
        object.__setattr__(self, "defaults", MappingProxyType(copy.deepcopy(dict(self.defaults))))
        object.__setattr__(self, "required_params", tuple(self.required_params))

    @property
    def is_trigger(self) -> bool:
        return self.input_ports == 0


@dataclass
class NodeInstance:
    id: str
    type_id: str
    params: Dict[str, Any] = field(default_factory=dict)
    position: Optional[Tuple[int, int]] = None
    name: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = self.id


@dataclass(frozen=True)
class Connection:
    from_node_id: str
    from_port: int
    to_node_id: str
    to_port: int = 0

    @property
    def ref(self) -> str:
        return f"{self.from_node_id}[{self.from_port}]->{self.to_node_id}[{self.to_port}]"


@dataclass(frozen=True)
class Defect:
    kind: DefectKind
    detail: str
    severity: Severity = Severity.BLOCKING
    node_id: Optional[str] = None
    connection_ref: Optional[str] = None
    param: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.BLOCKING


@dataclass
class RepairAttempt:
    """ Record of one repair pass, kept in the request's audit trail. """
    attempt_number: int
    defects_before: List[Defect]
    transformations_applied: List[str] = field(default_factory=list)
    defects_after: List[Defect] = field(default_factory=list)


class WorkflowGraph:
    """
    A candidate workflow: ordered nodes plus directed connections.

    Constructing a graph directly keeps whatever nodes and connections it is
    given, including duplicate ids and dangling references, so that the
    validator can report them. ``add_node``/``add_connection`` are the checked
    entry points for building a graph programmatically.
    """

    def __init__(self, name: str, owner_id: Optional[str] = None,
                 nodes: Optional[Iterable[NodeInstance]] = None,
                 connections: Optional[Iterable[Connection]] = None,
                 status: GraphStatus = GraphStatus.DRAFT):
        self.name = name
        self._owner_id = owner_id
        self.nodes: List[NodeInstance] = list(nodes or [])
        self.connections: List[Connection] = list(connections or [])
        self.status = status

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @owner_id.setter
    def owner_id(self, value: str) -> None:
        if self._owner_id is not None and value != self._owner_id:
            raise OwnerImmutableError(f"Owner of workflow '{self.name}' is already set")
        self._owner_id = value

    def __repr__(self) -> str:
        return (f"WorkflowGraph(name={self.name!r}, owner_id={self._owner_id!r}, "
                f"nodes={len(self.nodes)}, connections={len(self.connections)}, "
                f"status={self.status.value})")

    # -------------------------
    # MUTATION
    # -------------------------

    def add_node(self, node: NodeInstance) -> NodeInstance:
        if self.get_node(node.id) is not None:
            raise DuplicateIdError(f"Node id already in graph: {node.id}")
        self.nodes.append(node)
        return node

    def add_connection(self, connection: Connection) -> Connection:
        """ Port bounds are the validator's concern; only endpoints are checked here. """
        ids = self.node_ids()
        for endpoint in (connection.from_node_id, connection.to_node_id):
            if endpoint not in ids:
                raise UnknownEndpointError(f"Connection references unknown node: {connection.ref}")
        self.connections.append(connection)
        return connection

    def remove_connection(self, connection: Connection) -> None:
        self.connections.remove(connection)

    # -------------------------
    # QUERIES
    # -------------------------

    def get_node(self, node_id: str) -> Optional[NodeInstance]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> Set[str]:
        return {node.id for node in self.nodes}

    def _adjacency(self) -> Dict[str, List[Connection]]:
        ids = self.node_ids()
        adjacency: Dict[str, List[Connection]] = {}
        for conn in self.connections:
            if conn.from_node_id in ids and conn.to_node_id in ids:
                adjacency.setdefault(conn.from_node_id, []).append(conn)
        return adjacency

    def trigger_ids(self, catalog: "NodeCatalog") -> List[str]:
        triggers = []
        for node in self.nodes:
            spec = catalog.lookup(node.type_id)
            if spec is not None and spec.is_trigger:
                triggers.append(node.id)
        return triggers

    def reachable_from_triggers(self, catalog: "NodeCatalog") -> Set[str]:
        """ BFS from every trigger node; dangling connections are ignored. """
        adjacency = self._adjacency()
        start = self.trigger_ids(catalog)
        seen: Set[str] = set(start)
        queue = deque(start)
        while queue:
            current = queue.popleft()
            for conn in adjacency.get(current, []):
                if conn.to_node_id not in seen:
                    seen.add(conn.to_node_id)
                    queue.append(conn.to_node_id)
        return seen

    def find_cycle(self) -> Optional[List[Connection]]:
        """
        Return the connections forming the first directed cycle found, or None.

        Traversal follows node order then connection order, so the result is
        stable for a given graph. The last connection is the back edge that
        closes the cycle. Iterative, so long chains don't hit the recursion
        limit.
        """
        adjacency = self._adjacency()
        state: Dict[str, int] = {}   # 1 = on the current path, 2 = finished

        for root in self.nodes:
            if state.get(root.id, 0):
                continue
            state[root.id] = 1
            path_nodes: List[str] = [root.id]
            # path[i] is the connection from path_nodes[i] to path_nodes[i + 1]
            path: List[Connection] = []
            pending = [iter(adjacency.get(root.id, []))]
            while pending:
                conn = next(pending[-1], None)
                if conn is None:
                    pending.pop()
                    state[path_nodes.pop()] = 2
                    if path:
                        path.pop()
                    continue
                nxt = conn.to_node_id
                nxt_state = state.get(nxt, 0)
                if nxt_state == 1:
                    start = path_nodes.index(nxt)
                    return path[start:] + [conn]
                if nxt_state == 0:
                    state[nxt] = 1
                    path_nodes.append(nxt)
                    path.append(conn)
                    pending.append(iter(adjacency.get(nxt, [])))
        return None

    def detect_cycle(self) -> bool:
        return self.find_cycle() is not None

    # -------------------------
    # COPY / SERIALISE
    # -------------------------

    def copy(self) -> "WorkflowGraph":
        return WorkflowGraph(
            name=self.name,
            owner_id=self._owner_id,
            nodes=copy.deepcopy(self.nodes),
            connections=list(self.connections),
            status=self.status,
        )

    def to_dict(self) -> Dict[str, Any]:
        """ Graph-shaped JSON, the same shape ``compiler.load_candidate`` accepts. """
        return {
            "name": self.name,
            "ownerId": self._owner_id,
            "status": self.status.value,
            "nodes": [
                {
                    "id": n.id,
                    "name": n.name,
                    "typeId": n.type_id,
                    "params": copy.deepcopy(n.params),
                    "position": list(n.position) if n.position else None,
                }
                for n in self.nodes
            ],
            "connections": [
                {
                    "fromNodeId": c.from_node_id,
                    "fromPort": c.from_port,
                    "toNodeId": c.to_node_id,
                    "toPort": c.to_port,
                }
                for c in self.connections
            ],
        }
