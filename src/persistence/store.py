""" Record store for generation results, keyed by (owner_id, request_id). """

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class GenerationRecord:
    owner_id: str
    request_id: str
    workflow_name: str
    state: str
    graph: Dict[str, Any] = field(default_factory=dict)
    audit_trail: List[Dict[str, Any]] = field(default_factory=list)
    external_id: Optional[str] = None
    correlation_id: Optional[str] = None
    error_kind: Optional[str] = None
    updated_at: float = field(default_factory=time.time)


class RecordStore(ABC):
    """
    Persistence collaborator. Implementations are responsible for row-level
    isolation: reads are always scoped to one owner.
    """

    @abstractmethod
    def put(self, record: GenerationRecord) -> None: ...

    @abstractmethod
    def get(self, owner_id: str, request_id: str) -> Optional[GenerationRecord]: ...

    @abstractmethod
    def list_for_owner(self, owner_id: str) -> List[GenerationRecord]: ...

    @abstractmethod
    def delete(self, owner_id: str, request_id: str) -> bool: ...


class InMemoryRecordStore(RecordStore):
    def __init__(self):
        self._records: Dict[Tuple[str, str], GenerationRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: GenerationRecord) -> None:
        record.updated_at = time.time()
        with self._lock:
            self._records[(record.owner_id, record.request_id)] = record

    def get(self, owner_id: str, request_id: str) -> Optional[GenerationRecord]:
        with self._lock:
            return self._records.get((owner_id, request_id))

    def list_for_owner(self, owner_id: str) -> List[GenerationRecord]:
        with self._lock:
            records = [r for (owner, _), r in self._records.items() if owner == owner_id]
        return sorted(records, key=lambda r: r.updated_at)

    def delete(self, owner_id: str, request_id: str) -> bool:
        with self._lock:
            return self._records.pop((owner_id, request_id), None) is not None
