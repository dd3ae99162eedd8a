from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.errors import CandidateUnparseable


def _as_str(value: Any) -> Optional[str]:
    """ Ids and names may arrive as numbers; anything non-scalar is dropped. """
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    type_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("typeId", "type_id", "type"))
    params: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("params", "parameters"))
    position: Optional[Any] = None

    @field_validator("id", "name", "type_id", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return _as_str(value)

    @field_validator("params", mode="before")
    @classmethod
    def _coerce_params(cls, value: Any) -> Optional[Dict[str, Any]]:
        # non-mapping params are dropped so required ones surface as defects
        return value if isinstance(value, dict) else None


class ConnectionSpec(BaseModel):
    """ Ports are kept loose here and coerced by the compiler. """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_node_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("fromNodeId", "from_node_id", "from"))
    from_port: Any = Field(default=0, validation_alias=AliasChoices("fromPort", "from_port"))
    to_node_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("toNodeId", "to_node_id", "to"))
    to_port: Any = Field(default=0, validation_alias=AliasChoices("toPort", "to_port"))

    @field_validator("from_node_id", "to_node_id", mode="before")
    @classmethod
    def _coerce_endpoint(cls, value: Any) -> Optional[str]:
        return _as_str(value)


class CandidateSpec(BaseModel):
    """
    Top-level shape only. Node and connection entries are validated one at a
    time by the compiler, so one malformed entry becomes a defect instead of
    rejecting the whole candidate.
    """
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    nodes: List[Any]
    # a list of connection entries, or an n8n connection map keyed by source node name
    connections: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Optional[str]:
        return _as_str(value)


def validate_candidate(raw: Dict[str, Any]) -> CandidateSpec:
    """Validate a raw candidate dict against CandidateSpec."""
    try:
        return CandidateSpec.model_validate(raw)
    except ValidationError as e:
        raise CandidateUnparseable(f"Candidate validation error: {e}") from e


def node_spec(entry: Any) -> NodeSpec:
    """ Lenient per-node validation; a non-mapping entry becomes an empty spec. """
    return NodeSpec.model_validate(entry if isinstance(entry, dict) else {})


def connection_spec(entry: Any) -> ConnectionSpec:
    """ Lenient per-connection validation; a non-mapping entry has no endpoints. """
    return ConnectionSpec.model_validate(entry if isinstance(entry, dict) else {})
