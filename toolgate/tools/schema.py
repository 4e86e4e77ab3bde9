"""Data models for capability descriptors, invocation context, and outcomes."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ToolArgs(BaseModel):
    """Base for tool parameter schemas: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every tool."""

    VALIDATION = "validation_error"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    TRANSIENT = "transient_error"
    INTERNAL = "internal_error"
    NOT_FOUND = "not_found"
    NO_SOURCE_CONFIGURED = "no_source_configured"


class ToolError(Exception):
    """Raised by a handler to report a typed failure instead of a defect."""

    def __init__(self, kind: ErrorKind, message: str, retryable: bool = False):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable


class KnowledgeSourceConfig(BaseModel):
    """A knowledge base the caller may search, with its score multiplier."""

    id: str
    weight: float = Field(default=1.0, gt=0)


class ExecutionContext(BaseModel):
    """Ambient caller state handed to every handler (read-only)."""

    model_config = ConfigDict(frozen=True)

    user_id: str = ""
    organization_id: str = ""
    doc_id: Optional[str] = None
    permissions: FrozenSet[str] = Field(default_factory=frozenset)
    knowledge_sources: List[KnowledgeSourceConfig] = Field(default_factory=list)


# ── Outcomes ──────────────────────────────────────────────────────────────


class ConfirmPayload(BaseModel):
    """What a human is shown before a side-effecting call goes through."""

    kind: str
    title: str
    details: Dict[str, Any] = Field(default_factory=dict)


class Success(BaseModel):
    kind: Literal["success"] = "success"
    output: Any = None

    def to_tool_message(self) -> str:
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, default=str)


class Failure(BaseModel):
    kind: Literal["failure"] = "failure"
    error_kind: ErrorKind
    message: str
    retryable: bool = False

    def to_tool_message(self) -> str:
        return f"Error: {self.message}"


class NeedsConfirmation(BaseModel):
    """Not an error: re-issue the same call with ``confirm=true`` to proceed."""

    kind: Literal["needs_confirmation"] = "needs_confirmation"
    confirm_payload: ConfirmPayload

    def to_tool_message(self) -> str:
        return f"Confirmation required: {self.confirm_payload.title}"


Outcome = Union[Success, Failure, NeedsConfirmation]

OUTCOME_TYPES = (Success, Failure, NeedsConfirmation)


# ── Descriptors ───────────────────────────────────────────────────────────


class ToolMetadata(BaseModel):
    """Execution metadata for a capability."""

    model_config = ConfigDict(frozen=True)

    category: Literal["db", "web", "code", "knowledge", "system"] = "system"
    requires_confirm: bool = False
    timeout_ms: int = Field(default=30_000, gt=0)
    max_retries: int = Field(default=0, ge=0)


Handler = Callable[[Any, ExecutionContext], Awaitable[Any]]
ConfirmBuilder = Callable[[Any], ConfirmPayload]


class CapabilityDescriptor(BaseModel):
    """Static declaration of a callable capability. Immutable once built."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    version: str = "1.0.0"
    description: str
    parameters: Type[BaseModel]
    permissions: FrozenSet[str] = Field(default_factory=frozenset)
    metadata: ToolMetadata = Field(default_factory=ToolMetadata)
    handler: Handler
    confirm_builder: Optional[ConfirmBuilder] = None

    def parameter_schema(self) -> Dict[str, Any]:
        """JSON schema of the call arguments, as advertised to the model."""
        return self.parameters.model_json_schema(by_alias=True)

    def external_format(self) -> Dict[str, Any]:
        """``{name, description, parameterSchema}``; the handler never leaves the process."""
        return {
            "name": self.name,
            "description": self.description,
            "parameterSchema": self.parameter_schema(),
        }
