"""
Tool invocation layer.

Descriptors declare a capability (name, schema, permissions, metadata,
handler). The registry catalogs them once at startup; the executor is the
only path from a model's tool call to a handler:

    caller --> ToolExecutor (lookup -> validate -> permit -> confirm -> supervise) --> handler
"""

from toolgate.tools.schema import (
    CapabilityDescriptor,
    ConfirmPayload,
    ErrorKind,
    ExecutionContext,
    Failure,
    KnowledgeSourceConfig,
    NeedsConfirmation,
    Outcome,
    Success,
    ToolArgs,
    ToolError,
    ToolMetadata,
)
from toolgate.tools.registry import DuplicateNameError, RegistryFrozenError, ToolRegistry
from toolgate.tools.executor import ToolExecutor, invoke_with_retries

__all__ = [
    "CapabilityDescriptor",
    "ConfirmPayload",
    "ErrorKind",
    "ExecutionContext",
    "Failure",
    "KnowledgeSourceConfig",
    "NeedsConfirmation",
    "Outcome",
    "Success",
    "ToolArgs",
    "ToolError",
    "ToolMetadata",
    "DuplicateNameError",
    "RegistryFrozenError",
    "ToolRegistry",
    "ToolExecutor",
    "invoke_with_retries",
]
