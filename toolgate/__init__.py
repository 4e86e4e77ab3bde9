"""
Toolgate - Gated tool invocation for LLM agents.

Capabilities are declared once as descriptors, cataloged in a frozen
registry and executed only through the execution gate:

    model tool call -> ToolExecutor -> validate -> permit -> confirm -> handler

Tool families:
- db: row-level reads and confirmed writes on a document's data store
- web: web and image search
- knowledge: weighted retrieval across knowledge bases
- code: literal search-replace over an in-memory codebase
"""

__version__ = "1.0.0"

from toolgate.tools import (
    CapabilityDescriptor,
    ExecutionContext,
    Failure,
    NeedsConfirmation,
    Success,
    ToolExecutor,
    ToolRegistry,
)

__all__ = [
    "CapabilityDescriptor",
    "ExecutionContext",
    "Failure",
    "NeedsConfirmation",
    "Success",
    "ToolExecutor",
    "ToolRegistry",
    "__version__",
]
