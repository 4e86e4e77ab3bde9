"""
Toolgate codebase module.

In-memory file store for generated apps and the tools that edit it.
"""

from toolgate.codebase.manager import CodeFile, CodebaseManager
from toolgate.codebase.editor import ReplacementOp, SearchReplaceEditor
from toolgate.codebase.tools import CodebaseToolset, register_codebase_tools

__all__ = [
    "CodeFile",
    "CodebaseManager",
    "ReplacementOp",
    "SearchReplaceEditor",
    "CodebaseToolset",
    "register_codebase_tools",
]
