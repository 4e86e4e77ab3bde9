"""Codebase tools: list, search, read, and edit files of the in-memory codebase."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from toolgate.codebase.editor import ReplacementOp, SearchReplaceEditor
from toolgate.codebase.manager import CodebaseManager
from toolgate.tools.registry import ToolRegistry
from toolgate.tools.schema import (
    CapabilityDescriptor,
    ExecutionContext,
    Success,
    ToolArgs,
    ToolMetadata,
)


class SearchReplaceArgs(ToolArgs):
    replacements: List[ReplacementOp] = Field(
        min_length=1,
        description="Replacement operations to perform, in order",
    )


class ListFilesArgs(ToolArgs):
    directory: Optional[str] = Field(
        default=None,
        description="Directory to list. Empty or '.' lists every file.",
    )


class GetFilesContentArgs(ToolArgs):
    file_paths: List[str] = Field(min_length=1, description="Paths of the files to read")


class FindFilesWithTextArgs(ToolArgs):
    keyword: str = Field(
        min_length=1,
        description="Literal text string to search for in files (not a regex pattern)",
    )
    case_sensitive: Optional[bool] = Field(
        default=None,
        description="Whether the search should be case sensitive",
    )
    directory: Optional[str] = Field(
        default=None,
        description="Optional directory to limit search scope",
    )


def filter_by_directory(paths: List[str], directory: Optional[str]) -> List[str]:
    """Keep paths under ``directory``. Empty or '.' keeps everything."""
    if not directory or directory == ".":
        return list(paths)
    prefix = directory if directory.endswith("/") else f"{directory}/"
    return [p for p in paths if p == directory or p.startswith(prefix)]


class CodebaseToolset:
    """Tools over one :class:`CodebaseManager`."""

    def __init__(self, codebase: CodebaseManager):
        self.codebase = codebase
        self.editor = SearchReplaceEditor(codebase)

    async def search_replace(self, args: SearchReplaceArgs, context: ExecutionContext) -> Success:
        lines = await self.editor.apply(args.replacements)
        return Success(output="\n".join(lines))

    async def list_files(self, args: ListFilesArgs, context: ExecutionContext) -> Success:
        paths = filter_by_directory(self.codebase.get_available_files(), args.directory)
        return Success(output={"files": sorted(paths)})

    async def find_files_with_text(self, args: FindFilesWithTextArgs, context: ExecutionContext) -> Success:
        case_sensitive = bool(args.case_sensitive)
        needle = args.keyword if case_sensitive else args.keyword.lower()

        matching = []
        for path in filter_by_directory(self.codebase.get_available_files(), args.directory):
            content = self.codebase.get_file_content(path)
            if content is None:
                continue
            haystack = content if case_sensitive else content.lower()
            if needle in haystack:
                matching.append(path)

        matching.sort()
        return Success(output={
            "keyword": args.keyword,
            "caseSensitive": case_sensitive,
            "matchingFiles": matching,
            "count": len(matching),
        })

    async def get_files_content(self, args: GetFilesContentArgs, context: ExecutionContext) -> Success:
        files: List[Dict[str, Any]] = []
        for path in args.file_paths:
            content = self.codebase.get_file_content(path)
            if content is None:
                files.append({"path": path, "content": None, "error": f"File not found in codebase: {path}"})
            else:
                files.append({"path": path, "content": content, "error": None})
        return Success(output=files)

    def descriptors(self) -> List[CapabilityDescriptor]:
        return [
            CapabilityDescriptor(
                name="search_replace",
                description=(
                    "Search and replace content in existing files. Use this for targeted updates "
                    "instead of rewriting whole files. oldString must match the file content "
                    "exactly, including whitespace and indentation."
                ),
                parameters=SearchReplaceArgs,
                permissions=frozenset({"code:write"}),
                metadata=ToolMetadata(category="code", timeout_ms=20_000),
                handler=self.search_replace,
            ),
            CapabilityDescriptor(
                name="list_files",
                description="List files in the codebase, optionally filtered by directory.",
                parameters=ListFilesArgs,
                permissions=frozenset({"code:read"}),
                metadata=ToolMetadata(category="code", timeout_ms=5_000),
                handler=self.list_files,
            ),
            CapabilityDescriptor(
                name="find_files_with_text",
                description=(
                    "Find files in the codebase that contain a literal keyword. "
                    "Case-insensitive unless caseSensitive is true."
                ),
                parameters=FindFilesWithTextArgs,
                permissions=frozenset({"code:read"}),
                metadata=ToolMetadata(category="code", timeout_ms=5_000),
                handler=self.find_files_with_text,
            ),
            CapabilityDescriptor(
                name="get_files_content",
                description="Read the contents of specific files in the codebase.",
                parameters=GetFilesContentArgs,
                permissions=frozenset({"code:read"}),
                metadata=ToolMetadata(category="code", timeout_ms=5_000),
                handler=self.get_files_content,
            ),
        ]


def register_codebase_tools(registry: ToolRegistry, codebase: CodebaseManager) -> CodebaseToolset:
    toolset = CodebaseToolset(codebase)
    registry.register_all(toolset.descriptors())
    return toolset
