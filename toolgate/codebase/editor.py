"""Search-replace editor: literal string replacement across files of a codebase."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Sequence

from pydantic import Field

from toolgate.codebase.manager import CodebaseManager
from toolgate.tools.schema import ToolArgs

logger = logging.getLogger(__name__)


class ReplacementOp(ToolArgs):
    """Replace ``old_string`` with ``new_string`` in one file. Matching is literal."""

    file_path: str = Field(min_length=1, description="Path to the file to update")
    old_string: str = Field(
        min_length=1,
        description="The exact string to replace (must match file content exactly)",
    )
    new_string: str = Field(description="The replacement string")
    replace_all: bool = Field(default=False, description="Replace all occurrences (default: false)")


def group_by_file(ops: Sequence[ReplacementOp]) -> Dict[str, List[ReplacementOp]]:
    """Group operations by file path, keeping submission order within each group."""
    groups: Dict[str, List[ReplacementOp]] = {}
    for op in ops:
        groups.setdefault(op.file_path, []).append(op)
    return groups


class SearchReplaceEditor:
    """
    Applies batches of :class:`ReplacementOp` to a :class:`CodebaseManager`.

    Operations on the same file run in order, each against the result of
    the previous one, and the file is written back once after its whole
    group. Different files are processed concurrently. One bad operation
    never aborts the batch; every operation gets a status line.
    """

    def __init__(self, codebase: CodebaseManager):
        self.codebase = codebase

    async def apply(self, ops: Sequence[ReplacementOp]) -> List[str]:
        """
        Apply a batch and return one status line per operation.

        Lines are grouped per file (files in order of first appearance) and
        keep submission order within a file.
        """
        groups = group_by_file(ops)
        per_file = await asyncio.gather(
            *(self._apply_file(path, file_ops) for path, file_ops in groups.items())
        )
        return [line for lines in per_file for line in lines]

    async def _apply_file(self, file_path: str, ops: List[ReplacementOp]) -> List[str]:
        results: List[str] = []
        content = self.codebase.get_file_content(file_path)

        for op in ops:
            if content is None:
                results.append(f"Error: File '{file_path}' not found in codebase.")
                continue

            occurrences = content.count(op.old_string)
            if occurrences == 0:
                results.append(
                    f"Error: The string to replace was not found in '{file_path}'. "
                    "Check the exact content including whitespace and indentation."
                )
                continue

            if op.replace_all:
                content = content.replace(op.old_string, op.new_string)
                replaced = occurrences
            else:
                content = content.replace(op.old_string, op.new_string, 1)
                replaced = 1
            results.append(f"Replaced {replaced} occurrence(s) in '{file_path}'.")

        if content is not None:
            self.codebase.update_file(file_path, content)
            logger.debug("Committed %d replacement op(s) to %s", len(ops), file_path)

        return results
