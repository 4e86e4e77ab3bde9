"""
Toolgate Codebase Manager - In-memory representation of a generated app's files.

The editing tools read and write through this store; nothing touches the
real filesystem.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CodeFile:
    """A single file in the codebase."""

    path: str
    content: str
    type: str = "file"


class CodebaseManager:
    """
    Shared in-memory codebase keyed by file path.

    Example:
        >>> manager = CodebaseManager.from_json('{"files": [{"path": "a.py", "content": "x = 1"}]}')
        >>> manager.get_file_content("a.py")
        'x = 1'
    """

    def __init__(self, files: Optional[List[CodeFile]] = None):
        self._files: Dict[str, CodeFile] = {f.path: f for f in files or []}

    @classmethod
    def from_json(cls, codebase_str: str) -> "CodebaseManager":
        manager = cls()
        manager.load_json(codebase_str)
        return manager

    def load_json(self, codebase_str: str) -> bool:
        """
        Replace the codebase from ``{"files": [{"path", "content", "type"?}]}``.

        Returns:
            True on success, False if the payload could not be parsed.
        """
        try:
            codebase = json.loads(codebase_str)
            files = {
                f["path"]: CodeFile(path=f["path"], content=f.get("content", ""), type=f.get("type", "file"))
                for f in codebase.get("files", [])
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("Failed to load codebase: %s", e)
            return False

        self._files = files
        return True

    def to_json(self) -> str:
        return json.dumps(
            {"files": [{"path": f.path, "content": f.content, "type": f.type} for f in self._files.values()]},
            indent=2,
        )

    def get_available_files(self) -> List[str]:
        return list(self._files.keys())

    def get_file(self, file_path: str) -> Optional[CodeFile]:
        return self._files.get(file_path)

    def get_file_content(self, file_path: str) -> Optional[str]:
        """File content, or None if the file is unknown. An empty file returns ''."""
        file = self._files.get(file_path)
        return file.content if file is not None else None

    def update_file(self, file_path: str, content: str) -> None:
        existing = self._files.get(file_path)
        self._files[file_path] = CodeFile(
            path=file_path,
            content=content,
            type=existing.type if existing else "file",
        )
