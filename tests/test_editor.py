"""Tests for the codebase manager, the search-replace editor and the codebase tools."""

import asyncio
import json

import pytest
from pydantic import ValidationError

from toolgate.codebase import (
    CodeFile,
    CodebaseManager,
    ReplacementOp,
    SearchReplaceEditor,
    register_codebase_tools,
)
from toolgate.codebase.editor import group_by_file
from toolgate.tools import ErrorKind, ExecutionContext, Success, ToolExecutor, ToolRegistry


class RecordingCodebase(CodebaseManager):
    """CodebaseManager that records every write."""

    def __init__(self, files=None):
        super().__init__(files)
        self.writes = []

    def update_file(self, file_path, content):
        self.writes.append((file_path, content))
        super().update_file(file_path, content)


def op(path, old, new, replace_all=False):
    return ReplacementOp(file_path=path, old_string=old, new_string=new, replace_all=replace_all)


def apply(codebase, ops):
    return asyncio.run(SearchReplaceEditor(codebase).apply(ops))


class TestCodebaseManager:
    def test_load_json(self):
        manager = CodebaseManager.from_json(json.dumps({"files": [
            {"path": "a.py", "content": "x = 1"},
            {"path": "b.py", "content": "", "type": "file"},
        ]}))

        assert manager.get_available_files() == ["a.py", "b.py"]
        assert manager.get_file_content("a.py") == "x = 1"

    def test_empty_file_is_known(self):
        manager = CodebaseManager([CodeFile("empty.py", "")])

        assert manager.get_file_content("empty.py") == ""
        assert manager.get_file_content("missing.py") is None

    def test_load_invalid_json(self):
        manager = CodebaseManager([CodeFile("a.py", "keep")])

        assert manager.load_json("{broken") is False
        assert manager.load_json(json.dumps({"files": [{"content": "no path"}]})) is False
        assert manager.get_file_content("a.py") == "keep"

    def test_to_json_round_trip(self):
        manager = CodebaseManager([CodeFile("a.py", "x = 1")])
        restored = CodebaseManager.from_json(manager.to_json())

        assert restored.get_file("a.py") == CodeFile("a.py", "x = 1")


class TestReplacementOp:
    def test_camel_case_wire_names(self):
        parsed = ReplacementOp.model_validate({
            "filePath": "a.py", "oldString": "x", "newString": "y", "replaceAll": True,
        })

        assert parsed.file_path == "a.py"
        assert parsed.replace_all is True

    def test_empty_old_string_rejected(self):
        with pytest.raises(ValidationError):
            ReplacementOp.model_validate({"filePath": "a.py", "oldString": "", "newString": "y"})

    def test_group_by_file_keeps_order(self):
        ops = [op("a", "1", "2"), op("b", "1", "2"), op("a", "3", "4")]
        groups = group_by_file(ops)

        assert list(groups) == ["a", "b"]
        assert [o.old_string for o in groups["a"]] == ["1", "3"]


class TestSearchReplaceEditor:
    def test_sequential_ops_compose_with_one_write(self):
        codebase = RecordingCodebase([CodeFile("app.py", "value = 1\n")])
        results = apply(codebase, [
            op("app.py", "value = 1", "value = 2"),
            op("app.py", "value = 2", "value = 3"),
        ])

        assert results == [
            "Replaced 1 occurrence(s) in 'app.py'.",
            "Replaced 1 occurrence(s) in 'app.py'.",
        ]
        assert codebase.get_file_content("app.py") == "value = 3\n"
        assert codebase.writes == [("app.py", "value = 3\n")]

    def test_missing_file(self):
        codebase = RecordingCodebase([CodeFile("a.py", "x")])
        results = apply(codebase, [op("ghost.py", "x", "y")])

        assert results == ["Error: File 'ghost.py' not found in codebase."]
        assert codebase.writes == []
        assert codebase.get_file("ghost.py") is None

    def test_string_not_found_continues_batch(self):
        codebase = RecordingCodebase([CodeFile("a.py", "alpha beta")])
        results = apply(codebase, [
            op("a.py", "gamma", "delta"),
            op("a.py", "beta", "BETA"),
        ])

        assert results[0].startswith("Error: The string to replace was not found in 'a.py'.")
        assert "whitespace and indentation" in results[0]
        assert results[1] == "Replaced 1 occurrence(s) in 'a.py'."
        assert codebase.get_file_content("a.py") == "alpha BETA"

    def test_unmatched_existing_file_committed_unchanged(self):
        codebase = RecordingCodebase([CodeFile("a.py", "same")])
        apply(codebase, [op("a.py", "nope", "x")])

        assert codebase.writes == [("a.py", "same")]

    def test_replace_first_only(self):
        codebase = CodebaseManager([CodeFile("a.py", "x x x")])
        results = apply(codebase, [op("a.py", "x", "y")])

        assert results == ["Replaced 1 occurrence(s) in 'a.py'."]
        assert codebase.get_file_content("a.py") == "y x x"

    def test_replace_all_reports_count(self):
        codebase = CodebaseManager([CodeFile("a.py", "x x x")])
        results = apply(codebase, [op("a.py", "x", "y", replace_all=True)])

        assert results == ["Replaced 3 occurrence(s) in 'a.py'."]
        assert codebase.get_file_content("a.py") == "y y y"

    def test_match_is_literal(self):
        codebase = CodebaseManager([CodeFile("a.py", "total = a.b * (c + d)")])
        results = apply(codebase, [op("a.py", "a.b * (c + d)", "price")])

        assert results == ["Replaced 1 occurrence(s) in 'a.py'."]
        assert codebase.get_file_content("a.py") == "total = price"

    def test_empty_file_is_editable_target(self):
        codebase = RecordingCodebase([CodeFile("empty.py", "")])
        results = apply(codebase, [op("empty.py", "x", "y")])

        assert "not found in 'empty.py'" in results[0]
        assert codebase.writes == [("empty.py", "")]

    def test_results_grouped_per_file(self):
        codebase = RecordingCodebase([CodeFile("a.py", "1"), CodeFile("b.py", "2")])
        results = apply(codebase, [
            op("a.py", "1", "one"),
            op("b.py", "2", "two"),
            op("a.py", "missing", "x"),
        ])

        assert results[0] == "Replaced 1 occurrence(s) in 'a.py'."
        assert results[1].startswith("Error: The string to replace was not found in 'a.py'")
        assert results[2] == "Replaced 1 occurrence(s) in 'b.py'."
        assert sorted(path for path, _ in codebase.writes) == ["a.py", "b.py"]


class TestCodebaseTools:
    @pytest.fixture
    def codebase(self):
        return CodebaseManager([
            CodeFile("src/app.py", "print('hi')\n"),
            CodeFile("src/util/helpers.py", "def f():\n    pass\n"),
            CodeFile("README.md", "# demo\n"),
        ])

    @pytest.fixture
    def executor(self, codebase):
        registry = ToolRegistry()
        register_codebase_tools(registry, codebase)
        return ToolExecutor(registry)

    def call(self, executor, name, arguments, grants=("code:read", "code:write")):
        return asyncio.run(executor.invoke(name, arguments, ExecutionContext(permissions=frozenset(grants))))

    def test_search_replace(self, executor, codebase):
        outcome = self.call(executor, "search_replace", {"replacements": [
            {"filePath": "src/app.py", "oldString": "'hi'", "newString": "'hello'"},
            {"filePath": "nope.py", "oldString": "a", "newString": "b"},
        ]})

        assert isinstance(outcome, Success)
        assert outcome.output == (
            "Replaced 1 occurrence(s) in 'src/app.py'.\n"
            "Error: File 'nope.py' not found in codebase."
        )
        assert codebase.get_file_content("src/app.py") == "print('hello')\n"

    def test_search_replace_rejects_empty_batch(self, executor):
        outcome = self.call(executor, "search_replace", {"replacements": []})

        assert outcome.error_kind == ErrorKind.VALIDATION

    def test_search_replace_needs_write_permission(self, executor):
        outcome = self.call(executor, "search_replace", {"replacements": [
            {"filePath": "src/app.py", "oldString": "a", "newString": "b"},
        ]}, grants=("code:read",))

        assert outcome.error_kind == ErrorKind.PERMISSION_DENIED

    def test_list_files(self, executor):
        assert self.call(executor, "list_files", {}).output == {
            "files": ["README.md", "src/app.py", "src/util/helpers.py"],
        }
        assert self.call(executor, "list_files", {"directory": "src/util"}).output == {
            "files": ["src/util/helpers.py"],
        }

    def test_get_files_content(self, executor):
        outcome = self.call(executor, "get_files_content", {"filePaths": ["README.md", "gone.md"]})

        assert outcome.output[0] == {"path": "README.md", "content": "# demo\n", "error": None}
        assert outcome.output[1]["content"] is None
        assert "gone.md" in outcome.output[1]["error"]

    def test_find_files_with_text_case_insensitive_by_default(self, executor):
        outcome = self.call(executor, "find_files_with_text", {"keyword": "DEF"})

        assert outcome.output == {
            "keyword": "DEF",
            "caseSensitive": False,
            "matchingFiles": ["src/util/helpers.py"],
            "count": 1,
        }

    def test_find_files_with_text_case_sensitive(self, executor):
        outcome = self.call(executor, "find_files_with_text", {"keyword": "DEF", "caseSensitive": True})

        assert outcome.output["matchingFiles"] == []
        assert outcome.output["count"] == 0

    def test_find_files_with_text_is_literal(self, executor, codebase):
        codebase.update_file("src/regex.txt", "a.*b")

        outcome = self.call(executor, "find_files_with_text", {"keyword": ".*"})

        assert outcome.output["matchingFiles"] == ["src/regex.txt"]

    def test_find_files_with_text_directory_scope(self, executor):
        everywhere = self.call(executor, "find_files_with_text", {"keyword": "p"})
        scoped = self.call(executor, "find_files_with_text", {"keyword": "p", "directory": "src/util/"})

        assert everywhere.output["matchingFiles"] == ["src/app.py", "src/util/helpers.py"]
        assert scoped.output["matchingFiles"] == ["src/util/helpers.py"]

    def test_find_files_with_text_is_read_only(self, executor):
        outcome = self.call(executor, "find_files_with_text", {"keyword": "x"}, grants=("code:read",))

        assert isinstance(outcome, Success)
