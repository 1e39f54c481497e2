"""
Tests for the tool bridge between model tool calls and skills
"""

import asyncio

from little_helper.providers.base import ToolUseComplete
from little_helper.skills.base import Mode, SkillInput
from little_helper.skills.tools import (
    dispatch_tool_call, tool_definitions, tool_input, tool_result_text,
)


class TestToolDefinitions:
    """Skills offered as tools."""

    def test_definitions_follow_mode(self, helper_env):
        """Only skills available in the mode are offered."""
        find = {t["name"] for t in tool_definitions(helper_env.registry, Mode.FIND)}
        research = {t["name"] for t in tool_definitions(helper_env.registry, Mode.RESEARCH)}

        assert "fuzzy_search" in find
        assert "fuzzy_search" not in research
        assert "version_history" in research

    def test_definition_shape(self, helper_env):
        """Each definition has name, description and an object schema."""
        by_name = {t["name"]: t for t in tool_definitions(helper_env.registry, Mode.FIND)}
        restore = by_name["version_restore"]
        assert restore["description"]
        assert restore["input_schema"]["type"] == "object"
        assert restore["input_schema"]["required"] == ["path", "version"]


class TestDispatch:
    """Completed tool calls run through the executor."""

    def test_tool_input(self):
        """Arguments become params; a string query is also the query text."""
        assert tool_input({"query": "budget", "limit": 5}) == SkillInput(
            query="budget", params={"query": "budget", "limit": 5})
        assert tool_input({"path": "/x"}).query == ""
        assert tool_input({}).params == {}

    def test_dispatch_runs_skill(self, helper_env):
        """A tool call for an enabled skill completes."""
        path = helper_env.write_file("notes.txt", "x")
        chunk = ToolUseComplete("tu_1", "version_history", {"path": str(path)})

        execution = asyncio.run(dispatch_tool_call(chunk, helper_env.executor, helper_env.context()))

        assert execution.succeeded
        assert tool_result_text(execution).startswith("No saved versions found for 'notes.txt'.")

    def test_dispatch_keeps_permission_checks(self, helper_env):
        """A sensitive tool call without approval is refused, and says so."""
        path = helper_env.write_file("notes.txt", "x")
        chunk = ToolUseComplete("tu_2", "file_archive", {"path": str(path)})

        execution = asyncio.run(dispatch_tool_call(chunk, helper_env.executor, helper_env.context()))

        assert not execution.succeeded
        assert tool_result_text(execution) == \
            "Error (permission_denied): Permission denied for skill: file_archive"
        assert path.exists()

    def test_unknown_tool(self, helper_env):
        """Unknown tool names are not found."""
        chunk = ToolUseComplete("tu_3", "web_search", {"query": "x"})
        execution = asyncio.run(dispatch_tool_call(chunk, helper_env.executor, helper_env.context()))
        assert tool_result_text(execution).startswith("Error (not_found)")
