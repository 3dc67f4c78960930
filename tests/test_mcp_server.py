# tests/test_mcp_server.py
"""Tests for the MCP server implementation."""
import json
from unittest.mock import MagicMock, patch

import pytest

from refnotes.config import config
from refnotes.exceptions import HasChildrenError, NoteNotFoundError, ValidationError
from refnotes.models.schema import NoteType
from refnotes.server.mcp_server import RefNotesMcpServer, _validate_input_lengths


def _capture_tools(registered_tools):
    """A FastMCP stand-in whose tool decorator records the functions."""
    mock_mcp = MagicMock()

    def mock_tool_decorator(*args, **kwargs):
        def tool_wrapper(func):
            registered_tools[kwargs.get("name")] = func
            return func
        return tool_wrapper

    mock_mcp.tool = mock_tool_decorator
    return mock_mcp


class TestMcpServer:
    """Tool wiring against a mocked NoteService."""

    def setup_method(self):
        """Set up test environment before each test."""
        self.registered_tools = {}
        self.mock_mcp = _capture_tools(self.registered_tools)
        self.mock_note_service = MagicMock()

        self.mcp_patcher = patch(
            "refnotes.server.mcp_server.FastMCP", return_value=self.mock_mcp
        )
        self.service_patcher = patch(
            "refnotes.server.mcp_server.NoteService", return_value=self.mock_note_service
        )
        self.mcp_patcher.start()
        self.service_patcher.start()

        self.server = RefNotesMcpServer()

    def teardown_method(self):
        """Clean up after each test."""
        self.mcp_patcher.stop()
        self.service_patcher.stop()

    def test_all_tools_registered(self):
        assert set(self.registered_tools) == {
            "rn_create_note",
            "rn_get_note",
            "rn_list_notes",
            "rn_update_note",
            "rn_delete_note",
            "rn_note_tree",
            "rn_parent_options",
            "rn_bibliography",
            "rn_render_note",
            "rn_render_text",
            "rn_backlinks",
            "rn_status",
        }

    def test_create_note_tool(self):
        mock_note = MagicMock(id=3, ref="1.2", title="Methods")
        self.mock_note_service.create_note.return_value = mock_note

        result = self.registered_tools["rn_create_note"](
            title="Methods", note_type="NOTE", parent_id=1
        )

        assert result == "Note created successfully: 1.2 Methods (ID: 3)"
        self.mock_note_service.create_note.assert_called_with(
            title="Methods", note_type=NoteType.NOTE, parent_id=1
        )

    def test_create_note_invalid_type(self):
        result = self.registered_tools["rn_create_note"](title="X", note_type="hub")
        assert result.startswith("Invalid note type: hub")
        self.mock_note_service.create_note.assert_not_called()

    def test_create_note_title_too_long(self):
        result = self.registered_tools["rn_create_note"](title="x" * 501)
        assert result.startswith("Error: Title exceeds maximum length")
        self.mock_note_service.create_note.assert_not_called()

    def test_get_note_requires_identifier(self):
        assert self.registered_tools["rn_get_note"]() == "Error: Provide either note_id or ref."

    def test_get_note_not_found(self):
        self.mock_note_service.get_note_by_ref.side_effect = NoteNotFoundError(
            "9", message="Note with ref '9' not found"
        )
        result = self.registered_tools["rn_get_note"](ref=" 9 ")
        assert result == "Error: Note with ref '9' not found"
        self.mock_note_service.get_note_by_ref.assert_called_with("9")

    def test_delete_note_with_children(self):
        self.mock_note_service.delete_note.side_effect = HasChildrenError(1, 2)
        result = self.registered_tools["rn_delete_note"](note_id=1)
        assert result.startswith("Error: Cannot delete note '1'")

    def test_render_note_invalid_format(self):
        result = self.registered_tools["rn_render_note"](note_id=1, format="pdf")
        assert result.startswith("Invalid format: pdf")

    def test_unexpected_error_is_not_leaked(self):
        self.mock_note_service.list_notes.side_effect = RuntimeError("/secret/path")
        result = self.registered_tools["rn_list_notes"]()
        assert result.startswith("Error: An unexpected error occurred (ref: ")
        assert "/secret/path" not in result


class TestValidateInputLengths:
    def test_within_limits(self):
        _validate_input_lengths(title="ok", content="fine")

    def test_content_too_long(self, monkeypatch):
        monkeypatch.setattr(config, "max_content_length", 5)
        with pytest.raises(ValidationError) as excinfo:
            _validate_input_lengths(content="abcdef")
        assert excinfo.value.field == "content"


class TestMcpToolsIntegration:
    """Tools running against a real database."""

    @pytest.fixture
    def tools(self, db_engine):
        registered_tools = {}
        with patch(
            "refnotes.server.mcp_server.FastMCP",
            return_value=_capture_tools(registered_tools),
        ):
            RefNotesMcpServer(engine=db_engine)
        return registered_tools

    def test_note_workflow(self, tools):
        assert "1 Intro (ID: 1)" in tools["rn_create_note"](title="Intro")
        assert "1.1 Methods" in tools["rn_create_note"](title="Methods", parent_id=1)
        assert "B1 Knuth" in tools["rn_create_note"](title="Knuth", note_type="bib")

        tools["rn_update_note"](note_id=1, content="See ==[[1.1]]== and [[B1]]")

        fetched = tools["rn_get_note"](ref="1")
        assert fetched.startswith("# 1 Intro\nID: 1\nType: note\n")
        assert "See ==[[1.1]]== and [[B1]]" in fetched

        html = tools["rn_render_note"](note_id=1)
        assert "<mark>" in html and "[[1.1 Methods]]" in html and "[[B1 Knuth]]" in html

        assert tools["rn_note_tree"]() == "1 Intro\n  1.1 Methods"
        tree = json.loads(tools["rn_note_tree"](format="json"))
        assert tree[0]["children"][0]["ref"] == "1.1"
        assert tools["rn_parent_options"]().splitlines() == [
            "(none) - create a root note",
            "1 Intro (ID: 1)",
            "  1.1 Methods (ID: 2)",
        ]
        assert tools["rn_bibliography"]() == "- B1 Knuth (ID: 3)"
        assert "- 1 Intro (ID: 1)" in tools["rn_backlinks"](note_id=2)

        listing = tools["rn_list_notes"]()
        assert listing.splitlines()[1:] == [
            "- B1 Knuth (ID: 3)",
            "- 1 Intro (ID: 1)",
            "- 1.1 Methods (ID: 2)",
        ]
        assert tools["rn_list_notes"](note_type="bib").endswith("- B1 Knuth (ID: 3)")

        assert tools["rn_delete_note"](note_id=1).startswith("Error: Cannot delete")
        assert tools["rn_delete_note"](note_id=2) == "Note deleted successfully: 2"

    def test_render_text_preview(self, tools):
        payload = json.loads(tools["rn_render_text"](content="> [[4]]", format="json"))
        assert payload["blocks"][0]["kind"] == "quote"
        assert payload["blocks"][0]["segments"][0]["unresolved"] is True

    def test_blank_title_error(self, tools):
        assert tools["rn_create_note"](title="  ") == "Error: Title is required"

    def test_status(self, tools):
        tools["rn_create_note"](title="Intro")
        status = tools["rn_status"]()
        assert "**Total Notes:** 1" in status
        assert "  - note: 1" in status
        assert "rn_create_note" in status
        assert "## Metrics" not in tools["rn_status"](sections="summary")
