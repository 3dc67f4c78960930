"""MCP server implementation for refnotes."""

import json
import logging
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from refnotes.config import config
from refnotes.exceptions import RefNotesError, ValidationError
from refnotes.models.schema import Note, NoteType
from refnotes.observability import metrics, timed_operation
from refnotes.services.note_service import NoteService

logger = logging.getLogger(__name__)

SERVER_INSTRUCTIONS = (
    "Hierarchical notes with stable refs (1, 1.2, 1.2.1) and a flat "
    "bibliography (B1, B2). Link notes from content with [[ref]]."
)

RENDER_FORMATS = ("html", "json")


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > config.max_title_length:
        raise ValidationError(
            f"Title exceeds maximum length of {config.max_title_length} characters",
            field="title",
        )
    if content and len(content) > config.max_content_length:
        raise ValidationError(
            f"Content exceeds maximum length of {config.max_content_length} characters",
            field="content",
        )


def _note_line(note: Note) -> str:
    return f"- {note.ref} {note.title} (ID: {note.id})"


class RefNotesMcpServer:
    """MCP server for refnotes."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine. When None, the
                repository creates its own from config.
        """
        self.mcp = FastMCP(config.server_name, instructions=SERVER_INSTRUCTIONS)
        self.note_service = NoteService(engine=engine)
        self._register_tools()
        logger.info("refnotes MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Generate a unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, RefNotesError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="rn_create_note")
        def rn_create_note(
            title: str, note_type: str = "note", parent_id: Optional[int] = None
        ) -> str:
            """Create a note. Its ref is assigned automatically and never changes.
            Args:
                title: The title of the note
                note_type: "note" for the tree or "bib" for the bibliography
                parent_id: ID of the parent note (tree notes only; omit for a root note)
            """
            with timed_operation("rn_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title)
                    try:
                        note_type_enum = NoteType(note_type.lower())
                    except ValueError:
                        return f"Invalid note type: {note_type}. Valid types are: {', '.join(t.value for t in NoteType)}"

                    note = self.note_service.create_note(
                        title=title, note_type=note_type_enum, parent_id=parent_id
                    )
                    op["note_id"] = note.id
                    return f"Note created successfully: {note.ref} {note.title} (ID: {note.id})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_get_note")
        def rn_get_note(note_id: Optional[int] = None, ref: Optional[str] = None) -> str:
            """Retrieve a note by ID or by ref.
            Args:
                note_id: The ID of the note
                ref: The ref of the note (e.g. "1.2" or "B3"), used when note_id is omitted
            """
            with timed_operation("rn_get_note") as op:
                try:
                    if note_id is not None:
                        note = self.note_service.get_note(note_id)
                    elif ref:
                        note = self.note_service.get_note_by_ref(ref.strip())
                    else:
                        return "Error: Provide either note_id or ref."
                    op["note_id"] = note.id

                    result = f"# {note.ref} {note.title}\n"
                    result += f"ID: {note.id}\n"
                    result += f"Type: {note.note_type.value}\n"
                    if note.parent_id is not None:
                        result += f"Parent ID: {note.parent_id}\n"
                    result += f"Created: {note.created_at.isoformat()}\n"
                    result += f"Updated: {note.updated_at.isoformat()}\n"
                    result += f"\n{note.content}\n"
                    return result
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_list_notes")
        def rn_list_notes(note_type: Optional[str] = None) -> str:
            """List notes: bibliography entries first, then tree notes, each by ref.
            Args:
                note_type: Only list notes of this type ("note" or "bib")
            """
            with timed_operation("rn_list_notes") as op:
                try:
                    notes = self.note_service.list_notes()
                    if note_type:
                        try:
                            wanted = NoteType(note_type.lower())
                        except ValueError:
                            return f"Invalid note type: {note_type}. Valid types are: {', '.join(t.value for t in NoteType)}"
                        notes = [n for n in notes if n.note_type == wanted]
                    op["result_count"] = len(notes)

                    if not notes:
                        return "No notes found."
                    output = f"Found {len(notes)} notes:\n"
                    output += "\n".join(_note_line(n) for n in notes)
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_update_note")
        def rn_update_note(
            note_id: int, title: Optional[str] = None, content: Optional[str] = None
        ) -> str:
            """Update the title and/or content of a note. Refs never change.
            Args:
                note_id: The ID of the note to update
                title: New title (optional)
                content: New content (optional); may contain [[ref]] links
            """
            with timed_operation("rn_update_note", note_id=note_id):
                try:
                    _validate_input_lengths(title=title, content=content)
                    note = self.note_service.update_note(
                        note_id, title=title, content=content
                    )
                    return f"Note updated successfully: {note.ref} {note.title} (ID: {note.id})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_delete_note")
        def rn_delete_note(note_id: int) -> str:
            """Delete a note. Notes that still have children cannot be deleted.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("rn_delete_note", note_id=note_id):
                try:
                    self.note_service.delete_note(note_id)
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_note_tree")
        def rn_note_tree(format: str = "text") -> str:
            """Show the note hierarchy.
            Args:
                format: "text" (default) for an indented outline, "json" for nested objects
            """
            with timed_operation("rn_note_tree") as op:
                try:
                    if format == "json":
                        tree = self.note_service.get_tree()
                        op["root_count"] = len(tree)
                        return json.dumps([node.to_dict() for node in tree], ensure_ascii=False)

                    entries = self.note_service.get_parent_options()
                    op["result_count"] = len(entries)
                    if not entries:
                        return "The note tree is empty."
                    return "\n".join(entry.label for entry in entries)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_parent_options")
        def rn_parent_options() -> str:
            """List every tree note that can be chosen as a parent, indented by depth."""
            with timed_operation("rn_parent_options") as op:
                try:
                    entries = self.note_service.get_parent_options()
                    op["result_count"] = len(entries)
                    lines = ["(none) - create a root note"]
                    lines.extend(f"{entry.label} (ID: {entry.id})" for entry in entries)
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_bibliography")
        def rn_bibliography() -> str:
            """List the bibliography entries in creation order."""
            with timed_operation("rn_bibliography") as op:
                try:
                    entries = self.note_service.get_bibliography()
                    op["result_count"] = len(entries)
                    if not entries:
                        return "The bibliography is empty."
                    return "\n".join(_note_line(n) for n in entries)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_render_note")
        def rn_render_note(note_id: int, format: str = "html") -> str:
            """Render the content of a note, resolving [[ref]] links.
            Args:
                note_id: The ID of the note to render
                format: "html" (default) or "json" for the structured block tree
            """
            with timed_operation("rn_render_note", note_id=note_id):
                try:
                    if format not in RENDER_FORMATS:
                        return f"Invalid format: {format}. Valid formats are: {', '.join(RENDER_FORMATS)}"
                    rendered = self.note_service.render_note(note_id)
                    if format == "json":
                        return json.dumps(rendered.to_dict(), ensure_ascii=False)
                    return rendered.to_html()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_render_text")
        def rn_render_text(content: str, format: str = "html") -> str:
            """Render arbitrary content as it would appear in a note (live preview).
            Args:
                content: Raw content using the note markup
                format: "html" (default) or "json" for the structured block tree
            """
            with timed_operation("rn_render_text"):
                try:
                    _validate_input_lengths(content=content)
                    if format not in RENDER_FORMATS:
                        return f"Invalid format: {format}. Valid formats are: {', '.join(RENDER_FORMATS)}"
                    rendered = self.note_service.render_content(content)
                    if format == "json":
                        return json.dumps(rendered.to_dict(), ensure_ascii=False)
                    return rendered.to_html()
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_backlinks")
        def rn_backlinks(note_id: int) -> str:
            """List the notes whose content links to this note with [[ref]].
            Args:
                note_id: The ID of the linked-to note
            """
            with timed_operation("rn_backlinks", note_id=note_id) as op:
                try:
                    notes = self.note_service.find_backlinks(note_id)
                    op["result_count"] = len(notes)
                    if not notes:
                        return f"No notes link to note {note_id}."
                    output = f"{len(notes)} notes link to note {note_id}:\n"
                    output += "\n".join(_note_line(n) for n in notes)
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rn_status")
        def rn_status(sections: str = "all") -> str:
            """Get a status overview.
            Args:
                sections: Comma-separated sections to include:
                    - "summary": Note counts by type
                    - "metrics": Server performance metrics
                    - "all": Include all sections (default)
            """
            with timed_operation("rn_status"):
                try:
                    requested = set(s.strip().lower() for s in sections.split(","))
                    include_all = "all" in requested

                    output = f"# refnotes Status (v{config.server_version})\n\n"

                    if include_all or "summary" in requested:
                        by_type = self.note_service.count_notes_by_type()
                        output += "## Summary\n"
                        output += f"**Total Notes:** {sum(by_type.values())}\n"
                        for t, count in sorted(by_type.items()):
                            output += f"  - {t}: {count}\n"
                        output += "\n"

                    if include_all or "metrics" in requested:
                        summary = metrics.summary()
                        output += "## Metrics\n"
                        output += f"**Uptime:** {summary['uptime_seconds']:.0f}s\n"
                        output += f"**Operations:** {summary['total_operations']} "
                        output += f"({summary['total_errors']} errors)\n"
                        for op_name, m in sorted(metrics.operations().items()):
                            output += (
                                f"  - {op_name}: {m['count']} calls, "
                                f"avg {m['avg_duration_ms']}ms\n"
                            )
                        for event, count in sorted(summary["events"].items()):
                            output += f"  - {event}: {count}\n"

                    return output
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
