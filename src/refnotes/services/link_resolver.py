"""Resolution of ``[[ref]]`` cross-references against a note snapshot."""
import re
from dataclasses import dataclass
from typing import List, Union

from refnotes.services.tree_index import NoteSnapshot

# [[1]], [[1.2.3]] or [[B4]]
REF_LINK_PATTERN = re.compile(r"\[\[([\d.]+|B\d+)\]\]")


@dataclass(frozen=True)
class RefToken:
    """A ``[[ref]]`` occurrence in raw text (``end`` is exclusive)."""

    ref: str
    start: int
    end: int


@dataclass(frozen=True)
class ResolvedLink:
    """A reference that matches an existing note."""

    ref: str
    title: str
    target_id: int
    unresolved: bool = False

    @property
    def label(self) -> str:
        return f"{self.ref} {self.title}"


@dataclass(frozen=True)
class UnresolvedLink:
    """A reference with no matching note; rendered as broken, never an error."""

    ref: str
    unresolved: bool = True

    @property
    def label(self) -> str:
        return f"{self.ref} (not found)"


LinkResolution = Union[ResolvedLink, UnresolvedLink]


def find_refs(content: str) -> List[RefToken]:
    """All ``[[ref]]`` tokens in ``content``, left to right, non-overlapping."""
    return [
        RefToken(m.group(1), m.start(), m.end())
        for m in REF_LINK_PATTERN.finditer(content or "")
    ]


class LinkResolver:
    """Classifies references as resolved or unresolved.

    Lookups are exact and case-sensitive: ``b1`` or ``01`` never match
    ``B1`` or ``1``. Every method is total over strings.
    """

    def __init__(self, snapshot: NoteSnapshot):
        self.snapshot = snapshot

    def resolve_ref(self, ref: str) -> LinkResolution:
        note = self.snapshot.get_by_ref(ref)
        if note is None:
            return UnresolvedLink(ref)
        return ResolvedLink(ref=ref, title=note.title, target_id=note.id)

    def resolve(self, content: str) -> List[LinkResolution]:
        """Resolve every reference in ``content``, in order of appearance."""
        return [self.resolve_ref(token.ref) for token in find_refs(content)]

    def unresolved_refs(self, content: str) -> List[str]:
        return [r.ref for r in self.resolve(content) if r.unresolved]

    def backlinks(self, note_id: int) -> List[int]:
        """IDs of notes whose content links to ``note_id``, in listing order."""
        target = self.snapshot.get(note_id)
        if target is None:
            return []
        return [
            note.id
            for note in sorted(self.snapshot, key=lambda n: (n.note_type.value, n.ref))
            if note.id != note_id
            and any(token.ref == target.ref for token in find_refs(note.content))
        ]
