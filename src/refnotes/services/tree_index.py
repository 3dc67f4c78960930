"""In-memory views over a point-in-time set of notes.

Everything here is a pure function of a ``NoteSnapshot``: the forest of tree
notes, the flattened parent-selection list, the bibliography list and
selection lookups. Nothing is cached between snapshots.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from refnotes.models.schema import Note, NoteType

# Indentation used per nesting level in the parent-selection list
SELECTION_INDENT = "  "


class NoteSnapshot:
    """Immutable view over the notes present at one moment.

    Builds ID and ref lookups plus the parent -> children adjacency once, so
    the tree and link views never re-scan the whole set per node.
    """

    def __init__(self, notes: Iterable[Note]):
        self._notes: Tuple[Note, ...] = tuple(notes)
        self.by_id: Dict[int, Note] = {n.id: n for n in self._notes}
        self.by_ref: Dict[str, Note] = {n.ref: n for n in self._notes}

        children: Dict[Optional[int], List[Note]] = defaultdict(list)
        for note in self._notes:
            if note.note_type == NoteType.NOTE:
                children[note.parent_id].append(note)
        for siblings in children.values():
            siblings.sort(key=lambda n: n.order_index)
        self._children = dict(children)

    @property
    def notes(self) -> Tuple[Note, ...]:
        return self._notes

    def __len__(self) -> int:
        return len(self._notes)

    def __iter__(self):
        return iter(self._notes)

    def get(self, note_id: int) -> Optional[Note]:
        return self.by_id.get(note_id)

    def get_by_ref(self, ref: str) -> Optional[Note]:
        return self.by_ref.get(ref)

    def children_of(self, parent_id: Optional[int]) -> List[Note]:
        """Tree notes directly under ``parent_id`` (None for the root), by order index."""
        return list(self._children.get(parent_id, ()))


@dataclass
class TreeNode:
    """A tree note together with its ordered children."""

    note: Note
    children: List["TreeNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.note.id

    @property
    def ref(self) -> str:
        return self.note.ref

    @property
    def title(self) -> str:
        return self.note.title

    def to_dict(self) -> dict:
        return {
            "id": self.note.id,
            "ref": self.note.ref,
            "title": self.note.title,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(frozen=True)
class SelectionEntry:
    """One row of the parent-selection list."""

    id: int
    depth: int
    ref: str
    title: str

    @property
    def label(self) -> str:
        return f"{SELECTION_INDENT * self.depth}{self.ref} {self.title}"


@dataclass(frozen=True)
class Selection:
    """Where a selected note is shown and what to highlight.

    Attributes:
        note_id: The selected note.
        panel: "tree" for tree notes, "bibliography" for bib entries.
        ancestor_ids: IDs from the root down to the direct parent.
        can_have_children: Only tree notes accept child notes.
    """

    note_id: int
    panel: str
    ancestor_ids: Tuple[int, ...] = ()
    can_have_children: bool = False


def _as_snapshot(notes: Union[NoteSnapshot, Iterable[Note]]) -> NoteSnapshot:
    if isinstance(notes, NoteSnapshot):
        return notes
    return NoteSnapshot(notes)


def build_tree(
    notes: Union[NoteSnapshot, Iterable[Note]], parent_id: Optional[int] = None
) -> List[TreeNode]:
    """Build the forest of tree notes hanging under ``parent_id``.

    Bibliography entries are never part of the forest. Siblings are ordered
    by order index; each node carries its own children, recursively.

    Args:
        notes: A snapshot or any iterable of notes.
        parent_id: Root of the forest to build; None for the whole tree.

    Returns:
        The ordered list of top-level nodes.
    """
    snapshot = _as_snapshot(notes)

    def _build(pid: Optional[int]) -> List[TreeNode]:
        return [TreeNode(note, _build(note.id)) for note in snapshot.children_of(pid)]

    return _build(parent_id)


def flatten_for_selection(forest: Sequence[TreeNode]) -> List[SelectionEntry]:
    """Pre-order walk of a forest into indented parent-selection entries."""
    entries: List[SelectionEntry] = []
    stack: List[Tuple[TreeNode, int]] = [(node, 0) for node in reversed(forest)]
    while stack:
        node, depth = stack.pop()
        entries.append(SelectionEntry(node.id, depth, node.ref, node.title))
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return entries


def bibliography(notes: Union[NoteSnapshot, Iterable[Note]]) -> List[Note]:
    """Bibliography entries in order index order."""
    return sorted(
        (n for n in _as_snapshot(notes) if n.note_type == NoteType.BIB),
        key=lambda n: n.order_index,
    )


class TreeIndex:
    """Tree, bibliography and selection views over one snapshot."""

    def __init__(self, snapshot: NoteSnapshot):
        self.snapshot = snapshot

    def build_tree(self, parent_id: Optional[int] = None) -> List[TreeNode]:
        return build_tree(self.snapshot, parent_id)

    def selection_entries(self) -> List[SelectionEntry]:
        """Every tree note as a candidate parent, indented by depth."""
        return flatten_for_selection(self.build_tree())

    def bibliography(self) -> List[Note]:
        return bibliography(self.snapshot)

    def ordered_notes(self) -> List[Note]:
        """Every note in listing order: bibliography first, then tree notes, each by ref."""
        return sorted(self.snapshot, key=lambda n: (n.note_type.value, n.ref))

    def locate(self, note_id: int) -> Optional[Selection]:
        """Find the panel and ancestor chain of a note, None if it is not in the snapshot."""
        note = self.snapshot.get(note_id)
        if note is None:
            return None
        if note.note_type == NoteType.BIB:
            return Selection(note_id=note.id, panel="bibliography")

        ancestors: List[int] = []
        seen = {note.id}
        parent_id = note.parent_id
        while parent_id is not None and parent_id not in seen:
            parent = self.snapshot.get(parent_id)
            if parent is None:
                break
            ancestors.append(parent.id)
            seen.add(parent.id)
            parent_id = parent.parent_id
        ancestors.reverse()
        return Selection(
            note_id=note.id,
            panel="tree",
            ancestor_ids=tuple(ancestors),
            can_have_children=True,
        )
