"""Rendering of note content markup.

Supported markup, and nothing else:

* ``==text==`` highlights text
* ``[text](https://...)`` is an external link
* bare ``http(s)://...`` URLs are linked automatically
* ``[[ref]]`` links to another note (resolved against a snapshot)
* lines starting with ``> `` form a quote block; consecutive quoted lines
  share one block
* any other newline is a line break

Content is parsed into a tree of segments rather than rewritten in place.
Text only ever reaches HTML through ``escape_markup``, so markup-looking
characters inside a note cannot produce structure of their own.
"""
import html
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple, Union

from refnotes.services.link_resolver import LinkResolution, LinkResolver
from refnotes.services.tree_index import NoteSnapshot

QUOTE_PREFIX = "> "

INLINE_PATTERN = re.compile(
    r"==(?P<highlight>.+?)=="
    r"|\[(?P<link_text>[^\[\]]+)\]\((?P<link_url>https?://[^\s)]+)\)"
    r"|\[\[(?P<ref>[\d.]+|B\d+)\]\]"
    r"|(?P<bare_url>https?://[^\s<>\"\[\]]+)"
)

# Punctuation that ends a sentence rather than a bare URL
_URL_TRAILING = ".,;:!?"


def _trim_url(url: str) -> Tuple[str, str]:
    """Split sentence punctuation and unmatched closing parentheses off a URL."""
    end = len(url)
    while end:
        last = url[end - 1]
        if last in _URL_TRAILING:
            end -= 1
        elif last == ")" and url.count("(", 0, end) < url.count(")", 0, end):
            end -= 1
        else:
            break
    return url[:end], url[end:]


def escape_markup(text: str) -> str:
    """Escape characters that carry meaning in HTML (``& < > " '``)."""
    return html.escape(text, quote=True)


@dataclass(frozen=True)
class Text:
    text: str

    def to_html(self) -> str:
        return escape_markup(self.text)


@dataclass(frozen=True)
class LineBreak:
    def to_html(self) -> str:
        return "<br>"


@dataclass(frozen=True)
class ExternalLink:
    text: str
    url: str

    def to_html(self) -> str:
        return (
            f'<a href="{escape_markup(self.url)}" class="external-link" '
            f'target="_blank" rel="noopener">{escape_markup(self.text)}</a>'
        )


@dataclass(frozen=True)
class AutoLink:
    url: str

    def to_html(self) -> str:
        return ExternalLink(self.url, self.url).to_html()


@dataclass(frozen=True)
class NoteLink:
    """A ``[[ref]]`` token and how it resolved."""

    resolution: LinkResolution

    @property
    def ref(self) -> str:
        return self.resolution.ref

    @property
    def unresolved(self) -> bool:
        return self.resolution.unresolved

    def to_html(self) -> str:
        ref = escape_markup(self.ref)
        label = escape_markup(self.resolution.label)
        if self.unresolved:
            return f'<span class="note-link broken" data-ref="{ref}">[[{label}]]</span>'
        return (
            f'<a href="#" class="note-link" data-ref="{ref}" '
            f'data-id="{self.resolution.target_id}">[[{label}]]</a>'
        )


@dataclass(frozen=True)
class Highlight:
    children: Tuple["Segment", ...] = ()

    def to_html(self) -> str:
        return "<mark>" + "".join(c.to_html() for c in self.children) + "</mark>"


Segment = Union[Text, LineBreak, ExternalLink, AutoLink, NoteLink, Highlight]


@dataclass(frozen=True)
class Paragraph:
    segments: Tuple[Segment, ...] = ()

    def to_html(self) -> str:
        return "".join(s.to_html() for s in self.segments)


@dataclass(frozen=True)
class QuoteBlock:
    segments: Tuple[Segment, ...] = ()

    def to_html(self) -> str:
        return "<blockquote>" + "".join(s.to_html() for s in self.segments) + "</blockquote>"


Block = Union[Paragraph, QuoteBlock]


def _segment_to_dict(segment: Segment) -> Dict[str, Any]:
    if isinstance(segment, Text):
        return {"kind": "text", "text": segment.text}
    if isinstance(segment, LineBreak):
        return {"kind": "break"}
    if isinstance(segment, ExternalLink):
        return {"kind": "link", "text": segment.text, "url": segment.url}
    if isinstance(segment, AutoLink):
        return {"kind": "autolink", "url": segment.url}
    if isinstance(segment, Highlight):
        return {"kind": "highlight", "children": [_segment_to_dict(c) for c in segment.children]}
    data: Dict[str, Any] = {"kind": "note_link", "ref": segment.ref}
    if segment.unresolved:
        data["unresolved"] = True
    else:
        data["title"] = segment.resolution.title
        data["target_id"] = segment.resolution.target_id
    return data


@dataclass
class RenderedContent:
    """Structured result of rendering one piece of content."""

    blocks: List[Block] = field(default_factory=list)

    def to_html(self) -> str:
        return "".join(block.to_html() for block in self.blocks)

    @property
    def links(self) -> List[NoteLink]:
        """Every note link, in document order (including inside highlights)."""
        found: List[NoteLink] = []

        def _walk(segments):
            for s in segments:
                if isinstance(s, NoteLink):
                    found.append(s)
                elif isinstance(s, Highlight):
                    _walk(s.children)

        for block in self.blocks:
            _walk(block.segments)
        return found

    @property
    def broken_refs(self) -> List[str]:
        return [link.ref for link in self.links if link.unresolved]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocks": [
                {
                    "kind": "quote" if isinstance(block, QuoteBlock) else "paragraph",
                    "segments": [_segment_to_dict(s) for s in block.segments],
                }
                for block in self.blocks
            ]
        }


def split_blocks(content: str) -> List[Tuple[str, List[str]]]:
    """Group lines into ("paragraph", lines) and ("quote", lines) runs.

    Quote lines have their ``> `` prefix removed. A run of quoted lines ends
    at the first line without the prefix or at the end of the content.
    """
    if not content:
        return []
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    blocks: List[Tuple[str, List[str]]] = []
    for line in lines:
        if line.startswith(QUOTE_PREFIX):
            kind, text = "quote", line[len(QUOTE_PREFIX):]
        else:
            kind, text = "paragraph", line
        if blocks and blocks[-1][0] == kind:
            blocks[-1][1].append(text)
        else:
            blocks.append((kind, [text]))
    return blocks


def parse_inline(text: str, resolver: LinkResolver) -> List[Segment]:
    """Split one line of text into inline segments."""
    segments: List[Segment] = []
    pos = 0
    for match in INLINE_PATTERN.finditer(text):
        if match.start() > pos:
            segments.append(Text(text[pos:match.start()]))
        trailing = ""
        if match.group("highlight") is not None:
            segments.append(Highlight(tuple(parse_inline(match.group("highlight"), resolver))))
        elif match.group("link_url") is not None:
            segments.append(ExternalLink(match.group("link_text"), match.group("link_url")))
        elif match.group("ref") is not None:
            segments.append(NoteLink(resolver.resolve_ref(match.group("ref"))))
        else:
            url = match.group("bare_url")
            stripped, trailing = _trim_url(url)
            segments.append(AutoLink(stripped))
        if trailing:
            segments.append(Text(trailing))
        pos = match.end()
    if pos < len(text):
        segments.append(Text(text[pos:]))
    return segments


def render(content: str, snapshot: NoteSnapshot) -> RenderedContent:
    """Render raw note content against the notes in ``snapshot``.

    Args:
        content: Raw markup as stored in a note.
        snapshot: The notes ``[[ref]]`` links are resolved against.

    Returns:
        The block/segment tree; call ``to_html()`` for markup.
    """
    resolver = LinkResolver(snapshot)
    rendered = RenderedContent()
    for kind, lines in split_blocks(content or ""):
        segments: List[Segment] = []
        for i, line in enumerate(lines):
            if i:
                segments.append(LineBreak())
            segments.extend(parse_inline(line, resolver))
        block_cls = QuoteBlock if kind == "quote" else Paragraph
        rendered.blocks.append(block_cls(tuple(segments)))
    return rendered
