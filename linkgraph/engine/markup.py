"""Offset-preserving HTML fragment tree.

BeautifulSoup is convenient for reading markup but it re-serializes the
document, which normalizes attribute quoting, entity spelling and
whitespace. Rewriting an article body must leave every byte outside the
edited spans untouched, so mutation works on this small tree instead.
It is built from the same standard-library tokenizer BeautifulSoup's
``html.parser`` builder drives, and every node remembers the span of
source text it came from. Edits are then applied as plain string splices.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

VOID_TAGS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
        "meta", "param", "source", "track", "wbr",
    }
)


class MarkupError(ValueError):
    """Raised when the tokenizer rejects a fragment outright."""


@dataclass(eq=False)
class Text:
    start: int
    end: int
    parent: "Element"
    protected: bool = False

    def raw(self, source: str) -> str:
        return source[self.start:self.end]


@dataclass(eq=False)
class Comment:
    start: int
    parent: "Element"


@dataclass(eq=False)
class Element:
    tag: str
    attrs: Tuple[Tuple[str, Optional[str]], ...]
    start: int
    open_end: int
    parent: Optional["Element"] = None
    children: List["Node"] = field(default_factory=list)
    close_start: Optional[int] = None
    close_end: Optional[int] = None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.attrs:
            if key == name:
                return value
        return default


Node = Union[Element, Text, Comment]


@dataclass
class Fragment:
    source: str
    root: Element
    texts: List[Text]
    elements: List[Element]

    def find_all(self, tag: str) -> List[Element]:
        return [element for element in self.elements if element.tag == tag]

    def iter_texts(self) -> Iterator[Text]:
        """Yield the text nodes that may be edited, in document order."""

        for text in self.texts:
            if not text.protected:
                yield text


class _FragmentBuilder(HTMLParser):
    def __init__(self, source: str, protected_tags: Iterable[str]) -> None:
        super().__init__(convert_charrefs=False)
        self.source = source
        self.protected_tags = frozenset(protected_tags)
        self._line_starts = [0] + [index + 1 for index, char in enumerate(source) if char == "\n"]
        self.root = Element(tag="#fragment", attrs=(), start=0, open_end=0)
        self._stack: List[Element] = [self.root]
        self.texts: List[Text] = []
        self.elements: List[Element] = []

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def _in_protected_scope(self) -> bool:
        return any(element.tag in self.protected_tags for element in self._stack)

    def _open(self, tag: str, attrs: Sequence[Tuple[str, Optional[str]]], push: bool) -> None:
        start = self._offset()
        raw = self.get_starttag_text() or ""
        element = Element(
            tag=tag,
            attrs=tuple(attrs),
            start=start,
            open_end=start + len(raw),
            parent=self._stack[-1],
        )
        self._stack[-1].children.append(element)
        self.elements.append(element)
        if push and tag not in VOID_TAGS:
            self._stack.append(element)

    def handle_starttag(self, tag, attrs):
        self._open(tag, attrs, push=True)

    def handle_startendtag(self, tag, attrs):
        self._open(tag, attrs, push=False)

    def handle_endtag(self, tag):
        start = self._offset()
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag != tag:
                continue
            # Elements left open inside the closed one end where it ends.
            for element in self._stack[depth + 1:]:
                element.close_start = element.close_end = start
            element = self._stack[depth]
            closing = self.source.find(">", start)
            element.close_start = start
            element.close_end = closing + 1 if closing != -1 else len(self.source)
            del self._stack[depth:]
            return
        # Stray end tag: nothing to close.

    def _add_text(self, start: int, end: int) -> None:
        parent = self._stack[-1]
        protected = self._in_protected_scope()
        previous = parent.children[-1] if parent.children else None
        if isinstance(previous, Text) and previous.end == start and previous.protected == protected:
            previous.end = end
            return
        text = Text(start=start, end=end, parent=parent, protected=protected)
        parent.children.append(text)
        self.texts.append(text)

    def handle_data(self, data):
        start = self._offset()
        end = start + len(data)
        if self.source[start:end] != data:
            # Tokenizer and source disagree; never edit such a span.
            parent = self._stack[-1]
            text = Text(start=start, end=min(end, len(self.source)), parent=parent, protected=True)
            parent.children.append(text)
            self.texts.append(text)
            return
        self._add_text(start, end)

    def _handle_reference(self, prefix: str, name: str) -> None:
        start = self._offset()
        end = start + len(prefix) + len(name)
        if self.source.startswith(";", end):
            end += 1
        self._add_text(start, end)

    def handle_entityref(self, name):
        self._handle_reference("&", name)

    def handle_charref(self, name):
        self._handle_reference("&#", name)

    def handle_comment(self, data):
        parent = self._stack[-1]
        parent.children.append(Comment(start=self._offset(), parent=parent))

    def close(self):
        super().close()
        for element in self._stack[1:]:
            element.close_start = element.close_end = len(self.source)
        self.root.close_start = self.root.close_end = len(self.source)


def parse_fragment(html: str, protected_tags: Iterable[str] = ()) -> Fragment:
    """Parse ``html`` into a :class:`Fragment` with source offsets."""

    builder = _FragmentBuilder(html, protected_tags)
    try:
        builder.feed(html)
        builder.close()
    except (AssertionError, ValueError) as exc:
        raise MarkupError(str(exc)) from exc
    return Fragment(source=html, root=builder.root, texts=builder.texts, elements=builder.elements)


def apply_edits(source: str, edits: Iterable[Tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` splices to ``source``."""

    ordered = sorted(edits, key=lambda edit: (edit[0], edit[1]))
    if not ordered:
        return source
    pieces: List[str] = []
    cursor = 0
    for start, end, replacement in ordered:
        if start < cursor:
            raise MarkupError(f"Overlapping edit at offset {start}")
        pieces.append(source[cursor:start])
        pieces.append(replacement)
        cursor = end
    pieces.append(source[cursor:])
    return "".join(pieces)
