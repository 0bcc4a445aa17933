"""
the document model shared by every parser and serializer

A document is a tree of immutable `Node`s rooted at exactly one
`document` node. Text runs carry a set of inline `Mark`s; every other
node is structural.

    >>> doc = Node(Kind.DOCUMENT, children=[
    ...     Node(Kind.PARAGRAPH, children=[text("hi", Mark("bold"))])])
    >>> is_well_formed(doc)
    True

"""

import collections
import enum
import types

from . import storage

__all__ = ["Kind", "Mark", "Node", "text", "is_well_formed", "nest_marks",
           "merge_text", "MAX_DEPTH", "MARK_ORDER", "BLOCKS", "INLINES",
           "LISTS", "ITEMS", "LEAVES"]

MAX_DEPTH = 64


class Kind(enum.Enum):
    """The closed set of node kinds."""

    DOCUMENT = "document"
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    TASK_LIST = "taskList"
    LIST_ITEM = "listItem"
    TASK_ITEM = "taskItem"
    BLOCKQUOTE = "blockquote"
    CODE_BLOCK = "codeBlock"
    HORIZONTAL_RULE = "horizontalRule"
    IMAGE = "image"
    HARD_BREAK = "hardBreak"
    TEXT = "text"


BLOCKS = frozenset({Kind.PARAGRAPH, Kind.HEADING, Kind.BULLET_LIST,
                    Kind.ORDERED_LIST, Kind.TASK_LIST, Kind.BLOCKQUOTE,
                    Kind.CODE_BLOCK, Kind.HORIZONTAL_RULE, Kind.IMAGE})
INLINES = frozenset({Kind.TEXT, Kind.HARD_BREAK})
LISTS = {Kind.BULLET_LIST: Kind.LIST_ITEM,
         Kind.ORDERED_LIST: Kind.LIST_ITEM,
         Kind.TASK_LIST: Kind.TASK_ITEM}
ITEMS = frozenset(LISTS.values())
LEAVES = frozenset({Kind.TEXT, Kind.HARD_BREAK, Kind.IMAGE,
                    Kind.HORIZONTAL_RULE})

MARK_ORDER = ("link", "bold", "italic", "strikethrough", "code")

# editor JSON spells a couple of names differently
_editor_names = {"document": "doc", "strikethrough": "strike"}
_model_names = {v: k for k, v in _editor_names.items()}


class Mark(collections.namedtuple("Mark", "kind href title")):
    """
    an inline decoration of a text run

    Only `link` marks use `href` and `title`.

    """

    __slots__ = ()

    def __new__(cls, kind, href=None, title=None):
        if kind not in MARK_ORDER:
            raise ValueError(f"unknown mark `{kind}`")
        if kind != "link":
            href = title = None
        return super().__new__(cls, kind, href, title)

    @property
    def rank(self):
        return MARK_ORDER.index(self.kind)

    def to_dict(self):
        mark = {"type": _editor_names.get(self.kind, self.kind)}
        if self.kind == "link":
            mark["attrs"] = {"href": self.href, "title": self.title}
        return mark


class Node:
    """
    an immutable document node

    `attrs` is a read-only mapping, `children` a tuple and `marks` a
    frozenset; construction copies whatever it is given so a node never
    aliases caller-owned containers.

    """

    __slots__ = ("kind", "attrs", "children", "marks", "text")

    def __init__(self, kind, attrs=None, children=(), marks=(), text=""):
        kind = Kind(kind)
        marks = _unique_marks(marks)
        if marks and kind != Kind.TEXT:
            raise ValueError("only text nodes carry marks")
        put = object.__setattr__
        put(self, "kind", kind)
        put(self, "attrs", types.MappingProxyType(dict(attrs or {})))
        put(self, "children", tuple(children))
        put(self, "marks", marks)
        put(self, "text", text if kind == Kind.TEXT else "")

    def __setattr__(self, name, value):
        raise AttributeError("nodes are immutable")

    def __delattr__(self, name):
        raise AttributeError("nodes are immutable")

    def _key(self):
        return (self.kind, tuple(sorted(self.attrs.items())), self.children,
                self.marks, self.text)

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        if self.kind == Kind.TEXT:
            marks = ",".join(m.kind for m in sorted(self.marks,
                                                    key=lambda m: m.rank))
            return f"<text {self.text!r}{' ' + marks if marks else ''}>"
        attrs = "".join(f" {k}={v!r}" for k, v in sorted(self.attrs.items()))
        return f"<{self.kind.value}{attrs} {list(self.children)!r}>"

    @property
    def plain_text(self):
        """Return the concatenated text content of this subtree."""
        if self.kind == Kind.TEXT:
            return self.text
        if self.kind == Kind.HARD_BREAK:
            return "\n"
        return "".join(child.plain_text for child in self.children)

    def replace(self, **changes):
        """Return a copy of this node with given fields replaced."""
        fields = {"attrs": self.attrs, "children": self.children,
                  "marks": self.marks, "text": self.text}
        fields.update(changes)
        return Node(self.kind, **fields)

    def to_dict(self):
        """Return this subtree in the editor's JSON shape."""
        data = {"type": _editor_names.get(self.kind.value, self.kind.value)}
        if self.kind == Kind.TEXT:
            data["text"] = self.text
            if self.marks:
                data["marks"] = [m.to_dict() for m in sorted(self.marks,
                                                        key=lambda m: m.rank)]
            return data
        if self.attrs:
            data["attrs"] = dict(self.attrs)
        if self.kind not in LEAVES:
            data["content"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data):
        """
        return a document built from the editor's JSON shape

        Unknown node types are unwrapped and unknown marks dropped; the
        result always has a `document` root.

        """
        if data is None:
            raise ValueError("a document root is required")
        nodes = _from_dict(data, 0)
        if len(nodes) == 1 and nodes[0].kind == Kind.DOCUMENT:
            return nodes[0]
        return cls(Kind.DOCUMENT, children=_as_blocks(nodes))


def text(value, *marks):
    """Return a text node holding `value` with given marks."""
    return Node(Kind.TEXT, text=value, marks=marks)


def _unique_marks(marks):
    by_kind = {}
    for mark in marks:
        by_kind[mark.kind] = mark
    return frozenset(by_kind.values())


def _from_dict(data, depth):
    if not isinstance(data, dict):
        return []
    kind_name = _model_names.get(data.get("type"), data.get("type"))
    content = data.get("content") or []
    if depth >= MAX_DEPTH:
        content = []
    try:
        kind = Kind(kind_name)
    except ValueError:
        children = []
        for child in content:
            children.extend(_from_dict(child, depth + 1))
        return children
    if kind == Kind.TEXT:
        marks = []
        for mark in data.get("marks") or []:
            mark_name = _model_names.get(mark.get("type"), mark.get("type"))
            if mark_name not in MARK_ORDER:
                continue
            attrs = mark.get("attrs") or {}
            href = attrs.get("href")
            if mark_name == "link":
                href = storage.clean_url(href)
                if href is None:
                    continue
            marks.append(Mark(mark_name, href, attrs.get("title")))
        if not data.get("text"):
            return []
        return [Node(kind, text=str(data["text"]), marks=marks)]
    attrs = dict(data.get("attrs") or {})
    if kind == Kind.HEADING:
        try:
            level = int(attrs.get("level", 1))
        except (TypeError, ValueError):
            level = 1
        attrs = {"level": min(max(level, 1), 6)}
    elif kind == Kind.TASK_ITEM:
        attrs = {"checked": attrs.get("checked") in (True, "true")}
    elif kind == Kind.CODE_BLOCK:
        attrs = {"language": attrs.get("language") or None}
    elif kind == Kind.ORDERED_LIST:
        try:
            attrs = {"start": int(attrs.get("start", 1))}
        except (TypeError, ValueError):
            attrs = {"start": 1}
    elif kind == Kind.IMAGE:
        attrs = {"src": attrs.get("src") or "", "alt": attrs.get("alt"),
                 "title": attrs.get("title")}
    else:
        attrs = {}
    children = []
    for child in content:
        children.extend(_from_dict(child, depth + 1))
    if kind in LEAVES:
        children = []
    elif kind in LISTS:
        item = LISTS[kind]
        items = []
        for child in children:
            if child.kind == item:
                items.append(child)
            elif child.kind in ITEMS:
                items.append(Node(item, _item_attrs(item), child.children))
            else:
                items.append(Node(item, _item_attrs(item),
                                  _as_blocks([child])))
        children = items
    elif kind in (Kind.PARAGRAPH, Kind.HEADING):
        children = [c for c in children if c.kind in INLINES]
    elif kind == Kind.CODE_BLOCK:
        code = "".join(c.plain_text for c in children)
        children = [Node(Kind.TEXT, text=code)] if code else []
    else:
        children = _as_blocks(children)
    if kind == Kind.DOCUMENT and depth:
        return children
    return [Node(kind, attrs, children)]


def _item_attrs(kind):
    return {"checked": False} if kind == Kind.TASK_ITEM else {}


def _as_blocks(nodes):
    """Wrap stray inline nodes into paragraphs and list items into lists."""
    blocks = []
    pending = []
    for node in nodes:
        if node.kind in INLINES:
            pending.append(node)
            continue
        if pending:
            blocks.append(Node(Kind.PARAGRAPH, children=pending))
            pending = []
        if node.kind in ITEMS:
            list_kind = (Kind.TASK_LIST if node.kind == Kind.TASK_ITEM
                         else Kind.BULLET_LIST)
            node = Node(list_kind, children=[node])
        if node.kind in BLOCKS:
            blocks.append(node)
    if pending:
        blocks.append(Node(Kind.PARAGRAPH, children=pending))
    return blocks


def is_well_formed(node) -> bool:
    """
    return whether `node` is a valid document tree

    Checks the root, list flavors, mark placement, heading levels,
    task-item state and that no node object is reachable twice.

    """
    if not isinstance(node, Node) or node.kind != Kind.DOCUMENT:
        return False
    seen = set()
    stack = [(node, None)]
    while stack:
        current, parent = stack.pop()
        if id(current) in seen:
            return False
        seen.add(id(current))
        if not _fits(current, parent):
            return False
        stack.extend((child, current) for child in current.children)
    return True


def _fits(node, parent):
    if not isinstance(node, Node):
        return False
    kind = node.kind
    if kind == Kind.DOCUMENT:
        return parent is None
    if parent is None:
        return False
    if node.marks and kind != Kind.TEXT:
        return False
    if kind in LEAVES and node.children:
        return False
    if kind == Kind.HEADING and node.attrs.get("level") not in range(1, 7):
        return False
    if kind == Kind.TASK_ITEM and not isinstance(node.attrs.get("checked"),
                                                 bool):
        return False
    if kind == Kind.IMAGE and not isinstance(node.attrs.get("src"), str):
        return False
    if parent.kind in LISTS:
        return kind == LISTS[parent.kind]
    if kind in ITEMS:
        return False
    if parent.kind == Kind.CODE_BLOCK:
        return kind == Kind.TEXT and not node.marks
    if parent.kind in (Kind.PARAGRAPH, Kind.HEADING):
        return kind in INLINES
    return kind in BLOCKS


def nest_marks(nodes):
    """
    return inline `nodes` grouped under their shared marks

    The result is a list whose entries are either inline nodes or
    `(mark, entries)` pairs, outermost mark first in `MARK_ORDER`. A code
    mark only ever wraps runs with no other mark still to open, so code
    spans stay innermost.

    """
    return _nest(list(nodes), frozenset())


def _pending(node, applied):
    return sorted(node.marks - applied, key=lambda m: m.rank)


def _nest(nodes, applied):
    entries = []
    i = 0
    while i < len(nodes):
        pending = _pending(nodes[i], applied)
        if not pending:
            entries.append(nodes[i])
            i += 1
            continue
        mark = pending[0]
        j = i + 1
        while j < len(nodes):
            rest = _pending(nodes[j], applied)
            if mark not in rest:
                break
            if mark.kind == "code" and len(rest) > 1:
                break
            j += 1
        entries.append((mark, _nest(nodes[i:j], applied | {mark})))
        i = j
    return entries


def merge_text(nodes):
    """Return inline `nodes` with adjacent equally-marked text joined."""
    merged = []
    for node in nodes:
        if node.kind == Kind.TEXT and not node.text:
            continue
        if (merged and node.kind == Kind.TEXT and
                merged[-1].kind == Kind.TEXT and
                merged[-1].marks == node.marks):
            merged[-1] = merged[-1].replace(text=merged[-1].text + node.text)
        else:
            merged.append(node)
    return merged
