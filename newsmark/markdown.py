"""
encode/decode markdown to and from the document model

Parsing runs in two passes: a block pass classifies lines (headings,
lists, task items, fences, quotes, rules, paragraphs) and an inline pass
turns each block's text into marked text runs. Nothing raises; syntax
that doesn't close degrades to literal text.

    >>> serialize_markdown(parse_markdown("# Title\\n\\n- [x] done"))
    '# Title\\n\\n- [x] done'

"""

import logging
import re

from . import storage
from .model import (Kind, Mark, Node, MAX_DEPTH, LISTS, is_well_formed,
                    merge_text, nest_marks)

__all__ = ["parse_markdown", "serialize_markdown"]

log = logging.getLogger(__name__)

_punctuation = "!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~"

_fence_re = re.compile(r"^ {0,3}(`{3,}|~{3,})[ \t]*(.*)$")
_hr_re = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_heading_re = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?"
                         r"[ \t]*$")
_quote_re = re.compile(r"^ {0,3}> ?(.*)$")
_task_re = re.compile(r"^( *)([-*+])[ \t]+\[(.)\](?:[ \t]+(.*)|[ \t]*)$")
_bullet_re = re.compile(r"^( *)([-*+])(?:[ \t]+(.*)|[ \t]*)$")
_ordered_re = re.compile(r"^( *)(\d{1,9})([.)])(?:[ \t]+(.*)|[ \t]*)$")
_image_re = re.compile(r"^ {0,3}!\[((?:\\.|[^\]\\])*)\]\((.*)\)[ \t]*$")
_separator_re = re.compile(r"^ {0,3}<!--[ \t]*-->[ \t]*$")
_unescape_re = re.compile(r"\\([" + re.escape(_punctuation) + r"])")


# block pass

class _Marker:
    """A list item marker found at the start of a line."""

    def __init__(self, kind, flavor, indent, width, content, number=1,
                 checked=False):
        self.kind = kind
        self.flavor = flavor
        self.indent = indent
        self.content_indent = indent + width
        self.content = content or ""
        self.number = number
        self.checked = checked


def _list_marker(line):
    match = _task_re.match(line)
    if match:
        indent, _, state, content = match.groups()
        return _Marker(Kind.TASK_ITEM, "task", len(indent), 2, content,
                       checked=state in "xX")
    match = _bullet_re.match(line)
    if match:
        indent, _, content = match.groups()
        return _Marker(Kind.LIST_ITEM, "bullet", len(indent), 2, content)
    match = _ordered_re.match(line)
    if match:
        indent, number, _, content = match.groups()
        return _Marker(Kind.LIST_ITEM, "ordered", len(indent),
                       len(number) + 2, content, number=int(number))
    return None


def _fence(line):
    match = _fence_re.match(line)
    if not match:
        return None
    fence, info = match.groups()
    if fence[0] == "`" and "`" in info:
        return None
    language = info.split()[0] if info.strip() else None
    return fence, language


def _starts_block(line):
    return bool(_fence(line) or _hr_re.match(line) or
                _heading_re.match(line) or _quote_re.match(line) or
                _list_marker(line) or _image(line) or
                _separator_re.match(line))


def _indent(line):
    return len(line) - len(line.lstrip(" "))


def _blocks(lines, depth):
    """Return the block nodes making up `lines`."""
    blocks = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.strip() or _separator_re.match(line):
            i += 1
            continue
        if depth >= MAX_DEPTH:
            rest = " ".join(line.strip() for line in lines[i:])
            blocks.append(_paragraph([rest], depth))
            break
        fence = _fence(line)
        if fence:
            i, node = _code_block(lines, i, *fence)
        elif _hr_re.match(line):
            node = Node(Kind.HORIZONTAL_RULE)
            i += 1
        elif _heading_re.match(line):
            hashes, content = _heading_re.match(line).groups()
            node = Node(Kind.HEADING, {"level": len(hashes)},
                        _inline_block(content or "", depth))
            i += 1
        elif _quote_re.match(line):
            inner = []
            while i < len(lines) and _quote_re.match(lines[i]):
                inner.append(_quote_re.match(lines[i]).group(1))
                i += 1
            node = Node(Kind.BLOCKQUOTE, children=_blocks(inner, depth + 1))
        elif _list_marker(line):
            i, node = _list(lines, i, depth)
        elif _image(line):
            node = _image(line)
            i += 1
        else:
            paragraph = [line]
            i += 1
            while i < len(lines) and lines[i].strip() and \
                    not _starts_block(lines[i]):
                paragraph.append(lines[i])
                i += 1
            node = _paragraph(paragraph, depth)
        blocks.append(node)
    return blocks


def _paragraph(lines, depth):
    source = "\n".join(line.lstrip() for line in lines).rstrip()
    return Node(Kind.PARAGRAPH, children=_inline_block(source, depth))


def _code_block(lines, i, fence, language):
    body = []
    i += 1
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()
        if _indent(line) < 4 and stripped.startswith(fence) and \
                not stripped.strip(fence[0]):
            i += 1
            break
        body.append(line)
        i += 1
    code = "\n".join(body)
    children = [Node(Kind.TEXT, text=code)] if code else []
    return i, Node(Kind.CODE_BLOCK, {"language": language}, children)


def _image(line):
    match = _image_re.match(line)
    if not match:
        return None
    tail = _link_tail("(" + match.group(2) + ")", 0)
    if not tail or tail[2] != len(match.group(2)) + 2:
        return None
    href, title, _ = tail
    src = storage.clean_url(href)
    if src is None:
        return None
    alt = _unescape(match.group(1))
    return Node(Kind.IMAGE, {"src": src, "alt": alt or None,
                             "title": title or None})


def _list(lines, i, depth):
    """Return the index after the list starting at line `i` and the list."""
    first = _list_marker(lines[i])
    items = []
    while True:
        marker = _list_marker(lines[i])
        body = [marker.content]
        i += 1
        while i < len(lines):
            line = lines[i]
            if not line.strip():
                j = i
                while j < len(lines) and not lines[j].strip():
                    j += 1
                if j < len(lines) and _indent(lines[j]) >= \
                        marker.content_indent:
                    body.extend([""] * (j - i))
                    i = j
                    continue
                break
            if _indent(line) >= marker.content_indent:
                body.append(line[marker.content_indent:])
            elif body[-1].strip() and not _starts_block(line):
                body.append(line.strip())
            else:
                break
            i += 1
        children = _blocks(body, depth + 1) or [Node(Kind.PARAGRAPH)]
        attrs = {"checked": marker.checked} \
            if marker.kind == Kind.TASK_ITEM else {}
        items.append(Node(marker.kind, attrs, children))
        j = i
        while j < len(lines) and not lines[j].strip():
            j += 1
        following = _list_marker(lines[j]) if j < len(lines) else None
        if not following or following.flavor != first.flavor or \
                following.indent >= first.content_indent:
            break
        i = j
    kind = {"task": Kind.TASK_LIST, "bullet": Kind.BULLET_LIST,
            "ordered": Kind.ORDERED_LIST}[first.flavor]
    attrs = {"start": first.number} if kind == Kind.ORDERED_LIST else {}
    return i, Node(kind, attrs, items)


# inline pass

def _text(value, marks):
    return Node(Kind.TEXT, text=value, marks=marks)


def _unescape(value):
    return _unescape_re.sub(r"\1", value)


def _inline_block(source, depth):
    return merge_text(_inline(source, frozenset(), depth))


def _run(src, i, char):
    j = i
    while j < len(src) and src[j] == char:
        j += 1
    return j - i


def _find_backticks(src, start, size):
    j = start
    while j < len(src):
        if src[j] == "`":
            run = _run(src, j, "`")
            if run == size:
                return j
            j += run
        else:
            j += 1
    return -1


def _skip(src, j):
    """Return the index past an escape or code span at `j`, or None."""
    if src[j] == "\\":
        return j + 2
    if src[j] == "`":
        run = _run(src, j, "`")
        close = _find_backticks(src, j + run, run)
        return close + run if close >= 0 else j + run
    return None


def _close_stars(src, start, size):
    """Return where `size` closing stars begin, searching from `start`."""
    j = start
    while j < len(src):
        skipped = _skip(src, j)
        if skipped is not None:
            j = skipped
            continue
        if src[j] == "*":
            run = _run(src, j, "*")
            at = j + run - size
            fits = run % 2 == 1 if size == 1 else run >= size
            if fits and at > start and not src[j - 1].isspace() and \
                    src[start:at].strip():
                return at
            j += run
            continue
        j += 1
    return -1


def _close_underscore(src, start):
    j = start
    while j < len(src):
        skipped = _skip(src, j)
        if skipped is not None:
            j = skipped
            continue
        if src[j] == "_" and j > start and not src[j - 1].isspace() and \
                (j + 1 == len(src) or not src[j + 1].isalnum()):
            return j
        j += 1
    return -1


def _close_tildes(src, start):
    j = start
    while j < len(src):
        skipped = _skip(src, j)
        if skipped is not None:
            j = skipped
            continue
        if src.startswith("~~", j) and j > start and \
                not src[j - 1].isspace():
            return j
        j += 1
    return -1


def _match_bracket(src, i):
    level = 0
    j = i
    while j < len(src):
        if src[j] in "\\`":
            j = _skip(src, j)
            continue
        if src[j] == "[":
            level += 1
        elif src[j] == "]":
            level -= 1
            if level == 0:
                return j
        j += 1
    return -1


def _link_tail(src, k):
    """
    return `(href, title, end)` for a `(url "title")` tail at `src[k]`

    Returns None when the tail is malformed.

    """
    n = len(src)
    if k >= n or src[k] != "(":
        return None
    j = k + 1
    while j < n and src[j].isspace():
        j += 1
    if j < n and src[j] == "<":
        end = src.find(">", j + 1)
        if end < 0 or "\n" in src[j + 1:end]:
            return None
        href = src[j + 1:end]
        j = end + 1
    else:
        start = j
        level = 0
        while j < n:
            char = src[j]
            if char == "\\" and j + 1 < n:
                j += 2
                continue
            if char.isspace():
                break
            if char == "(":
                level += 1
            elif char == ")":
                if not level:
                    break
                level -= 1
            j += 1
        href = _unescape(src[start:j])
    while j < n and src[j].isspace():
        j += 1
    title = None
    if j < n and src[j] in "\"'":
        quote = src[j]
        start = j = j + 1
        while j < n and src[j] != quote:
            j += 2 if src[j] == "\\" else 1
        if j >= n:
            return None
        title = _unescape(src[start:j])
        j += 1
        while j < n and src[j].isspace():
            j += 1
    if j < n and src[j] == ")":
        return href, title, j + 1
    return None


def _inline(src, marks, depth):
    """Return the inline nodes for `src` with `marks` applied."""
    nodes = []
    buffer = []

    def flush():
        if buffer:
            nodes.append(_text("".join(buffer), marks))
            buffer.clear()

    nesting = depth < MAX_DEPTH
    n = len(src)
    i = 0
    while i < n:
        char = src[i]
        if char == "\\" and i + 1 < n:
            if src[i + 1] == "\n":
                flush()
                nodes.append(Node(Kind.HARD_BREAK))
                i += 2
                continue
            if src[i + 1] in _punctuation:
                buffer.append(src[i + 1])
                i += 2
                continue
        if char == "\n":
            pending = "".join(buffer)
            buffer[:] = [pending.rstrip(" ")]
            if len(pending) - len(pending.rstrip(" ")) >= 2:
                flush()
                nodes.append(Node(Kind.HARD_BREAK))
            else:
                buffer.append(" ")
            i += 1
            continue
        if char == "`":
            run = _run(src, i, "`")
            close = _find_backticks(src, i + run, run)
            if close < 0:
                buffer.append("`" * run)
                i += run
                continue
            code = src[i + run:close].replace("\n", " ")
            if len(code) > 2 and code[0] == code[-1] == " " and code.strip():
                code = code[1:-1]
            flush()
            nodes.append(_text(code, marks | {Mark("code")}))
            i = close + run
            continue
        opened = _open(src, i, marks, depth) if nesting else None
        if opened:
            end, inner = opened
            flush()
            nodes.extend(inner)
            i = end
            continue
        buffer.append(char)
        i += 1
    flush()
    return nodes


def _open(src, i, marks, depth):
    """Return `(end, nodes)` for a span opening at `src[i]`, or None."""
    char = src[i]
    n = len(src)
    if char == "*":
        run = _run(src, i, "*")
        if run > 3 or i + run >= n or src[i + run].isspace():
            return None
        for size in range(run, 0, -1):
            close = _close_stars(src, i + size, size)
            if close >= 0:
                added = {1: {"italic"}, 2: {"bold"},
                         3: {"bold", "italic"}}[size]
                inner_marks = marks | {Mark(kind) for kind in added}
                inner = _inline(src[i + size:close], inner_marks, depth + 1)
                return close + size, inner
        return None
    if char == "_":
        if (i and src[i - 1].isalnum()) or i + 1 >= n or \
                src[i + 1].isspace():
            return None
        close = _close_underscore(src, i + 1)
        if close < 0:
            return None
        inner = _inline(src[i + 1:close], marks | {Mark("italic")},
                        depth + 1)
        return close + 1, inner
    if char == "~" and src.startswith("~~", i):
        if i + 2 >= n or src[i + 2].isspace():
            return None
        close = _close_tildes(src, i + 2)
        if close < 0:
            return None
        inner = _inline(src[i + 2:close], marks | {Mark("strikethrough")},
                        depth + 1)
        return close + 2, inner
    if char == "[" and not any(mark.kind == "link" for mark in marks):
        close = _match_bracket(src, i)
        if close < 0:
            return None
        tail = _link_tail(src, close + 1)
        if not tail:
            return None
        href, title, end = tail
        href = storage.clean_url(href)
        inner_marks = marks
        if href is not None:
            inner_marks = marks | {Mark("link", href, title or None)}
        return end, _inline(src[i + 1:close], inner_marks, depth + 1)
    return None


def parse_markdown(text):
    """
    return the document for markdown `text`

    Empty text gives an empty document. Unrecognized syntax is kept as
    literal paragraph text.

    """
    if not text:
        return Node(Kind.DOCUMENT)
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    doc = Node(Kind.DOCUMENT, children=_blocks(lines, 0))
    if not is_well_formed(doc):
        log.debug("parsed markdown does not form a well-formed document")
    return doc


# serializer

_escape_re = re.compile(r"[\\`*~\[\]]|_")
_block_start_re = re.compile(r"^(?:#{1,6}(?:[ \t]|$)|>|[-+*](?:[ \t]|$))")
_ordered_start_re = re.compile(r"^(\d{1,9})([.)])(?=[ \t]|$)")
_closing_hashes_re = re.compile(r"([ \t])(#+)$")
_bang_re = re.compile(r"(?<!\\)!\[")
_delimiters = {"bold": "**", "strikethrough": "~~"}
_SEPARATOR = "<!-- -->"


def _escape(value):
    def escape(match):
        char = match.group()
        start = match.start()
        if char == "_" and 0 < start < len(value) - 1 and \
                value[start - 1].isalnum() and value[start + 1].isalnum():
            return char
        return "\\" + char
    return _escape_re.sub(escape, value)


def _code_span(code):
    longest = max((len(run) for run in re.findall(r"`+", code)), default=0)
    ticks = "`" * (longest + 1)
    if code.startswith(("`", " ")) or code.endswith(("`", " ")):
        return f"{ticks} {code} {ticks}"
    return f"{ticks}{code}{ticks}"


def _destination(href):
    if re.search(r"[\s()<>]", href):
        return "<" + href.replace(">", "%3E").replace("\n", "%0A") + ">"
    return href


def _title(title):
    if not title:
        return ""
    escaped = title.replace("\\", "\\\\").replace('"', '\\"')
    return f' "{escaped}"'


def _render_inline(nodes, breaks="\\\n"):
    out = _join(_render_entries(nest_marks(nodes), breaks))
    return _bang_re.sub(r"\\![", out)


def _join(parts):
    """Join rendered pieces, picking `_` or `*` for each italic span."""
    out = ""
    for k, part in enumerate(parts):
        if isinstance(part, tuple):
            lead, core, trail = part
            after = parts[k + 1] if k + 1 < len(parts) else ""
            after = after[0] if isinstance(after, tuple) else after
            touching = (not lead and out[-1:].isalnum()) or \
                (not trail and after[:1].isalnum())
            delimiter = "*" if touching else "_"
            part = f"{lead}{delimiter}{core}{delimiter}{trail}"
        out += part
    return out


def _render_entries(entries, breaks):
    """Return rendered pieces; italic spans stay `(lead, core, trail)`."""
    parts = []
    for entry in entries:
        if not isinstance(entry, tuple):
            if entry.kind == Kind.HARD_BREAK:
                parts.append(breaks)
            elif entry.kind == Kind.TEXT:
                parts.append(_escape(entry.text))
            continue
        mark, inner = entry
        if mark.kind == "code":
            parts.append(_code_span("".join(node.text for node in inner)))
            continue
        pieces = _render_entries(inner, breaks)
        if mark.kind == "link":
            href = storage.clean_url(mark.href)
            if href is None:
                parts.extend(pieces)
            else:
                parts.append(f"[{_join(pieces)}]({_destination(href)}"
                             f"{_title(mark.title)})")
            continue
        body = _join(pieces)
        core = body.strip()
        if not core:
            parts.append(body)
            continue
        lead = body[:len(body) - len(body.lstrip())]
        trail = body[len(body.rstrip()):]
        if mark.kind == "italic":
            parts.append((lead, core, trail))
        else:
            delimiter = _delimiters[mark.kind]
            parts.append(f"{lead}{delimiter}{core}{delimiter}{trail}")
    return parts


def _escape_line(line):
    if _ordered_start_re.match(line):
        return _ordered_start_re.sub(r"\1\\\2", line, count=1)
    if _block_start_re.match(line) or _hr_re.match(line):
        return "\\" + line
    if _separator_re.match(line):
        return line.replace("<", "\\<", 1)
    return line


def _paragraph_text(node, context):
    rendered = _render_inline(node.children).lstrip()
    return "\n".join(_escape_line(line) for line in rendered.split("\n"))


def _heading_text(node, context):
    content = _render_inline(node.children, breaks=" ").strip()
    content = _closing_hashes_re.sub(r"\1\\\2", content)
    hashes = "#" * node.attrs.get("level", 1)
    return f"{hashes} {content}" if content else hashes


def _code_text(node, context):
    code = node.plain_text
    longest = max((len(run) for run in re.findall(r"`+", code)), default=0)
    fence = "`" * max(3, longest + 1)
    language = node.attrs.get("language") or ""
    if code:
        return f"{fence}{language}\n{code}\n{fence}"
    return f"{fence}{language}\n{fence}"


def _rule_text(node, context):
    return "---"


def _image_text(node, context):
    src = storage.clean_url(node.attrs.get("src"))
    if src is None:
        return None
    alt = (node.attrs.get("alt") or "").replace("\\", "\\\\")
    alt = alt.replace("[", "\\[").replace("]", "\\]")
    return f"![{alt}]({_destination(src)}{_title(node.attrs.get('title'))})"


def _quote_text(node, context):
    inner = _container(node.children)
    return "\n".join(f"> {line}" if line else ">"
                     for line in inner.split("\n"))


def _list_text(node, context):
    lines = []
    number = node.attrs.get("start", 1)
    for item in node.children:
        if item.kind != LISTS[node.kind]:
            continue
        if node.kind == Kind.ORDERED_LIST:
            marker = f"{number}. "
            number += 1
        elif node.kind == Kind.TASK_LIST:
            marker = f"- [{'x' if item.attrs.get('checked') else ' '}] "
        else:
            marker = "- "
        width = len(marker) if node.kind != Kind.TASK_LIST else 2
        lines.append(_item_text(item, marker, width))
    return "\n".join(lines)


def _item_text(item, marker, width):
    body = _container(item.children, tight=True, keep_empty=True)
    pad = " " * width
    lines = body.split("\n")
    rest = [pad + line if line else "" for line in lines[1:]]
    return "\n".join([(marker + lines[0]).rstrip()] + rest)


def _skip_node(node, context):
    return None


_renderers = {Kind.DOCUMENT: _skip_node,
              Kind.PARAGRAPH: _paragraph_text,
              Kind.HEADING: _heading_text,
              Kind.BULLET_LIST: _list_text,
              Kind.ORDERED_LIST: _list_text,
              Kind.TASK_LIST: _list_text,
              Kind.LIST_ITEM: _skip_node,
              Kind.TASK_ITEM: _skip_node,
              Kind.BLOCKQUOTE: _quote_text,
              Kind.CODE_BLOCK: _code_text,
              Kind.HORIZONTAL_RULE: _rule_text,
              Kind.IMAGE: _image_text,
              Kind.HARD_BREAK: _skip_node,
              Kind.TEXT: _skip_node}


def _container(children, tight=False, keep_empty=False):
    """
    return the markdown for a run of sibling blocks

    Blocks are separated by one blank line. In a `tight` container (a list
    item) a list directly after a paragraph follows on the next line.
    Neighbouring lists of one kind are split by an empty HTML comment so
    they read back as separate lists.

    """
    out = ""
    previous = None
    for index, child in enumerate(children):
        renderer = _renderers.get(child.kind, _skip_node)
        rendered = renderer(child, {})
        if rendered is None or (not rendered and not
                                (keep_empty and index == 0)):
            continue
        if previous is not None:
            tight_list = tight and child.kind in LISTS and \
                previous.kind == Kind.PARAGRAPH
            out += "\n" if tight_list else "\n\n"
            if previous.kind == child.kind and child.kind in LISTS:
                out += _SEPARATOR + "\n\n"
        out += rendered
        previous = child
    return out


def serialize_markdown(doc):
    """
    return the markdown for document `doc`

    Headings, list markers, fences and marks use one canonical spelling
    each so output is stable. Kinds with no markdown form are skipped.
    Marks nest link, bold, italic, strikethrough, with code innermost
    because a code span is opaque and can hold no other mark.

    """
    if doc is None:
        raise ValueError("a document root is required")
    if doc.kind != Kind.DOCUMENT:
        doc = Node(Kind.DOCUMENT, children=[doc])
    return _container(doc.children)
