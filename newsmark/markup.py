"""
encode/decode HTML to and from the document model

Parsing leans on `lxml.html` for tolerant tree building: unclosed and
misnested tags are closed where a browser would close them and nothing
raises. Before the walk a single normalization step folds every task item
shape the editor has ever emitted into one canonical form.

Serializing only ever produces the vocabulary in `ALLOWED_ATTRIBUTES`.
Anything else is dropped, which makes `sanitize_html` the XSS boundary for
stored content.

    >>> serialize_html(parse_html("<h1>Hi</h1><script>x()</script>"))
    '<h1>Hi</h1>'

"""

import logging
import re
import urllib.parse

import lxml.etree
import lxml.html
from lxml.html import builder as E

from . import storage
from .model import (Kind, Mark, Node, MAX_DEPTH, INLINES, is_well_formed,
                    merge_text, nest_marks)

__all__ = ["parse_html", "serialize_html", "sanitize_html",
           "ALLOWED_ATTRIBUTES"]

log = logging.getLogger(__name__)

ALLOWED_ATTRIBUTES = {"p": frozenset(), "h1": frozenset(),
                      "h2": frozenset(), "h3": frozenset(),
                      "h4": frozenset(), "h5": frozenset(),
                      "h6": frozenset(), "strong": frozenset(),
                      "em": frozenset(), "s": frozenset(),
                      "code": frozenset({"class"}), "pre": frozenset(),
                      "ul": frozenset({"data-type"}),
                      "ol": frozenset({"start"}),
                      "li": frozenset({"data-type", "data-checked"}),
                      "blockquote": frozenset(), "hr": frozenset(),
                      "br": frozenset(), "a": frozenset({"href", "title"}),
                      "img": frozenset({"src", "alt", "title"}),
                      "label": frozenset(),
                      "input": frozenset({"type", "checked", "disabled"}),
                      "div": frozenset()}

_headings = {f"h{level}": level for level in range(1, 7)}
_mark_tags = {"strong": "bold", "b": "bold", "em": "italic", "i": "italic",
              "del": "strikethrough", "s": "strikethrough",
              "strike": "strikethrough"}
_containers = frozenset({"div", "section", "article", "header", "footer",
                         "main", "aside", "nav", "figure", "figcaption",
                         "address", "details", "summary", "center", "form",
                         "fieldset", "table", "thead", "tbody", "tfoot",
                         "tr", "td", "th", "caption", "dl", "dt", "dd",
                         "body", "html"})
_dropped = frozenset({"script", "style", "template", "noscript", "iframe",
                      "frame", "frameset", "object", "embed", "applet",
                      "head", "title", "meta", "link", "base", "input",
                      "select", "option", "textarea", "button", "svg",
                      "math", "video", "audio", "source", "track",
                      "canvas"})
_space_re = re.compile(r"[ \t\n\r\f]+")
_invalid_re = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")
_language_re = re.compile(r"^(?:language|lang)-([\w+#.\-]+)$")
# libxml2 percent-escapes `href` and `src` on output except for these
_url_safe = "@/:=?;#%&,+<>!~*'()"

_BREAK = object()


# parsing

def _fragment(text):
    """Return a `div` holding the parsed fragment, or None."""
    try:
        return lxml.html.fragment_fromstring(text, create_parent="div")
    except (lxml.etree.ParserError, ValueError) as err:
        log.debug("could not build a tree, reading as plain text: %s", err)
        return None


def _url(value):
    url = storage.clean_url(value)
    if url is None:
        return None
    if storage.is_reference(url):
        return urllib.parse.unquote(url)
    return urllib.parse.quote(url, safe=_url_safe)


def _owner(el):
    parent = el.getparent()
    while parent is not None and parent.tag != "li":
        parent = parent.getparent()
    return parent


def _checkbox(item):
    for control in item.cssselect("input[type=checkbox]"):
        if _owner(control) is item:
            return control
    return None


def _in_task_list(item):
    parent = item.getparent()
    if parent is None or parent.tag != "ul":
        return False
    return parent.get("data-type") == "taskList" or \
        "contains-task-list" in parent.get("class", "").split()


def _controls(item):
    controls = []
    for el in item.iter("label", "input", "span"):
        if _owner(el) is not item:
            continue
        empty = not el.text_content().strip()
        if el.tag == "input":
            if el.get("type") == "checkbox":
                controls.append(el)
        elif el.tag == "label":
            if empty or _checkbox_inside(el):
                controls.append(el)
        elif empty and not len(el):
            controls.append(el)
    return controls


def _checkbox_inside(el):
    return bool(el.cssselect("input[type=checkbox]"))


def _normalize_task_items(root):
    """
    rewrite every task item shape as `<li data-type=taskItem data-checked=..>`

    Shapes seen in the wild: text directly in the item or in a `p`, an
    extra wrapper `div`, a leading `label`/checkbox/`span` control (with or
    without `disabled`), a `label` wrapping both the checkbox and the text,
    `data-checked` before or after `data-type`, and GitHub-style items with
    a bare checkbox. Checkboxes and empty controls are removed, labels that
    hold text and wrappers are unwrapped, so only the item's content
    remains.

    """
    for item in root.cssselect("li"):
        checkbox = _checkbox(item)
        if item.get("data-type") != "taskItem" and checkbox is None and \
                not _in_task_list(item):
            continue
        checked = item.get("data-checked")
        if checked is None:
            checked = checkbox is not None and \
                checkbox.get("checked") is not None
        else:
            checked = checked.strip().lower() == "true"
        for control in _controls(item):
            if control.getparent() is None:
                continue
            # a label wrapping the item text is unwrapped, not dropped
            if control.text_content().strip():
                control.drop_tag()
            else:
                control.drop_tree()
        for child in list(item):
            if child.tag == "div":
                child.drop_tag()
        item.attrib.clear()
        item.set("data-type", "taskItem")
        item.set("data-checked", "true" if checked else "false")


def _text(value, marks):
    return Node(Kind.TEXT, text=value, marks=marks)


def _content(el, marks, depth):
    """Yield the nodes for the text and children of `el`."""
    if el.text:
        yield _text(el.text, marks)
    for child in el:
        yield from _element(child, marks, depth + 1)
        if child.tail:
            yield _text(child.tail, marks)


def _element(el, marks, depth):
    if not isinstance(el.tag, str):
        return
    tag = el.tag.lower()
    if tag in _dropped:
        return
    if depth >= MAX_DEPTH:
        yield _text(el.text_content(), marks)
        return
    if tag == "br":
        yield Node(Kind.HARD_BREAK)
    elif tag == "hr":
        yield Node(Kind.HORIZONTAL_RULE)
    elif tag == "img":
        image = _image(el)
        if image:
            yield image
    elif tag in _headings:
        yield Node(Kind.HEADING, {"level": _headings[tag]},
                   _inline(el, marks, depth))
    elif tag == "p":
        yield from _blocks(el, marks, depth) or [Node(Kind.PARAGRAPH)]
    elif tag == "pre":
        yield _code_block(el)
    elif tag in ("ul", "ol"):
        yield from _list(el, marks, depth)
    elif tag == "li":
        yield from _group([_item(el, marks, depth)], ordered=False)
    elif tag == "blockquote":
        yield Node(Kind.BLOCKQUOTE, children=_blocks(el, marks, depth))
    elif tag == "code":
        yield _text(el.text_content(), marks | {Mark("code")})
    elif tag == "a":
        href = _url(el.get("href"))
        if href is not None:
            marks = marks | {Mark("link", href, el.get("title") or None)}
        yield from _content(el, marks, depth)
    elif tag in _mark_tags:
        yield from _content(el, marks | {Mark(_mark_tags[tag])}, depth)
    elif tag in _containers:
        yield _BREAK
        yield from _content(el, marks, depth)
        yield _BREAK
    else:
        yield from _content(el, marks, depth)


def _finish(nodes):
    """Return inline `nodes` with HTML whitespace collapsed and trimmed."""
    out = []
    for node in nodes:
        if node.kind == Kind.HARD_BREAK:
            _trim_end(out)
            out.append(node)
            continue
        value = _space_re.sub(" ", node.text)
        if value.startswith(" ") and (not out or
                                      out[-1].kind == Kind.HARD_BREAK or
                                      out[-1].text.endswith(" ")):
            value = value[1:]
        if value:
            out.append(node.replace(text=value))
    _trim_end(out)
    return merge_text(out)


def _trim_end(out):
    if out and out[-1].kind == Kind.TEXT and out[-1].text.endswith(" "):
        value = out[-1].text[:-1]
        if value:
            out[-1] = out[-1].replace(text=value)
        else:
            out.pop()


def _blocks(el, marks, depth):
    """
    return the block nodes inside `el`

    Runs of inline content between blocks become their own paragraphs so
    the text of neighbouring blocks never runs together.

    """
    blocks = []
    pending = []

    def flush():
        inline = _finish(pending)
        pending.clear()
        if inline:
            blocks.append(Node(Kind.PARAGRAPH, children=inline))

    for node in _content(el, marks, depth):
        if node is _BREAK:
            flush()
        elif node.kind in INLINES:
            pending.append(node)
        else:
            flush()
            blocks.append(node)
    flush()
    return blocks


def _inline(el, marks, depth):
    nodes = []
    for node in _content(el, marks, depth):
        if node is _BREAK:
            nodes.append(_text(" ", marks))
        elif node.kind in INLINES:
            nodes.append(node)
        else:
            nodes.append(_text(f" {node.plain_text} ", marks))
    return _finish(nodes)


def _code_block(el):
    language = None
    for candidate in [el] + list(el.iter("code")):
        for name in candidate.get("class", "").split():
            match = _language_re.match(name)
            if match:
                language = match.group(1)
                break
        if language:
            break
    code = el.text_content()
    children = [Node(Kind.TEXT, text=code)] if code else []
    return Node(Kind.CODE_BLOCK, {"language": language}, children)


def _image(el):
    src = _url(el.get("data-storage-src") or el.get("src"))
    if src is None:
        return None
    return Node(Kind.IMAGE, {"src": src, "alt": el.get("alt") or None,
                             "title": el.get("title") or None})


def _item(el, marks, depth):
    children = _blocks(el, marks, depth) or [Node(Kind.PARAGRAPH)]
    if el.get("data-type") == "taskItem":
        checked = el.get("data-checked") == "true"
        return Node(Kind.TASK_ITEM, {"checked": checked}, children)
    return Node(Kind.LIST_ITEM, children=children)


def _list(el, marks, depth):
    """Yield one list node per run of same-flavor items in `el`."""
    items = []
    stray = []

    def attach():
        nodes = _finish(stray) if all(n.kind in INLINES for n in stray) \
            else stray
        stray.clear()
        if not nodes:
            return
        if all(node.kind in INLINES for node in nodes):
            nodes = [Node(Kind.PARAGRAPH, children=nodes)]
        if items:
            items[-1] = items[-1].replace(
                children=items[-1].children + tuple(nodes))
        else:
            items.append(Node(Kind.LIST_ITEM, children=nodes))

    if el.text and el.text.strip():
        stray.append(_text(el.text, marks))
    for child in el:
        if isinstance(child.tag, str) and child.tag == "li":
            attach()
            items.append(_item(child, marks, depth + 1))
        else:
            for node in _element(child, marks, depth + 1):
                if node is _BREAK:
                    continue
                if node.kind not in INLINES:
                    attach()
                    stray.append(node)
                    attach()
                else:
                    stray.append(node)
        if child.tail and child.tail.strip():
            stray.append(_text(child.tail, marks))
    attach()
    try:
        start = int(el.get("start", 1))
    except ValueError:
        start = 1
    yield from _group(items, ordered=el.tag == "ol", start=start)


def _group(items, ordered, start=1):
    kind = None
    run = []
    count = 0
    for item in items + [None]:
        item_kind = None if item is None else (
            Kind.TASK_LIST if item.kind == Kind.TASK_ITEM else
            Kind.ORDERED_LIST if ordered else Kind.BULLET_LIST)
        if run and item_kind != kind:
            attrs = {"start": start + count} \
                if kind == Kind.ORDERED_LIST else {}
            yield Node(kind, attrs, run)
            count += len(run)
            run = []
        if item is not None:
            kind = item_kind
            run.append(item)


def _plain(text):
    """Return paragraphs for text that could not be read as HTML."""
    text = re.sub(r"<[^>]*>", " ", text)
    paragraphs = []
    for chunk in re.split(r"\n\s*\n", text):
        value = _space_re.sub(" ", chunk).strip()
        if value:
            paragraphs.append(Node(Kind.PARAGRAPH,
                                   children=[_text(value, frozenset())]))
    return paragraphs


def parse_html(text):
    """
    return the document for HTML `text`

    Unknown tags are unwrapped, non-content tags (scripts, styles, form
    controls, embeds) are dropped along with their text, and links or
    images with unsafe URLs lose the URL but keep their text.

    """
    if not text or not text.strip():
        return Node(Kind.DOCUMENT)
    text = _invalid_re.sub("", text)
    root = _fragment(text)
    if root is None:
        return Node(Kind.DOCUMENT, children=_plain(text))
    _normalize_task_items(root)
    doc = Node(Kind.DOCUMENT, children=_blocks(root, frozenset(), 0))
    if not is_well_formed(doc):
        log.debug("parsed html does not form a well-formed document")
    return doc


# serializing

def _clean(value):
    return _invalid_re.sub("", value or "")


def _inline_html(nodes):
    return _entries_html(nest_marks(nodes))


def _entries_html(entries):
    parts = []
    for entry in entries:
        if isinstance(entry, tuple):
            mark, inner = entry
            children = _entries_html(inner)
            element = _mark_element(mark, children)
            if element is None:
                parts.extend(children)
            else:
                parts.append(element)
        elif entry.kind == Kind.HARD_BREAK:
            parts.append(E.BR())
        elif entry.kind == Kind.TEXT:
            parts.append(_clean(entry.text))
    return parts


def _mark_element(mark, children):
    if mark.kind == "link":
        href = storage.clean_url(mark.href)
        if href is None:
            return None
        attrs = {"href": _clean(href)}
        if mark.title:
            attrs["title"] = _clean(mark.title)
        return E.A(attrs, *children)
    tag = {"bold": E.STRONG, "italic": E.EM, "strikethrough": E.S,
           "code": E.CODE}[mark.kind]
    return tag(*children)


def _children_html(children, readonly):
    elements = []
    for child in children:
        element = _renderers[child.kind](child, readonly)
        if element is not None:
            elements.append(element)
    return elements


def _paragraph_html(node, readonly):
    return E.P(*_inline_html(node.children))


def _heading_html(node, readonly):
    level = min(max(node.attrs.get("level", 1), 1), 6)
    return getattr(E, f"H{level}")(*_inline_html(node.children))


def _list_html(node, readonly):
    items = _children_html(node.children, readonly)
    if node.kind == Kind.ORDERED_LIST:
        start = node.attrs.get("start", 1)
        return E.OL({"start": str(start)}, *items) if start != 1 \
            else E.OL(*items)
    if node.kind == Kind.TASK_LIST:
        return E.UL({"data-type": "taskList"}, *items)
    return E.UL(*items)


def _item_html(node, readonly):
    return E.LI(*_children_html(node.children, readonly))


def _task_item_html(node, readonly):
    checked = bool(node.attrs.get("checked"))
    checkbox = {"type": "checkbox"}
    if checked:
        checkbox["checked"] = "checked"
    if readonly:
        checkbox["disabled"] = "disabled"
    return E.LI({"data-type": "taskItem",
                 "data-checked": "true" if checked else "false"},
                E.LABEL(E.INPUT(checkbox)),
                E.DIV(*_children_html(node.children, readonly)))


def _quote_html(node, readonly):
    return E.BLOCKQUOTE(*_children_html(node.children, readonly))


def _code_html(node, readonly):
    language = node.attrs.get("language")
    attrs = {"class": f"language-{language}"} if language else {}
    return E.PRE(E.CODE(attrs, _clean(node.plain_text)))


def _rule_html(node, readonly):
    return E.HR()


def _image_html(node, readonly):
    src = storage.clean_url(node.attrs.get("src"))
    if src is None:
        return None
    attrs = {"src": _clean(src)}
    for name in ("alt", "title"):
        if node.attrs.get(name):
            attrs[name] = _clean(node.attrs[name])
    return E.IMG(attrs)


def _skip(node, readonly):
    return None


_renderers = {Kind.DOCUMENT: _skip,
              Kind.PARAGRAPH: _paragraph_html,
              Kind.HEADING: _heading_html,
              Kind.BULLET_LIST: _list_html,
              Kind.ORDERED_LIST: _list_html,
              Kind.TASK_LIST: _list_html,
              Kind.LIST_ITEM: _item_html,
              Kind.TASK_ITEM: _task_item_html,
              Kind.BLOCKQUOTE: _quote_html,
              Kind.CODE_BLOCK: _code_html,
              Kind.HORIZONTAL_RULE: _rule_html,
              Kind.IMAGE: _image_html,
              Kind.HARD_BREAK: _skip,
              Kind.TEXT: _skip}


def _allowed_value(tag, name, value):
    if name in ("href", "src"):
        return storage.clean_url(value) == value
    if name == "class":
        return bool(_language_re.match(value))
    if name == "type":
        return value == "checkbox"
    if name == "data-type":
        return value == {"ul": "taskList", "li": "taskItem"}.get(tag)
    if name == "data-checked":
        return value in ("true", "false")
    if name == "start":
        return value.isdigit()
    return True


def _enforce_allow_list(root):
    """Drop every element and attribute outside `ALLOWED_ATTRIBUTES`."""
    for el in list(root.iter()):
        if el is not root and (not isinstance(el.tag, str) or
                               el.tag not in ALLOWED_ATTRIBUTES):
            if el.getparent() is not None:
                el.drop_tree()
            continue
        allowed = ALLOWED_ATTRIBUTES.get(el.tag, frozenset())
        for name in list(el.attrib):
            if name not in allowed or \
                    not _allowed_value(el.tag, name, el.get(name)):
                del el.attrib[name]
    return root


def serialize_html(doc, readonly=True):
    """
    return allow-listed HTML for document `doc`

    Task items carry their state twice: semantically as `data-type` and
    `data-checked` on the `li`, and visually as a checkbox (disabled when
    `readonly`). Storage references are emitted untouched for the signing
    service to resolve.

    """
    if doc is None:
        raise ValueError("a document root is required")
    if doc.kind != Kind.DOCUMENT:
        doc = Node(Kind.DOCUMENT, children=[doc])
    out = []
    for element in _children_html(doc.children, readonly):
        if element.tag not in ALLOWED_ATTRIBUTES:
            continue
        _enforce_allow_list(element)
        out.append(lxml.html.tostring(element, encoding="unicode"))
    return "".join(out)


def sanitize_html(text):
    """Return `text` reduced to the allow-listed HTML vocabulary."""
    return serialize_html(parse_html(text))
