"""
convert content between markdown, HTML and the editor's JSON tree

    >>> convert("# Hi", "markdown", "html")
    '<h1>Hi</h1>'

"""

import json
import logging

from .markdown import parse_markdown, serialize_markdown
from .markup import parse_html, serialize_html
from .model import Node
from .repair import repair_markdown

__all__ = ["convert", "ConversionError", "FORMATS"]

log = logging.getLogger(__name__)

FORMATS = ("markdown", "html", "json")


class ConversionError(Exception):
    """A conversion was requested to or from an unsupported format."""

    def __init__(self, format, cause=None):
        self.format = format
        self.cause = cause
        message = f"unsupported format {format!r}"
        if cause is not None:
            message = f"could not read {format}: {cause}"
        super().__init__(message)


def _read_json(content):
    if isinstance(content, (str, bytes)):
        try:
            content = json.loads(content)
        except ValueError as err:
            raise ConversionError("json", cause=err) from err
    try:
        return Node.from_dict(content)
    except (ValueError, TypeError, AttributeError) as err:
        raise ConversionError("json", cause=err) from err


def parse(content, source, repair=True):
    """Return the document for `content` written in format `source`."""
    if source == "markdown":
        if repair:
            content = repair_markdown(content)
        return parse_markdown(content)
    if source == "html":
        return parse_html(content)
    if source == "json":
        return _read_json(content)
    raise ConversionError(source)


def render(doc, target):
    """Return document `doc` written in format `target`."""
    if target == "markdown":
        return serialize_markdown(doc)
    if target == "html":
        return serialize_html(doc)
    if target == "json":
        return doc.to_dict()
    raise ConversionError(target)


def convert(content, source, target, repair=True):
    """
    return `content` converted from format `source` to format `target`

    Formats are `markdown`, `html` and `json`. JSON input may be the editor
    tree as a dict or as JSON text; JSON output is always the dict.
    Markdown input is repaired before parsing unless `repair` is false.

    """
    if target not in FORMATS:
        raise ConversionError(target)
    doc = parse(content, source, repair=repair)
    log.debug("converted %s to %s (%d blocks)", source, target,
              len(doc.children))
    return render(doc, target)
