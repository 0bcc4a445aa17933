"""
convert newsletter content between markdown, HTML and a document tree

Authors write markdown, readers get HTML and the editor works on a tree.
All three meet in one immutable document model so that content can move
between them without drifting: a parsed document written back out and
parsed again is the same document.

    >>> doc = parse_markdown("# Hello\\n\\n- [ ] Buy milk")
    >>> serialize_html(parse_html(serialize_html(doc))) == serialize_html(doc)
    True

Malformed input is repaired or degraded to text rather than rejected, and
every conversion can be scored for how much visible content survived.

"""

from .convert import FORMATS, ConversionError, convert
from .fidelity import Difference, Score, Validation, score, validate
from .markdown import parse_markdown, serialize_markdown
from .markup import parse_html, sanitize_html, serialize_html
from .model import Kind, Mark, Node, is_well_formed, text
from .repair import repair_markdown

__all__ = ["parse_markdown", "serialize_markdown", "parse_html",
           "serialize_html", "sanitize_html", "repair_markdown", "score",
           "validate", "convert", "ConversionError", "FORMATS", "Kind",
           "Mark", "Node", "text", "is_well_formed", "Difference", "Score",
           "Validation"]
