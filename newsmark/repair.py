"""
balance unmatched inline delimiters before parsing

Autosaved drafts are routinely cut mid-emphasis. Rather than let a dangling
`**` swallow the rest of a document, each delimiter class is counted on its
own and a closer appended for every class left open.

    >>> repair_markdown("This is **bold")
    'This is **bold**'
    >>> repair_markdown("**bold** and `code`")
    '**bold** and `code`'

"""

import logging
import re

__all__ = ["repair_markdown"]

log = logging.getLogger(__name__)

_fence_re = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_star_run_re = re.compile(r"\*+")
_rule_re = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_list_marker_re = re.compile(r"^[ \t]*(?:(?:[*+-][ \t]+)+(?=\S)|"
                             r"[*+-][ \t]*$)")
_tilde_pair_re = re.compile(r"~~")


def repair_markdown(text):
    """
    return `text` with every paired delimiter class balanced

    Classes are fenced code blocks, inline backticks, `~~`, `**` and `*`.
    Fenced code is left alone except for closing an open fence. List
    markers and thematic breaks are not emphasis, so their stars are not
    counted. Applying the repair twice changes nothing further.

    """
    if not text:
        return text or ""
    outside, open_fence = _split_fences(text)
    closers = []
    if open_fence:
        closers.append("\n" + open_fence)
    inline = []
    if outside.count("`") % 2:
        inline.append("`")
    if len(_tilde_pair_re.findall(outside)) % 2:
        inline.append("~~")
    head = text + "".join(closers)
    if closers:
        head += "\n"
    head += "".join(inline)
    stars = _star_closer(head)
    if stars:
        inline.append(stars)
    if inline:
        if closers:
            closers.append("\n")
        closers.extend(inline)
    if not closers:
        return text
    log.debug("appending delimiter closers %r", closers)
    return text + "".join(closers)


def _split_fences(text):
    """Return text outside fenced code and the still-open fence, if any."""
    outside = []
    fence = None
    for line in text.split("\n"):
        match = _fence_re.match(line)
        if fence is None:
            if match:
                fence = match.group(1)
            else:
                outside.append(line)
        elif match and match.group(1)[0] == fence[0] and \
                len(match.group(1)) >= len(fence) and \
                not line.strip().strip(fence[0]):
            fence = None
    return "\n".join(outside), fence


def _stars(outside):
    """Return the `**` and `*` counts of emphasis runs in `outside`."""
    bold = italic = 0
    for line in outside.split("\n"):
        if _rule_re.match(line):
            continue
        for run in _star_run_re.findall(_list_marker_re.sub("", line)):
            bold += len(run) // 2
            italic += len(run) % 2
    return bold, italic


def _balanced(text):
    outside, fence = _split_fences(text)
    bold, italic = _stars(outside)
    return fence is None and not bold % 2 and not italic % 2


def _star_closer(head):
    """
    return the stars that balance both `**` and `*` when appended to `head`

    A run of n stars counts n // 2 toward `**` and n % 2 toward `*`.
    Appended stars can merge with a trailing run, turn a line into a rule
    or reopen a fence, so each candidate is counted again as a whole. When
    no candidate balances, nothing is appended.

    """
    if _balanced(head):
        return ""
    for separator in ("", " ", "\n"):
        for n in range(1, 8):
            candidate = separator + "*" * n
            if _balanced(head + candidate):
                return candidate
    log.debug("no star closer balances the text")
    return ""
