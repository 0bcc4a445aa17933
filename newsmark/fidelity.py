"""
score how much content survives a conversion

Both sides are reduced to their visible text (tags stripped, entities
unescaped, markdown punctuation and list markers removed, links reduced to
their text) before comparing, so only content loss costs points and a
change of representation costs nothing.

    >>> score("**Hello** World", "<p><strong>Hello</strong> World</p>").score
    100

"""

import dataclasses
import difflib
import html
import logging
import re

__all__ = ["score", "validate", "Score", "Difference", "Validation",
           "DEFAULT_THRESHOLD"]

log = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 80

_break_re = re.compile(r"<br\s*/?>", re.I)
_block_tag_re = re.compile(r"</?(?:p|div|h[1-6]|li|ul|ol|blockquote|pre|hr|"
                           r"table|tr|section|article)\b[^>]*>", re.I)
_tag_re = re.compile(r"<[^>]*>")
_fence_re = re.compile(r"^ {0,3}(?:`{3,}|~{3,}).*$", re.M)
_rule_re = re.compile(r"^[ \t]*([-*_])(?:[ \t]*\1){2,}[ \t]*$", re.M)
_marker_re = re.compile(r"^[ \t]*(?:(?:[-*+][ \t]+\[.\]|[-*+]|\d{1,9}[.)]|"
                        r"#{1,6})[ \t]+|>[ \t]?)+", re.M)
_image_re = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_link_re = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_punctuation_re = re.compile(r"[*_~`\\]")
_paragraph_re = re.compile(r"\n[ \t]*\n")
_space_re = re.compile(r"\s+")


@dataclasses.dataclass(frozen=True)
class Difference:
    """One block that differs between the original and the conversion."""

    type: str
    path: str
    old_value: str = None
    new_value: str = None
    description: str = ""


@dataclasses.dataclass(frozen=True)
class Score:
    score: int
    differences: list


@dataclasses.dataclass(frozen=True)
class Validation:
    success: bool
    fidelity: int
    warnings: list


def _blocks(text):
    """Return the normalized visible text of each block in `text`."""
    text = _break_re.sub("\n", text or "")
    text = _block_tag_re.sub("\n\n", text)
    text = html.unescape(_tag_re.sub("", text))
    text = _fence_re.sub("", text)
    text = _rule_re.sub("", text)
    text = _marker_re.sub("", text)
    text = _image_re.sub(r"\1", text)
    text = _link_re.sub(r"\1", text)
    text = _punctuation_re.sub("", text)
    blocks = []
    for chunk in _paragraph_re.split(text):
        chunk = _space_re.sub(" ", chunk).strip()
        if chunk:
            blocks.append(chunk)
    return blocks


def _differences(old, new):
    differences = []
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        paired = min(i2 - i1, j2 - j1) if tag == "replace" else 0
        for k in range(paired):
            differences.append(Difference("modified", f"blocks[{i1 + k}]",
                                          old[i1 + k], new[j1 + k],
                                          "block text changed"))
        for i in range(i1 + paired, i2):
            differences.append(Difference("removed", f"blocks[{i}]",
                                          old_value=old[i],
                                          description="block missing from "
                                                      "conversion"))
        for j in range(j1 + paired, j2):
            differences.append(Difference("added", f"blocks[{j}]",
                                          new_value=new[j],
                                          description="block not in "
                                                      "original"))
    return differences


def score(original, converted):
    """
    return the similarity of `original` and `converted` on a 0-100 scale

    Identical visible text scores 100, as do two empty inputs. Any remaining
    difference caps the score at 99 and an empty side scores 0.

    """
    old, new = _blocks(original), _blocks(converted)
    a, b = " ".join(old), " ".join(new)
    if a == b:
        return Score(100, [])
    differences = _differences(old, new)
    if not a or not b:
        return Score(0, differences)
    ratio = difflib.SequenceMatcher(None, a, b, autojunk=False).ratio()
    return Score(min(round(ratio * 100), 99), differences)


def validate(original, converted, threshold=DEFAULT_THRESHOLD):
    """
    return the validation of a conversion against `threshold`

    Validation never fails; a fidelity shortfall is reported as a warning.

    """
    result = score(original, converted)
    warnings = []
    if result.score < threshold:
        log.info("conversion fidelity %d is below threshold %d",
                 result.score, threshold)
        warnings.append(f"Low fidelity: {result.score}% "
                        f"(threshold {threshold}%)")
        for difference in result.differences:
            warnings.append(f"{difference.path}: {difference.description}")
    return Validation(True, result.score, warnings)
