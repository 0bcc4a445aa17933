import pytest

from newsmark import markdown
from newsmark import parse_markdown, serialize_markdown
from newsmark.model import Kind, Mark, Node, is_well_formed, text


def doc(*children):
    return Node(Kind.DOCUMENT, children=children)


def p(*children):
    return Node(Kind.PARAGRAPH, children=children)


def item(*children):
    return Node(Kind.LIST_ITEM, children=children)


def task(checked, *children):
    return Node(Kind.TASK_ITEM, {"checked": checked}, children)


def t(source, tree):
    parsed = parse_markdown(source)
    assert parsed == tree
    assert parse_markdown(serialize_markdown(parsed)) == parsed


def same(source):
    """Assert `source` is already in canonical form."""
    assert serialize_markdown(parse_markdown(source)) == source


def test_empty():
    t("", doc())
    assert serialize_markdown(doc()) == ""


def test_heading_and_bold():
    t("# Heading\n**bold** text",
      doc(Node(Kind.HEADING, {"level": 1}, [text("Heading")]),
          p(text("bold", Mark("bold")), text(" text"))))


def test_heading_levels():
    t("###### six ##", doc(Node(Kind.HEADING, {"level": 6}, [text("six")])))
    t("####### seven", doc(p(text("####### seven"))))


def test_emphasis():
    bold, italic = Mark("bold"), Mark("italic")
    t("*one* _two_ ***three*** snake_case_name",
      doc(p(text("one", italic), text(" "), text("two", italic), text(" "),
            text("three", bold, italic), text(" snake_case_name"))))
    t("a*b*c", doc(p(text("a"), text("b", italic), text("c"))))


def test_strikethrough_and_code():
    t("~~gone~~ and `x = *1*`",
      doc(p(text("gone", Mark("strikethrough")), text(" and "),
            text("x = *1*", Mark("code")))))
    t("``a`b``", doc(p(text("a`b", Mark("code")))))


def test_links():
    link = Mark("link", "https://example.com", "Ex")
    t('see [the site](https://example.com "Ex")',
      doc(p(text("see "), text("the site", link))))


def test_unsafe_link_keeps_text():
    t("[click](javascript:alert(1))", doc(p(text("click"))))


def test_unclosed_syntax_is_literal():
    t("**open and [half", doc(p(text("**open and [half"))))


def test_hard_break():
    t("one\\\ntwo", doc(p(text("one"), Node(Kind.HARD_BREAK), text("two"))))
    t("one  \ntwo", doc(p(text("one"), Node(Kind.HARD_BREAK), text("two"))))
    t("one\ntwo", doc(p(text("one two"))))


def test_bullet_list():
    t("- a\n- b", doc(Node(Kind.BULLET_LIST, children=[item(p(text("a"))),
                                                      item(p(text("b")))])))


def test_ordered_list_start():
    t("3. three\n4. four",
      doc(Node(Kind.ORDERED_LIST, {"start": 3},
               [item(p(text("three"))), item(p(text("four")))])))


def test_nested_list():
    t("- a\n  - b",
      doc(Node(Kind.BULLET_LIST, children=[
          item(p(text("a")),
               Node(Kind.BULLET_LIST, children=[item(p(text("b")))]))])))


def test_task_list():
    t("- [ ] Buy milk\n- [x] Task completed\n- [X] Also done",
      doc(Node(Kind.TASK_LIST, children=[
          task(False, p(text("Buy milk"))),
          task(True, p(text("Task completed"))),
          task(True, p(text("Also done")))])))


def test_task_then_paragraph():
    t("- [ ] Test\n\nWelcome",
      doc(Node(Kind.TASK_LIST, children=[task(False, p(text("Test")))]),
          p(text("Welcome"))))


def test_any_bullet_character_continues_a_list():
    t("- a\n* b\n+ c",
      doc(Node(Kind.BULLET_LIST, children=[item(p(text("a"))),
                                           item(p(text("b"))),
                                           item(p(text("c")))])))
    t("1. one\n2) two",
      doc(Node(Kind.ORDERED_LIST, {"start": 1},
               [item(p(text("one"))), item(p(text("two")))])))
    assert serialize_markdown(parse_markdown("* a\n* b")) == "- a\n- b"


def test_neighbouring_lists_stay_apart():
    first = Node(Kind.BULLET_LIST, children=[item(p(text("a")))])
    second = Node(Kind.BULLET_LIST, children=[item(p(text("b")))])
    tree = doc(first, second)
    assert serialize_markdown(tree) == "- a\n\n<!-- -->\n\n- b"
    assert parse_markdown(serialize_markdown(tree)) == tree
    tasks = Node(Kind.TASK_LIST, children=[task(False, p(text("t")))])
    nested = doc(Node(Kind.BULLET_LIST, children=[
        item(p(text("x")), tasks, tasks)]))
    assert parse_markdown(serialize_markdown(nested)) == nested


def test_separator_text_is_escaped():
    tree = doc(p(text("<!-- -->")))
    assert parse_markdown(serialize_markdown(tree)) == tree


def test_quote_and_rule():
    t("> quoted\n> text\n\n---",
      doc(Node(Kind.BLOCKQUOTE, children=[p(text("quoted text"))]),
          Node(Kind.HORIZONTAL_RULE)))


def test_code_block():
    t("```py\nx = 1\n\n# not a heading\n```",
      doc(Node(Kind.CODE_BLOCK, {"language": "py"},
               [text("x = 1\n\n# not a heading")])))
    same("````\n```\n````")


def test_image():
    t('![a cat](storage://media/cat.png "Cat")',
      doc(Node(Kind.IMAGE, {"src": "storage://media/cat.png",
                            "alt": "a cat", "title": "Cat"})))


def test_signed_image_is_unsigned():
    parsed = parse_markdown("![x](https://x.supabase.co/storage/v1/object/"
                            "sign/media/a.png?token=abc)")
    assert parsed.children[0].attrs["src"] == "storage://media/a.png"


def test_canonical_documents():
    same('# Title\n\nSome **bold**, _italic_, ~~struck~~ and `code` with a '
         '[link](https://example.com "Ex").\n\n- one\n- two\n  - nested\n\n'
         '1. first\n2. second\n\n- [ ] todo\n- [x] done\n\n> quote\n\n'
         '```py\nprint(1)\n```\n\n---\n\n![alt](storage://media/a.png)')
    same("**_both_** and **b**_i_")


def test_block_syntax_in_text_is_escaped():
    for literal in ("# not a heading", "- not a list", "1. not a list",
                    "> not a quote", "***", "![not](an image)",
                    "[not](a link)", "*not italic*"):
        tree = doc(p(text(literal)))
        assert parse_markdown(serialize_markdown(tree)) == tree


def test_round_trips():
    for source in ("* a\n* b\n\n+ c", "1) x\n2) y", "***both*** and **_x_**",
                   "Text with \\*stars\\* and snake_case_name",
                   "- [ ] a\n  - [x] nested\n\n  more",
                   "> # quoted heading\n> - item",
                   "a `` ` `` b", "[**bold link**](/relative)",
                   "1. one\n\n   still one\n2. two"):
        parsed = parse_markdown(source)
        assert parse_markdown(serialize_markdown(parsed)) == parsed, source


def test_deep_nesting_is_bounded():
    parsed = parse_markdown("> " * 200 + "deep")
    assert is_well_formed(parsed)
    assert parsed.plain_text.endswith("deep")
    serialize_markdown(parsed)


def test_every_kind_has_a_renderer():
    assert set(markdown._renderers) == set(Kind)


def test_serialize_requires_a_document():
    with pytest.raises(ValueError):
        serialize_markdown(None)
    assert serialize_markdown(p(text("bare"))) == "bare"
