import json
import re

import pytest

from newsmark import ConversionError, convert, parse_markdown, repair_markdown
from newsmark.__main__ import main


def md(html):
    return convert(html, "html", "markdown")


def test_markdown_to_html():
    assert convert("# Heading\n**bold** text", "markdown", "html") == \
        "<h1>Heading</h1><p><strong>bold</strong> text</p>"


def test_markdown_input_is_repaired():
    assert convert("This is **bold", "markdown", "html") == \
        "<p>This is <strong>bold</strong></p>"
    assert convert("This is **bold", "markdown", "html", repair=False) == \
        "<p>This is **bold</p>"
    assert repair_markdown("This is **bold").count("**") % 2 == 0


def test_html_to_markdown():
    assert md("<h1>Heading</h1><p><strong>bold</strong> text</p>") == \
        "# Heading\n\n**bold** text"
    assert md("<h1>H1</h1><h2>H2</h2><h3>H3</h3>") == "# H1\n\n## H2\n\n### H3"
    assert md('<a href="https://example.com">Example</a>') == \
        "[Example](https://example.com)"
    assert md("<ul><li>Item 1</li><li>Item 2</li></ul>") == \
        "- Item 1\n- Item 2"
    assert md("<div><span>Clean text</span></div>") == "Clean text"


def test_unchecked_task_items():
    html = """<ul data-type="taskList">
<li data-type="taskItem" data-checked="false"><label><input type="checkbox"><span></span></label>Buy milk</li>
<li data-type="taskItem" data-checked="false"><label><input type="checkbox"><span></span></label>Buy eggs</li>
</ul>"""
    assert md(html) == "- [ ] Buy milk\n- [ ] Buy eggs"


def test_checked_task_items():
    html = """<ul data-type="taskList">
<li data-type="taskItem" data-checked="true"><label contenteditable="false"><input aria-label="Task item checkbox" type="checkbox" checked disabled><span></span></label><div><p>Task completed</p></div></li>
<li data-type="taskItem" data-checked="true"><label contenteditable="false"><input aria-label="Task item checkbox" type="checkbox" checked disabled><span></span></label><div><p>Done</p></div></li>
</ul>"""
    markdown = md(html)
    assert markdown == "- [x] Task completed\n- [x] Done"
    assert "disabled" not in markdown


def test_mixed_task_items_with_formatting():
    html = """<ul data-type="taskList">
<li data-type="taskItem" data-checked="false"><label><input type="checkbox"><span></span></label><p>Task with <strong>bold</strong> text</p></li>
<li data-type="taskItem" data-checked="true"><label><input type="checkbox" checked><span></span></label><p>Task with <em>italic</em> text</p></li>
<li data-type="taskItem" data-checked="false"><label><input type="checkbox"><span></span></label><p>Install <code>npm</code> package: @#$%&amp;</p></li>
</ul>"""
    assert md(html) == ("- [ ] Task with **bold** text\n"
                        "- [x] Task with _italic_ text\n"
                        "- [ ] Install `npm` package: @#$%&")


def test_task_list_is_not_merged_with_next_paragraph():
    html = ('<ul data-type="taskList"><li data-checked="false" '
            'data-type="taskItem"><label><input type="checkbox"><span></span>'
            "</label><div><p>Test</p></div></li></ul><p>Welcome to Week 48 of "
            "our newsletter.</p>")
    markdown = md(html)
    assert "TestWelcome" not in markdown
    assert re.search(r"- \[ \] Test\n+Welcome", markdown)
    lines = [line for line in markdown.split("\n") if line.strip()]
    assert lines == ["- [ ] Test", "Welcome to Week 48 of our newsletter."]


def test_complex_article():
    html = """<h1>歡迎閱讀第 48 週電子報</h1>
<p>Dear <strong>Parents</strong> and Students,</p>
<ul data-type="taskList">
<li data-checked="false" data-type="taskItem"><label><input type="checkbox"><span></span></label><div><p>Test</p></div></li>
</ul>
<p>Welcome to Week 48 of our newsletter.</p>"""
    assert md(html) == ("# 歡迎閱讀第 48 週電子報\n\n"
                        "Dear **Parents** and Students,\n\n"
                        "- [ ] Test\n\n"
                        "Welcome to Week 48 of our newsletter.")


def test_json_round_trip():
    tree = convert("- [x] done", "markdown", "json")
    assert tree["content"][0]["type"] == "taskList"
    assert convert(tree, "json", "markdown") == "- [x] done"
    assert convert(json.dumps(tree), "json", "html").startswith(
        '<ul data-type="taskList">')
    assert parse_markdown("- [x] done").to_dict() == tree


def test_unsupported_formats():
    with pytest.raises(ConversionError) as raised:
        convert("x", "rtf", "html")
    assert raised.value.format == "rtf"
    with pytest.raises(ConversionError) as raised:
        convert("x", "markdown", "pdf")
    assert raised.value.format == "pdf"


def test_undecodable_json():
    with pytest.raises(ConversionError) as raised:
        convert("{not json", "json", "markdown")
    assert raised.value.format == "json"
    assert isinstance(raised.value.cause, ValueError)
    assert raised.value.__cause__ is raised.value.cause


def test_cli_convert(tmp_path, capsys):
    source = tmp_path / "in.html"
    source.write_text("<p><b>hi</b></p>", encoding="utf-8")
    assert main(["convert", "-f", "html", "-t", "markdown",
                 str(source)]) == 0
    assert capsys.readouterr().out == "**hi**\n"


def test_cli_score(tmp_path, capsys):
    original = tmp_path / "a.md"
    converted = tmp_path / "b.md"
    original.write_text("Hello World", encoding="utf-8")
    converted.write_text("HelloWorld", encoding="utf-8")
    assert main(["score", str(original), str(converted),
                 "--threshold", "99"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["success"] is True
    assert 80 < result["fidelity"] < 100
    assert result["warnings"]


def test_cli_bad_json(tmp_path):
    source = tmp_path / "in.json"
    source.write_text("{oops", encoding="utf-8")
    assert main(["convert", "-f", "json", "-t", "html", str(source)]) == 2


def test_task_text_inside_the_label():
    html = ('<ul data-type="taskList"><li data-type="taskItem"><label>'
            '<input type="checkbox"><span>Task 1</span></label></li></ul>')
    assert md(html) == "- [ ] Task 1"


def test_star_bullets_survive_repair():
    assert convert("* one\n* two\n* three", "markdown", "markdown") == \
        "- one\n- two\n- three"
    assert convert("* item", "markdown", "html") == \
        "<ul><li><p>item</p></li></ul>"


def test_references_match_across_formats():
    reference = "storage://media/照片 1.jpg"
    from_html = convert(f'<img src="{reference}">', "html", "json")
    from_markdown = convert(f"![](<{reference}>)", "markdown", "json")
    assert from_html == from_markdown
    assert from_html["content"][0]["attrs"]["src"] == reference
    assert md(f'<img src="{reference}">') == f"![](<{reference}>)"


def link(href):
    return {"type": "doc", "content": [{"type": "paragraph", "content": [
        {"type": "text", "text": "file",
         "marks": [{"type": "link", "attrs": {"href": href}}]}]}]}


def test_link_hrefs_from_json_are_cleaned():
    signed = link("https://x.supabase.co/storage/v1/object/sign/media/a.pdf"
                  "?token=t")
    assert convert(signed, "json", "markdown") == \
        "[file](storage://media/a.pdf)"
    assert convert(signed, "json", "html") == \
        '<p><a href="storage://media/a.pdf">file</a></p>'
    assert convert(link("javascript:alert(1)"), "json", "markdown") == "file"
