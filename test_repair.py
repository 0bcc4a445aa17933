from newsmark import repair_markdown


def t(broken, repaired):
    assert repair_markdown(broken) == repaired
    assert repair_markdown(repaired) == repaired


def test_balanced_text_is_untouched():
    t("", "")
    t("plain", "plain")
    t("**bold** and `code` and ~~gone~~ and *it*",
      "**bold** and `code` and ~~gone~~ and *it*")


def test_unclosed_bold():
    t("This is **bold", "This is **bold**")
    assert repair_markdown("This is **bold").count("**") % 2 == 0


def test_unclosed_italic():
    t("an *aside", "an *aside*")


def test_unclosed_bold_italic():
    t("***both", "***both***")


def test_unclosed_code():
    t("Use `code", "Use `code`")


def test_unclosed_strikethrough():
    t("~~gone", "~~gone~~")


def test_unclosed_fence():
    t("```py\nx = 1", "```py\nx = 1\n```")


def test_fenced_code_is_not_counted():
    t("```\n**not bold\n```\ndone", "```\n**not bold\n```\ndone")


def test_closers_after_an_open_fence():
    t("`a\n```\ncode", "`a\n```\ncode\n```\n`")


def test_trailing_star_run_merges_with_closer():
    repaired = repair_markdown("**bold*")
    assert repaired == "**bold**"
    assert repair_markdown(repaired) == repaired


def test_every_class_is_even():
    for broken in ("a ** b * c ` d ~~ e", "*", "**", "`", "~~~~~",
                   "x ***y** z"):
        repaired = repair_markdown(broken)
        assert repaired.count("`") % 2 == 0
        assert repaired.count("~~") % 2 == 0
        assert repair_markdown(repaired) == repaired


def test_list_markers_are_not_emphasis():
    t("* item", "* item")
    t("* a\n* b\n* c", "* a\n* b\n* c")
    t("- [ ] task\n  + nested", "- [ ] task\n  + nested")
    t("* *open", "* *open*")
    t("*", "*")


def test_thematic_breaks_are_not_emphasis():
    t("***", "***")
    t("above\n\n* * *\n\nbelow", "above\n\n* * *\n\nbelow")


def test_closer_after_a_closed_fence():
    t("**a\n```\nx\n```", "**a\n```\nx\n```\n**")
