from newsmark.storage import clean_url, is_reference, unsign


def test_references_pass_through():
    assert clean_url("storage://media/week 48/a.png") == \
        "storage://media/week 48/a.png"
    assert is_reference("storage://media/a.png")
    assert not is_reference("https://example.com/a.png")


def test_signed_urls_are_unsigned():
    assert unsign("https://x.supabase.co/storage/v1/object/sign/media/"
                  "a%20b.jpg?token=abc") == "storage://media/a b.jpg"
    assert unsign("https://example.com/a.jpg") == "https://example.com/a.jpg"


def test_safe_urls():
    for url in ("https://example.com", "http://example.com/?a=1",
                "mailto:a@b.co", "tel:+15551234", "/relative", "#anchor",
                "page.html"):
        assert clean_url(url) == url


def test_unsafe_urls():
    for url in ("javascript:alert(1)", "JAVASCRIPT:alert(1)",
                "java\tscript:alert(1)", "\x01javascript:alert(1)",
                "vbscript:msgbox", "data:text/html,hi", "file:///etc/passwd"):
        assert clean_url(url) is None
    assert clean_url(None) is None
    assert clean_url("   ") is None
