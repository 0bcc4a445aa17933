"""
keep opaque storage references opaque

Media lives behind `storage://bucket/path` references that a signing
service rewrites into short-lived URLs *after* rendering. Documents must
only ever persist the opaque form, so a signed URL that comes back in
from the editor is folded back into its reference here.

    >>> unsign("https://x.supabase.co/storage/v1/object/sign/media/a%20b.jpg"
    ...        "?token=abc")
    'storage://media/a b.jpg'

"""

import re
import urllib.parse

__all__ = ["clean_url", "unsign", "is_reference", "STORAGE_SCHEME",
           "SIGNED_PATH", "SAFE_SCHEMES"]

STORAGE_SCHEME = "storage"
SIGNED_PATH = "/storage/v1/object/sign/"
SAFE_SCHEMES = frozenset({"http", "https", "mailto", "tel", STORAGE_SCHEME})

_scheme_re = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_control_re = re.compile(r"[\x00-\x20\x7f]+")


def is_reference(url):
    """Return whether `url` is an opaque storage reference."""
    return url.startswith(f"{STORAGE_SCHEME}://")


def unsign(url):
    """
    return the storage reference behind a signed URL

    URLs that are not signed storage URLs are returned unchanged.

    """
    if SIGNED_PATH not in url:
        return url
    path = urllib.parse.urlsplit(url).path
    _, _, key = path.partition(SIGNED_PATH)
    if not key:
        return url
    return f"{STORAGE_SCHEME}://{urllib.parse.unquote(key)}"


def clean_url(url):
    """
    return a persistable form of `url` or None when it is unsafe

    References pass through untouched, signed URLs are unsigned and any
    scheme outside `SAFE_SCHEMES` (e.g. `javascript:`) is refused.
    Relative and fragment URLs are kept.

    """
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    if is_reference(url):
        return url
    # browsers ignore embedded whitespace and control characters when
    # reading a scheme, so `java\tscript:` must be judged as `javascript:`
    match = _scheme_re.match(_control_re.sub("", url))
    if match and match.group(1).lower() not in SAFE_SCHEMES:
        return None
    try:
        return unsign(url)
    except ValueError:
        return url
