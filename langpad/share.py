# langpad/share.py
"""Share links in the format the Langium web playground reads."""

import logging
from typing import Optional
from urllib.parse import unquote, urlencode

import pyperclip
from lzstring import LZString

logger = logging.getLogger(__name__)

_lz = LZString()


def encode_state(text: str) -> str:
    """Compresses ``text`` with lz-string's URI-safe alphabet."""
    return _lz.compressToEncodedURIComponent(text)


def decode_state(token: str) -> Optional[str]:
    """
    Reverses :func:`encode_state`. Accepts the token as it appears in a
    copied link (percent-encoded) or already unquoted. Returns None if
    ``token`` is malformed.
    """
    if not token:
        return None
    try:
        text = _lz.decompressFromEncodedURIComponent(unquote(token))
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        logger.debug("Could not decode shared state %r: %s", token[:40], exc)
        return None
    if not text:
        logger.debug("Shared state %r decoded to nothing", token[:40])
        return None
    return text


def build_share_url(base_url: str, grammar: str, content: str) -> str:
    query = urlencode({"grammar": encode_state(grammar), "content": encode_state(content)})
    return f"{base_url}?{query}"


def share(grammar: str, content: str, base_url: str) -> str:
    """
    Builds the share link and copies it to the system clipboard.

    Clipboard problems (no ``xclip``/``wl-copy``, headless session) are
    logged; the link is returned either way.
    """
    url = build_share_url(base_url, grammar, content)
    try:
        pyperclip.copy(url)
        logger.info("Share link copied to clipboard")
    except pyperclip.PyperclipException as exc:
        logger.warning("Could not copy share link to clipboard: %s", exc)
    return url
