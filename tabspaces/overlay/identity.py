"""Identity resolution between native tabs/groups and stored assignments.

Native ids are ephemeral, so stored records are matched by fingerprint:

- a tab by its normalized URL (``extract_original_url``)
- a group by ``"<title>|<color>"``

All functions here are pure and total.  A malformed URL never raises; it
degrades to raw string comparison.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

if TYPE_CHECKING:
    from tabspaces.overlay.models.host import NativeGroup, NativeTab

_WRAPPER_PAGES = ("restore.html", "suspended.html")
_WRAPPER_PARAMS = ("url", "uri")
_MAX_UNWRAP_DEPTH = 5

_EXTENSION_NEW_TAB = re.compile(r"^(chrome|edge)-extension://[^/]+/newtab\.html")
_NEW_TAB_MARKERS = (
    "://newtab",
    "://new-tab-page",
    "about:newtab",
    "vivaldi://startpage",
    "vivaldi://vivaldi-webui/startpage",
    "chrome://vivaldi-webui/startpage",
)


# -- URLs --------------------------------------------------------------------


def extract_original_url(url: str | None) -> str:
    """Return the URL a tab really shows.

    Internal restore/suspend wrapper pages carry the original URL in a
    ``url`` or ``uri`` parameter (query string or fragment); those are
    unwrapped, possibly several levels deep.  Any other URL is returned
    unchanged.
    """
    if not url:
        return ""
    current = url
    for _ in range(_MAX_UNWRAP_DEPTH):
        inner = _unwrap_once(current)
        if inner is None:
            break
        current = inner
    return current


def _unwrap_once(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.path.endswith(_WRAPPER_PAGES):
        return None
    for raw in (parts.query, parts.fragment):
        params = parse_qs(raw)
        for name in _WRAPPER_PARAMS:
            values = params.get(name)
            if values and values[0]:
                return values[0]
    return None


def urls_match(a: str | None, b: str | None) -> bool:
    """Compare two URLs after normalization.  Absent or empty never matches."""
    if not a or not b:
        return False
    return extract_original_url(a) == extract_original_url(b)


# -- Fingerprints --------------------------------------------------------------


def tab_fingerprint(tab: NativeTab) -> str:
    return extract_original_url(tab.effective_url)


def group_fingerprint(group: NativeGroup) -> str:
    return make_group_fingerprint(group.title, group.color)


def make_group_fingerprint(title: str | None, color: str) -> str:
    return f"{title or ''}|{color}"


# -- New-tab heuristics --------------------------------------------------------


def is_new_tab_url(url: str | None) -> bool:
    """True for browser new-tab pages, ``about:blank`` and blank URLs."""
    if not url:
        return True
    if url in ("chrome://newtab/", "about:blank"):
        return True
    if _EXTENSION_NEW_TAB.match(url):
        return True
    return any(marker in url for marker in _NEW_TAB_MARKERS)


def is_new_tab(tab: NativeTab) -> bool:
    return is_new_tab_url(tab.url)


def matches_new_tab_link(url: str | None, new_tab_link: str | None) -> bool:
    """True when ``url`` is the user's configured new-tab page."""
    if not url or not new_tab_link:
        return False
    return url.rstrip("/") == new_tab_link.rstrip("/")


def is_new_tab_candidate(tab: NativeTab, new_tab_link: str | None = None) -> bool:
    """A tab that can serve as a throwaway landing page."""
    return is_new_tab(tab) or matches_new_tab_link(tab.url, new_tab_link)
