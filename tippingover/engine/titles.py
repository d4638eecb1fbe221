"""Page title parsing and namespace constants."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

NS_MEDIA = -2
NS_SPECIAL = -1
NS_MAIN = 0
NS_TALK = 1
NS_USER = 2
NS_USER_TALK = 3
NS_PROJECT = 4
NS_PROJECT_TALK = 5
NS_FILE = 6
NS_FILE_TALK = 7
NS_MEDIAWIKI = 8
NS_MEDIAWIKI_TALK = 9
NS_TEMPLATE = 10
NS_TEMPLATE_TALK = 11
NS_HELP = 12
NS_HELP_TALK = 13
NS_CATEGORY = 14
NS_CATEGORY_TALK = 15

NAMESPACE_NAMES: Dict[int, str] = {
    NS_MEDIA: "Media",
    NS_SPECIAL: "Special",
    NS_MAIN: "",
    NS_TALK: "Talk",
    NS_USER: "User",
    NS_USER_TALK: "User talk",
    NS_PROJECT: "Project",
    NS_PROJECT_TALK: "Project talk",
    NS_FILE: "File",
    NS_FILE_TALK: "File talk",
    NS_MEDIAWIKI: "MediaWiki",
    NS_MEDIAWIKI_TALK: "MediaWiki talk",
    NS_TEMPLATE: "Template",
    NS_TEMPLATE_TALK: "Template talk",
    NS_HELP: "Help",
    NS_HELP_TALK: "Help talk",
    NS_CATEGORY: "Category",
    NS_CATEGORY_TALK: "Category talk",
}

# Lower-cased prefix -> namespace index, including legacy aliases.
_PREFIXES: Dict[str, int] = {name.lower(): index for index, name in NAMESPACE_NAMES.items() if name}
_PREFIXES.update({"image": NS_FILE, "image talk": NS_FILE_TALK})

_ILLEGAL_RE = re.compile(r"[\[\]{}|<>\x00-\x1f\x7f]")
_SPACE_RE = re.compile(r"[\s_]+")
MAX_TITLE_LENGTH = 255


@dataclass(frozen=True)
class PageTitle:
    """A page identifier: namespace, title text and optional fragment."""

    namespace: int
    text: str
    fragment: Optional[str] = None

    @property
    def prefixed_text(self) -> str:
        prefix = NAMESPACE_NAMES.get(self.namespace, "")
        return f"{prefix}:{self.text}" if prefix else self.text

    @property
    def full_text(self) -> str:
        if self.fragment:
            return f"{self.prefixed_text}#{self.fragment}"
        return self.prefixed_text

    @property
    def db_key(self) -> str:
        return self.text.replace(" ", "_")

    @property
    def is_file(self) -> bool:
        return self.namespace == NS_FILE

    def without_fragment(self) -> "PageTitle":
        if self.fragment is None:
            return self
        return PageTitle(self.namespace, self.text)

    def with_fragment(self, fragment: Optional[str]) -> "PageTitle":
        return PageTitle(self.namespace, self.text, fragment or None)


def _normalize(text: str) -> str:
    return _SPACE_RE.sub(" ", text).strip()


def parse_title(raw: Optional[str], default_namespace: int = NS_MAIN) -> Optional[PageTitle]:
    """Parse ``Namespace:Title#fragment`` text, returning ``None`` when it is not a valid title.

    Underscores and runs of whitespace collapse to single spaces, a known
    namespace prefix is matched case-insensitively, and the first letter
    of the title text is capitalised. Titles containing characters that
    can never appear in a page name (brackets, braces, pipes, angle
    brackets or control characters) are rejected.
    """

    if raw is None:
        return None
    text = raw
    fragment: Optional[str] = None
    if "#" in text:
        text, fragment = text.split("#", 1)
        fragment = _normalize(fragment) or None
    text = _normalize(text)
    if not text or _ILLEGAL_RE.search(text):
        return None

    namespace = default_namespace
    if ":" in text:
        prefix, rest = text.split(":", 1)
        index = _PREFIXES.get(_normalize(prefix).lower())
        if index is not None:
            namespace = index
            text = _normalize(rest)
        elif prefix == "":
            # Leading colon forces the main namespace.
            namespace = NS_MAIN
            text = _normalize(rest)
    if not text or len(text.encode("utf-8")) > MAX_TITLE_LENGTH:
        return None

    text = text[0].upper() + text[1:]
    return PageTitle(namespace=namespace, text=text, fragment=fragment)
