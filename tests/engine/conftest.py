"""Shared fixtures for tooltip engine tests."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pytest

from tippingover.engine import titles
from tippingover.engine.config import TooltipConfig, load_config
from tippingover.engine.context import CategoryMember
from tippingover.engine.titles import PageTitle

LOADING_PAGE = "MediaWiki:To-loading-tooltip"
MISSING_PAGE = "MediaWiki:To-missing-page-tooltip"
EMPTY_TITLE_PAGE = "MediaWiki:To-empty-page-name-tooltip"


def make_config(**overrides: Any) -> TooltipConfig:
    """Return a normalized config with ``overrides`` merged over the defaults."""

    return load_config(None, overrides)


class FakePageStore:
    """In-memory page store keyed by (namespace, title text)."""

    def __init__(self) -> None:
        self._ids: Dict[Tuple[int, str], int] = {}
        self._namespaces: Dict[int, int] = {}
        self._content: Dict[int, str] = {}
        self._redirects: Dict[int, str] = {}
        self._members: Dict[str, List[int]] = {}
        self._keys: Dict[int, str] = {}
        self.calls: Counter = Counter()

    def add_page(
        self,
        raw_title: str,
        content: str = "",
        *,
        redirect: Optional[str] = None,
        categories: Iterable[str] = (),
    ) -> int:
        title = titles.parse_title(raw_title)
        assert title is not None, raw_title
        page_id = len(self._ids) + 1
        self._ids[(title.namespace, title.text)] = page_id
        self._namespaces[page_id] = title.namespace
        self._content[page_id] = content
        self._keys[page_id] = title.db_key
        if redirect is not None:
            self._redirects[page_id] = redirect
        for category in categories:
            self._members.setdefault(category.replace(" ", "_"), []).append(page_id)
        return page_id

    def _find(self, title: PageTitle) -> int:
        return self._ids.get((title.namespace, title.text), 0)

    def page_id(self, title: PageTitle) -> int:
        self.calls["page_id"] += 1
        return self._find(title)

    def page_namespace(self, page_id: int) -> Optional[int]:
        return self._namespaces.get(page_id)

    def exists(self, title: PageTitle) -> bool:
        self.calls["exists"] += 1
        return self._find(title) != 0

    def redirect_target(self, title: PageTitle) -> Optional[PageTitle]:
        self.calls["redirect_target"] += 1
        raw = self._redirects.get(self._find(title))
        return titles.parse_title(raw) if raw else None

    def render_content(self, title: PageTitle) -> str:
        self.calls["render_content"] += 1
        return self._content.get(self._find(title), "")

    def category_members(self, category_key: str) -> List[CategoryMember]:
        self.calls["category_members"] += 1
        return [
            CategoryMember(page_id=pid, namespace=self._namespaces[pid], db_key=self._keys[pid])
            for pid in self._members.get(category_key, [])
        ]

    def _parents(self, page_id: int) -> Set[str]:
        return {key for key, members in self._members.items() if page_id in members}

    def is_category_member(self, page_id: int, category_key: str) -> bool:
        self.calls["is_category_member"] += 1
        frontier = self._parents(page_id)
        visited: Set[str] = set()
        while frontier:
            if category_key in frontier:
                return True
            visited |= frontier
            next_frontier: Set[str] = set()
            for key in frontier:
                category_id = self._ids.get((titles.NS_CATEGORY, key.replace("_", " ")), 0)
                if category_id:
                    next_frontier |= self._parents(category_id)
            frontier = next_frontier - visited
        return False


@pytest.fixture()
def store() -> FakePageStore:
    return FakePageStore()


@pytest.fixture()
def fallback_store(store: FakePageStore) -> FakePageStore:
    """A store with all three fallback pages present."""

    store.add_page(LOADING_PAGE, "<p>Loading $1...</p>")
    store.add_page(MISSING_PAGE, "<p>No tooltip for $1 yet.</p>")
    store.add_page(EMPTY_TITLE_PAGE, "<p>Nothing to show.</p>")
    return store
