"""Category membership lookups for the category filter stage.

Two interchangeable strategies answer "is page X inside category Y or
one of its subcategories":

* :class:`PrecomputedCategoryIndex` walks the category tree once per
  render and answers each query with a binary search over the sorted
  member ids.
* :class:`OnDemandCategoryIndex` asks the store about one page at a
  time and remembers the answer for the rest of the render.

Both only count pages whose namespace takes tooltips, so they agree on
every page id.
"""

from __future__ import annotations

import logging
from bisect import bisect_left
from collections import deque
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, Sequence

from . import titles
from .config import TooltipConfig

if TYPE_CHECKING:
    from .context import PageStore

logger = logging.getLogger(__name__)


class CategoryIndex(Protocol):
    def is_member(self, page_id: int) -> bool:
        ...


class PrecomputedCategoryIndex:
    """Sorted member ids of a category tree, searched with bisection."""

    def __init__(self, member_ids: Sequence[int]) -> None:
        self._ids: List[int] = sorted(set(member_ids))

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def member_ids(self) -> List[int]:
        return list(self._ids)

    def is_member(self, page_id: int) -> bool:
        position = bisect_left(self._ids, page_id)
        return position < len(self._ids) and self._ids[position] == page_id

    @classmethod
    def build(cls, store: "PageStore", root_key: str, config: TooltipConfig) -> "PrecomputedCategoryIndex":
        """Collect every tooltip-eligible page below ``root_key``.

        The walk is iterative and remembers visited category keys, so a
        category graph containing cycles still terminates, and each page
        is collected once no matter how many subcategories list it.
        Categories deeper than ``config.max_category_depth`` are skipped.
        """

        members: set[int] = set()
        visited: set[str] = {root_key}
        pending: deque[tuple[str, int]] = deque([(root_key, 0)])

        while pending:
            category_key, depth = pending.popleft()
            for member in store.category_members(category_key):
                if member.page_id and config.namespace_has_tooltips(member.namespace):
                    members.add(member.page_id)
                if member.namespace != titles.NS_CATEGORY:
                    continue
                child_key = member.db_key
                if child_key in visited:
                    continue
                if depth + 1 > config.max_category_depth:
                    logger.warning(
                        "Category %s is deeper than %d levels below %s; skipping it.",
                        child_key,
                        config.max_category_depth,
                        root_key,
                    )
                    continue
                visited.add(child_key)
                pending.append((child_key, depth + 1))

        return cls(sorted(members))


class OnDemandCategoryIndex:
    """Per-page membership lookups memoized for one render."""

    def __init__(self, store: "PageStore", root_key: str, config: TooltipConfig) -> None:
        self._store = store
        self._root_key = root_key
        self._config = config
        self._cache: Dict[int, bool] = {}

    def is_member(self, page_id: int) -> bool:
        if page_id in self._cache:
            return self._cache[page_id]
        namespace = self._store.page_namespace(page_id) if page_id else None
        member = (
            namespace is not None
            and self._config.namespace_has_tooltips(namespace)
            and self._store.is_category_member(page_id, self._root_key)
        )
        self._cache[page_id] = member
        return member


def build_category_index(
    config: TooltipConfig,
    store: "PageStore",
    *,
    precomputed: Optional[bool] = None,
) -> Optional[CategoryIndex]:
    """Return the index selected by ``config``, or ``None`` when there is no usable root category."""

    root = config.filter_category_title()
    if root is None:
        logger.warning("Category filter root %r is not a valid category title.", config.filter_category)
        return None
    use_precomputed = config.preprocess_category_filter if precomputed is None else precomputed
    if use_precomputed:
        return PrecomputedCategoryIndex.build(store, root.db_key, config)
    return OnDemandCategoryIndex(store, root.db_key, config)


def passes_category_filter(index: CategoryIndex, page_id: int, config: TooltipConfig) -> bool:
    """Combine membership with the filter mode: enabling needs membership, disabling needs its absence."""

    return index.is_member(page_id) == config.category_filter_enables
