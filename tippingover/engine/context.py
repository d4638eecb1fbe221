"""Render-level context shared across pipeline stages.

One :class:`RenderContext` is built per page render (or per tooltip
request) and threaded through every pipeline call. It owns the
category index and the attachment-safety flag, so nothing leaks
between renders and renders can run side by side.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Protocol

from . import titles
from .categories import CategoryIndex, OnDemandCategoryIndex, build_category_index
from .config import TooltipConfig
from .negotiation import negotiate
from .titles import PageTitle
from .types import FallbackContent, FallbackSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryMember:
    """A page listed directly in a category."""

    page_id: int
    namespace: int
    db_key: str


class PageStore(Protocol):
    """Data-access collaborator for page existence, redirects and categories."""

    def page_id(self, title: PageTitle) -> int:
        """Return the page id, or 0 when the page does not exist."""

    def page_namespace(self, page_id: int) -> Optional[int]:
        ...

    def exists(self, title: PageTitle) -> bool:
        ...

    def redirect_target(self, title: PageTitle) -> Optional[PageTitle]:
        """Return the redirect destination, or ``None`` when ``title`` is not a redirect."""

    def render_content(self, title: PageTitle) -> str:
        """Return the rendered HTML of a tooltip page (empty when there is none)."""

    def category_members(self, category_key: str) -> Iterable[CategoryMember]:
        ...

    def is_category_member(self, page_id: int, category_key: str) -> bool:
        """Is the page inside ``category_key`` or any of its subcategories?"""


class TitleDeriver(Protocol):
    def derive(self, target: PageTitle, direct_target: Optional[PageTitle] = None) -> Optional[str]:
        """Return the tooltip page name for ``target``; ``""`` means no name, ``None`` means failure."""


class TemplateTitleDeriver:
    """Derive tooltip titles by substituting link titles into a template.

    ``$1`` and ``$2`` are the target title and fragment, ``$3`` and ``$4``
    the direct (pre-redirect) title and fragment.
    """

    def __init__(self, template: str) -> None:
        self.template = template

    def derive(self, target: PageTitle, direct_target: Optional[PageTitle] = None) -> Optional[str]:
        direct = direct_target or target
        return (
            self.template.replace("$1", target.prefixed_text)
            .replace("$2", target.fragment or "")
            .replace("$3", direct.prefixed_text)
            .replace("$4", direct.fragment or "")
            .strip()
        )


@dataclass
class RenderContext:
    """Per-render state: settings, collaborators, fallbacks and category index."""

    config: TooltipConfig
    store: PageStore
    deriver: TitleDeriver
    fallbacks: FallbackSet = field(default_factory=FallbackSet)
    use_two_request_process: bool = False
    category_index: Optional[CategoryIndex] = None
    attachment_safe: bool = True

    @contextmanager
    def attachment_suspended(self) -> Iterator[None]:
        """Disable tooltip attachment while rendering content that may contain links."""

        previous = self.attachment_safe
        self.attachment_safe = False
        try:
            yield
        finally:
            self.attachment_safe = previous

    def render_tooltip(self, title: PageTitle) -> str:
        with self.attachment_suspended():
            return self.store.render_content(title)

    def late_category_index(self) -> Optional[CategoryIndex]:
        """Single-page lookups for the asynchronous endpoint."""

        if self.category_index is None:
            root = self.config.filter_category_title()
            if root is None:
                return None
            self.category_index = OnDemandCategoryIndex(self.store, root.db_key, self.config)
        return self.category_index


def _render_fallback(context: RenderContext, name: Optional[str]) -> Optional[FallbackContent]:
    """Render a fallback page, returning ``None`` when it is unset, invalid or renders to whitespace."""

    if name is None:
        return None
    title = titles.parse_title(name)
    if title is None:
        logger.warning("Tooltip fallback page %r is not a valid title; it is disabled.", name)
        return None
    try:
        html = context.render_tooltip(title)
    except Exception:
        logger.warning("Unable to render tooltip fallback page %s.", title.prefixed_text, exc_info=True)
        return None
    if not html or not html.strip():
        return None
    return FallbackContent(html=html, preload=title.is_file)


def prepare_render(
    config: TooltipConfig,
    store: PageStore,
    deriver: Optional[TitleDeriver] = None,
    *,
    build_index: bool = True,
) -> RenderContext:
    """Build the context for one render: fallbacks, negotiation and category index."""

    context = RenderContext(
        config=config,
        store=store,
        deriver=deriver or TemplateTitleDeriver(config.tooltip_title_template),
    )
    if not config.enabled:
        return context

    fallbacks = FallbackSet(
        loading=_render_fallback(context, config.loading_tooltip),
        missing_page=_render_fallback(context, config.missing_page_tooltip),
        empty_title=None if config.assume_nonempty_title else _render_fallback(context, config.empty_title_tooltip),
    )
    negotiation = negotiate(config, fallbacks)
    context.fallbacks = negotiation.fallbacks
    context.use_two_request_process = negotiation.use_two_request_process

    if build_index and config.early_category_filtering:
        context.category_index = build_category_index(config, store)
    return context


def prepare_query(
    config: TooltipConfig,
    store: PageStore,
    deriver: Optional[TitleDeriver] = None,
) -> RenderContext:
    """Build the context for one asynchronous query.

    Queries never show fallbacks, so no fallback page is rendered and no
    negotiation runs; the category index is created on first use.
    """

    return RenderContext(
        config=config,
        store=store,
        deriver=deriver or TemplateTitleDeriver(config.tooltip_title_template),
    )
