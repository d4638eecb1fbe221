"""Service helpers connecting the tooltip engine to Django.

This module provides the ORM-backed collaborators the engine needs
(:class:`DjangoPageStore` and :class:`DjangoTitleDeriver`), loads the
tooltip configuration named by the Django settings, and annotates
rendered page HTML so the client runtime can attach tooltips to links.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup, Tag  # type: ignore
from django.conf import settings
from django.utils.html import format_html

from .engine import titles
from .engine.annotation import HAS_TOOLTIP_CLASS, LinkAnnotation, annotate
from .engine.config import TooltipConfig, load_config
from .engine.context import CategoryMember, RenderContext, TemplateTitleDeriver, prepare_query, prepare_render
from .engine.pipeline import resolve
from .engine.titles import PageTitle
from .exceptions import ResolutionError
from .models import CategoryLink, Page

logger = logging.getLogger(__name__)

# Page whose content, when present, overrides the configured title template
TITLE_TEMPLATE_PAGE = 'MediaWiki:To-tooltip-page-name'


def get_tooltip_config() -> TooltipConfig:
    """Load the tooltip configuration named by the Django settings.

    ``TIPPINGOVER_CONFIG`` is an optional YAML path; ``TIPPINGOVER`` is an
    optional dict of overrides merged on top of it.
    """

    path = getattr(settings, 'TIPPINGOVER_CONFIG', None)
    overrides = getattr(settings, 'TIPPINGOVER', None)
    return load_config(path or None, overrides)


class DjangoPageStore:
    """Page lookups backed by the ``Page`` and ``CategoryLink`` models."""

    def __init__(self, *, max_category_depth: int = 64, media_url: str | None = None) -> None:
        self.max_category_depth = max_category_depth
        self.media_url = media_url if media_url is not None else getattr(settings, 'MEDIA_URL', '/media/')

    def _lookup(self, title: PageTitle) -> Page | None:
        return Page.objects.filter(namespace=title.namespace, title=title.text).first()

    def page_id(self, title: PageTitle) -> int:
        page = self._lookup(title)
        return page.pk if page is not None else 0

    def page_namespace(self, page_id: int) -> Optional[int]:
        return Page.objects.filter(pk=page_id).values_list('namespace', flat=True).first()

    def exists(self, title: PageTitle) -> bool:
        if title.namespace < 0:
            return False
        return Page.objects.filter(namespace=title.namespace, title=title.text).exists()

    def redirect_target(self, title: PageTitle) -> Optional[PageTitle]:
        page = self._lookup(title)
        if page is None or not page.is_redirect:
            return None
        target = titles.parse_title(page.redirect_to)
        if target is None:
            raise ResolutionError(f'Redirect on {title.prefixed_text} points at invalid title {page.redirect_to!r}.')
        return target

    def render_content(self, title: PageTitle) -> str:
        """Return the stored HTML of a page; file pages without HTML render as an image."""

        page = self._lookup(title)
        if page is None:
            return ''
        if page.content.strip() or not title.is_file:
            return page.content
        return format_html('<img src="{}{}" alt="{}">', self.media_url, title.db_key, title.text)

    def category_members(self, category_key: str) -> Iterable[CategoryMember]:
        links = CategoryLink.objects.filter(category=category_key).select_related('page')
        for link in links:
            yield CategoryMember(
                page_id=link.page.pk,
                namespace=link.page.namespace,
                db_key=link.page.page_title.db_key,
            )

    def _categories_of(self, page_ids: Iterable[int]) -> Set[str]:
        return set(CategoryLink.objects.filter(page_id__in=list(page_ids)).values_list('category', flat=True))

    def _category_page_ids(self, category_keys: Iterable[str]) -> List[int]:
        texts = [key.replace('_', ' ') for key in category_keys]
        return list(
            Page.objects.filter(namespace=titles.NS_CATEGORY, title__in=texts).values_list('pk', flat=True)
        )

    def is_category_member(self, page_id: int, category_key: str) -> bool:
        """Walk upward from the page's categories until ``category_key`` turns up."""

        if not page_id:
            return False
        frontier = self._categories_of([page_id])
        visited: Set[str] = set()
        depth = 0
        while frontier and depth <= self.max_category_depth:
            if category_key in frontier:
                return True
            visited |= frontier
            frontier = self._categories_of(self._category_page_ids(frontier)) - visited
            depth += 1
        return False


class DjangoTitleDeriver:
    """Derive tooltip titles from the site's title template page.

    The content of ``MediaWiki:To-tooltip-page-name`` is used as the
    template when that page exists and has text; otherwise the configured
    ``tooltip_title_template`` applies.
    """

    def __init__(self, store: DjangoPageStore, default_template: str) -> None:
        self.store = store
        self.default_template = default_template
        self._deriver: TemplateTitleDeriver | None = None

    def _template(self) -> str:
        page_title = titles.parse_title(TITLE_TEMPLATE_PAGE)
        html = self.store.render_content(page_title) if page_title is not None else ''
        if not html.strip():
            return self.default_template
        text = BeautifulSoup(html, 'html.parser').get_text()
        return text.strip() or self.default_template

    def derive(self, target: PageTitle, direct_target: Optional[PageTitle] = None) -> Optional[str]:
        if self._deriver is None:
            self._deriver = TemplateTitleDeriver(self._template())
        return self._deriver.derive(target, direct_target)


def build_render_context(config: TooltipConfig | None = None) -> RenderContext:
    """Prepare a render context using the ORM-backed collaborators."""

    config = config or get_tooltip_config()
    store = DjangoPageStore(max_category_depth=config.max_category_depth)
    deriver = DjangoTitleDeriver(store, config.tooltip_title_template)
    return prepare_render(config, store, deriver)


def build_query_context(config: TooltipConfig | None = None) -> RenderContext:
    """Prepare the lighter context the tooltip endpoint needs: no fallback pages are rendered."""

    config = config or get_tooltip_config()
    store = DjangoPageStore(max_category_depth=config.max_category_depth)
    return prepare_query(config, store, DjangoTitleDeriver(store, config.tooltip_title_template))


@dataclass(frozen=True)
class AnnotatedLink:
    """A link in the rendered HTML that received tooltip metadata."""

    href: str
    annotation: LinkAnnotation


def article_path() -> str:
    return getattr(settings, 'TIPPINGOVER_ARTICLE_PATH', '/wiki/')


def title_from_href(href: str, base_path: str | None = None) -> Optional[PageTitle]:
    """Parse the page title out of an internal article link, or return ``None``."""

    base_path = base_path or article_path()
    parsed = urlparse(href)
    if parsed.scheme or parsed.netloc or not parsed.path.startswith(base_path):
        return None
    raw = unquote(parsed.path[len(base_path):])
    if parsed.fragment:
        raw = f"{raw}#{unquote(parsed.fragment)}"
    return titles.parse_title(raw)


def _is_image_only(anchor: Tag) -> bool:
    if anchor.get_text(strip=True):
        return False
    return anchor.find('img') is not None


def annotate_links(
    html: str,
    context: RenderContext,
    *,
    source_namespace: int = titles.NS_MAIN,
) -> Tuple[str, List[AnnotatedLink]]:
    """Attach tooltip metadata to every internal link in ``html``.

    Links are resolved with the early pipeline stages; links that keep a
    tooltip receive the ``to_hasTooltip`` class and the ``data-to-*``
    attributes. Nothing happens while attachment is unsafe (a tooltip
    page is being rendered), when tooltips are disabled, or when pages in
    ``source_namespace`` are not enabled.

    Returns
    -------
    tuple
        ``(html, annotated)`` where ``annotated`` lists each link that
        received metadata, in document order.
    """

    config = context.config
    if not html or not context.attachment_safe or not config.enabled:
        return html, []
    if not config.namespace_enabled(source_namespace):
        return html, []

    try:
        soup = BeautifulSoup(html, 'lxml')
    except Exception:
        # Fallback to html.parser if lxml isn't installed
        logger.debug('lxml parser unavailable; annotating links with html.parser.')
        soup = BeautifulSoup(html, 'html.parser')

    base_path = article_path()
    resolved: Dict[PageTitle, Optional[LinkAnnotation]] = {}
    annotated: List[AnnotatedLink] = []

    for anchor in soup.find_all('a', href=True):
        link = title_from_href(anchor['href'], base_path)
        if link is None:
            continue
        if not config.enable_on_image_links and _is_image_only(anchor):
            continue
        if link not in resolved:
            result = resolve(link, context)
            resolved[link] = annotate(result) if result is not None else None
        annotation = resolved[link]
        if annotation is None:
            continue

        classes = list(anchor.get('class') or [])
        if HAS_TOOLTIP_CLASS not in classes:
            classes.append(HAS_TOOLTIP_CLASS)
        anchor['class'] = classes
        for name, value in annotation.to_attributes().items():
            anchor[name] = value
        annotated.append(AnnotatedLink(href=anchor['href'], annotation=annotation))

    body = soup.body
    output = body.decode_contents() if body is not None else str(soup)
    return output, annotated
