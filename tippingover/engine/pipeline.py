"""Coordinator for the tooltip resolution pipeline.

:func:`resolve` runs the early stages for one link during a render.
:func:`resolve_query` re-enters the same stages for the late phase when
the client asks the asynchronous endpoint about a hovered link. Both
degrade any collaborator failure to "no tooltip" for that link only.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Optional

from . import titles
from .categories import passes_category_filter
from .context import RenderContext
from .titles import PageTitle
from .types import StageResult, TooltipQuery

logger = logging.getLogger(__name__)


def follow_redirect(title: PageTitle, context: RenderContext) -> PageTitle:
    """Return the redirect destination of ``title``, or ``title`` itself."""

    if title.namespace < 0:
        return title
    target = context.store.redirect_target(title.without_fragment())
    if target is None:
        return title
    return target if target.fragment else target.with_fragment(title.fragment)


def derive_tooltip_title(
    target: PageTitle,
    direct_target: Optional[PageTitle],
    context: RenderContext,
) -> Optional[str]:
    """Ask the title-derivation collaborator for the tooltip page name.

    Returns the stripped name (``""`` when the collaborator produced an
    empty name) or ``None`` when it could not produce one at all.
    """

    derived = context.deriver.derive(target, direct_target)
    if derived is None:
        return None
    return derived.strip()


def resolve(link: PageTitle, context: RenderContext) -> Optional[StageResult]:
    """Run the enabled early stages for ``link``.

    Returns the accumulated :class:`StageResult`, or ``None`` when the
    link must not get a tooltip.
    """

    try:
        return _run_early_stages(link, context)
    except Exception:
        logger.warning("Tooltip resolution failed for %s; leaving the link without a tooltip.", link.full_text, exc_info=True)
        return None


def _run_early_stages(link: PageTitle, context: RenderContext) -> Optional[StageResult]:
    config = context.config
    fallbacks = context.fallbacks

    if not config.enabled or not config.namespace_has_tooltips(link.namespace):
        return None

    result = StageResult(direct_target=link, target=link)

    if config.early_redirect_follow:
        result = replace(result, target=follow_redirect(link, context), can_late_follow=False)

    if config.early_category_filtering:
        index = context.category_index
        if index is None:
            return None
        page_id = context.store.page_id(result.target.without_fragment())
        if not passes_category_filter(index, page_id, config):
            return None
        result = replace(result, can_late_follow=False)

    if not config.early_title_derivation:
        return result

    direct = result.direct_target if result.followed else None
    derived = derive_tooltip_title(result.target, direct, context)
    if derived is None:
        return None
    if derived == "":
        if fallbacks.empty_title is None:
            return None
        return replace(result, empty_title=True, is_image=fallbacks.empty_title.preload)

    tooltip_title = titles.parse_title(derived)
    if tooltip_title is None:
        logger.debug("Derived tooltip title %r for %s is not a valid title.", derived, link.full_text)
        return None
    result = replace(result, tooltip_title=tooltip_title.prefixed_text, is_image=tooltip_title.is_file)

    if config.early_existence_check and not context.store.exists(tooltip_title.without_fragment()):
        if fallbacks.missing_page is None:
            return None
        result = replace(result, missing_page=True, is_image=fallbacks.missing_page.preload)

    return result


def resolve_query(query: TooltipQuery, context: RenderContext) -> Dict[str, Any]:
    """Answer an asynchronous tooltip request with the late-phase stages.

    Each member of the response is present only when its option was
    requested and the value could be determined. ``query.direct`` names
    the pre-redirect title when the render already followed a redirect,
    so late title derivation sees the same targets as early derivation.
    """

    response: Dict[str, Any] = {}

    target = titles.parse_title(query.target) if query.target else None
    direct = titles.parse_title(query.direct) if query.direct else None
    if direct is None:
        direct = target
    if target is not None and query.wants("follow"):
        target = _guarded(follow_redirect, target, context, default=target)

    if query.wants("cat"):
        response["passesCategoryFilter"] = _late_category_answer(target, context)

    tooltip_text: Optional[str] = query.tooltip
    if tooltip_text is None and query.options & {"exists", "image", "text", "title"} and target is not None:
        followed = direct if direct is not None and direct.without_fragment() != target.without_fragment() else None
        tooltip_text = _guarded(derive_tooltip_title, target, followed, context, default=None)

    if tooltip_text is not None and tooltip_text.strip():
        tooltip_title = titles.parse_title(tooltip_text)
        if tooltip_title is None:
            return response
        page = tooltip_title.without_fragment()
        if query.wants("title"):
            response["tooltipTitle"] = tooltip_title.prefixed_text
        if query.wants("image"):
            response["isImage"] = _flag(tooltip_title.is_file)
        exists = True
        if query.wants("exists"):
            exists = bool(_guarded(context.store.exists, page, default=False))
            response["exists"] = _flag(exists)
        if exists and query.wants("text"):
            text = _guarded(context.render_tooltip, page, default=None)
            if text is not None:
                response["text"] = {"*": text}
    elif tooltip_text is not None and query.wants("title"):
        response["tooltipTitle"] = ""

    return response


def _late_category_answer(target: Optional[PageTitle], context: RenderContext) -> str:
    config = context.config
    if not config.category_filtering:
        return _flag(True)
    if target is None:
        return _flag(False)
    index = context.late_category_index()
    if index is None:
        return _flag(False)
    try:
        page_id = context.store.page_id(target.without_fragment())
        return _flag(passes_category_filter(index, page_id, config))
    except Exception:
        logger.warning("Late category filter failed for %s.", target.full_text, exc_info=True)
        return _flag(False)


def _guarded(func, *args, default):
    try:
        return func(*args)
    except Exception:
        logger.warning("Tooltip collaborator %s failed.", getattr(func, "__name__", func), exc_info=True)
        return default


def _flag(value: bool) -> str:
    return "true" if value else "false"
