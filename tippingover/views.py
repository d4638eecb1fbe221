"""Django views for the tippingover app.

``page`` renders a stored wiki page with tooltip metadata on its links
and the client configuration embedded as JSON. ``tooltip_api`` is the
asynchronous endpoint the client runtime queries when a hovered link
still has late stages to finish.
"""

from __future__ import annotations

import logging

from django.http import Http404, HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import render
from django.views.decorators.cache import cache_control
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from .engine import titles
from .engine.annotation import export_client_config
from .engine.pipeline import resolve_query
from .forms import TooltipQueryForm
from .models import Page
from .services import annotate_links, build_query_context, build_render_context

logger = logging.getLogger(__name__)


@require_GET
def page(request: HttpRequest, title: str) -> HttpResponse:
    """Render a page with its links annotated for tooltips."""

    page_title = titles.parse_title(title)
    if page_title is None:
        raise Http404('Invalid page title.')
    stored = Page.objects.filter(namespace=page_title.namespace, title=page_title.text).first()
    if stored is None:
        raise Http404('No such page.')

    context = build_render_context()
    html, annotated = annotate_links(stored.content, context, source_namespace=page_title.namespace)
    logger.debug('Annotated %d links on %s.', len(annotated), page_title.prefixed_text)

    return render(
        request,
        'tippingover/page.html',
        {
            'page': stored,
            'page_title': page_title,
            'content': html,
            'annotated': annotated,
            'tooltip_config': export_client_config(context),
        },
    )


@csrf_exempt
@require_http_methods(['GET', 'POST'])
@cache_control(public=True, max_age=300)
def tooltip_api(request: HttpRequest) -> JsonResponse:
    """Answer a tooltip query with the late resolution stages.

    Parameters are ``target``, ``tooltip`` and ``options`` (a
    pipe-separated subset of follow, exists, title, image, cat and
    text). Validation failures return HTTP 400 with an ``error`` object.
    """

    data = request.POST if request.method == 'POST' else request.GET
    form = TooltipQueryForm(data)
    if not form.is_valid():
        return JsonResponse(form.error_payload(), status=400)

    context = build_query_context()
    if not context.config.enabled:
        return JsonResponse({})
    return JsonResponse(resolve_query(form.to_query(), context))
