"""Decide once per render whether hovering needs a preliminary check request.

A loading fallback is only worth showing when the content request is
sure to produce a tooltip. When a late stage can still decide "no
tooltip" with nothing to show in its place, the client first sends a
metadata-only request and only shows the loading fallback once that
comes back positive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .config import TooltipConfig
from .types import FallbackSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Negotiation:
    """Outcome of the per-render negotiation."""

    use_two_request_process: bool
    fallbacks: FallbackSet


def needs_two_requests(
    config: TooltipConfig,
    loading_fallback_available: bool,
    missing_fallback_available: bool,
    empty_title_fallback_available: bool,
) -> bool:
    """Return True when a loading fallback could flash before a late stage rejects the link."""

    if not loading_fallback_available:
        return False
    if config.late_title_derivation and not (missing_fallback_available or empty_title_fallback_available):
        return True
    if config.late_title_derivation and not config.assume_nonempty_title and not empty_title_fallback_available:
        return True
    if config.late_existence_check and not missing_fallback_available:
        return True
    return config.late_category_filtering


def negotiate(config: TooltipConfig, fallbacks: FallbackSet) -> Negotiation:
    """Apply :func:`needs_two_requests`, dropping the loading fallback when the check request is not allowed."""

    needed = needs_two_requests(
        config,
        fallbacks.loading is not None,
        fallbacks.missing_page is not None,
        fallbacks.empty_title is not None,
    )
    if needed and not config.allow_two_request_process:
        logger.info("Two-request process disallowed; loading tooltip disabled for this render.")
        return Negotiation(use_two_request_process=False, fallbacks=replace(fallbacks, loading=None))
    return Negotiation(use_two_request_process=needed, fallbacks=fallbacks)
