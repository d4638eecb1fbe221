"""Typed data structures used by the tooltip resolution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .titles import PageTitle

QUERY_OPTIONS: FrozenSet[str] = frozenset({"follow", "exists", "title", "image", "cat", "text"})


@dataclass(frozen=True)
class StageResult:
    """Everything the early stages learned about one link."""

    direct_target: PageTitle
    target: PageTitle
    can_late_follow: bool = True
    tooltip_title: Optional[str] = None
    is_image: bool = False
    missing_page: bool = False
    empty_title: bool = False

    @property
    def followed(self) -> bool:
        return self.direct_target.without_fragment() != self.target.without_fragment()


@dataclass(frozen=True)
class FallbackContent:
    """Rendered HTML of a fallback page and whether the client should preload it."""

    html: str
    preload: bool = False


@dataclass(frozen=True)
class FallbackSet:
    """The loading, missing-page and empty-title fallbacks available for a render."""

    loading: Optional[FallbackContent] = None
    missing_page: Optional[FallbackContent] = None
    empty_title: Optional[FallbackContent] = None


@dataclass(frozen=True)
class TooltipQuery:
    """A validated request to the asynchronous tooltip endpoint."""

    target: Optional[str] = None
    direct: Optional[str] = None
    tooltip: Optional[str] = None
    options: FrozenSet[str] = field(default_factory=frozenset)

    def wants(self, option: str) -> bool:
        return option in self.options
