"""Encode pipeline outcomes into link metadata for the client runtime.

Three attributes travel with every tooltip-eligible link:

``data-to-id``
    Element identifier. Every UTF-8 byte of the post-redirect target
    title outside ``[0-9A-Za-z]`` becomes ``_xx-`` with ``xx`` the two
    lowercase hex digits of the byte.
``data-to-flags``
    Four letters, one per boolean: ``F`` can-late-follow, ``I`` image,
    ``E`` empty title, ``M`` missing page. Upper case means true.
``data-to-titles``
    ``target#fragment|direct-target|tooltip-title`` with the last two
    left empty when they are not known or not different. A literal
    ``%`` or ``|`` inside a part (fragments may hold either) is written
    as ``%25`` or ``%7C``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .context import RenderContext
from .types import FallbackContent, StageResult

HAS_TOOLTIP_CLASS = "to_hasTooltip"
ID_ATTRIBUTE = "data-to-id"
FLAGS_ATTRIBUTE = "data-to-flags"
TITLES_ATTRIBUTE = "data-to-titles"

_SAFE_BYTES = frozenset(b"0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz")
_ESCAPE_RE = re.compile(r"_([0-9a-f]{2})-")
_FLAG_LETTERS = ("F", "I", "E", "M")
_TITLE_ESCAPES = {"%": "%25", "|": "%7C"}
_TITLE_UNESCAPE_RE = re.compile(r"%(25|7C)")


def encode_id(identifier: str) -> str:
    parts = []
    for byte in identifier.encode("utf-8"):
        if byte in _SAFE_BYTES:
            parts.append(chr(byte))
        else:
            parts.append("_%02x-" % byte)
    return "".join(parts)


def decode_id(encoded: str) -> str:
    """Inverse of :func:`encode_id`."""

    raw = bytearray()
    position = 0
    while position < len(encoded):
        match = _ESCAPE_RE.match(encoded, position)
        if match:
            raw.append(int(match.group(1), 16))
            position = match.end()
        else:
            raw.extend(encoded[position].encode("ascii"))
            position += 1
    return raw.decode("utf-8")


def encode_flags(can_late_follow: bool, is_image: bool, empty_title: bool, missing_page: bool) -> str:
    values = (can_late_follow, is_image, empty_title, missing_page)
    return "".join(letter if value else letter.lower() for letter, value in zip(_FLAG_LETTERS, values))


def decode_flags(flags: str) -> Dict[str, bool]:
    """Read a flag string back; letters that are absent count as false."""

    present = set(flags)
    return {
        "can_late_follow": "F" in present,
        "is_image": "I" in present,
        "empty_title": "E" in present,
        "missing_page": "M" in present,
    }


def _escape_title(text: str) -> str:
    return "".join(_TITLE_ESCAPES.get(char, char) for char in text)


def _unescape_title(text: str) -> str:
    return _TITLE_UNESCAPE_RE.sub(lambda match: "%" if match.group(1) == "25" else "|", text)


def encode_titles(target: str, direct_target: Optional[str] = None, tooltip_title: Optional[str] = None) -> str:
    return "|".join(_escape_title(part or "") for part in (target, direct_target, tooltip_title))


def decode_titles(value: str) -> Dict[str, Optional[str]]:
    # Separators are the only unescaped "|" characters.
    parts = ([_unescape_title(part) for part in value.split("|")] + ["", ""])[:3]
    return {
        "target": parts[0],
        "direct_target": parts[1] or None,
        "tooltip_title": parts[2] or None,
    }


@dataclass(frozen=True)
class LinkAnnotation:
    """The client-facing shape of one resolved link."""

    element_id: str
    target: str
    direct_target: Optional[str] = None
    tooltip_title: Optional[str] = None
    can_late_follow: bool = True
    is_image: bool = False
    empty_title: bool = False
    missing_page: bool = False

    def to_attributes(self) -> Dict[str, str]:
        return {
            ID_ATTRIBUTE: self.element_id,
            FLAGS_ATTRIBUTE: encode_flags(self.can_late_follow, self.is_image, self.empty_title, self.missing_page),
            TITLES_ATTRIBUTE: encode_titles(self.target, self.direct_target, self.tooltip_title),
        }

    @classmethod
    def from_attributes(cls, attributes: Dict[str, str]) -> "LinkAnnotation":
        titles = decode_titles(attributes.get(TITLES_ATTRIBUTE, ""))
        flags = decode_flags(attributes.get(FLAGS_ATTRIBUTE, ""))
        target = titles["target"] or ""
        return cls(
            element_id=attributes.get(ID_ATTRIBUTE) or encode_id(target.split("#", 1)[0]),
            target=target,
            direct_target=titles["direct_target"],
            tooltip_title=titles["tooltip_title"],
            **flags,
        )


def annotate(result: StageResult) -> LinkAnnotation:
    """Build the annotation for a link that the early stages kept."""

    direct = result.direct_target.full_text if result.followed else None
    return LinkAnnotation(
        element_id=encode_id(result.target.prefixed_text),
        target=result.target.full_text,
        direct_target=direct,
        tooltip_title=result.tooltip_title,
        can_late_follow=result.can_late_follow,
        is_image=result.is_image,
        empty_title=result.empty_title,
        missing_page=result.missing_page,
    )


def _fallback_html(fallback: Optional[FallbackContent]) -> Optional[str]:
    return fallback.html if fallback is not None else None


def export_client_config(context: RenderContext) -> Dict[str, Any]:
    """Render-global settings for the client runtime."""

    config = context.config
    fallbacks = context.fallbacks
    return {
        "enabled": config.enabled,
        "doLateTargetRedirectFollow": config.late_redirect_follow,
        "doLateCategoryFiltering": config.late_category_filtering,
        "doLateTitleDerivation": config.late_title_derivation,
        "doLateExistsCheck": config.late_existence_check,
        "loadingTooltip": _fallback_html(fallbacks.loading),
        "missingPageTooltip": _fallback_html(fallbacks.missing_page),
        "emptyTitleTooltip": _fallback_html(fallbacks.empty_title),
        "preloadLoadingTooltip": bool(fallbacks.loading and fallbacks.loading.preload),
        "preloadMissingPageTooltip": bool(fallbacks.missing_page and fallbacks.missing_page.preload),
        "preloadEmptyTitleTooltip": bool(fallbacks.empty_title and fallbacks.empty_title.preload),
        "useTwoRequestProcess": context.use_two_request_process,
    }
