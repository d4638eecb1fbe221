"""Configuration helpers for the tooltip engine.

Raw settings come from YAML merged over :data:`DEFAULTS`. They are then
normalized into an immutable :class:`TooltipConfig`: legacy settings are
translated into per-stage booleans, contradictory combinations are
switched off with a warning, and empty names are treated as absent.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..exceptions import ConfigurationError
from . import titles

logger = logging.getLogger(__name__)

# Legacy stage settings
DISABLE = 0
PREQUERY = 1
RUN_EARLY = 2
RUN_LATE = 3

_LEGACY_VALUES: Dict[str, Any] = {
    "disable": DISABLE,
    "to_disable": DISABLE,
    "prequery": PREQUERY,
    "to_prequery": PREQUERY,
    "run_early": RUN_EARLY,
    "to_run_early": RUN_EARLY,
    "run_late": RUN_LATE,
    "to_run_late": RUN_LATE,
    "enabling": True,
    "to_enabling": True,
    "disabling": False,
    "to_disabling": False,
}

DEFAULTS: Dict[str, Any] = {
    "enable_in_namespaces": {
        titles.NS_MAIN: True,
        titles.NS_USER: True,
        titles.NS_PROJECT: True,
        titles.NS_CATEGORY: True,
    },
    "namespaces_with_tooltips": {
        titles.NS_MAIN: True,
        titles.NS_USER: True,
    },
    "enable_on_image_links": True,
    "early_redirect_follow": True,
    "late_redirect_follow": False,
    "early_category_filtering": False,
    "late_category_filtering": False,
    "preprocess_category_filter": True,
    "enabling_category": None,
    "disabling_category": None,
    "early_title_derivation": True,
    "late_title_derivation": False,
    "assume_nonempty_title": False,
    "early_existence_check": True,
    "late_existence_check": False,
    "loading_tooltip": "MediaWiki:To-loading-tooltip",
    "missing_page_tooltip": "MediaWiki:To-missing-page-tooltip",
    "empty_title_tooltip": "MediaWiki:To-empty-page-name-tooltip",
    "allow_two_request_process": True,
    "tooltip_title_template": "Tooltip:$1",
    "max_category_depth": 64,
}


@dataclass(frozen=True)
class TooltipConfig:
    """Normalized, read-only tooltip settings for one render."""

    enabled: bool = True
    enable_in_namespaces: Mapping[int, bool] = field(default_factory=dict)
    namespaces_with_tooltips: Mapping[int, bool] = field(default_factory=dict)
    enable_on_image_links: bool = True
    early_redirect_follow: bool = False
    late_redirect_follow: bool = False
    early_category_filtering: bool = False
    late_category_filtering: bool = False
    preprocess_category_filter: bool = True
    enabling_category: Optional[str] = None
    disabling_category: Optional[str] = None
    early_title_derivation: bool = True
    late_title_derivation: bool = False
    assume_nonempty_title: bool = False
    early_existence_check: bool = False
    late_existence_check: bool = False
    loading_tooltip: Optional[str] = None
    missing_page_tooltip: Optional[str] = None
    empty_title_tooltip: Optional[str] = None
    allow_two_request_process: bool = True
    tooltip_title_template: str = "Tooltip:$1"
    max_category_depth: int = 64

    def namespace_enabled(self, namespace: int) -> bool:
        """Should links on pages in ``namespace`` be annotated at all?"""

        return bool(self.enable_in_namespaces.get(namespace, False))

    def namespace_has_tooltips(self, namespace: int) -> bool:
        """Should links targeting pages in ``namespace`` get tooltips?"""

        return bool(self.namespaces_with_tooltips.get(namespace, False))

    @property
    def category_filtering(self) -> bool:
        return self.early_category_filtering or self.late_category_filtering

    @property
    def category_filter_enables(self) -> bool:
        """True when membership enables tooltips, False when it disables them."""

        return self.enabling_category is not None

    @property
    def filter_category(self) -> Optional[str]:
        if self.enabling_category is not None:
            return self.enabling_category
        return self.disabling_category

    def filter_category_title(self) -> Optional[titles.PageTitle]:
        """Return the root category title, with the ``Category:`` prefix optional."""

        title = titles.parse_title(self.filter_category, titles.NS_CATEGORY)
        if title is None or title.namespace != titles.NS_CATEGORY:
            return None
        return title.without_fragment()


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> TooltipConfig:
    """Load configuration from YAML, merging with defaults, and normalize it."""

    data = copy.deepcopy(DEFAULTS)

    if path is not None and Path(path).exists():
        try:
            with Path(path).open("r", encoding="utf-8") as stream:
                user = yaml.safe_load(stream) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Unable to read tooltip configuration from {path}: {exc}") from exc
        if not isinstance(user, dict):
            raise ConfigurationError(f"Tooltip configuration in {path} must be a mapping.")
        merge_into(data, user)

    if overrides:
        merge_into(data, dict(overrides))

    return build_config(data)


def merge_into(base: Dict[str, Any], override: Mapping[str, Any]) -> None:
    """Recursively merge override into base dict."""

    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merge_into(base[key], value)
        else:
            base[key] = value


def build_config(raw: Mapping[str, Any]) -> TooltipConfig:
    """Translate legacy settings, validate, and freeze ``raw`` into a config."""

    data = dict(raw)
    _apply_legacy_settings(data)
    _validate(data)

    return TooltipConfig(
        enabled=data["enabled"],
        enable_in_namespaces=_namespace_map(data.get("enable_in_namespaces")),
        namespaces_with_tooltips=_namespace_map(data.get("namespaces_with_tooltips")),
        enable_on_image_links=bool(data.get("enable_on_image_links", True)),
        early_redirect_follow=bool(data.get("early_redirect_follow")),
        late_redirect_follow=bool(data.get("late_redirect_follow")),
        early_category_filtering=bool(data.get("early_category_filtering")),
        late_category_filtering=bool(data.get("late_category_filtering")),
        preprocess_category_filter=bool(data.get("preprocess_category_filter", True)),
        enabling_category=data.get("enabling_category"),
        disabling_category=data.get("disabling_category"),
        early_title_derivation=bool(data.get("early_title_derivation")),
        late_title_derivation=bool(data.get("late_title_derivation")),
        assume_nonempty_title=bool(data.get("assume_nonempty_title")),
        early_existence_check=bool(data.get("early_existence_check")),
        late_existence_check=bool(data.get("late_existence_check")),
        loading_tooltip=data.get("loading_tooltip"),
        missing_page_tooltip=data.get("missing_page_tooltip"),
        empty_title_tooltip=data.get("empty_title_tooltip"),
        allow_two_request_process=bool(data.get("allow_two_request_process", True)),
        tooltip_title_template=str(data.get("tooltip_title_template") or "$1"),
        max_category_depth=int(data.get("max_category_depth", 64)),
    )


def _namespace_map(value: Any) -> Dict[int, bool]:
    if not isinstance(value, Mapping):
        return {}
    result: Dict[int, bool] = {}
    for key, enabled in value.items():
        try:
            result[int(key)] = bool(enabled)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric namespace key %r in tooltip configuration.", key)
    return result


def _legacy_value(value: Any) -> Any:
    if isinstance(value, str):
        return _LEGACY_VALUES.get(value.strip().lower(), value)
    return value


def _apply_legacy_settings(data: Dict[str, Any]) -> None:
    if "follow_target_redirects" in data:
        value = _legacy_value(data.pop("follow_target_redirects"))
        data["early_redirect_follow"] = value == RUN_EARLY
        data["late_redirect_follow"] = value != DISABLE
        logger.warning(
            "follow_target_redirects is deprecated. Applied early_redirect_follow=%s, late_redirect_follow=%s.",
            data["early_redirect_follow"],
            data["late_redirect_follow"],
        )

    if "category_filtering" in data:
        value = _legacy_value(data.pop("category_filtering"))
        data["early_category_filtering"] = value in (PREQUERY, RUN_EARLY)
        data["preprocess_category_filter"] = value == PREQUERY
        data["late_category_filtering"] = value == RUN_LATE
        logger.warning(
            "category_filtering is deprecated. Applied early_category_filtering=%s, "
            "preprocess_category_filter=%s, late_category_filtering=%s.",
            data["early_category_filtering"],
            data["preprocess_category_filter"],
            data["late_category_filtering"],
        )

    if "category_filter_mode" in data:
        value = _legacy_value(data.pop("category_filter_mode"))
        if value is True:
            data["disabling_category"] = None
        elif value is False:
            data["enabling_category"] = None
        logger.warning(
            "category_filter_mode is deprecated. Applied enabling_category=%r, disabling_category=%r.",
            data.get("enabling_category"),
            data.get("disabling_category"),
        )

    if "page_title_parse" in data:
        value = _legacy_value(data.pop("page_title_parse"))
        data["early_title_derivation"] = value == RUN_EARLY
        data["late_title_derivation"] = not data["early_title_derivation"]
        logger.warning(
            "page_title_parse is deprecated. Applied early_title_derivation=%s, late_title_derivation=%s.",
            data["early_title_derivation"],
            data["late_title_derivation"],
        )

    if "exists_check" in data:
        value = _legacy_value(data.pop("exists_check"))
        data["early_existence_check"] = value == RUN_EARLY
        data["late_existence_check"] = value == RUN_LATE
        logger.warning(
            "exists_check is deprecated. Applied early_existence_check=%s, late_existence_check=%s.",
            data["early_existence_check"],
            data["late_existence_check"],
        )


def _filter_category(data: Mapping[str, Any]) -> Optional[str]:
    if data.get("enabling_category") is not None:
        return data["enabling_category"]
    return data.get("disabling_category")


def _is_category_name(name: Optional[str]) -> bool:
    title = titles.parse_title(name, titles.NS_CATEGORY)
    return title is not None and title.namespace == titles.NS_CATEGORY


def _page_name(data: Dict[str, Any], key: str) -> None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        logger.warning("Cannot interpret non-string value %r as a page name in %s; it has been disabled.", value, key)
        data[key] = None
    elif value is not None and value.strip() == "":
        data[key] = None


def _validate(data: Dict[str, Any]) -> None:
    data["enabled"] = True

    _page_name(data, "enabling_category")
    _page_name(data, "disabling_category")

    if data.get("early_category_filtering") or data.get("late_category_filtering"):
        if data.get("enabling_category") is None and data.get("disabling_category") is None:
            data["early_category_filtering"] = False
            data["late_category_filtering"] = False
            logger.warning(
                "Category filtering requires enabling_category or disabling_category; "
                "early and late category filtering have been disabled."
            )
        elif not _is_category_name(_filter_category(data)):
            data["early_category_filtering"] = False
            data["late_category_filtering"] = False
            logger.warning(
                "Filter category %r is not a valid category title; "
                "early and late category filtering have been disabled.",
                _filter_category(data),
            )

    if not (data.get("early_title_derivation") or data.get("late_title_derivation")):
        data["enabled"] = False
        logger.warning(
            "early_title_derivation and late_title_derivation are both false; tooltips are disabled."
        )

    if not data.get("early_title_derivation") and data.get("early_existence_check"):
        data["early_existence_check"] = False
        logger.warning(
            "Early existence checks need early title derivation; early_existence_check has been disabled."
        )

    _page_name(data, "loading_tooltip")
    _page_name(data, "missing_page_tooltip")
    _page_name(data, "empty_title_tooltip")

    # Late stages only run as a fallback for stages that did not run early.
    for stage in ("redirect_follow", "category_filtering", "title_derivation", "existence_check"):
        data[f"late_{stage}"] = bool(data.get(f"late_{stage}")) and not data.get(f"early_{stage}")
