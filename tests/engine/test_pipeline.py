"""Resolution pipeline tests: early stages and late queries."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from tippingover.engine import titles
from tippingover.engine.annotation import annotate
from tippingover.engine.context import TemplateTitleDeriver, prepare_query, prepare_render
from tippingover.engine.pipeline import resolve, resolve_query
from tippingover.engine.types import TooltipQuery
from tippingover.exceptions import ResolutionError

from .conftest import FakePageStore, make_config


def link(raw: str) -> titles.PageTitle:
    return titles.parse_title(raw)


def fixed_deriver(value):
    deriver = Mock()
    deriver.derive.return_value = value
    return deriver


def test_early_everything_with_existing_tooltip_page(store: FakePageStore):
    store.add_page("Foo", "<p>Foo article</p>")
    store.add_page("Tooltip:Foo", "<p>Foo tooltip</p>")
    context = prepare_render(make_config(), store)

    result = resolve(link("Foo"), context)

    assert result is not None
    assert result.tooltip_title == "Tooltip:Foo"
    assert not result.is_image
    assert not result.missing_page
    assert not result.empty_title
    assert not result.can_late_follow


def test_empty_derived_title_without_fallback_gives_no_tooltip(store):
    store.add_page("Foo")
    context = prepare_render(make_config(), store, fixed_deriver(""))

    assert context.fallbacks.empty_title is None
    assert resolve(link("Foo"), context) is None


def test_empty_derived_title_with_fallback(fallback_store):
    fallback_store.add_page("Foo")
    context = prepare_render(make_config(), fallback_store, fixed_deriver("   "))

    result = resolve(link("Foo"), context)

    assert result.empty_title
    assert result.tooltip_title is None
    assert not result.is_image


def test_failed_title_derivation_gives_no_tooltip(store):
    context = prepare_render(make_config(), store, fixed_deriver(None))

    assert resolve(link("Foo"), context) is None


def test_invalid_derived_title_gives_no_tooltip(store):
    context = prepare_render(make_config(), store, fixed_deriver("Tooltip:[broken]"))

    assert resolve(link("Foo"), context) is None


@pytest.mark.parametrize(
    "raw", ["Template:Infobox", "Special:Search", "Media:Chart.png", "Category:Things", "Help:Contents"]
)
@pytest.mark.parametrize(
    "overrides",
    [
        {},
        {"early_redirect_follow": False, "early_existence_check": False},
        {"early_title_derivation": False, "late_title_derivation": True},
        {"early_category_filtering": True, "disabling_category": "Root"},
    ],
)
def test_ineligible_namespaces_never_get_tooltips(fallback_store, raw, overrides):
    fallback_store.add_page(raw.replace("Media:", "File:"), "<p>x</p>")
    context = prepare_render(make_config(**overrides), fallback_store)

    assert resolve(link(raw), context) is None


def test_missing_tooltip_page_uses_missing_fallback(fallback_store):
    context = prepare_render(make_config(), fallback_store)

    result = resolve(link("Bar"), context)

    assert result.missing_page
    assert result.tooltip_title == "Tooltip:Bar"
    assert not result.is_image


def test_missing_tooltip_page_without_fallback_gives_no_tooltip(store):
    context = prepare_render(make_config(), store)

    assert resolve(link("Bar"), context) is None


def test_missing_fallback_in_file_namespace_is_preloaded(store):
    store.add_page("File:Missing.png", "<img src='/media/Missing.png'>")
    context = prepare_render(make_config(missing_page_tooltip="File:Missing.png"), store)

    result = resolve(link("Bar"), context)

    assert result.missing_page
    assert result.is_image


def test_file_tooltip_pages_are_images(store):
    store.add_page("File:Foo.png", "<img src='/media/Foo.png'>")
    context = prepare_render(make_config(tooltip_title_template="File:$1.png"), store)

    result = resolve(link("Foo"), context)

    assert result.tooltip_title == "File:Foo.png"
    assert result.is_image


def test_redirect_is_followed_early_and_keeps_fragment(store):
    store.add_page("Old name", redirect="New name")
    store.add_page("Tooltip:New name", "<p>tip</p>")
    context = prepare_render(make_config(), store)

    result = resolve(link("Old name#History"), context)

    assert result.target == titles.PageTitle(titles.NS_MAIN, "New name", "History")
    assert result.direct_target.text == "Old name"
    assert result.followed
    assert result.tooltip_title == "Tooltip:New name"


def test_redirect_fragment_wins_over_link_fragment(store):
    store.add_page("Old name", redirect="New name#Section")
    store.add_page("Tooltip:New name", "<p>tip</p>")
    context = prepare_render(make_config(), store)

    result = resolve(link("Old name#History"), context)

    assert result.target.fragment == "Section"


def test_direct_target_is_passed_to_title_deriver(store):
    store.add_page("Old name", redirect="New name")
    store.add_page("Tooltip:New name via Old name", "<p>tip</p>")
    context = prepare_render(make_config(), store, TemplateTitleDeriver("Tooltip:$1 via $3"))

    result = resolve(link("Old name"), context)

    assert result.tooltip_title == "Tooltip:New name via Old name"


def test_late_only_configuration_defers_everything(store):
    config = make_config(
        early_redirect_follow=False,
        late_redirect_follow=True,
        early_title_derivation=False,
        late_title_derivation=True,
        early_existence_check=False,
    )
    context = prepare_render(config, store)

    result = resolve(link("Foo#Bar"), context)

    assert result.can_late_follow
    assert result.tooltip_title is None
    assert result.target == result.direct_target
    assert store.calls["redirect_target"] == 0
    assert store.calls["exists"] == 0


def test_early_category_filter_enabling(store):
    store.add_page("Inside", categories=["Root"])
    store.add_page("Outside")
    store.add_page("Tooltip:Inside", "<p>tip</p>")
    store.add_page("Tooltip:Outside", "<p>tip</p>")
    config = make_config(early_category_filtering=True, enabling_category="Root")
    context = prepare_render(config, store)

    assert resolve(link("Inside"), context) is not None
    assert resolve(link("Outside"), context) is None


def test_early_category_filter_checks_the_redirect_target(store):
    store.add_page("Alias", redirect="Inside")
    store.add_page("Inside", categories=["Root"])
    store.add_page("Tooltip:Inside", "<p>tip</p>")
    config = make_config(early_category_filtering=True, disabling_category="Root")
    context = prepare_render(config, store)

    assert resolve(link("Alias"), context) is None


def test_invalid_filter_category_does_not_blank_every_link(store):
    store.add_page("Tooltip:Foo", "<p>tip</p>")
    config = make_config(early_category_filtering=True, disabling_category="Bad|Name")
    context = prepare_render(config, store)

    assert resolve(link("Foo"), context) is not None
    response = resolve_query(TooltipQuery(target="Foo", options=frozenset({"cat"})), context)
    assert response == {"passesCategoryFilter": "true"}


def test_collaborator_failure_only_drops_that_link(store):
    store.add_page("Tooltip:Good", "<p>tip</p>")
    context = prepare_render(make_config(), store)

    def redirect_target(title):
        if title.text == "Bad":
            raise ResolutionError("boom")
        return store.redirect_target(title)

    context.store = Mock(wraps=store)
    context.store.redirect_target.side_effect = redirect_target

    assert resolve(link("Bad"), context) is None
    assert resolve(link("Good"), context) is not None


def test_resolve_is_repeatable(fallback_store):
    fallback_store.add_page("Tooltip:Foo", "<p>tip</p>")
    context = prepare_render(make_config(), fallback_store)

    assert resolve(link("Foo"), context) == resolve(link("Foo"), context)
    assert resolve(link("Nope"), context) == resolve(link("Nope"), context)


def test_disabled_configuration_resolves_nothing(fallback_store):
    config = make_config(early_title_derivation=False, late_title_derivation=False)
    context = prepare_render(config, fallback_store)

    assert resolve(link("Foo"), context) is None
    assert context.fallbacks.loading is None


# Late queries ---------------------------------------------------------------


@pytest.fixture()
def late_context(fallback_store):
    fallback_store.add_page("Old name", redirect="New name")
    fallback_store.add_page("New name", categories=["Root"])
    fallback_store.add_page("Tooltip:New name", "<p>New name tooltip</p>")
    fallback_store.add_page("File:Diagram.png", "<img src='/media/Diagram.png'>")
    config = make_config(
        early_redirect_follow=False,
        late_redirect_follow=True,
        early_title_derivation=False,
        late_title_derivation=True,
        early_existence_check=False,
        late_existence_check=True,
        late_category_filtering=True,
        enabling_category="Root",
    )
    return prepare_render(config, fallback_store, build_index=False)


def test_query_follows_redirect_and_returns_everything(late_context):
    query = TooltipQuery(target="Old name", options=frozenset({"follow", "cat", "title", "image", "exists", "text"}))

    response = resolve_query(query, late_context)

    assert response == {
        "passesCategoryFilter": "true",
        "tooltipTitle": "Tooltip:New name",
        "isImage": "false",
        "exists": "true",
        "text": {"*": "<p>New name tooltip</p>"},
    }


def test_query_without_follow_checks_the_direct_target(late_context):
    query = TooltipQuery(target="Old name", options=frozenset({"cat", "exists"}))

    response = resolve_query(query, late_context)

    assert response == {"passesCategoryFilter": "false", "exists": "false"}


def test_query_with_known_tooltip_title(late_context):
    query = TooltipQuery(tooltip="File:Diagram.png", options=frozenset({"image", "text"}))

    response = resolve_query(query, late_context)

    assert response["isImage"] == "true"
    assert response["text"] == {"*": "<img src='/media/Diagram.png'>"}
    assert "tooltipTitle" not in response


def test_query_for_missing_tooltip_page_omits_text(late_context):
    query = TooltipQuery(target="Unknown", options=frozenset({"exists", "text", "title"}))

    response = resolve_query(query, late_context)

    assert response == {"tooltipTitle": "Tooltip:Unknown", "exists": "false"}


def test_query_reports_empty_derived_title(late_context):
    late_context.deriver = fixed_deriver("")

    response = resolve_query(TooltipQuery(target="Foo", options=frozenset({"title", "text"})), late_context)

    assert response == {"tooltipTitle": ""}


def test_query_category_answer_when_filtering_is_off(fallback_store):
    context = prepare_render(make_config(), fallback_store, build_index=False)

    response = resolve_query(TooltipQuery(target="Anything", options=frozenset({"cat"})), context)

    assert response == {"passesCategoryFilter": "true"}


def test_query_text_is_rendered_with_attachment_suspended(late_context):
    seen = []
    original = late_context.store.render_content

    def render(title):
        seen.append(late_context.attachment_safe)
        return original(title)

    late_context.store.render_content = render

    resolve_query(TooltipQuery(tooltip="Tooltip:New name", options=frozenset({"text"})), late_context)

    assert seen == [False]
    assert late_context.attachment_safe


@pytest.mark.parametrize("raw", ["Foo#Bar", "Old name#Sec"])
@pytest.mark.parametrize(
    "late_overrides",
    [
        {},
        {"early_redirect_follow": False, "late_redirect_follow": True},
    ],
)
def test_late_title_derivation_agrees_with_early_derivation(store, raw, late_overrides):
    store.add_page("Old name", redirect="New name")
    store.add_page("Tooltip:Foo/Bar via Foo", "<p>tip</p>")
    store.add_page("Tooltip:New name/Sec via Old name", "<p>tip</p>")
    deriver = TemplateTitleDeriver("Tooltip:$1/$2 via $3")
    early_context = prepare_render(make_config(), store, deriver)
    late_config = make_config(
        early_title_derivation=False,
        late_title_derivation=True,
        early_existence_check=False,
        late_existence_check=True,
        **late_overrides,
    )
    late_context = prepare_render(late_config, store, deriver, build_index=False)

    early = resolve(link(raw), early_context)
    pending = annotate(resolve(link(raw), late_context))
    options = {"title", "exists"} | ({"follow"} if pending.can_late_follow else set())
    query = TooltipQuery(target=pending.target, direct=pending.direct_target, options=frozenset(options))

    response = resolve_query(query, late_context)

    assert early is not None
    assert response == {"tooltipTitle": early.tooltip_title, "exists": "true"}


def test_query_context_renders_no_fallback_pages(fallback_store):
    fallback_store.add_page("Tooltip:Foo", "<p>Foo tip</p>")
    context = prepare_query(make_config(), fallback_store)

    response = resolve_query(TooltipQuery(target="Foo", options=frozenset({"exists", "text"})), context)

    assert response == {"exists": "true", "text": {"*": "<p>Foo tip</p>"}}
    assert fallback_store.calls["render_content"] == 1
    assert context.fallbacks.loading is None
