"""Category membership index tests."""

from __future__ import annotations

import pytest

from tippingover.engine.categories import (
    OnDemandCategoryIndex,
    PrecomputedCategoryIndex,
    build_category_index,
    passes_category_filter,
)

from .conftest import FakePageStore, make_config


@pytest.fixture()
def tree(store: FakePageStore):
    """Root > Sub A > Sub B, with Sub B listing Sub A again (a cycle)."""

    ids = {}
    ids["Category:Sub A"] = store.add_page("Category:Sub A", categories=["Root", "Sub B"])
    ids["Category:Sub B"] = store.add_page("Category:Sub B", categories=["Sub A"])
    ids["Direct"] = store.add_page("Direct", categories=["Root"])
    ids["Level two"] = store.add_page("Level two", categories=["Sub A"])
    ids["Level three"] = store.add_page("Level three", categories=["Sub B", "Sub A"])
    ids["Outsider"] = store.add_page("Outsider", categories=["Elsewhere"])
    ids["Template:Boxed"] = store.add_page("Template:Boxed", categories=["Root"])
    ids["User:Someone"] = store.add_page("User:Someone", categories=["Sub B"])
    return ids


def test_precomputed_traversal_terminates_on_cycles_and_counts_pages_once(store, tree):
    config = make_config(early_category_filtering=True, enabling_category="Root")

    index = PrecomputedCategoryIndex.build(store, "Root", config)

    assert index.member_ids == sorted([tree["Direct"], tree["Level two"], tree["Level three"], tree["User:Someone"]])
    assert len(index) == 4


def test_precomputed_index_skips_ineligible_namespaces(store, tree):
    config = make_config(early_category_filtering=True, enabling_category="Root")

    index = PrecomputedCategoryIndex.build(store, "Root", config)

    assert not index.is_member(tree["Template:Boxed"])
    assert not index.is_member(tree["Category:Sub A"])


def test_precomputed_index_respects_depth_bound(store, tree):
    config = make_config(early_category_filtering=True, enabling_category="Root", max_category_depth=1)

    index = PrecomputedCategoryIndex.build(store, "Root", config)

    assert index.is_member(tree["Level two"])
    assert not index.is_member(tree["User:Someone"])


def test_on_demand_index_memoizes_lookups(store, tree):
    config = make_config(early_category_filtering=True, enabling_category="Root", preprocess_category_filter=False)
    index = OnDemandCategoryIndex(store, "Root", config)

    assert index.is_member(tree["Level three"])
    assert index.is_member(tree["Level three"])

    assert store.calls["is_category_member"] == 1


def test_strategies_agree_for_every_page(store, tree):
    config = make_config(early_category_filtering=True, enabling_category="Root")
    precomputed = build_category_index(config, store, precomputed=True)
    on_demand = build_category_index(config, store, precomputed=False)

    assert isinstance(precomputed, PrecomputedCategoryIndex)
    assert isinstance(on_demand, OnDemandCategoryIndex)
    for page_id in list(tree.values()) + [0, 999]:
        assert precomputed.is_member(page_id) == on_demand.is_member(page_id), page_id


def test_build_index_uses_configured_strategy(store):
    config = make_config(early_category_filtering=True, enabling_category="Root", preprocess_category_filter=False)

    assert isinstance(build_category_index(config, store), OnDemandCategoryIndex)


def test_build_index_without_valid_root_returns_none(store):
    config = make_config(early_category_filtering=True, enabling_category="Template:Root")

    assert build_category_index(config, store) is None


def test_filter_mode_combines_with_membership(store, tree):
    enabling = make_config(early_category_filtering=True, enabling_category="Root")
    disabling = make_config(early_category_filtering=True, disabling_category="Root")
    index = PrecomputedCategoryIndex.build(store, "Root", enabling)

    assert passes_category_filter(index, tree["Direct"], enabling)
    assert not passes_category_filter(index, tree["Outsider"], enabling)
    assert not passes_category_filter(index, tree["Direct"], disabling)
    assert passes_category_filter(index, tree["Outsider"], disabling)
