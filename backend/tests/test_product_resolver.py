# Overview: Pytest coverage for label description parsing and catalog matching.

from types import SimpleNamespace

import pytest
from parcelops.services.product_resolver import (
    CatalogProductResolver,
    ParsedItem,
    ResolvedProduct,
    get_resolver,
    match_product,
    normalize_name,
    parse_description,
)


def _catalog(*names):
    return [SimpleNamespace(id=i, name=name) for i, name in enumerate(names, start=1)]


class TestParseDescription:

    def test_bracket_blocks(self):
        items = parse_description("[2 x Sunset Lamp - Large] [1 x Snow Lamp]")
        assert items == [
            ParsedItem(product="Sunset Lamp", variant="Large", quantity=2),
            ParsedItem(product="Snow Lamp", variant="Default", quantity=1),
        ]

    @pytest.mark.parametrize("text,expected", [
        ("3 x Aurora Lamp", ParsedItem("Aurora Lamp", "Default", 3)),
        ("3 pcs Aurora Lamp", ParsedItem("Aurora Lamp", "Default", 3)),
        ("4 Aurora Lamp - Blue", ParsedItem("Aurora Lamp", "Blue", 4)),
    ])
    def test_plain_forms(self, text, expected):
        assert parse_description(text) == [expected]

    def test_fallback_is_whole_text_once(self):
        assert parse_description("Aurora Lamp") == [ParsedItem("Aurora Lamp", "Default", 1)]

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty(self, text):
        assert parse_description(text) == []

    def test_full_name_includes_variant(self):
        assert ParsedItem("Sunset Lamp", "Large", 1).full_name == "Sunset Lamp - Large"
        assert ParsedItem("Snow Lamp", "Default", 1).full_name == "Snow Lamp"


class TestMatchProduct:

    def test_exact_variant_beats_base_name(self):
        catalog = _catalog("Sunset Lamp", "Sunset Lamp - Small", "Sunset Lamp - Large")
        match = match_product(catalog, ParsedItem("Sunset Lamp", "Large", 1))
        assert match.name == "Sunset Lamp - Large"

    def test_case_and_symbols_ignored(self):
        catalog = _catalog("Snow Lamp™")
        assert match_product(catalog, ParsedItem("snow lamp", "Default", 1)).name == "Snow Lamp™"

    def test_base_name_when_variant_unknown(self):
        catalog = _catalog("Aurora Lamp")
        assert match_product(catalog, ParsedItem("Aurora Lamp", "Green", 1)).name == "Aurora Lamp"

    def test_word_overlap(self):
        catalog = _catalog("Galaxy Star Projector")
        match = match_product(catalog, ParsedItem("Star Projector Galaxy Edition", "Default", 1))
        assert match.name == "Galaxy Star Projector"

    def test_no_match(self):
        catalog = _catalog("Snow Lamp", "Sunset Lamp - Large")
        assert match_product(catalog, ParsedItem("Mystery Widget", "Default", 1)) is None

    def test_normalize_name(self):
        assert normalize_name("  Sunset-Lamp®  (XL) ") == "sunset lamp xl"


class TestCatalogResolver:

    def test_resolves_against_products_table(self, db_session, make_product):
        sunset = make_product("Sunset Lamp - Large")
        snow = make_product("Snow Lamp")

        resolved = CatalogProductResolver().resolve("[2 x Sunset Lamp - Large] [1 x Snow Lamp]")

        assert resolved == [
            ResolvedProduct(sunset.id, 2, "Sunset Lamp - Large"),
            ResolvedProduct(snow.id, 1, "Snow Lamp"),
        ]

    def test_unmatched_items_are_dropped(self, db_session, make_product):
        snow = make_product("Snow Lamp")

        resolved = CatalogProductResolver().resolve("[1 x Mystery Widget] [3 x Snow Lamp]")

        assert resolved == [ResolvedProduct(snow.id, 3, "Snow Lamp")]

    def test_app_resolver_is_catalog_resolver(self, app):
        with app.app_context():
            assert isinstance(get_resolver(), CatalogProductResolver)
