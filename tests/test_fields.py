from __future__ import annotations

import pytest

from immo_harvester.errors import ConfigurationError, FieldSpecError
from immo_harvester.scraper.fields import compile_field, compile_fields, extract, extract_items

CARDS_HTML = """
<html><body>
  <div class="card" data-id="1">
    <a class="link" href="/expose/abc" title="Altbau mit Balkon">Altbau</a>
    <div class="price">
      279.000 €
    </div>
    <img src="https://img/1.jpg">
  </div>
  <div class="card" data-id="2">
    <a class="link" href="/expose/def">Neubau</a>
    <div class="price">  350.000 €  </div>
  </div>
</body></html>
"""


def test_compile_parses_attribute_and_transforms() -> None:
    spec = compile_field("link", 'a[data-testid="x"]@href | trim | lower')
    assert spec.selector == 'a[data-testid="x"]'
    assert spec.attribute == "href"
    assert spec.transforms == ("trim", "lower")


def test_compile_accepts_camel_case_aliases() -> None:
    spec = compile_field("price", "div.price | removeNewline | collapseWhitespace | trim")
    assert spec.transforms == ("remove_newline", "collapse_whitespace", "trim")


def test_at_sign_inside_brackets_is_not_an_attribute() -> None:
    spec = compile_field("mail", 'a[href="mailto:info@example.com"]')
    assert spec.attribute is None
    assert spec.selector == 'a[href="mailto:info@example.com"]'


def test_unknown_transform_fails_at_compile_time() -> None:
    with pytest.raises(FieldSpecError) as excinfo:
        compile_fields({"price": "div.price | shout"})
    assert excinfo.value.field_name == "price"
    assert isinstance(excinfo.value, ConfigurationError)


def test_empty_selector_is_rejected() -> None:
    with pytest.raises(FieldSpecError):
        compile_field("image", "@src")


def test_extract_uses_first_match_and_reads_attributes() -> None:
    specs = compile_fields({
        "title": "a.link@title",
        "link": "a.link@href",
        "price": "div.price | remove_newline | trim",
    })
    values = extract(CARDS_HTML, specs)
    assert values == {
        "title": "Altbau mit Balkon",
        "link": "/expose/abc",
        "price": "279.000 €",
    }


def test_missing_node_or_attribute_yields_none() -> None:
    specs = compile_fields({
        "image": "img@src",
        "floor": "span.floor | trim",
        "title": "a.link@title",
    })
    items = extract_items(CARDS_HTML, "div.card", specs)
    assert [item["image"] for item in items] == ["https://img/1.jpg", None]
    assert [item["floor"] for item in items] == [None, None]
    assert items[1]["title"] is None


def test_extract_items_keeps_document_order() -> None:
    specs = compile_fields({"link": "a.link@href", "price": "div.price | trim"})
    items = extract_items(CARDS_HTML, "div.card", specs)
    assert [item["link"] for item in items] == ["/expose/abc", "/expose/def"]
    assert items[1]["price"] == "350.000 €"


def test_extract_items_on_empty_markup() -> None:
    assert extract_items("", "div.card", compile_fields({"x": "a"})) == []
