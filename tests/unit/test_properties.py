"""
Unit tests for the property catalog.
"""

from __future__ import annotations

import pytest
from conftest import HINDEN_LISTING

from sync_guesty.errors import UnknownPropertyError
from sync_guesty.properties import load_catalog, parse_listing_overrides


@pytest.mark.unit
def test_resolves_keys_and_slugs() -> None:
    catalog = load_catalog("")

    assert catalog.keys() == ["kant", "hinden", "kotti"]
    assert catalog.get("hindenburgufer").key == "hinden"
    assert catalog.get(" KOTTI ").key == "kotti"
    assert catalog.by_listing_id(HINDEN_LISTING).key == "hinden"  # type: ignore[union-attr]
    assert catalog.by_listing_id("nope") is None


@pytest.mark.unit
def test_unknown_property() -> None:
    with pytest.raises(UnknownPropertyError, match="Unknown property: atlantis"):
        load_catalog("").get("atlantis")


@pytest.mark.unit
def test_listing_overrides() -> None:
    catalog = load_catalog("kant=abc123, kotti=def456")

    assert catalog.get("kant").listing_id == "abc123"
    assert catalog.by_listing_id("def456").key == "kotti"  # type: ignore[union-attr]


@pytest.mark.unit
def test_bad_override_entry() -> None:
    with pytest.raises(ValueError):
        parse_listing_overrides("kant")
