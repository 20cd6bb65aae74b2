"""Tests for the GEKO catalog XML parser."""

import xml.etree.ElementTree as ET

import pytest

from catalog_sync.services.xml_parser import (
    ParseError,
    element_to_object,
    ensure_list,
    parse_xml,
)


class TestEnsureList:
    """Tests for ensure_list."""

    def test_none_is_empty(self) -> None:
        """Test that missing nodes become an empty list."""
        assert ensure_list(None) == []

    def test_empty_element_is_empty(self) -> None:
        """Test that empty elements become an empty list."""
        assert ensure_list("") == []

    def test_single_node_wrapped(self) -> None:
        """Test that a single node is wrapped in a list."""
        assert ensure_list({"code": "A"}) == [{"code": "A"}]

    def test_list_kept(self) -> None:
        """Test that lists are kept, minus empty entries."""
        assert ensure_list(["a", "", "b"]) == ["a", "b"]


class TestElementToObject:
    """Tests for element_to_object."""

    def test_attributes_and_text(self) -> None:
        """Test that attributes merge with text under the text key."""
        node = element_to_object(ET.fromstring('<price type="retail">12.50</price>'))
        assert node == {"type": "retail", "_": "12.50"}

    def test_repeated_children_become_list(self) -> None:
        """Test that repeated tags are collected into a list."""
        node = element_to_object(ET.fromstring("<images><image>a</image><image>b</image></images>"))
        assert node == {"image": ["a", "b"]}


class TestParseXml:
    """Tests for parse_xml."""

    def test_parse_sample_catalog(self, sample_catalog: str) -> None:
        """Test parsing a <geko> catalog."""
        catalog = parse_xml(sample_catalog)
        assert catalog.root == "geko"
        assert catalog.product_count == 2

        drill = catalog.products[0]
        assert drill["code"] == "P-100"
        assert drill["vat"] == "23"
        assert drill["description"]["name"] == "Cordless Drill"
        assert len(drill["variants"]) == 1
        assert len(drill["variants"][0]["prices"]) == 2
        assert len(drill["images"]) == 2

    def test_single_children_normalized(self, sample_catalog: str) -> None:
        """Test that repeatable elements are lists even with one entry."""
        hammer = parse_xml(sample_catalog).products[1]
        assert hammer["variants"] == []
        assert hammer["images"] == []
        assert hammer["prices"] == [{"type": "retail", "vat": "23", "_": "24.60"}]

    def test_single_product_is_list(self) -> None:
        """Test that a catalog with one product yields a one-element list."""
        catalog = parse_xml('<geko><products><product code="A"/></products></geko>')
        assert catalog.products == [
            {"code": "A", "variants": [], "prices": [], "images": []}
        ]

    def test_bytes_input(self) -> None:
        """Test that raw bytes with an XML declaration are accepted."""
        content = b'<?xml version="1.0" encoding="UTF-8"?><geko><products/></geko>'
        assert parse_xml(content).products == []

    def test_offer_wrapper(self) -> None:
        """Test the <offer> wrapper with products/product."""
        catalog = parse_xml(
            '<offer><products><product code="A"/><product code="B"/></products></offer>'
        )
        assert catalog.root == "offer"
        assert [p["code"] for p in catalog.products] == ["A", "B"]

    def test_offer_items(self) -> None:
        """Test the <offer> wrapper carrying items directly."""
        catalog = parse_xml('<offer><item code="A"/></offer>')
        assert [p["code"] for p in catalog.products] == ["A"]

    def test_names_lowercased_and_namespaces_dropped(self) -> None:
        """Test that tag and attribute names are normalized."""
        catalog = parse_xml(
            '<g:GEKO xmlns:g="urn:geko"><g:Products>'
            '<g:Product CODE="A"><g:Name>Drill</g:Name></g:Product>'
            "</g:Products></g:GEKO>"
        )
        assert catalog.products[0]["code"] == "A"
        assert catalog.products[0]["name"] == "Drill"

    def test_malformed_xml(self) -> None:
        """Test that malformed XML raises ParseError."""
        with pytest.raises(ParseError, match="Malformed XML"):
            parse_xml("<geko><products>")

    def test_empty_document(self) -> None:
        """Test that an empty document raises ParseError."""
        with pytest.raises(ParseError, match="Empty"):
            parse_xml("   ")

    def test_unknown_root(self) -> None:
        """Test that other root elements are rejected."""
        with pytest.raises(ParseError, match="Unrecognized schema"):
            parse_xml("<catalog><products/></catalog>")

    def test_wrapper_without_products(self) -> None:
        """Test that a known wrapper without products is rejected."""
        with pytest.raises(ParseError, match="Unrecognized schema"):
            parse_xml("<geko><categories/></geko>")
