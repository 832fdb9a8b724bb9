"""Tests for json_ld_scanner: parsing and validating JSON-LD blocks."""

import json
from unittest.mock import MagicMock

import pytest

from errors import ExtractionError
from json_ld_scanner import empty_json_ld_info, parse_json_ld, scan_json_ld

ORGANIZATION = {
    "@context": "https://schema.org",
    "@type": "Organization",
    "@id": "https://shop.example/#org",
    "name": "Shop",
    "url": "https://shop.example",
}


class TestParseJsonLd:

    def test_single_schema(self):
        info = parse_json_ld([json.dumps(ORGANIZATION)])
        assert info["found"] is True
        assert info["types"] == ["Organization"]
        assert info["errors"] == []

        schema = info["schemas"][0]
        assert schema["index"] == 0
        assert schema["schema_index"] == 0
        assert schema["id"] == "https://shop.example/#org"
        assert schema["properties"] == ["name", "url"]
        assert schema["is_valid"] is True
        assert schema["schema_org"] is True
        assert info["scripts"][0]["parsed"] == ORGANIZATION

    def test_array_block_and_duplicate_types(self):
        block = json.dumps([
            {"@context": "https://schema.org", "@type": "Product", "name": "Mug"},
            {"@context": "https://schema.org", "@type": "Product", "name": "Cup"},
            {"@context": "https://schema.org", "@type": "BreadcrumbList"},
        ])
        info = parse_json_ld([json.dumps(ORGANIZATION), block])
        assert [s["schema_index"] for s in info["schemas"]] == [0, 0, 1, 2]
        assert info["types"] == ["Organization", "Product", "BreadcrumbList"]

    def test_parse_error_does_not_hide_other_blocks(self):
        broken = '{"@type": "Product", "name": "Mug",}' + "x" * 300
        info = parse_json_ld([broken, json.dumps(ORGANIZATION)])
        assert info["types"] == ["Organization"]
        assert len(info["errors"]) == 1
        assert info["errors"][0]["index"] == 0
        assert info["errors"][0]["error"].startswith("JSON parse error")
        assert len(info["errors"][0]["content"]) == 200

    def test_missing_context_and_type_is_invalid(self):
        info = parse_json_ld(['{"name": "Shop"}'])
        schema = info["schemas"][0]
        assert schema["is_valid"] is False
        assert schema["validation_error"] == "Missing @context or @type"
        assert schema["type"] == "Unknown"
        assert schema["schema_org"] is False

    def test_list_type(self):
        info = parse_json_ld(['{"@context": "https://schema.org", "@type": ["Store", "Organization"]}'])
        assert info["types"] == ["Store", "Organization"]

    def test_non_object_entries_reported(self):
        info = parse_json_ld(['["just", "strings"]'])
        assert info["schemas"] == []
        assert len(info["errors"]) == 2

    def test_empty_tags_still_found(self):
        info = parse_json_ld(["", "   "])
        assert info["found"] is True
        assert info["schemas"] == []

    def test_no_tags(self):
        assert parse_json_ld([]) == empty_json_ld_info()


class TestScanJsonLd:

    def test_reads_blocks_from_page(self):
        evaluate = MagicMock(return_value=[json.dumps(ORGANIZATION)])
        assert scan_json_ld(evaluate)["types"] == ["Organization"]

    def test_nothing_returned(self):
        assert scan_json_ld(lambda js: None) == empty_json_ld_info()

    def test_page_error_raises_extraction_error(self):
        evaluate = MagicMock(side_effect=RuntimeError("Target closed"))
        with pytest.raises(ExtractionError):
            scan_json_ld(evaluate)
