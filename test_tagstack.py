"""Tests for tagstack: envelope parsing, normalisation and the API client."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

import tagstack
from errors import EnrichmentError
from tagstack import (
    ObjectPayload,
    StringPayload,
    classify_envelope,
    container_stats,
    enrich,
    fetch_tagstack_data,
    parse_envelope,
    process_tagstack_data,
)

CONTAINERS = {
    "GTM-ABC123": {
        "entityType": "GTM Container",
        "consentMode": True,
        "cmp": "Cookiebot",
        "consentDefault": {
            "ad_storage": "denied",
            "analytics_storage": "denied",
            "ad_user_data": "denied",
            "ad_personalization": "denied",
        },
        "tags": [
            {
                "name": "GA4 - Config",
                "type": "gaawe",
                "parameters": [{"key": "measurementId", "parameterValue": "G-MEAS001"}],
            },
            {
                "name": "Google Ads Conversion",
                "type": "awct",
                "parameters": [{"key": "vtp_tagId", "parameterValue": ["template", "AW-555XYZ"]}],
                "paused": True,
            },
            {
                "name": "Meta Pixel",
                "type": "html",
                "parameters": [{"key": "pixelId", "parameterValue": "1234567890"}],
                "paused": "true",
            },
        ],
        "variables": [{}, {}],
        "triggers": [{}],
    },
    "G-STREAM1": {
        "entityType": "GA4 Stream",
        "measurementProtocolSecret": "s3cr3t",
    },
}


def _response(status=200, body=None, reason="OK"):
    response = MagicMock()
    response.status_code = status
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


class TestEnvelope:

    def test_string_message_is_decoded(self):
        result = {"success": True, "message": json.dumps(CONTAINERS)}
        assert isinstance(classify_envelope(result), StringPayload)
        assert parse_envelope(result) == CONTAINERS

    def test_object_message_used_directly(self):
        result = {"success": True, "message": CONTAINERS}
        assert classify_envelope(result) == ObjectPayload(CONTAINERS)
        assert parse_envelope(result) == CONTAINERS

    def test_undecodable_string_falls_back_to_containers(self):
        result = {"success": True, "message": "{not json", "containers": {"GTM-X": {}}}
        assert parse_envelope(result) == {"GTM-X": {}}

    @pytest.mark.parametrize("result", [
        None,
        [],
        "text",
        {"success": True},
        {"success": True, "message": "{not json"},
        {"success": True, "message": "[1, 2]"},
    ])
    def test_malformed_resolves_to_empty(self, result):
        assert parse_envelope(result) == {}


class TestContainerStats:

    def test_only_true_counts_as_paused(self):
        stats = container_stats(CONTAINERS["GTM-ABC123"]["tags"], [{}, {}], [{}])
        assert stats == {"tags": 3, "active_tags": 2, "paused_tags": 1, "variables": 2, "triggers": 1}
        assert stats["active_tags"] + stats["paused_tags"] == stats["tags"]

    def test_empty(self):
        assert container_stats(None, None, None) == {
            "tags": 0, "active_tags": 0, "paused_tags": 0, "variables": 0, "triggers": 0,
        }


class TestProcessTagstackData:

    def test_full_container(self):
        info = process_tagstack_data(CONTAINERS)

        assert info["consent_mode_v2"] is True
        assert info["cmp"] == "Cookiebot"
        assert info["consent_defaults"]["ad_storage"] == "denied"
        assert info["server_side_tracking"] is True
        assert [c["id"] for c in info["gtm_containers"]] == ["GTM-ABC123"]
        assert [s["id"] for s in info["ga4_streams"]] == ["G-STREAM1"]
        assert info["detected_ids"] == {
            "ga4": ["G-MEAS001", "G-STREAM1"],
            "facebook_pixel": ["1234567890"],
            "google_ads": ["AW-555XYZ"],
            "tiktok_pixel": [],
            "linkedin_pixel": [],
        }
        assert info["container_stats"]["GTM-ABC123"]["paused_tags"] == 1
        assert {t["container_id"] for t in info["tags"]} == {"GTM-ABC123"}

    def test_no_server_side_signals(self):
        info = process_tagstack_data({"GTM-ABC123": {"entityType": "GTM Container", "tags": []}})
        assert info["server_side_tracking"] is False
        assert info["consent_mode_v2"] is False
        assert info["cmp"] is None

    def test_server_tag_flags_server_side(self):
        containers = {"GTM-ABC123": {
            "entityType": "GTM Container",
            "tags": [{"name": "Server-Side GA4", "type": "html"}],
        }}
        assert process_tagstack_data(containers)["server_side_tracking"] is True

    def test_non_dict_entries_skipped(self):
        info = process_tagstack_data({"GTM-ABC123": None, "G-X": "oops"})
        assert info["gtm_containers"] == []
        assert info["ga4_streams"] == []


class TestFetchTagstackData:

    def test_missing_key(self, no_api_keys):
        with pytest.raises(EnrichmentError, match="TAGSTACK_API_KEY"):
            fetch_tagstack_data("GTM-ABC123")

    def test_success(self):
        body = {"success": True, "message": json.dumps(CONTAINERS)}
        with patch("tagstack.requests.get", return_value=_response(body=body)) as get:
            assert fetch_tagstack_data("GTM-ABC123", api_key="key") == CONTAINERS

        args, kwargs = get.call_args
        assert args[0] == tagstack.TAGSTACK_API_URL
        assert kwargs["params"] == {"url": "GTM-ABC123"}
        assert kwargs["headers"]["Authorization"] == "Bearer key"

    def test_431(self):
        with patch("tagstack.requests.get", return_value=_response(431, reason="Too Large")):
            with pytest.raises(EnrichmentError, match="431"):
                fetch_tagstack_data("GTM-ABC123", api_key="key")

    def test_non_2xx(self):
        with patch("tagstack.requests.get", return_value=_response(503, reason="Unavailable")):
            with pytest.raises(EnrichmentError, match="503"):
                fetch_tagstack_data("GTM-ABC123", api_key="key")

    def test_unsuccessful_envelope(self):
        body = {"success": False, "message": "Container not found"}
        with patch("tagstack.requests.get", return_value=_response(body=body)):
            with pytest.raises(EnrichmentError, match="Container not found"):
                fetch_tagstack_data("GTM-ABC123", api_key="key")

    def test_bad_json(self):
        with patch("tagstack.requests.get", return_value=_response(body=ValueError("bad"))):
            with pytest.raises(EnrichmentError):
                fetch_tagstack_data("GTM-ABC123", api_key="key")

    def test_network_error(self):
        with patch("tagstack.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(EnrichmentError):
                fetch_tagstack_data("GTM-ABC123", api_key="key")


class TestEnrich:

    def test_no_ids(self):
        assert enrich([]) is None

    def test_all_lookups_fail(self, monkeypatch):
        monkeypatch.setattr(tagstack, "fetch_tagstack_data",
                            MagicMock(side_effect=EnrichmentError("down")))
        assert enrich(["GTM-ABC123", "GTM-XYZ789"]) is None

    def test_partial_failure_keeps_successes(self, monkeypatch):
        def fake_fetch(container_id, api_key=None):
            if container_id == "GTM-XYZ789":
                raise EnrichmentError("Tagstack API returned 500")
            return CONTAINERS

        monkeypatch.setattr(tagstack, "fetch_tagstack_data", fake_fetch)
        info = enrich(["GTM-ABC123", "GTM-XYZ789"])
        assert info["consent_mode_v2"] is True
        assert info["detected_ids"]["google_ads"] == ["AW-555XYZ"]

    def test_merge_across_containers(self, monkeypatch):
        responses = {
            "GTM-ABC123": {"GTM-ABC123": CONTAINERS["GTM-ABC123"]},
            "GTM-XYZ789": {"G-STREAM1": CONTAINERS["G-STREAM1"]},
        }
        monkeypatch.setattr(tagstack, "fetch_tagstack_data",
                            lambda container_id, api_key=None: responses[container_id])
        info = enrich(["GTM-ABC123", "GTM-XYZ789"])
        assert [c["id"] for c in info["gtm_containers"]] == ["GTM-ABC123"]
        assert [s["id"] for s in info["ga4_streams"]] == ["G-STREAM1"]
