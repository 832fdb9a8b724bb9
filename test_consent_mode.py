"""Tests for consent_mode: Consent Mode V2 from cookies and dataLayer."""

import base64
import json
from urllib.parse import quote

from consent_mode import (
    check_data_layer,
    detect_consent_mode,
    google_consent_map,
    is_granted,
    parse_cookie_value,
)

GOOGLE_VALUE = {
    "ad_storage": "granted",
    "analytics_storage": "granted",
    "functionality_storage": "granted",
    "security_storage": "granted",
}


class TestParseCookieValue:

    def test_json(self):
        assert parse_cookie_value(json.dumps(GOOGLE_VALUE)) == GOOGLE_VALUE

    def test_url_encoded_json(self):
        assert parse_cookie_value(quote(json.dumps(GOOGLE_VALUE))) == GOOGLE_VALUE

    def test_base64_json(self):
        encoded = base64.b64encode(json.dumps(GOOGLE_VALUE).encode()).decode()
        assert parse_cookie_value(encoded) == GOOGLE_VALUE

    def test_unquoted_keys(self):
        assert parse_cookie_value("{necessary:true,marketing:false}") == {
            "necessary": True, "marketing": False,
        }

    def test_plain_value(self):
        assert parse_cookie_value("yes") is None
        assert parse_cookie_value("") is None

    def test_is_granted(self):
        assert is_granted("Granted")
        assert is_granted(True)
        assert is_granted(1)
        assert not is_granted("denied")
        assert not is_granted(None)
        assert not is_granted(False)


class TestGoogleConsentMap:

    def test_nested_map_requires_all_four(self):
        assert google_consent_map({"googleconsentmap": {"ad_storage": "granted"}}) is None
        assert google_consent_map({"googleconsentmap": GOOGLE_VALUE})["ad_storage"] == "granted"

    def test_root_level_properties(self):
        mapped = google_consent_map({"analytics_storage": "denied"})
        assert mapped["analytics_storage"] == "denied"
        assert mapped["ad_storage"] is None


class TestDetectConsentMode:

    def test_google_properties_in_cookie(self):
        detected, details = detect_consent_mode([
            {"name": "_ga", "value": "GA1.1.1"},
            {"name": "cookieyes-consent", "value": json.dumps(GOOGLE_VALUE)},
        ])
        assert detected is True
        assert details["detected_from"] == "google-consent-mode-properties"
        assert details["cookie_name"] == "cookieyes-consent"

    def test_onetrust_groups(self):
        detected, details = detect_consent_mode([
            {"name": "OptanonConsent", "value": "isGpcEnabled=0&groups=C0001:1,C0002:1,C0003:1,C0004:1"},
        ])
        assert detected is True
        assert details["detected_from"] == "onetrust-optanonconsent"

    def test_onetrust_partial_groups_not_enough(self):
        detected, details = detect_consent_mode([
            {"name": "OptanonConsent", "value": "groups=C0001:1,C0002:0,C0003:0,C0004:0"},
        ])
        assert detected is False
        assert details is None

    def test_shopify_categories(self):
        detected, details = detect_consent_mode([
            {"name": "_cmp_a", "value": "x"},
            {"name": "cookieconsentessentialgranted", "value": "yes"},
            {"name": "cookieconsentmarketinggranted", "value": "yes"},
            {"name": "cookieconsentpreferencesgranted", "value": "yes"},
            {"name": "cookieconsentuserdata", "value": "yes"},
        ])
        assert detected is True
        assert details["detected_from"] == "shopify-consent-cookies"
        assert details["granted_categories"] >= 4

    def test_all_categories_granted(self):
        value = "{necessary:true,functional:true,analytics:true,advertisement:true,performance:true,consent:yes}"
        detected, details = detect_consent_mode([{"name": "my_cookie_consent", "value": value}])
        assert detected is True
        assert details["detected_from"] == "generic"
        assert all(details["categories"].values())

    def test_google_cookies_next_to_consent_cookie(self):
        detected, details = detect_consent_mode([
            {"name": "cookie_notice_seen", "value": "1"},
            {"name": "_gcl_au", "value": "1.1.123"},
        ])
        assert detected is True
        assert details["detected_from"] == "google-consent-mode-indicators"

    def test_datalayer_fallback(self):
        data_layer = [
            {"event": "gtm.js"},
            {"0": "consent", "1": "default", "2": {"ad_storage": "denied"}},
            {"0": "consent", "1": "update", "2": {"ad_storage": "granted"}},
        ]
        detected, details = detect_consent_mode([], data_layer)
        assert detected is True
        assert details["event_type"] == "gtag_consent_update"
        assert details["categories"]["ad_storage"] == "granted"

    def test_nothing(self):
        assert detect_consent_mode([{"name": "_ga", "value": "GA1.1.1"}], [{"event": "gtm.js"}]) == (False, None)
        assert detect_consent_mode(None) == (False, None)


class TestCheckDataLayer:

    def test_consent_event(self):
        details = check_data_layer([
            {"event": "consent", "action": "update", "consent": {"analytics_storage": "granted"}},
        ])
        assert details["event_type"] == "consent_update"

    def test_gtag_list(self):
        details = check_data_layer([["consent", "update", {"ad_user_data": "granted"}]])
        assert details["categories"]["ad_user_data"] == "granted"

    def test_direct_consent_object(self):
        details = check_data_layer([{"consent": {"ad_storage": "granted"}}])
        assert details["event_type"] == "direct_consent_object"

    def test_consent_without_google_properties(self):
        assert check_data_layer([{"consent": {"marketing": True}}]) is None
