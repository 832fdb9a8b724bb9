"""
consent_mode.py - Google Consent Mode V2 detection.

Decides from the cookie jar (and, failing that, the dataLayer) whether a
site runs Google Consent Mode V2 after the visitor accepted cookies.
Checks, strongest first:

  1. a cookie value holding Google consent properties (ad_storage, ...)
  2. OneTrust OptanonConsent with groups C0001-C0004 granted
  3. Shopify cookieConsent*Granted cookies for at least 4 categories
  4. a consent cookie granting every category plus an overall yes
  5. _gcl_/_gac_/_ga_ cookies next to a consent cookie
  6. a consent update in the dataLayer

Cookies are dicts with "name" and "value", as returned by Playwright's
context.cookies().
"""

import base64
import binascii
import json
import re
from urllib.parse import unquote

from signatures import (
    CONSENT_MODE_COOKIE_NAMES,
    GOOGLE_CONSENT_OPTIONAL_PROPERTIES,
    GOOGLE_CONSENT_PROPERTIES,
    GRANTED_VALUES,
)

_CATEGORY_FIELDS = ["necessary", "functional", "analytics", "advertisement",
                    "marketing", "performance", "preferences", "statistics",
                    "consent", "action"]
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([a-zA-Z_][a-zA-Z0-9_]*)\s*:")
_OBJECT_LITERAL = re.compile(r"\{.*\}", re.S)
_ONETRUST_GROUPS = ["C0001:1", "C0002:1", "C0003:1", "C0004:1"]
_OVERALL_MARKERS = ["consent:yes", "consent:true", 'consent:"yes"', "action:yes", 'action:"yes"']


def is_granted(value):
    if value is None or value is False:
        return False
    return str(value).lower() in GRANTED_VALUES


def _loose_value(text, field):
    match = re.search(
        field + r'["\s]*:["\s]*"?(yes|no|true|false|1|0|accepted|granted|allow|deny)"?',
        text, re.I,
    )
    return match.group(1).lower() if match else None


def parse_cookie_value(value):
    """
    Best-effort decode of a consent cookie into a dict.

    Tries JSON, URL-decoded JSON, base64 JSON and JS object literals
    with bare keys, then falls back to pulling key:value pairs with a
    regex.  Returns None when the value has no object structure at all.
    """
    if not value:
        return None

    candidates = [value]
    decoded = unquote(value)
    if decoded != value:
        candidates.append(decoded)
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed

    try:
        parsed = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
        if isinstance(parsed, dict):
            return parsed
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass

    literal = _OBJECT_LITERAL.search(decoded)
    if not literal:
        return None
    try:
        parsed = json.loads(_UNQUOTED_KEY.sub(r'\1"\2":', literal.group(0)))
        if isinstance(parsed, dict):
            return parsed
    except ValueError:
        pass
    return {field: _loose_value(decoded, field) for field in _CATEGORY_FIELDS}


def google_consent_map(parsed):
    """Return the Google consent properties in parsed, or None."""
    if not isinstance(parsed, dict):
        return None
    nested = parsed.get("googleconsentmap")
    if isinstance(nested, dict):
        if all(p in nested for p in GOOGLE_CONSENT_PROPERTIES):
            return {p: nested.get(p) for p in GOOGLE_CONSENT_PROPERTIES + GOOGLE_CONSENT_OPTIONAL_PROPERTIES}
        return None
    if any(p in parsed for p in GOOGLE_CONSENT_PROPERTIES):
        return {p: parsed.get(p) for p in GOOGLE_CONSENT_PROPERTIES + GOOGLE_CONSENT_OPTIONAL_PROPERTIES}
    return None


def _first_present(parsed, *keys):
    for key in keys:
        if parsed.get(key) is not None:
            return parsed[key]
    return None


def _categories(parsed):
    return {
        "necessary": is_granted(_first_present(parsed, "necessary", "essential")),
        "functional": is_granted(parsed.get("functional")),
        "analytics": is_granted(_first_present(parsed, "analytics", "statistics")),
        "advertisement": is_granted(_first_present(parsed, "advertisement", "advertising", "marketing")),
        "performance": is_granted(parsed.get("performance")),
    }


def _match_provider(name):
    lowered = name.lower()
    for provider, fragments in CONSENT_MODE_COOKIE_NAMES.items():
        if any(f in lowered for f in fragments):
            return provider
    return None


def _is_generic_consent_name(lowered):
    return ("consent" in lowered or "gdpr" in lowered or "privacy" in lowered
            or ("cookie" in lowered and ("accept" in lowered or "agree" in lowered)))


def _shopify_categories(cookies):
    categories = {
        "necessary": False, "functional": False, "analytics": False,
        "advertisement": False, "marketing": False, "personalization": False,
        "preferences": False,
    }
    for cookie in cookies:
        name = cookie.get("name", "").lower()
        granted = is_granted(cookie.get("value"))
        if "cookieconsentdeclined" in name and granted:
            return {k: False for k in categories}
        if "cookieconsentessentialgranted" in name and granted:
            categories["necessary"] = categories["functional"] = True
        if "cookieconsentmarketinggranted" in name and granted:
            categories["advertisement"] = categories["marketing"] = True
        if "cookieconsentpersonalizationgranted" in name or "cookiconsentpersonalization" in name:
            categories["personalization"] = categories["functional"] = True
        if "cookieconsentpreferencesgranted" in name and granted:
            categories["preferences"] = True
        if "cookieconsentuserdata" in name and granted:
            categories["analytics"] = True
    return categories


def _check_google_properties(cookies):
    for cookie in cookies:
        consent_map = google_consent_map(parse_cookie_value(cookie.get("value", "")))
        if consent_map:
            return {
                "detected_from": "google-consent-mode-properties",
                "cookie_name": cookie.get("name"),
                "google_consent_mode_map": consent_map,
            }
    return None


def _check_consent_cookies(cookies):
    for cookie in cookies:
        name = cookie.get("name", "")
        value = cookie.get("value", "") or ""
        lowered = name.lower()
        provider = _match_provider(name)
        if not provider and not _is_generic_consent_name(lowered):
            continue

        if "optanonconsent" in lowered and all(g in value for g in _ONETRUST_GROUPS):
            return {
                "detected_from": "onetrust-optanonconsent",
                "cookie_name": name,
                "categories": {"necessary": True, "functional": True,
                               "analytics": True, "advertisement": True},
            }

        if provider == "shopify":
            categories = _shopify_categories(cookies)
            granted = sum(1 for v in categories.values() if v)
            if granted >= 4:
                return {
                    "detected_from": "shopify-consent-cookies",
                    "cookie_name": name,
                    "categories": categories,
                    "granted_categories": granted,
                }
            continue

        parsed = parse_cookie_value(value) or {}
        categories = _categories(parsed)
        value_lower = value.lower()
        overall = is_granted(value) or any(m in value_lower for m in _OVERALL_MARKERS)
        if not overall:
            overall = is_granted(parsed.get("consent")) or is_granted(parsed.get("action"))
        if overall and all(categories.values()):
            return {
                "detected_from": provider or "generic-consent-cookie",
                "cookie_name": name,
                "categories": categories,
            }
    return None


def _check_google_cookies(cookies):
    names = [c.get("name", "").lower() for c in cookies]
    has_consent_cookie = any("consent" in n or "gdpr" in n or "cookie" in n for n in names)
    if not has_consent_cookie:
        return None
    for cookie, lowered in zip(cookies, names):
        if "_gcl_" in lowered or "_gac_" in lowered or "_ga_" in lowered:
            return {
                "detected_from": "google-consent-mode-indicators",
                "cookie_name": cookie.get("name"),
            }
    return None


def check_data_layer(data_layer):
    """Find a Consent Mode update in a dataLayer snapshot."""
    for entry in data_layer or []:
        consent = None
        event_type = None
        if isinstance(entry, dict):
            if entry.get("event") == "consent" and entry.get("action") == "update":
                consent, event_type = entry.get("consent") or entry.get("2"), "consent_update"
            elif entry.get("0") == "consent" and entry.get("1") == "update":
                # gtag() pushes its arguments object, serialised with string keys.
                consent, event_type = entry.get("2"), "gtag_consent_update"
            elif isinstance(entry.get("consent"), dict):
                consent, event_type = entry["consent"], "direct_consent_object"
        elif isinstance(entry, list) and entry[:2] == ["consent", "update"] and len(entry) > 2:
            consent, event_type = entry[2], "gtag_consent_update"

        if not isinstance(consent, dict):
            continue
        consent_map = {p: consent.get(p) for p in GOOGLE_CONSENT_PROPERTIES + GOOGLE_CONSENT_OPTIONAL_PROPERTIES}
        if any(v is not None for v in consent_map.values()):
            return {
                "detected_from": "datalayer-consent-event",
                "event_type": event_type,
                "categories": consent_map,
            }
    return None


def detect_consent_mode(cookies, data_layer=None):
    """
    Return (detected, details) for Google Consent Mode V2.

    details names the signal that decided it (detected_from) and, for
    cookie signals, the cookie name.  (False, None) when nothing matched.
    """
    cookies = [c for c in cookies or [] if isinstance(c, dict)]
    for check in (_check_google_properties, _check_consent_cookies, _check_google_cookies):
        details = check(cookies)
        if details:
            return True, details

    details = check_data_layer(data_layer)
    if details:
        return True, details
    return False, None
