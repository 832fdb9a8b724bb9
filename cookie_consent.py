"""
cookie_consent.py - Cookie banner detection and "accept all".

Identifies the Consent Management Platform (CMP) on a page, clicks its
accept button, and reports what happened together with a sample of the
live cookie jar.  After a successful click the cookie jar and dataLayer
are re-read to detect Google Consent Mode V2 (see consent_mode.py).

accept_cookies() never raises.  Any failure degrades to accepted=False.
"""

import re

from playwright.sync_api import TimeoutError as PlaywrightTimeout

from consent_mode import detect_consent_mode
from signatures import (
    ACCEPT_PATTERN,
    CMP_ACCEPT_SELECTORS,
    CMP_SIGNATURES,
    CONSENT_COOKIE_NAMES,
    COOKIE_PROVIDER_NAMES,
    GENERIC_ACCEPT_SELECTORS,
    GENERIC_BANNER_MIN_ELEMENTS,
    GENERIC_BANNER_SCRIPTS,
    GENERIC_BANNER_SELECTORS,
    GENERIC_BANNER_TEXT,
    GENERIC_CMP_NAME,
)


# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

# Let the banner render before looking for it (ms).
CONSENT_PRE_DELAY = 2000

# Time allowed for a reload triggered by the accept click (ms).
POST_CLICK_NAVIGATION_TIMEOUT = 5000

# Extra wait for consent cookies to be written (ms).
POST_CLICK_COOKIE_WAIT = 1000

CLICK_TIMEOUT = 3000

# Only this many cookie names are reported.
MAX_COOKIE_KEYS = 10

# Counts for every CMP selector, all script srcs, which CMP globals are
# defined and whether any cookie/consent element reads like a banner.
_DOM_SIGNALS_JS = """
(args) => {
    const counts = {};
    args.selectors.forEach(sel => {
        try { counts[sel] = document.querySelectorAll(sel).length; } catch (e) { counts[sel] = 0; }
    });
    const scripts = Array.from(document.querySelectorAll('script')).map(s => s.src || '').filter(Boolean);
    const globals = args.globals.filter(name => typeof window[name] !== 'undefined');
    const patterns = args.bannerText.map(p => new RegExp(p, 'i'));
    let bannerText = false;
    for (const el of document.querySelectorAll(args.bannerSelectors.join(','))) {
        const text = (el.textContent || '') + ' ' + (el.className || '') + ' ' + (el.id || '');
        if (patterns.some(p => p.test(text))) { bannerText = true; break; }
    }
    return {counts, scripts, globals, bannerText};
}
"""

# Candidate click targets in selector then document order.  Text is
# the element's own text plus aria-label, title and data-cs-i18n-text.
# An element matched by several selectors is reported once; hidden
# elements are left out.
_CANDIDATES_JS = """
(args) => {
    const out = [];
    const seen = new Set();
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') return false;
        const rect = el.getBoundingClientRect();
        return rect.width > 0 && rect.height > 0;
    };
    for (const sel of args.selectors) {
        let elements;
        try { elements = document.querySelectorAll(sel); } catch (e) { continue; }
        for (let i = 0; i < elements.length; i++) {
            const el = elements[i];
            if (seen.has(el)) continue;
            seen.add(el);
            const text = [
                (el.textContent || '').trim(),
                el.getAttribute('aria-label') || '',
                el.getAttribute('title') || '',
                el.getAttribute('data-cs-i18n-text') || '',
            ].join(' ').trim();
            if (!text || text.length > 200 || !isVisible(el)) continue;
            out.push({
                selector: sel,
                index: i,
                text: text,
                visible: true,
                tag: el.tagName,
                id: el.id || null,
                role: el.getAttribute('role'),
            });
        }
    }
    return out;
}
"""

_DATA_LAYER_JS = """
() => {
    try {
        return Array.isArray(window.dataLayer) ? JSON.parse(JSON.stringify(window.dataLayer)) : null;
    } catch (e) {
        return null;
    }
}
"""


# ────────────────────────────────────────────────────────────────────
# CMP DETECTION
# ────────────────────────────────────────────────────────────────────

def _signal_args():
    selectors = []
    global_names = []
    for signature in CMP_SIGNATURES:
        selectors.extend(signature["selectors"])
        global_names.extend(signature["globals"])
    selectors.extend(GENERIC_BANNER_SELECTORS)
    return {
        "selectors": list(dict.fromkeys(selectors)),
        "globals": list(dict.fromkeys(global_names)),
        "bannerSelectors": GENERIC_BANNER_SELECTORS,
        "bannerText": GENERIC_BANNER_TEXT,
    }


def collect_dom_signals(page):
    """Collect everything match_cmp() needs in one round trip."""
    return page.evaluate(_DOM_SIGNALS_JS, _signal_args()) or {}


def match_cmp(signals):
    """
    Pick the CMP described by the DOM signals.

    Named platforms are tried in priority order; a generic banner is the
    fallback.  Returns {"name", "confidence", "elements", "scripts"} or
    None.
    """
    counts = signals.get("counts") or {}
    scripts = [s.lower() for s in signals.get("scripts") or []]
    defined = set(signals.get("globals") or [])

    for signature in CMP_SIGNATURES:
        elements = sum(counts.get(sel, 0) for sel in signature["selectors"])
        script_hits = sum(1 for src in scripts if any(s in src for s in signature["scripts"]))
        has_global = any(name in defined for name in signature["globals"])
        if elements or script_hits or has_global:
            return {
                "name": signature["name"],
                "confidence": signature["confidence"],
                "elements": elements,
                "scripts": script_hits,
            }

    elements = sum(counts.get(sel, 0) for sel in GENERIC_BANNER_SELECTORS)
    script_hits = sum(1 for src in scripts if any(s in src for s in GENERIC_BANNER_SCRIPTS))
    if signals.get("bannerText") or elements > GENERIC_BANNER_MIN_ELEMENTS or script_hits:
        return {
            "name": GENERIC_CMP_NAME,
            "confidence": "low",
            "elements": elements,
            "scripts": script_hits,
        }
    return None


def analyze_consent_cookies(cookies):
    """
    Look for consent cookies by name.

    Returns {"found_consent_cookies", "detected_providers",
    "consent_status"} where consent_status is accepted / rejected /
    unknown based on the consent cookie values.
    """
    analysis = {
        "found_consent_cookies": [],
        "detected_providers": [],
        "consent_status": "unknown",
    }
    for cookie in cookies:
        name = cookie.get("name", "")
        value = str(cookie.get("value", ""))
        lowered = name.lower()
        matched = False
        for provider, fragments in CONSENT_COOKIE_NAMES.items():
            if any(f in lowered for f in fragments):
                matched = True
                if provider not in analysis["detected_providers"]:
                    analysis["detected_providers"].append(provider)
                analysis["found_consent_cookies"].append({
                    "name": name,
                    "value": value[:100],
                    "provider": provider,
                })
        if not matched:
            continue
        value_lower = value.lower()
        if re.search(r"true|yes|accept|granted|\b1\b", value_lower):
            analysis["consent_status"] = "accepted"
        elif re.search(r"false|no|reject|denied|\b0\b", value_lower):
            if analysis["consent_status"] == "unknown":
                analysis["consent_status"] = "rejected"
    return analysis


def cmp_from_cookies(analysis):
    """Infer a CMP from consent cookie names when the banner is gone."""
    for provider in analysis.get("detected_providers") or []:
        if provider in COOKIE_PROVIDER_NAMES:
            return {
                "name": COOKIE_PROVIDER_NAMES[provider],
                "confidence": "low",
                "elements": 0,
                "scripts": 0,
                "detected_from": "cookie-analysis",
            }
    return None


def detect_cmp(page, cookies=None):
    """Detect the page's CMP from the DOM, then from cookie names."""
    cmp = match_cmp(collect_dom_signals(page))
    if cmp is None and cookies:
        cmp = cmp_from_cookies(analyze_consent_cookies(cookies))
    return cmp


# ────────────────────────────────────────────────────────────────────
# ACCEPT BUTTON
# ────────────────────────────────────────────────────────────────────

def build_accept_selectors(cmp=None):
    """CMP-specific accept selectors first, then the generic ones."""
    selectors = []
    if cmp:
        selectors.extend(CMP_ACCEPT_SELECTORS.get(cmp["name"], []))
    for selector in GENERIC_ACCEPT_SELECTORS:
        if selector not in selectors:
            selectors.append(selector)
    return selectors


def is_accept_text(text):
    """True when text contains one of the accept phrases as whole words."""
    return bool(text and ACCEPT_PATTERN.search(text))


def choose_candidates(candidates):
    """Visible candidates whose text is an accept phrase, in order."""
    return [c for c in candidates if c.get("visible") and is_accept_text(c.get("text"))]


def click_accept_button(page, selectors):
    """
    Click the first visible element whose text is an accept phrase.

    Returns a description of the clicked element, or None.
    """
    candidates = page.evaluate(_CANDIDATES_JS, {"selectors": selectors})
    for candidate in choose_candidates(candidates or []):
        try:
            page.locator(candidate["selector"]).nth(candidate["index"]).click(timeout=CLICK_TIMEOUT)
        except Exception as e:
            print(f"[!] Click failed on {candidate['selector']} ({candidate['text'][:30]!r}): {e}")
            continue
        return {
            "tag_name": candidate.get("tag"),
            "id": candidate.get("id"),
            "role": candidate.get("role"),
            "text": candidate["text"][:50],
            "selector": candidate["selector"],
        }
    return None


# ────────────────────────────────────────────────────────────────────
# COOKIE JAR
# ────────────────────────────────────────────────────────────────────

def read_cookies(page):
    """Return the browser context's cookies as a list of dicts."""
    try:
        return page.context.cookies()
    except Exception as e:
        print(f"[!] Could not read cookies: {e}")
        return []


def summarize_cookies(cookies):
    """Count, first names and distinct domains of the cookie jar."""
    domains = {(c.get("domain") or "").lstrip(".") for c in cookies}
    domains.discard("")
    return {
        "cookie_count": len(cookies),
        "cookie_keys": [c.get("name") for c in cookies[:MAX_COOKIE_KEYS]],
        "cookie_domains": len(domains),
    }


def read_data_layer(page):
    try:
        return page.evaluate(_DATA_LAYER_JS)
    except Exception as e:
        print(f"[!] Could not read dataLayer: {e}")
        return None


def _wait_after_click(page):
    try:
        page.wait_for_load_state("domcontentloaded", timeout=POST_CLICK_NAVIGATION_TIMEOUT)
    except PlaywrightTimeout:
        pass
    page.wait_for_timeout(POST_CLICK_COOKIE_WAIT)


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

def empty_cookie_info(message=None):
    return {
        "accepted": False,
        "provider": None,
        "confidence": None,
        "method": "text-based",
        "message": message,
        "element": None,
        "cmp": None,
        "cookie_count": 0,
        "cookie_keys": [],
        "cookie_domains": 0,
        "consent_analysis": None,
        "consent_mode_v2": None,
        "consent_mode_v2_details": None,
    }


def accept_cookies(page, pre_delay_ms=CONSENT_PRE_DELAY):
    """
    Detect the CMP, click "accept all" and sample the cookie jar.

    Returns a CookieInfo dict.  consent_mode_v2 is only set (True or
    False) when the accept click succeeded.
    """
    info = empty_cookie_info()
    try:
        if pre_delay_ms:
            page.wait_for_timeout(pre_delay_ms)

        cookies = read_cookies(page)
        cmp = detect_cmp(page, cookies)
        if cmp:
            print(f"[*] CMP detected: {cmp['name']} ({cmp['confidence']} confidence)")
            info["cmp"] = cmp
            info["provider"] = cmp["name"]
            info["confidence"] = cmp["confidence"]
            info["method"] = "cmp-specific"

        element = click_accept_button(page, build_accept_selectors(cmp))
        if element:
            info["accepted"] = True
            info["element"] = element
            info["message"] = (
                f"Accepted cookies using {info['method']} detection"
                + (f" ({cmp['name']})" if cmp else "")
                + f": \"{element['text']}\""
            )
            print(f"[*] {info['message']}")
            _wait_after_click(page)
            detected, details = detect_consent_mode(read_cookies(page), read_data_layer(page))
            info["consent_mode_v2"] = detected
            info["consent_mode_v2_details"] = details
            if detected:
                print(f"[*] Consent Mode V2 detected via {details['detected_from']}")
        elif cmp:
            info["message"] = f"Detected {cmp['name']} CMP but no accept buttons found"
        else:
            info["message"] = "No cookie accept buttons found"
    except Exception as e:
        print(f"[!] Cookie acceptance failed: {e}")
        info["accepted"] = False
        info["message"] = f"Error accepting cookies: {e}"

    cookies = read_cookies(page)
    info.update(summarize_cookies(cookies))
    info["consent_analysis"] = analyze_consent_cookies(cookies)
    return info
