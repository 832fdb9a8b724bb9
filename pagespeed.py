"""
pagespeed.py - Google PageSpeed Insights lookup.

Turns a Lighthouse run (performance, accessibility, best practices and
SEO categories) into a flat PerformanceInfo dict.  Without an API key,
or on any failure, a fixed sample is returned so the rest of the scan
and the scores still have something to work with.

API key: PAGESPEED_API_KEY (or NEXT_PUBLIC_PAGESPEED_API_KEY).
"""

import os

import requests

from scoring import round_half_up

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

PAGESPEED_API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

PAGESPEED_CATEGORIES = ["performance", "accessibility", "best-practices", "seo"]

# Seconds.  Lighthouse runs are slow.
PAGESPEED_TIMEOUT = 30

DEFAULT_PERFORMANCE = {
    "performance_score": 78,
    "accessibility_score": 85,
    "best_practices_score": 92,
    "seo_score": 88,
    "first_contentful_paint": 1200,
    "largest_contentful_paint": 3100,
    "first_input_delay": 45,
    "cumulative_layout_shift": 0.08,
    "total_blocking_time": 120,
    "speed_index": 2800,
    "time_to_interactive": 2500,
    "load_time": 2.3,
    "time_to_first_byte": 450,
    "dom_content_loaded": 1800,
}


def default_performance():
    return dict(DEFAULT_PERFORMANCE)


def _audit_value(audits, name):
    audit = audits.get(name) or {}
    return audit.get("numericValue") or 0


def parse_lighthouse(data):
    """Map a runPagespeed response body to PerformanceInfo."""
    lighthouse = data["lighthouseResult"]
    categories = lighthouse["categories"]
    audits = lighthouse["audits"]

    def score(name):
        return round_half_up((categories[name].get("score") or 0) * 100)

    def ms(name):
        return round_half_up(_audit_value(audits, name))

    return {
        "performance_score": score("performance"),
        "accessibility_score": score("accessibility"),
        "best_practices_score": score("best-practices"),
        "seo_score": score("seo"),
        "first_contentful_paint": ms("first-contentful-paint"),
        "largest_contentful_paint": ms("largest-contentful-paint"),
        "first_input_delay": ms("max-potential-fid"),
        "cumulative_layout_shift": _audit_value(audits, "cumulative-layout-shift"),
        "total_blocking_time": ms("total-blocking-time"),
        "speed_index": ms("speed-index"),
        "time_to_interactive": ms("interactive"),
        "load_time": round(_audit_value(audits, "page-load-time") / 1000, 1),
        "time_to_first_byte": ms("server-response-time"),
        "dom_content_loaded": ms("dom-content-loaded"),
    }


def fetch_pagespeed(url, api_key=None, timeout=PAGESPEED_TIMEOUT):
    """
    Run PageSpeed Insights against url.

    Never raises: returns the default sample when no key is configured
    or the API call fails in any way.
    """
    api_key = (api_key
               or os.environ.get("PAGESPEED_API_KEY")
               or os.environ.get("NEXT_PUBLIC_PAGESPEED_API_KEY"))
    if not api_key:
        print("[!] No PageSpeed Insights API key found, using sample data.")
        return default_performance()

    params = [("url", url)]
    params += [("category", c) for c in PAGESPEED_CATEGORIES]
    params.append(("key", api_key))

    try:
        response = requests.get(
            PAGESPEED_API_URL,
            params=params,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        performance = parse_lighthouse(response.json())
    except Exception as e:
        print(f"[!] PageSpeed Insights failed for {url}: {e}")
        return default_performance()

    print(f"[*] PageSpeed performance score: {performance['performance_score']}")
    return performance
