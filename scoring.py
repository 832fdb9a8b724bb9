"""
scoring.py - Turn a finished scan into 0-100 scores.

Four category scores are computed from scratch on every call:

  performance  PageSpeed performance score as-is
  privacy      CMP quality, Consent Mode, cookie disclosure and volume
  tracking     analytics platforms / GTM, Consent Mode, server-side
               tracking, GA4 and pixel coverage
  compliance   Consent Mode, CMP quality and transparency, server-side
               tracking, Tagstack consent signals

Each is clamped to [0, 100]; overall is the rounded mean of the four.
Pure functions, no I/O.
"""

import math

from pixel_scanner import PIXEL_CHANNELS, PLATFORMS

# Tracking points by number of analytics platforms found.
PLATFORM_POINTS = {1: 25, 2: 30, 3: 35}

# Tracking points by number of pixel channels found (no platforms).
PIXEL_COVERAGE_POINTS = {1: 5, 2: 10, 3: 15, 4: 20}


def round_half_up(value):
    """Round .5 away from zero for positives, like JavaScript Math.round."""
    return int(math.floor(value + 0.5))


def clamp(value, low=0, high=100):
    return max(low, min(high, value))


def _found(section):
    return bool(section and section.get("found"))


def _cmp(result):
    """(confidence, provider) of the detected consent platform."""
    cookie_info = result.get("cookie_info") or {}
    return cookie_info.get("confidence"), cookie_info.get("provider")


def performance_score(result):
    performance = result.get("performance") or {}
    return performance.get("performance_score") or 0


def privacy_score(result):
    cookie_info = result.get("cookie_info") or {}
    confidence, provider = _cmp(result)
    score = 0

    # CMP quality
    if confidence == "high":
        score += 30
    elif confidence == "low" or provider:
        score += 15

    # Consent Mode V2
    score += 25 if result.get("consent_mode_v2") else -10

    # Cookie disclosure
    count = cookie_info.get("cookie_count") or 0
    if count > 0:
        score += 10
    if cookie_info.get("cookie_keys"):
        score += 5
    domains = cookie_info.get("cookie_domains") or 0
    if domains > 1:
        score += 5 if domains <= 3 else -5

    # User control
    if cookie_info.get("accepted") and provider:
        score += 15 if confidence == "high" else 5

    # Data minimisation
    if 1 <= count <= 10:
        score += 10
    elif 11 <= count <= 20:
        score += 5
    elif count > 50:
        score -= 10

    return clamp(score)


def _tag_quality(result):
    """Up to +5 for active tags in the primary container, less paused ones."""
    tagstack = result.get("tagstack_info")
    gtm = result.get("gtm_info") or {}
    containers = gtm.get("containers") or []
    if not tagstack or not containers:
        return 0
    stats = (tagstack.get("container_stats") or {}).get(containers[0])
    if not stats:
        return 0

    tags = stats.get("tags") or 0
    active = stats.get("active_tags") or 0
    paused = stats.get("paused_tags") or 0
    bonus = 0
    if tags > 0 and active > 0:
        bonus = min(5, round_half_up(active / tags * 5))
    if tags > 0 and paused > 0:
        bonus -= min(bonus, round_half_up(paused / tags * 5))
    return bonus


def tracking_score(result):
    pixel_info = result.get("pixel_info") or {}
    platforms = pixel_info.get("platforms") or {}
    platform_count = sum(1 for p in PLATFORMS if _found(platforms.get(p)))
    score = 0

    if platform_count:
        score += PLATFORM_POINTS[platform_count]
    elif _found(result.get("gtm_info")):
        score += 25 + _tag_quality(result)

    consent_mode = result.get("consent_mode_v2")
    if consent_mode is None:
        consent_mode = (result.get("tagstack_info") or {}).get("consent_mode_v2")
    if consent_mode:
        score += 25

    if result.get("server_side_tracking") and platform_count == 0:
        score += 15

    if platform_count > 0 or _found(pixel_info.get("ga4")):
        score += 10

    if platform_count > 0:
        score += 20
    else:
        pixels = sum(1 for c in PIXEL_CHANNELS if _found(pixel_info.get(c)))
        score += PIXEL_COVERAGE_POINTS.get(pixels, 0)

    return clamp(score)


def compliance_score(result):
    cookie_info = result.get("cookie_info") or {}
    tagstack = result.get("tagstack_info") or {}
    confidence, provider = _cmp(result)
    consent_mode = result.get("consent_mode_v2")
    score = 0

    # Legal framework
    score += 20 if consent_mode else -15
    if confidence == "high":
        score += 20
    elif confidence == "low" or provider:
        score += 10
    else:
        score -= 20

    # Consent quality
    if confidence == "high":
        score += 30
    elif confidence == "low":
        score += 15
    elif cookie_info.get("accepted") and not provider:
        score += 5
    else:
        score -= 20

    # Transparency
    if confidence == "high":
        score += 20
    elif provider:
        score += 10

    if result.get("server_side_tracking"):
        score += 10

    if tagstack.get("consent_mode_v2") and not consent_mode:
        score += 5

    defaults = tagstack.get("consent_defaults")
    if isinstance(defaults, dict):
        denied = sum(1 for v in defaults.values() if v == "denied")
        if denied >= 4:
            score += 5

    return clamp(score)


def calculate_scores(result):
    """
    Score a scan result dict.

    Returns {"performance", "privacy", "tracking", "compliance",
    "overall"} or None when there is no result.
    """
    if not result:
        return None

    scores = {
        "performance": clamp(round_half_up(performance_score(result))),
        "privacy": privacy_score(result),
        "tracking": tracking_score(result),
        "compliance": compliance_score(result),
    }
    mean = sum(scores.values()) / 4
    scores["overall"] = clamp(round_half_up(mean))
    return scores
