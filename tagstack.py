"""
tagstack.py - Tagstack GTM container analysis.

Tagstack (https://tagstack.io) expands a bare GTM container id into the
container's tags, triggers, variables, consent settings and linked GA4
streams.  This module fetches that analysis for every container found
on a page, in parallel, and normalises it into TagstackInfo:

    {
      "gtm_containers":  [{id, entity_type, cmp, consent_mode, consent_default,
                           ga4_server_side}],
      "ga4_streams":     [{id, entity_type, ga4_server_side}],
      "consent_mode_v2": bool,
      "cmp":             str | None,
      "consent_defaults": dict | None,
      "server_side_tracking": bool,
      "detected_ids":    {ga4, facebook_pixel, google_ads, tiktok_pixel,
                          linkedin_pixel: [ids]},
      "container_stats": {container_id: {tags, active_tags, paused_tags,
                                         variables, triggers}},
      "tags":            [tag dicts with container_id],
    }

The API key is read from the TAGSTACK_API_KEY environment variable.
"""

import json
import os
import re
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor

import requests

from errors import EnrichmentError

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

TAGSTACK_API_URL = "https://service.tagstack.io/api/scan"

# Seconds before a single container lookup is abandoned.
TAGSTACK_TIMEOUT = 30

# ────────────────────────────────────────────────────────────────────
# RESPONSE ENVELOPE
#
# The API wraps its data in {"success": ..., "message": ...}.  message
# is usually the container map JSON-encoded as a string, sometimes the
# map itself.  A string payload that fails to decode falls back to the
# envelope's own "containers" field.
# ────────────────────────────────────────────────────────────────────

ObjectPayload = namedtuple("ObjectPayload", ["containers"])
StringPayload = namedtuple("StringPayload", ["text", "fallback"])


def classify_envelope(result):
    """Wrap the envelope's payload in ObjectPayload or StringPayload."""
    if not isinstance(result, dict):
        return ObjectPayload({})
    fallback = result.get("containers")
    message = result.get("message")
    if isinstance(message, str) and message:
        return StringPayload(message, fallback)
    if isinstance(message, dict):
        return ObjectPayload(message)
    return ObjectPayload(fallback)


def parse_envelope(result):
    """
    Return the container map carried by a Tagstack response.

    Never raises; anything malformed resolves to {}.
    """
    payload = classify_envelope(result)
    if isinstance(payload, StringPayload):
        try:
            containers = json.loads(payload.text)
        except ValueError:
            containers = payload.fallback
    else:
        containers = payload.containers
    return containers if isinstance(containers, dict) else {}


# ────────────────────────────────────────────────────────────────────
# API CALLS
# ────────────────────────────────────────────────────────────────────

def request_tagstack(container_id, api_key=None, timeout=TAGSTACK_TIMEOUT):
    """
    Call the Tagstack scan API for one container id.

    Returns the raw response envelope.  Raises EnrichmentError on a
    missing key, HTTP error, bad JSON or an unsuccessful envelope.
    """
    api_key = api_key or os.environ.get("TAGSTACK_API_KEY")
    if not api_key:
        raise EnrichmentError("TAGSTACK_API_KEY not configured")
    if not container_id:
        raise EnrichmentError("Container ID is required")

    try:
        response = requests.get(
            TAGSTACK_API_URL,
            params={"url": container_id},
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise EnrichmentError(f"Tagstack request failed for {container_id}: {e}") from e

    if response.status_code == 431:
        raise EnrichmentError(
            "Tagstack returned HTTP 431 (request header fields too large); "
            "check the API key format"
        )
    if not 200 <= response.status_code < 300:
        raise EnrichmentError(
            f"Tagstack API returned {response.status_code}: {response.reason}"
        )

    try:
        result = response.json()
    except ValueError as e:
        raise EnrichmentError(f"Failed to parse Tagstack response: {e}") from e

    if not isinstance(result, dict) or not result.get("success"):
        message = result.get("message") if isinstance(result, dict) else None
        raise EnrichmentError(message or "Tagstack API request failed")

    return result


def fetch_tagstack_data(container_id, api_key=None, timeout=TAGSTACK_TIMEOUT):
    """Return the container map (container/stream id -> data) for one id."""
    return parse_envelope(request_tagstack(container_id, api_key=api_key, timeout=timeout))


# ────────────────────────────────────────────────────────────────────
# NORMALISATION
# ────────────────────────────────────────────────────────────────────

_AW_ID = re.compile(r"AW-[A-Z0-9]+")
_DIGITS = re.compile(r"^\d+$")


def _empty_detected_ids():
    return {
        "ga4": [],
        "facebook_pixel": [],
        "google_ads": [],
        "tiktok_pixel": [],
        "linkedin_pixel": [],
    }


def _param_candidates(tag, *keys):
    """String values of the first matching parameter keys, in key order."""
    candidates = []
    parameters = tag.get("parameters") or []
    for key in keys:
        for param in parameters:
            if not isinstance(param, dict) or param.get("key") != key:
                continue
            value = param.get("parameterValue")
            if isinstance(value, list):
                candidates.extend(v for v in value if isinstance(v, str))
            elif isinstance(value, (str, int)):
                candidates.append(str(value))
    return candidates


def _append(ids, value):
    if value and value not in ids:
        ids.append(value)


def _extract_tag_ids(tag, detected_ids):
    name = str(tag.get("name") or "")
    tag_type = str(tag.get("type") or "")
    template = str(tag.get("templateId") or "")
    lowered = (name.lower(), tag_type.lower(), template.lower())

    if tag_type == "gaawe" or "Google Analytics 4" in name or "GA4" in name:
        for value in _param_candidates(tag, "vtp_measurementIdOverride", "measurementId"):
            if value.startswith("G-"):
                _append(detected_ids["ga4"], value)
                break

    if tag_type in ("awct", "googtag") or "Google Ads" in name:
        for value in _param_candidates(tag, "vtp_tagId", "tagId"):
            match = _AW_ID.search(value)
            if match:
                _append(detected_ids["google_ads"], match.group(0))
                break

    if any("facebook" in f or "meta" in f for f in lowered):
        for value in _param_candidates(tag, "pixelId", "id", "pixel_id"):
            if _DIGITS.match(value):
                _append(detected_ids["facebook_pixel"], value)
                break

    if "TikTok" in name or "tiktok" in tag_type:
        for value in _param_candidates(tag, "pixelId", "id"):
            if _DIGITS.match(value):
                _append(detected_ids["tiktok_pixel"], value)
                break

    if "LinkedIn" in name or "linkedin" in tag_type:
        for value in _param_candidates(tag, "partnerId", "pid", "id"):
            if _DIGITS.match(value):
                _append(detected_ids["linkedin_pixel"], value)
                break


def _is_server_side_tag(tag):
    name = str(tag.get("name") or "").lower()
    tag_type = str(tag.get("type") or "")
    return (tag_type == "sgtm" or "server" in tag_type
            or "server-side" in name or "server side" in name)


def container_stats(tags, variables, triggers):
    """Count tags by paused state.  Only paused=True counts as paused."""
    tags = [t for t in tags or [] if isinstance(t, dict)]
    paused = sum(1 for t in tags if t.get("paused") is True)
    return {
        "tags": len(tags),
        "active_tags": len(tags) - paused,
        "paused_tags": paused,
        "variables": len(variables or []),
        "triggers": len(triggers or []),
    }


def process_tagstack_data(containers):
    """
    Normalise a merged Tagstack container map into TagstackInfo.

    "GTM Container" entries contribute consent mode, CMP, consent
    defaults, tag statistics and vendor ids found in tag parameters.
    "GA4 Stream" entries contribute their own id as a GA4 id.  Server
    side tracking is flagged by ga4ServerSide, a server container URL or
    name, a measurement protocol secret, or a server-type tag.
    """
    info = {
        "gtm_containers": [],
        "ga4_streams": [],
        "consent_mode_v2": False,
        "cmp": None,
        "consent_defaults": None,
        "server_side_tracking": False,
        "detected_ids": _empty_detected_ids(),
        "container_stats": {},
        "tags": [],
    }

    for container_id, data in (containers or {}).items():
        if not isinstance(data, dict):
            continue

        if data.get("ga4ServerSide") is True:
            info["server_side_tracking"] = True

        entity_type = data.get("entityType")
        if entity_type == "GTM Container":
            tags = [t for t in data.get("tags") or [] if isinstance(t, dict)]
            info["gtm_containers"].append({
                "id": container_id,
                "entity_type": entity_type,
                "cmp": data.get("cmp"),
                "consent_mode": data.get("consentMode"),
                "consent_default": data.get("consentDefault"),
                "ga4_server_side": data.get("ga4ServerSide"),
            })
            if data.get("consentMode") is True:
                info["consent_mode_v2"] = True
            if data.get("cmp") is not None:
                info["cmp"] = data["cmp"]
            if data.get("consentDefault"):
                info["consent_defaults"] = data["consentDefault"]

            info["container_stats"][container_id] = container_stats(
                tags, data.get("variables"), data.get("triggers")
            )
            for tag in tags:
                info["tags"].append(dict(tag, container_id=container_id))
                _extract_tag_ids(tag, info["detected_ids"])

            if data.get("serverContainerUrl") or data.get("serverContainerName"):
                info["server_side_tracking"] = True
            if any(_is_server_side_tag(t) for t in tags):
                info["server_side_tracking"] = True

        elif entity_type == "GA4 Stream":
            info["ga4_streams"].append({
                "id": container_id,
                "entity_type": entity_type,
                "ga4_server_side": data.get("ga4ServerSide"),
            })
            _append(info["detected_ids"]["ga4"], container_id)
            if data.get("measurementProtocolSecret") or data.get("serverContainerUrl"):
                info["server_side_tracking"] = True

    return info


def enrich(container_ids, api_key=None):
    """
    Look up every container id in parallel and normalise the results.

    Failed lookups are logged and dropped.  Returns None when there is
    nothing to look up or every lookup failed; never raises.
    """
    container_ids = [c for c in container_ids or [] if c]
    if not container_ids:
        return None

    def lookup(container_id):
        try:
            return fetch_tagstack_data(container_id, api_key=api_key)
        except EnrichmentError as e:
            print(f"[!] Tagstack lookup failed for {container_id}: {e}")
        except Exception as e:
            print(f"[!] Unexpected Tagstack error for {container_id}: {e}")
        return None

    with ThreadPoolExecutor(max_workers=len(container_ids)) as pool:
        results = list(pool.map(lookup, container_ids))

    successful = [r for r in results if r is not None]
    if not successful:
        print("[!] No successful Tagstack results.")
        return None

    merged = {}
    for containers in successful:
        merged.update(containers)

    try:
        info = process_tagstack_data(merged)
    except Exception as e:
        print(f"[!] Failed to process Tagstack data: {e}")
        return None

    print(f"[*] Tagstack: {len(info['gtm_containers'])} GTM container(s), "
          f"{len(info['ga4_streams'])} GA4 stream(s), "
          f"consent mode={info['consent_mode_v2']}, "
          f"server-side={info['server_side_tracking']}")
    return info
