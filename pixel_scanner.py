"""
pixel_scanner.py - Marketing pixel and analytics platform detection.

Detects Meta Pixel, TikTok Pixel, LinkedIn Insight Tag and Google Ads
conversion ids, plus the Reaktion, Profitmetrics and Triplewhale
platforms.  Evidence comes from three places:

  1. regexes over the rendered HTML
  2. captured network requests (platforms only)
  3. live JS globals read through page_evaluate (optional)

Every channel keeps its ids in discovery order; the first one is the
primary id.  Nothing in here raises: a failing evaluator only loses the
runtime evidence.
"""

from signatures import (
    AW_ID_PATTERN,
    GOOGLE_ADS_COOKIE_PATTERN,
    PIXEL_PATTERNS,
    PLATFORM_NETWORK_SIGNATURES,
    PLATFORM_PATTERNS,
)

PIXEL_CHANNELS = ["meta", "tiktok", "linkedin", "google_ads"]
PLATFORMS = ["reaktion", "profitmetrics", "triplewhale"]

# Channel -> (ids key, primary key).  Google Ads tracks conversion ids.
_ID_KEYS = {
    "meta": ("pixel_ids", "pixel_id"),
    "tiktok": ("pixel_ids", "pixel_id"),
    "linkedin": ("pixel_ids", "pixel_id"),
    "google_ads": ("conversion_ids", "conversion_id"),
    "ga4": ("measurement_ids", "measurement_id"),
}

# Provenance tags for ids read from live globals.
_RUNTIME_METHODS = {
    "meta": "network-window-fbq",
    "tiktok": "network-window-ttq",
    "linkedin": "network-window-linkedin",
    "google_ads": "network-window-gtag",
}

# Enrichment channel name -> pixel channel.
_DETECTED_ID_CHANNELS = {
    "facebook_pixel": "meta",
    "tiktok_pixel": "tiktok",
    "linkedin_pixel": "linkedin",
    "google_ads": "google_ads",
    "ga4": "ga4",
}

_RUNTIME_PIXELS_JS = """
() => {
    const detected = {
        meta: [], tiktok: [], linkedin: [], google_ads: [],
        platforms: {reaktion: false, profitmetrics: false, triplewhale: false}
    };
    const dl = Array.isArray(window.dataLayer) ? window.dataLayer : [];
    try {
        if (window.fbq && Array.isArray(window.fbq.queue)) {
            window.fbq.queue.forEach(item => {
                if (Array.isArray(item) && item[0] === 'init' && /^\\d+$/.test(String(item[1]))) {
                    detected.meta.push(String(item[1]));
                }
            });
        }
    } catch (e) {}
    try {
        if (window.ttq && window.ttq.instance && window.ttq.instance.pixelId) {
            detected.tiktok.push(String(window.ttq.instance.pixelId));
        }
    } catch (e) {}
    if (typeof window._linkedin_partner_id !== 'undefined') {
        detected.linkedin.push(String(window._linkedin_partner_id));
    }
    if (typeof window.gtag !== 'undefined') {
        dl.forEach(item => {
            if (item && typeof item === 'object') {
                Object.values(item).forEach(value => {
                    if (typeof value === 'string' && value.startsWith('AW-')) {
                        detected.google_ads.push(value);
                    }
                });
            }
        });
    }
    const inDataLayer = (...keys) => dl.some(item => item && keys.some(k => item[k]));
    detected.platforms.reaktion = typeof window.reaktion !== 'undefined' || inDataLayer('reaktion');
    detected.platforms.profitmetrics = typeof window.profitmetrics !== 'undefined' || inDataLayer('profitmetrics');
    detected.platforms.triplewhale = typeof window.triplewhale !== 'undefined'
        || typeof window.Triplewhale !== 'undefined' || inDataLayer('triplewhale', 'Triplewhale');
    return detected;
}
"""


def empty_pixel_info():
    """Return a PixelInfo dict with nothing detected."""
    info = {}
    for channel in PIXEL_CHANNELS:
        ids_key, primary_key = _ID_KEYS[channel]
        info[channel] = {"found": False, ids_key: [], primary_key: None, "methods": []}
    info["platforms"] = {name: {"found": False, "methods": []} for name in PLATFORMS}
    return info


def _record(channel_info, channel, pixel_id, method):
    """Add a distinct id to a channel and keep found/primary in sync."""
    ids_key, primary_key = _ID_KEYS[channel]
    if not pixel_id or pixel_id in channel_info[ids_key]:
        return False
    channel_info[ids_key].append(pixel_id)
    channel_info["found"] = True
    channel_info["methods"].append(method)
    if channel_info[primary_key] is None:
        channel_info[primary_key] = channel_info[ids_key][0]
    return True


def _flag_platform(platform_info, method):
    if not platform_info["found"]:
        platform_info["found"] = True
        platform_info["methods"].append(method)


def _scan_html(info, html):
    for channel in PIXEL_CHANNELS:
        for method, pattern in PIXEL_PATTERNS[channel]:
            for match in pattern.finditer(html):
                for pixel_id in match.groups():
                    _record(info[channel], channel, pixel_id, method)

    # _gcl_* cookies prove Google Ads is present but carry no usable id.
    ads = info["google_ads"]
    if not ads["found"] and GOOGLE_ADS_COOKIE_PATTERN.search(html):
        ads["found"] = True
        ads["methods"].append("googleads-cookie")

    for platform in PLATFORMS:
        if any(p.search(html) for p in PLATFORM_PATTERNS[platform]):
            _flag_platform(info["platforms"][platform], "script-pattern")


def _scan_network(info, network_requests):
    for request in network_requests or []:
        url = (request.get("url") or "").lower()
        for platform, signature in PLATFORM_NETWORK_SIGNATURES.items():
            if signature in url:
                _flag_platform(info["platforms"][platform], "network-request")


def _scan_runtime(info, page_evaluate):
    try:
        detected = page_evaluate(_RUNTIME_PIXELS_JS) or {}
    except Exception as e:
        print(f"[!] Runtime pixel detection failed: {e}")
        return

    for channel in PIXEL_CHANNELS:
        for value in detected.get(channel) or []:
            value = str(value)
            if channel == "google_ads":
                match = AW_ID_PATTERN.search(value)
                value = match.group(0) if match else None
            _record(info[channel], channel, value, _RUNTIME_METHODS[channel])

    for platform, present in (detected.get("platforms") or {}).items():
        if present and platform in info["platforms"]:
            _flag_platform(info["platforms"][platform], "network-window-object")


def scan_for_pixels(html, base_url="", page_evaluate=None, network_requests=None):
    """
    Detect marketing pixels and analytics platforms on a page.

    Args:
        html:             Rendered page HTML.
        base_url:         Page URL (kept for log lines).
        page_evaluate:    Optional function(js) -> value for live globals.
        network_requests: Captured requests as dicts with a "url" key.

    Returns:
        A PixelInfo dict, see empty_pixel_info().
    """
    info = empty_pixel_info()
    html = html or ""

    _scan_html(info, html)
    _scan_network(info, network_requests)
    if page_evaluate is not None:
        _scan_runtime(info, page_evaluate)

    found = [c for c in PIXEL_CHANNELS if info[c]["found"]]
    platforms = [p for p in PLATFORMS if info["platforms"][p]["found"]]
    print(f"[*] Pixels on {base_url or 'page'}: {found or 'none'}; "
          f"platforms: {platforms or 'none'}")
    return info


def _is_meta_tag(tag):
    name = str(tag.get("name") or "").lower()
    tag_type = str(tag.get("type") or "").lower()
    template = str(tag.get("templateId") or "").lower()
    if any(word in field for word in ("facebook", "meta") for field in (name, tag_type, template)):
        return True
    for param in tag.get("parameters") or []:
        key = str(param.get("key") or "").lower()
        if "facebook" in key or "meta" in key:
            return True
        if "connect.facebook.net" in str(param.get("parameterValue") or ""):
            return True
    return False


def merge_detected_ids(pixel_info, tagstack_info):
    """
    Fold ids found by Tagstack container analysis into pixel_info.

    Page-detected ids keep their position; Tagstack ids are appended
    with the "tagstack-detection" method and become primary only when
    the page had none.  A Meta tag inside GTM without a readable pixel
    id still marks Meta as found ("gtm-tag-detection").

    Mutates and returns pixel_info.
    """
    if pixel_info is None or not tagstack_info:
        return pixel_info

    detected_ids = tagstack_info.get("detected_ids") or {}
    for source, channel in _DETECTED_ID_CHANNELS.items():
        ids = detected_ids.get(source) or []
        if not ids:
            continue
        ids_key, primary_key = _ID_KEYS[channel]
        channel_info = pixel_info.setdefault(
            channel, {"found": False, ids_key: [], primary_key: None, "methods": []}
        )
        for pixel_id in ids:
            if pixel_id not in channel_info[ids_key]:
                channel_info[ids_key].append(pixel_id)
        channel_info["found"] = True
        channel_info["methods"].append("tagstack-detection")
        if channel_info[primary_key] is None:
            channel_info[primary_key] = ids[0]

    meta = pixel_info.get("meta")
    if meta is not None and not meta["found"]:
        meta_tags = [t for t in tagstack_info.get("tags") or [] if _is_meta_tag(t)]
        if meta_tags:
            names = []
            for tag in meta_tags:
                label = tag.get("name") or tag.get("type") or "Unknown"
                if label not in names:
                    names.append(label)
            meta["found"] = True
            meta["methods"].append("gtm-tag-detection")
            meta["detected_via_gtm"] = True
            meta["gtm_tag_names"] = names

    return pixel_info
