"""
gtm_scanner.py - Google Tag Manager container detection.

Finds GTM container ids in rendered HTML, in the live browser context,
and one hop away inside Stape loader scripts.  Network access and page
evaluation are passed in by the caller as plain functions:

    fetch_script(url)      -> script body (str)
    page_evaluate(js)      -> result of running `js` in the page
"""

from urllib.parse import urlparse

from signatures import (
    BARE_CONTAINER_ID,
    DATALAYER_PUSH_PATTERN,
    GTM_HTML_PATTERNS,
    GTM_ID_SHAPE,
    GTM_TOKEN_PATTERN,
    INLINE_SCRIPT_PATTERN,
    SHOP_ID_PATTERN,
    SHOPIFY_TAG_ID_PATTERN,
    STAPE_GTM_ID_PATTERN,
    STAPE_PIXEL_REF_PATTERN,
    STAPE_PIXEL_URL,
    STAPE_SCRIPT_SRC_PATTERN,
)

# Container ids registered on window.google_tag_manager plus any
# gtm.js script tags injected after load.
_BROWSER_GTM_JS = """
() => {
    const ids = [];
    if (window.google_tag_manager) {
        Object.keys(window.google_tag_manager).forEach(key => {
            if (/^GTM-[A-Z0-9]{6,}$/.test(key)) ids.push(key);
        });
    }
    document.querySelectorAll('script[src*="googletagmanager.com/gtm.js"]').forEach(s => {
        const m = s.src.match(/id=(GTM-[A-Z0-9]+)/);
        if (m) ids.push(m[1]);
    });
    return ids;
}
"""


def _add(containers, candidate):
    """Append candidate if it is a well-formed, unseen container id."""
    if candidate and GTM_ID_SHAPE.match(candidate) and candidate not in containers:
        containers.append(candidate)


def extract_gtm_containers(html):
    """
    Return GTM container ids found in raw HTML, in discovery order.

    Looks at gtm.js and ns.html URLs, bare GTM-XXXXXX tokens, Shopify's
    "google_tag_ids" web pixel config (GT-XXXX rewritten to GTM-XXXX),
    dataLayer.push(...) calls and inline <script> bodies.
    """
    containers = []
    if not html:
        return containers

    for pattern in GTM_HTML_PATTERNS:
        for match in pattern.finditer(html):
            _add(containers, match.group(1))

    shopify = SHOPIFY_TAG_ID_PATTERN.search(html)
    if shopify:
        _add(containers, "GTM-" + shopify.group(1))

    for match in DATALAYER_PUSH_PATTERN.finditer(html):
        for token in GTM_TOKEN_PATTERN.findall(match.group(1)):
            _add(containers, token)

    for match in INLINE_SCRIPT_PATTERN.finditer(html):
        for token in GTM_TOKEN_PATTERN.findall(match.group(1)):
            _add(containers, token)

    return containers


def _resolve_script_url(src, base_url):
    if src.startswith("//"):
        return "https:" + src
    if src.startswith(("http://", "https://")):
        return src
    parsed = urlparse(base_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if src.startswith("/"):
        return origin + src
    return origin + "/" + src


def find_stape_scripts(html, base_url):
    """
    Return absolute URLs of Stape loader scripts referenced by the page.

    Three sources: <script src> tags on stapecdn.com, script_pixel URLs
    mentioned anywhere in the markup, and a URL synthesised from a
    shop_id literal when the loader itself is injected later.
    """
    urls = []
    if not html:
        return urls

    for match in STAPE_SCRIPT_SRC_PATTERN.finditer(html):
        url = _resolve_script_url(match.group(1), base_url)
        if url not in urls:
            urls.append(url)

    for match in STAPE_PIXEL_REF_PATTERN.finditer(html):
        url = "https://sp." + match.group(0)
        if url not in urls:
            urls.append(url)

    shop_id = SHOP_ID_PATTERN.search(html)
    if shop_id:
        url = STAPE_PIXEL_URL.format(shop_id=shop_id.group(1))
        if url not in urls:
            urls.append(url)

    return urls


def extract_gtm_from_stape(script_content):
    """Pull container ids out of a Stape loader script body."""
    containers = []
    if not script_content:
        return containers

    declared = STAPE_GTM_ID_PATTERN.search(script_content)
    if declared:
        gtm_id = declared.group(1)
        if BARE_CONTAINER_ID.match(gtm_id):
            _add(containers, "GTM-" + gtm_id)
        elif gtm_id.startswith("GTM-"):
            _add(containers, gtm_id)

    for token in GTM_TOKEN_PATTERN.findall(script_content):
        _add(containers, token)

    return containers


def check_gtm_in_browser(page_evaluate):
    """Ask the live page which containers it has actually booted."""
    containers = []
    try:
        for candidate in page_evaluate(_BROWSER_GTM_JS) or []:
            _add(containers, candidate)
    except Exception as e:
        print(f"[!] Browser GTM check failed: {e}")
    return containers


def scan_for_gtm(html, base_url="", fetch_script=None, page_evaluate=None):
    """
    Scan a page for GTM containers.

    Args:
        html:          Rendered page HTML.
        base_url:      Page URL, used to resolve relative script paths.
        fetch_script:  Optional function(url) -> str.  Without it the
                       Stape hop is skipped.
        page_evaluate: Optional function(js) -> value for the runtime check.

    Returns:
        {"found": bool, "containers": [ids], "count": int}
    """
    containers = extract_gtm_containers(html)

    if page_evaluate is not None:
        for candidate in check_gtm_in_browser(page_evaluate):
            _add(containers, candidate)

    if base_url and fetch_script is not None:
        for script_url in find_stape_scripts(html, base_url):
            try:
                body = fetch_script(script_url)
            except Exception as e:
                print(f"[!] Failed to fetch Stape script {script_url}: {e}")
                continue
            for candidate in extract_gtm_from_stape(body):
                _add(containers, candidate)

    if containers:
        print(f"[*] GTM containers: {', '.join(containers)}")
    else:
        print("[*] No GTM containers found.")

    return {
        "found": bool(containers),
        "containers": containers,
        "count": len(containers),
    }
