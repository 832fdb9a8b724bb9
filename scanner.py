"""
scanner.py - Main marketing instrumentation scanner.

This script visits a website in a real browser, accepts its cookie banner,
and then works out which tag managers, tracking pixels and analytics
platforms it runs.  GTM containers are looked up on Tagstack for their
tags and consent settings, PageSpeed Insights supplies performance data,
and everything is reduced to four 0-100 scores (see scoring.py).

Usage:
    python scanner.py https://example.com https://other.com
    python scanner.py --file urls.txt
    python scanner.py https://example.com --json results.json
    python scanner.py                      (reads urls.txt by default)
"""

import argparse
import json
import multiprocessing
import os
import sys
import time
from collections import namedtuple
from datetime import datetime
from queue import Empty
from urllib.parse import urlparse

import requests
from playwright.sync_api import sync_playwright, TimeoutError as PlaywrightTimeout

import pagespeed
import tagstack
from cookie_consent import accept_cookies, read_cookies, read_data_layer
from errors import ExtractionError, InvalidInputError, SessionError
from gtm_scanner import scan_for_gtm
from json_ld_scanner import scan_json_ld
from pixel_scanner import PLATFORMS, merge_detected_ids, scan_for_pixels
from scoring import calculate_scores
from signatures import NETWORK_CAPTURE_SUBSTRINGS, PLATFORM_DISPLAY_NAMES

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

VIEWPORT = {"width": 1920, "height": 1080}

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# How long (ms) to wait for navigation and for readyState == "complete".
PAGE_LOAD_TIMEOUT = 30_000
READY_STATE_TIMEOUT = 30_000

# Let late scripts (tag managers, pixels) run after the load event (ms).
SETTLE_DELAY = 2000

# Seconds allowed for fetching a third-party script (Stape loaders).
SCRIPT_FETCH_TIMEOUT = 15

# Maximum time (seconds) for the ENTIRE scan of a single site.  Enforced
# by the caller, which kills the scan process.
MAX_SCAN_TIME = 120

_PAGE_INFO_JS = """
() => ({
    title: document.title,
    url: window.location.href,
    scripts: document.scripts.length,
    links: document.links.length,
    images: document.images.length,
})
"""


# ────────────────────────────────────────────────────────────────────
# URL HANDLING
# ────────────────────────────────────────────────────────────────────

def get_domain(url):
    """Extract the domain from a full URL."""
    return urlparse(url).netloc


def normalize_url(url):
    """Make sure the URL starts with http:// or https://."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        return "https://" + url
    return url


def validate_url(url):
    """Raise InvalidInputError unless url is an absolute http(s) URL."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("URL is required")
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        raise InvalidInputError(f"Invalid URL: {url!r} ({e})") from e
    if (parsed.scheme not in ("http", "https") or not parsed.hostname
            or any(c.isspace() for c in parsed.netloc)):
        raise InvalidInputError(f"Invalid URL: {url!r} (must be an absolute http or https URL)")
    return url.strip()


def load_urls_from_file(filepath):
    """
    Read URLs from a text file (one URL per line).

    Blank lines and lines starting with # are ignored.
    """
    urls = []
    with open(filepath, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


# ────────────────────────────────────────────────────────────────────
# BROWSER SESSION
# ────────────────────────────────────────────────────────────────────

class ScanSession:
    """
    One browser for one scan: Playwright, Chromium, a context and a page.

    Use as a context manager.  start() launches the browser; close() is
    safe to call more than once and releases everything that was
    started, in reverse order.
    """

    def __init__(self, viewport=None, user_agent=USER_AGENT):
        self.viewport = viewport or dict(VIEWPORT)
        self.user_agent = user_agent
        self.playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self.network_requests = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def start(self):
        self.playwright = sync_playwright().start()
        self.browser = self.playwright.chromium.launch(headless=True)
        self.context = self.browser.new_context(
            viewport=self.viewport,
            user_agent=self.user_agent,
        )
        self.page = self.context.new_page()
        self.page.on("request", self._on_request)

    def _on_request(self, request):
        url = request.url
        if any(s in url for s in NETWORK_CAPTURE_SUBSTRINGS):
            self.network_requests.append({
                "url": url,
                "method": request.method,
                "resource_type": request.resource_type,
                "timestamp": datetime.now().isoformat(),
            })

    def fetch_script(self, url):
        """Download a third-party script body with the scan's user agent."""
        response = requests.get(
            url,
            headers={"User-Agent": self.user_agent},
            timeout=SCRIPT_FETCH_TIMEOUT,
        )
        response.raise_for_status()
        return response.text

    def close(self):
        if self.closed:
            return
        self.closed = True
        for name, resource in (
            ("page", self.page),
            ("context", self.context),
            ("browser", self.browser),
        ):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                print(f"[!] Failed to close {name}: {e}")
        if self.playwright is not None:
            try:
                self.playwright.stop()
            except Exception as e:
                print(f"[!] Failed to stop Playwright: {e}")


# ────────────────────────────────────────────────────────────────────
# SCAN STAGES
#
# Each stage takes (session, result) and writes its fields into result.
# A critical stage failing ends the scan with success=False; any other
# stage failing only empties its own fields.
# ────────────────────────────────────────────────────────────────────

Stage = namedtuple("Stage", ["step", "name", "message", "critical", "run"])


def _initialize(session, result):
    try:
        session.start()
    except Exception as e:
        raise SessionError(f"Failed to launch browser: {e}") from e


def _navigate(session, result):
    try:
        response = session.page.goto(
            result["url"], timeout=PAGE_LOAD_TIMEOUT, wait_until="domcontentloaded"
        )
    except PlaywrightTimeout as e:
        raise SessionError(f"Page load timed out after {PAGE_LOAD_TIMEOUT // 1000}s") from e
    except Exception as e:
        raise SessionError(f"Failed to load page: {e}") from e

    if response is None:
        raise SessionError("Failed to load page: no response")
    if not 200 <= response.status < 300:
        raise SessionError(f"Failed to load page: HTTP {response.status}")
    print(f"[*] Page loaded: {result['url']} (HTTP {response.status})")


def _wait_for_load(session, result):
    page = session.page
    try:
        page.wait_for_function("document.readyState === 'complete'", timeout=READY_STATE_TIMEOUT)
    except PlaywrightTimeout as e:
        raise SessionError(f"Page did not finish loading within {READY_STATE_TIMEOUT // 1000}s") from e
    page.wait_for_timeout(SETTLE_DELAY)
    result["data_layer"] = read_data_layer(page)


def _accept_cookies(session, result):
    cookie_info = accept_cookies(session.page)
    result["cookie_info"] = cookie_info
    if cookie_info["accepted"]:
        result["consent_mode_v2"] = cookie_info["consent_mode_v2"]
    try:
        result["page_info"] = collect_page_info(session.page)
    except Exception as e:
        print(f"[!] Could not collect page info: {e}")


def _performance(session, result):
    result["performance"] = pagespeed.fetch_pagespeed(result["url"])


def _extract_tags(session, result):
    page = session.page
    try:
        html = page.content()
    except Exception as e:
        raise ExtractionError(f"Could not read page HTML: {e}") from e
    result["gtm_info"] = scan_for_gtm(
        html,
        base_url=result["url"],
        fetch_script=session.fetch_script,
        page_evaluate=page.evaluate,
    )
    result["pixel_info"] = scan_for_pixels(
        html,
        base_url=result["url"],
        page_evaluate=page.evaluate,
        network_requests=session.network_requests,
    )


def _enrich(session, result):
    containers = (result.get("gtm_info") or {}).get("containers") or []
    if not containers:
        print("[*] No GTM containers, skipping Tagstack enrichment.")
        return
    tagstack_info = tagstack.enrich(containers)
    result["tagstack_info"] = tagstack_info
    if not tagstack_info:
        return
    merge_detected_ids(result.get("pixel_info"), tagstack_info)
    if result["consent_mode_v2"] is None:
        result["consent_mode_v2"] = tagstack_info["consent_mode_v2"]
    if tagstack_info["server_side_tracking"]:
        result["server_side_tracking"] = True


def _json_ld(session, result):
    result["json_ld_info"] = scan_json_ld(session.page.evaluate)


STAGES = [
    Stage(1, "initialize", "Initializing browser...", True, _initialize),
    Stage(2, "navigate", "Navigating to website...", True, _navigate),
    Stage(3, "wait_for_load", "Waiting for page to load...", True, _wait_for_load),
    Stage(4, "accept_cookies", "Accepting cookies...", False, _accept_cookies),
    Stage(5, "performance", "Analyzing performance...", False, _performance),
    Stage(6, "extract_tags", "Detecting tags and pixels...", False, _extract_tags),
    Stage(7, "enrich", "Analyzing GTM containers...", False, _enrich),
    Stage(8, "json_ld", "Scanning for JSON-LD structured data...", False, _json_ld),
]

# Fields emptied when a best-effort stage fails.
_STAGE_FIELDS = {
    "accept_cookies": {"cookie_info": None, "page_info": None, "consent_mode_v2": None},
    "performance": {"performance": None},
    "extract_tags": {"gtm_info": None, "pixel_info": None},
    "enrich": {"tagstack_info": None},
    "json_ld": {"json_ld_info": None},
}


def collect_page_info(page):
    info = page.evaluate(_PAGE_INFO_JS)
    info["cookies"] = len(read_cookies(page))
    return info


def new_result(url):
    """An empty ScanResult for url with every step pending."""
    return {
        "url": url,
        "success": False,
        "error": None,
        "steps": [
            {"id": s.step, "name": s.name, "status": "pending", "message": s.message}
            for s in STAGES
        ],
        "page_info": None,
        "cookie_info": None,
        "consent_mode_v2": None,
        "performance": None,
        "gtm_info": None,
        "tagstack_info": None,
        "pixel_info": None,
        "json_ld_info": None,
        "data_layer": None,
        "network_requests": [],
        "server_side_tracking": False,
        "server_side_tracking_platforms": [],
        "scores": None,
    }


def _notify(progress_callback, step, message):
    if progress_callback is None:
        return
    try:
        progress_callback(step, message)
    except Exception as e:
        print(f"[!] Progress callback failed at step {step}: {e}")


def _finalize(result):
    platforms = (result.get("pixel_info") or {}).get("platforms") or {}
    found = [PLATFORM_DISPLAY_NAMES[p] for p in PLATFORMS
             if (platforms.get(p) or {}).get("found")]
    result["server_side_tracking_platforms"] = found
    if found:
        result["server_side_tracking"] = True
    result["scores"] = calculate_scores(result)


def run_scan(url, progress_callback=None):
    """
    Scan a single URL.

    Args:
        url:               Absolute http(s) URL.
        progress_callback: Optional function(step, message) called before
                           each stage.  Its errors are logged and ignored.

    Returns:
        A ScanResult dict.  A failed browser stage gives success=False
        and error set; the other stages only empty their own fields.

    Raises:
        InvalidInputError if url is not an absolute http(s) URL.
    """
    url = validate_url(url)
    result = new_result(url)

    print(f"\n{'=' * 60}")
    print(f"  SCANNING: {url}")
    print(f"{'=' * 60}")

    failed = False
    with ScanSession() as session:
        for stage in STAGES:
            step = result["steps"][stage.step - 1]
            if failed:
                step["status"] = "skipped"
                continue

            _notify(progress_callback, stage.step, stage.message)
            step["status"] = "running"
            try:
                stage.run(session, result)
            except Exception as e:
                step["status"] = "failed"
                step["message"] = str(e)
                if stage.critical:
                    print(f"[!!!] {stage.name} failed: {e}")
                    result["error"] = str(e)
                    failed = True
                else:
                    print(f"[!] {stage.name} failed, continuing: {e}")
                    result.update(_STAGE_FIELDS.get(stage.name, {}))
                continue
            step["status"] = "completed"

        result["network_requests"] = list(session.network_requests)

    if not failed:
        result["success"] = True
        _finalize(result)
    return result


# ────────────────────────────────────────────────────────────────────
# PROCESS ISOLATION
#
# Each scan runs in its own process with its own browser.  If a scan
# hangs, process.kill() sends SIGKILL which cannot be caught and takes
# Playwright and Chromium down with it.
# ────────────────────────────────────────────────────────────────────

def _error_result(url, message):
    result = new_result(url)
    result["error"] = message
    return result


def _scan_in_process(url, result_queue, status_queue=None):
    """Entry point for each scan subprocess."""
    start_time = time.time()

    def status_callback(step, message):
        if status_queue is None:
            return
        status_queue.put({
            "step": step,
            "total_steps": len(STAGES),
            "message": message,
            "elapsed": round(time.time() - start_time, 1),
        })

    try:
        result = run_scan(url, progress_callback=status_callback)
    except Exception as e:
        result = _error_result(url, str(e))
    result_queue.put(result)


def _drain(status_queue, on_status):
    while True:
        try:
            status = status_queue.get_nowait()
        except Empty:
            return
        if on_status is not None:
            on_status(status)


def run_in_process(url, on_status=None, max_scan_time=MAX_SCAN_TIME):
    """
    Run run_scan(url) in a child process, killing it after max_scan_time.

    on_status receives each progress update as a dict.  Returns
    (result, timed_out); result is None when the scan was killed.
    """
    result_queue = multiprocessing.Queue()
    status_queue = multiprocessing.Queue()
    proc = multiprocessing.Process(
        target=_scan_in_process,
        args=(url, result_queue, status_queue),
    )
    proc.start()
    start_time = time.time()

    result = None
    # The result is read while the child runs; a large result blocks the
    # child's exit until it is taken off the queue.
    while result is None:
        try:
            result = result_queue.get(timeout=0.2)
        except Empty:
            pass
        _drain(status_queue, on_status)
        if result is not None:
            break
        if time.time() - start_time > max_scan_time:
            print(f"\n[!!!] TIMEOUT ({max_scan_time}s) for {url}: killing scan process")
            proc.kill()
            proc.join()
            return None, True
        if not proc.is_alive():
            try:
                result = result_queue.get(timeout=1)
            except Empty:
                result = _error_result(url, "Scan process ended without returning results")

    proc.join()
    _drain(status_queue, on_status)
    return result, False


# ────────────────────────────────────────────────────────────────────
# REPORTING
# ────────────────────────────────────────────────────────────────────

def print_summary(result):
    """Print a human-readable summary of a single scan."""
    print(f"\n{'─' * 60}")
    print(f"  SUMMARY FOR: {result['url']}")
    print(f"{'─' * 60}")
    if not result.get("success"):
        print(f"  Scan failed: {result.get('error') or 'unknown error'}")
        print(f"{'─' * 60}\n")
        return

    cookie_info = result.get("cookie_info") or {}
    gtm_info = result.get("gtm_info") or {}
    pixel_info = result.get("pixel_info") or {}
    scores = result.get("scores") or {}

    print(f"  CMP                  : {cookie_info.get('provider') or 'none'} "
          f"({cookie_info.get('confidence') or '-'})")
    print(f"  Cookies accepted     : {cookie_info.get('accepted', False)}")
    print(f"  Cookies              : {cookie_info.get('cookie_count', 0)} on "
          f"{cookie_info.get('cookie_domains', 0)} domain(s)")
    print(f"  Consent Mode V2      : {result.get('consent_mode_v2')}")
    print(f"  GTM containers       : {gtm_info.get('containers') or []}")

    for channel in ("meta", "tiktok", "linkedin", "google_ads", "ga4"):
        info = pixel_info.get(channel)
        if info and info.get("found"):
            ids = info.get("pixel_ids") or info.get("conversion_ids") or info.get("measurement_ids") or []
            print(f"  {channel:20s} : {ids or 'found'}  [{', '.join(info.get('methods') or [])}]")

    platforms = result.get("server_side_tracking_platforms") or []
    print(f"  Server-side tracking : {result.get('server_side_tracking')} {platforms or ''}")

    json_ld_info = result.get("json_ld_info") or {}
    if json_ld_info.get("found"):
        print(f"  JSON-LD types        : {json_ld_info.get('types') or []}")

    if scores:
        print(f"\n  SCORES  performance={scores['performance']}  privacy={scores['privacy']}  "
              f"tracking={scores['tracking']}  compliance={scores['compliance']}  "
              f"overall={scores['overall']}")

    failed = [s["name"] for s in result.get("steps") or [] if s["status"] == "failed"]
    if failed:
        print(f"  Incomplete stages: {', '.join(failed)}")
    print(f"{'─' * 60}\n")


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

def main():
    # ── Parse command-line arguments ────────────────────────────────
    parser = argparse.ArgumentParser(
        description="Marketing instrumentation scanner: finds tag managers, "
                    "pixels and consent setup on websites and scores them."
    )
    parser.add_argument(
        "urls",
        nargs="*",
        help="One or more URLs to scan.",
    )
    parser.add_argument(
        "--file", "-f",
        default=None,
        help="Path to a text file containing URLs (one per line). "
             "Defaults to 'urls.txt' if no URLs are provided.",
    )
    parser.add_argument(
        "--json",
        default=None,
        help="Write all scan results to this JSON file.",
    )
    args = parser.parse_args()

    # Build the list of URLs to scan.
    urls = []
    if args.urls:
        urls = args.urls
    elif args.file:
        urls = load_urls_from_file(args.file)
    elif os.path.exists("urls.txt"):
        print("[*] No URLs provided, reading from urls.txt")
        urls = load_urls_from_file("urls.txt")

    if not urls:
        print("[!] No URLs to scan.")
        print("    Usage:  python scanner.py https://example.com")
        print("    Or:     python scanner.py --file urls.txt")
        sys.exit(1)

    print(f"\n[*] Marketing Instrumentation Scanner")
    print(f"[*] Scanning {len(urls)} URL(s)...\n")

    all_results = []
    for i, raw_url in enumerate(urls, start=1):
        print(f"\n[{i}/{len(urls)}] Starting scan...")
        url = normalize_url(raw_url)
        try:
            validate_url(url)
        except InvalidInputError as e:
            print(f"[!] Skipping {raw_url}: {e}")
            all_results.append(_error_result(raw_url, str(e)))
            continue

        result, timed_out = run_in_process(url)
        if timed_out:
            result = _error_result(url, f"Scan timed out after {MAX_SCAN_TIME}s")
            print(f"[*] Skipping to next URL...\n")
        print_summary(result)
        all_results.append(result)

    # ── Final report ────────────────────────────────────────────────
    print(f"\n{'=' * 60}")
    print(f"  SCAN COMPLETE: {len(all_results)} site(s) scanned")
    print(f"{'=' * 60}")

    succeeded = [r for r in all_results if r.get("success")]
    failed = [r for r in all_results if not r.get("success")]

    print(f"  Scanned successfully : {len(succeeded)}")
    for r in succeeded:
        overall = (r.get("scores") or {}).get("overall")
        print(f"    - {r['url']}  (overall {overall})")

    if failed:
        print(f"  Errors (scan failed) : {len(failed)}")
        for r in failed:
            print(f"    - {r['url']}: {r.get('error') or 'unknown'}")

    if args.json:
        with open(args.json, "w") as f:
            json.dump(all_results, f, indent=2)
        print(f"\nResults saved to: {args.json}")


if __name__ == "__main__":
    main()
