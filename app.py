"""
app.py - Flask web server for the marketing instrumentation scanner.

Wraps scanner.py in a JSON API.  Scans run in a separate process with a
hard kill timeout; streamed scans report real-time progress via
Server-Sent Events (SSE).  The PageSpeed and Tagstack collaborators and
the scoring engine are exposed on their own for clients that only need
one piece.

Run:  python app.py
API:  http://localhost:8080/api/scan
"""

import json
import threading
import uuid
from queue import Queue, Empty

from flask import Flask, request, jsonify, Response

import pagespeed
import scanner
import tagstack
from errors import EnrichmentError, InvalidInputError
from scoring import calculate_scores

MAX_SCAN_TIME = scanner.MAX_SCAN_TIME

# Finished scans stay available for this many seconds.
RESULT_RETENTION = 600

# Seconds between SSE keepalives while a scan is quiet.
STREAM_POLL_INTERVAL = 120

app = Flask(__name__)

# ────────────────────────────────────────────────────────────────────
# In-memory store for active / recent scans.
# Key: scan_id  Value: { queue, thread, result, error, done }
# ────────────────────────────────────────────────────────────────────
active_scans = {}


def _error(message, status):
    return jsonify({"success": False, "message": message}), status


def _validated_url(data):
    """Normalise and validate the "url" field; raises InvalidInputError."""
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("URL is required")
    return scanner.validate_url(scanner.normalize_url(url))


def _schedule_cleanup(scan_id):
    """Drop a finished scan after RESULT_RETENTION, streamed or polled."""
    timer = threading.Timer(RESULT_RETENTION, active_scans.pop, args=(scan_id, None))
    timer.daemon = True
    timer.start()


def _start_streamed_scan(url):
    scan_id = str(uuid.uuid4())
    q = Queue()

    active_scans[scan_id] = {
        "queue": q,
        "result": None,
        "error": None,
        "done": False,
    }

    def relay_scan():
        """Background thread: runs the scan process and relays its progress."""
        try:
            result, timed_out = scanner.run_in_process(
                url, on_status=lambda status: q.put({"event": "status", "data": status})
            )
            if timed_out:
                message = f"Scan timed out after {MAX_SCAN_TIME}s"
                active_scans[scan_id]["error"] = message
                q.put({"event": "scan_error", "data": {"message": message}})
                return

            active_scans[scan_id]["result"] = result
            if result.get("success"):
                q.put({"event": "complete", "data": result})
            else:
                active_scans[scan_id]["error"] = result.get("error") or "Scan failed"
                q.put({"event": "scan_error", "data": {"message": active_scans[scan_id]["error"]}})

        except Exception as e:
            active_scans[scan_id]["error"] = str(e)
            q.put({"event": "scan_error", "data": {"message": str(e)}})

        finally:
            active_scans[scan_id]["done"] = True
            q.put(None)  # sentinel, ends the SSE stream
            _schedule_cleanup(scan_id)

    thread = threading.Thread(target=relay_scan, daemon=True)
    thread.start()
    active_scans[scan_id]["thread"] = thread
    return scan_id


# ────────────────────────────────────────────────────────────────────
# ROUTES
# ────────────────────────────────────────────────────────────────────

@app.route("/api/scan", methods=["POST"])
def start_scan():
    """
    Scan a website.

    Expects JSON: {"url": "example.com", "stream": false}
    Returns JSON: {"success": true, "data": ScanResult}, or with
    "stream": true, {"scan_id": "..."} to follow on the SSE endpoint.
    """
    data = request.get_json(silent=True) or {}
    try:
        url = _validated_url(data)
    except InvalidInputError as e:
        return _error(str(e), 400)

    if data.get("stream"):
        return jsonify({"scan_id": _start_streamed_scan(url)})

    print(f"[*] Starting scan for {url}")
    try:
        result, timed_out = scanner.run_in_process(url)
    except Exception as e:
        print(f"[!!!] Scan process failed for {url}: {e}")
        return _error(f"Scan failed: {e}", 500)

    if timed_out:
        return _error(f"Scan timed out after {MAX_SCAN_TIME}s", 504)
    if not result.get("success"):
        return _error(result.get("error") or "Scan failed", 500)
    return jsonify({"success": True, "data": result})


@app.route("/api/scan/<scan_id>/stream")
def scan_stream(scan_id):
    """
    SSE endpoint, streams real-time progress events for a scan.

    Event types:
      status     progress update (step N of 8)
      complete   final results payload
      scan_error scan failed
      done       terminal event, close the stream
    """
    if scan_id not in active_scans:
        return jsonify({"error": "Scan not found"}), 404

    scan = active_scans[scan_id]
    done_event = f"event: done\ndata: {json.dumps({'status': 'finished'})}\n\n"

    def generate():
        q = scan["queue"]
        while True:
            # A finished scan whose sentinel went to an earlier stream.
            if scan["done"] and q.empty():
                yield done_event
                break
            try:
                msg = q.get(timeout=STREAM_POLL_INTERVAL)
                if msg is None:
                    yield done_event
                    break
                event_type = msg.get("event", "status")
                data = msg.get("data", {})
                yield f"event: {event_type}\ndata: {json.dumps(data)}\n\n"
            except Empty:
                # Keepalive to prevent proxy/browser timeout.
                yield ": keepalive\n\n"

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@app.route("/api/scan/<scan_id>/result")
def scan_result(scan_id):
    """Get the final result of a streamed scan as JSON."""
    scan = active_scans.get(scan_id)
    if scan is None:
        return jsonify({"error": "Scan not found"}), 404
    if not scan["done"]:
        return jsonify({"status": "in_progress"}), 202
    if scan["error"] and not scan["result"]:
        return _error(scan["error"], 500)
    return jsonify({"success": bool(scan["result"].get("success")), "data": scan["result"]})


@app.route("/api/pagespeed", methods=["POST"])
def run_pagespeed():
    """
    PageSpeed Insights for one URL.

    Expects JSON: {"url": "https://example.com"}
    Falls back to sample data when no API key is configured.
    """
    data = request.get_json(silent=True) or {}
    try:
        url = _validated_url(data)
    except InvalidInputError as e:
        return _error(str(e), 400)
    return jsonify({"success": True, "data": pagespeed.fetch_pagespeed(url)})


@app.route("/api/tagstack")
def run_tagstack():
    """Raw Tagstack analysis for ?containerId=GTM-XXXXXX."""
    container_id = (request.args.get("containerId") or "").strip()
    if not container_id:
        return _error("Container ID is required", 400)
    try:
        envelope = tagstack.request_tagstack(container_id)
    except EnrichmentError as e:
        print(f"[!] Tagstack proxy failed for {container_id}: {e}")
        return _error(str(e), 502)
    return jsonify({"success": True, "data": envelope})


@app.route("/api/scores", methods=["POST"])
def run_scores():
    """
    Score a scan result.

    Expects JSON: {"result": ScanResult}
    """
    data = request.get_json(silent=True) or {}
    result = data.get("result")
    if not isinstance(result, dict) or not result:
        return _error("Scan result is required", 400)
    try:
        scores = calculate_scores(result)
    except Exception as e:
        print(f"[!] Score calculation failed: {e}")
        return _error(f"Score calculation failed: {e}", 500)
    return jsonify({"success": True, "data": scores})


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    print("\n  Marketing Instrumentation Scanner API")
    print("  http://localhost:8080\n")
    app.run(host="0.0.0.0", debug=False, port=8080, threaded=True)
