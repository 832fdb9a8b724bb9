"""
Shared fakes for the scanner tests.

FakePage answers page.evaluate() from a dict keyed by the exact script
string, so tests can script what the "browser" returns without
launching one.  FakeSession stands in for scanner.ScanSession.
"""

import pytest


class FakeContext:
    def __init__(self, cookies=None):
        self.cookie_jar = list(cookies or [])

    def cookies(self):
        return list(self.cookie_jar)


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector
        self.index = 0

    def nth(self, index):
        self.index = index
        return self

    def click(self, timeout=None):
        key = (self.selector, self.index)
        error = self.page.click_errors.get(key)
        if error is not None:
            raise error
        self.page.clicked.append(key)
        if self.page.cookies_after_click is not None:
            self.page.context.cookie_jar = list(self.page.cookies_after_click)


class FakeResponse:
    def __init__(self, status=200):
        self.status = status


class FakePage:
    def __init__(self, html="", cookies=None, cookies_after_click=None, responses=None):
        self.html = html
        self.context = FakeContext(cookies)
        self.cookies_after_click = cookies_after_click
        self.responses = dict(responses or {})
        self.click_errors = {}
        self.clicked = []
        self.waits = []
        self.handlers = {}
        self.goto_response = FakeResponse(200)
        self.goto_error = None
        self.closed = 0

    def evaluate(self, script, arg=None):
        value = self.responses.get(script)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(arg)
        return value

    def locator(self, selector):
        return FakeLocator(self, selector)

    def content(self):
        return self.html

    def goto(self, url, timeout=None, wait_until=None):
        if self.goto_error is not None:
            raise self.goto_error
        return self.goto_response

    def wait_for_function(self, expression, timeout=None):
        self.waits.append(("function", expression))

    def wait_for_timeout(self, ms):
        self.waits.append(("timeout", ms))

    def wait_for_load_state(self, state=None, timeout=None):
        self.waits.append(("load_state", state))

    def on(self, event, handler):
        self.handlers[event] = handler

    def close(self):
        self.closed += 1


class FakeSession:
    """Drop-in for ScanSession that counts close() calls."""

    def __init__(self, page=None, start_error=None, scripts=None):
        self.page = page or FakePage()
        self.context = self.page.context
        self.start_error = start_error
        self.scripts = dict(scripts or {})
        self.network_requests = []
        self.fetched = []
        self.started = False
        self.close_calls = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def fetch_script(self, url):
        self.fetched.append(url)
        return self.scripts.get(url, "")

    def close(self):
        self.close_calls += 1


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def no_api_keys(monkeypatch):
    for name in ("PAGESPEED_API_KEY", "NEXT_PUBLIC_PAGESPEED_API_KEY", "TAGSTACK_API_KEY"):
        monkeypatch.delenv(name, raising=False)
