import json

import pytest


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, lines=None, body=None):
        self.status_code = status_code
        self._json = json_data
        self._lines = list(lines or [])
        if body is None:
            body = json.dumps(json_data) if json_data is not None else ""
        self.text = body

    def json(self):
        return self._json

    async def aread(self):
        return self.text.encode("utf-8")

    async def aiter_lines(self):
        for line in self._lines:
            yield line

    async def __aenter__(self):
        return self

    async def __aexit__(self, *a):
        return False


class FakeHttp:
    """按顺序返回预设响应（或抛出预设异常），并记录每次调用。"""

    def __init__(self):
        self.responses = []
        self.calls = []

    def queue(self, *items):
        self.responses.extend(items)
        return self

    def next(self, **call):
        self.calls.append(call)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class SettingsStub:
    http_timeout = 1.0
    retry_max_attempts = 3
    retry_base_delay = 1.0
    balance_retry_attempts = 2
    video_poll_interval = 0.0
    retrieval_max_chars = 30000
    auto_battle_cooldown = 0.0


@pytest.fixture
def fake_http(monkeypatch):
    http = FakeHttp()

    class Client:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        def stream(self, method, url, **kw):
            return http.next(method=method, url=url, **kw)

        async def get(self, url, **kw):
            return http.next(method="GET", url=url, **kw)

        async def request(self, method, url, **kw):
            return http.next(method=method, url=url, **kw)

    monkeypatch.setattr("httpx.AsyncClient", Client)
    return http


@pytest.fixture
def settings_stub():
    return SettingsStub()


@pytest.fixture
def recorded_sleep():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


def sse(payload) -> str:
    return "data: " + json.dumps(payload, ensure_ascii=False)


@pytest.fixture
def sse_line():
    return sse
