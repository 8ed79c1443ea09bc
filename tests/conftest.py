import asyncio
import inspect
import sys
import time
from pathlib import Path

import httpx
import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from asset_crawler.models import JobConfig


CONFIG_ENV_KEYS = [
    "HOST",
    "PORT",
    "LOG_DIR",
    "LOG_LEVEL",
    "SAVE_PATH",
    "JOB_RETENTION",
    "TIMEOUT",
    "MAX_CONCURRENT",
    "RATE_LIMIT",
    "RATE_INTERVAL",
    "MAX_RETRIES",
    "BACKOFF_BASE",
    "BACKOFF_MAX",
    "MAX_RESPONSE_BYTES",
    "CRAWLER_USER_AGENT",
]


@pytest.fixture(autouse=True)
def isolated_config_env(monkeypatch, tmp_path):
    """Keep developer env vars, .env files and config/config.yaml out of the tests."""

    for key in CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CRAWLER_CONFIG_FILE", str(tmp_path / "missing-config.yaml"))
    monkeypatch.chdir(tmp_path)

    yield


class FakeSite:
    """Canned responses keyed by absolute URL, served through httpx.MockTransport."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.started = []
        self.active = 0
        self.peak_active = 0

    def add(self, url, body=b"", *, status=200, content_type="text/html", headers=None):
        if isinstance(body, str):
            body = body.encode("utf-8")

        def respond(request):
            return httpx.Response(
                status_code=status,
                headers={"Content-Type": content_type, **(headers or {})},
                content=body,
            )

        self.routes[url] = respond

    def add_handler(self, url, handler):
        self.routes[url] = handler

    def hang(self, url):
        async def never_answers(request):
            await asyncio.sleep(3600)

        self.routes[url] = never_answers

    def count(self, url):
        return self.requests.count(url)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        self.started.append(time.monotonic())
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            route = self.routes.get(url)
            if route is None:
                return httpx.Response(404, headers={"Content-Type": "text/plain"}, content=b"not found")
            response = route(request)
            if inspect.isawaitable(response):
                response = await response
            return response
        finally:
            self.active -= 1

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def job_config(tmp_path):
    """Factory for fast job configs rooted in the test's tmp dir."""

    def build(**overrides):
        values = dict(
            save_root=str(tmp_path / "downloads"),
            max_concurrent=3,
            rate_limit_per_interval=1000,
            rate_interval_seconds=1.0,
            timeout_millis=2000,
            max_retries=3,
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.02,
        )
        values.update(overrides)
        return JobConfig(**values)

    return build
