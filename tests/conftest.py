import threading
from typing import Dict, List, Optional, Union

import pytest
import requests

from core.context import ProvisionContext
from core.registry import build_default_registries
from core.sources.remote import CLOUDFLARE_IPV4_URL, CLOUDFLARE_IPV6_URL


V4_BODY = "173.245.48.0/20\n103.21.244.0/22\n"
V6_BODY = "2400:cb00::/32\n2606:4700::/32\n"


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code
        self.encoding = "utf-8"
        self.closed = False

    def iter_content(self, chunk_size=1):
        data = self.text.encode(self.encoding)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """
    Stands in for requests.Session. `responses` maps a URL to a body, a
    FakeResponse, or an exception to raise.
    """
    def __init__(self, responses: Dict[str, Union[str, FakeResponse, Exception]] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []
        self.timeouts: List[object] = []
        self.streamed: List[bool] = []
        self.closed = False
        self.closed_by: Optional[str] = None
        self._lock = threading.Lock()

    def get(self, url, timeout=None, stream=False):
        with self._lock:
            self.calls.append(url)
            self.timeouts.append(timeout)
            self.streamed.append(stream)
            result = self.responses.get(url)
        if result is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(result, Exception):
            raise result
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse(result)

    def close(self):
        self.closed = True
        self.closed_by = threading.current_thread().name


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def provision_ctx():
    sources, matchers = build_default_registries()
    ctx = ProvisionContext(sources=sources, matchers=matchers)
    yield ctx
    ctx.cancel()


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def cloudflare_session() -> FakeSession:
    return FakeSession({CLOUDFLARE_IPV4_URL: V4_BODY, CLOUDFLARE_IPV6_URL: V6_BODY})
