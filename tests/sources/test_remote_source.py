import ipaddress
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from core.context import ProvisionContext
from core.registry import build_default_registries
from core.sources.remote import (
    CANCEL_POLL_INTERVAL,
    CLOUDFLARE_IPV4_URL,
    CLOUDFLARE_IPV6_URL,
    DEFAULT_INTERVAL,
    DEFAULT_TIMEOUT,
    CloudflareIPRangeSource,
    RemoteIPRangeSource,
)
from utils.exceptions import ConfigurationError, FetchTimeoutError, MalformedRangeError, TransportError


def _strs(prefixes):
    return [str(p) for p in prefixes]


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_defaults_apply_when_unset_or_non_positive():
    source = CloudflareIPRangeSource({})
    assert source.interval == DEFAULT_INTERVAL == 3600.0
    assert source.timeout == DEFAULT_TIMEOUT == 15.0

    source = CloudflareIPRangeSource({"interval": 0, "timeout": "-1s"})
    assert source.interval == DEFAULT_INTERVAL
    assert source.timeout == DEFAULT_TIMEOUT


def test_durations_are_parsed():
    source = CloudflareIPRangeSource({"source": "cloudflare", "interval": "30m", "timeout": "5s"})
    assert source.interval == 1800.0
    assert source.timeout == 5.0


def test_invalid_config_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        CloudflareIPRangeSource({"interval": "soon"})
    with pytest.raises(ConfigurationError):
        CloudflareIPRangeSource({"intervall": "1h"})
    with pytest.raises(ConfigurationError):
        RemoteIPRangeSource({"urls": []})
    with pytest.raises(ConfigurationError):
        RemoteIPRangeSource({"urls": ["ftp://example.com/list"]})


def test_cloudflare_endpoints():
    assert CloudflareIPRangeSource().endpoints == [CLOUDFLARE_IPV4_URL, CLOUDFLARE_IPV6_URL]


def test_provision_fetches_initial_ranges(provision_ctx, cloudflare_session):
    source = CloudflareIPRangeSource({"timeout": "3s"}, session=cloudflare_session)
    source.provision(provision_ctx)
    try:
        assert _strs(source.get_ranges()) == [
            "173.245.48.0/20", "103.21.244.0/22", "2400:cb00::/32", "2606:4700::/32",
        ]
        assert cloudflare_session.calls == [CLOUDFLARE_IPV4_URL, CLOUDFLARE_IPV6_URL]
        assert cloudflare_session.timeouts == [(3.0, 3.0), (3.0, 3.0)]
        assert cloudflare_session.streamed == [True, True]
        assert source.is_running
        status = source.get_status()
        assert status.name == "cloudflare"
        assert status.prefix_count == 4
        assert status.last_refreshed is not None
        assert status.last_error is None
    finally:
        source.close(wait=True)


def test_failed_initial_fetch_serves_empty_snapshot(provision_ctx, fake_session):
    fake_session.responses[CLOUDFLARE_IPV4_URL] = requests.ConnectionError("unreachable")
    source = CloudflareIPRangeSource({}, session=fake_session)
    source.provision(provision_ctx)
    try:
        assert source.get_ranges() == ()
        assert source.is_running
        assert "unreachable" in source.get_status().last_error
    finally:
        source.close(wait=True)


def test_refresh_failure_keeps_previous_snapshot(provision_ctx, cloudflare_session):
    source = CloudflareIPRangeSource({}, session=cloudflare_session)
    source.provision(provision_ctx)
    try:
        before = source.get_ranges()
        assert len(before) == 4

        cloudflare_session.responses[CLOUDFLARE_IPV4_URL] = "203.0.113.0/24\n"
        cloudflare_session.responses[CLOUDFLARE_IPV6_URL] = requests.ConnectionError("v6 down")
        assert source.refresh() is False
        # v4 succeeded but v6 failed: nothing of the new cycle is visible
        assert source.get_ranges() is before
    finally:
        source.close(wait=True)


def test_refresh_installs_new_snapshot(provision_ctx, cloudflare_session):
    source = CloudflareIPRangeSource({}, session=cloudflare_session)
    source.provision(provision_ctx)
    try:
        cloudflare_session.responses[CLOUDFLARE_IPV4_URL] = "198.51.100.0/24\n"
        cloudflare_session.responses[CLOUDFLARE_IPV6_URL] = ""
        assert source.refresh() is True
        assert _strs(source.get_ranges()) == ["198.51.100.0/24"]
    finally:
        source.close(wait=True)


def test_fetch_error_kinds(fake_response, fake_session):
    source = RemoteIPRangeSource({"urls": ["https://ranges.example/a"]}, session=fake_session)

    fake_session.responses["https://ranges.example/a"] = requests.Timeout("slow")
    with pytest.raises(FetchTimeoutError):
        source.fetch_ranges()

    fake_session.responses["https://ranges.example/a"] = requests.ConnectionError("refused")
    with pytest.raises(TransportError):
        source.fetch_ranges()

    not_found = fake_response("<html>not found</html>", status_code=404)
    fake_session.responses["https://ranges.example/a"] = not_found
    with pytest.raises(TransportError) as exc_info:
        source.fetch_ranges()
    assert "404" in str(exc_info.value)
    assert not_found.closed

    fake_session.responses["https://ranges.example/a"] = "192.0.2.0/24\ngarbage\n"
    with pytest.raises(MalformedRangeError):
        source.fetch_ranges()


def test_unprovisioned_source_does_not_fetch():
    source = RemoteIPRangeSource({"urls": ["https://ranges.example/a"]})
    assert source.get_ranges() == ()
    with pytest.raises(TransportError):
        source.fetch_ranges()


def test_background_loop_refreshes_and_stops(provision_ctx, fake_session):
    url = "https://ranges.example/list"
    fake_session.responses[url] = "192.0.2.0/24\n"
    source = RemoteIPRangeSource({"urls": [url], "interval": "20ms"}, session=fake_session)
    source.provision(provision_ctx)
    try:
        assert _strs(source.get_ranges()) == ["192.0.2.0/24"]
        fake_session.responses[url] = "198.51.100.0/24\n"
        assert _wait_until(lambda: _strs(source.get_ranges()) == ["198.51.100.0/24"])
    finally:
        source.close(wait=True)
    assert not source.is_running


def test_background_loop_survives_failures(provision_ctx, fake_session):
    url = "https://ranges.example/list"
    fake_session.responses[url] = "192.0.2.0/24\n"
    source = RemoteIPRangeSource({"urls": [url], "interval": "20ms"}, session=fake_session)
    source.provision(provision_ctx)
    try:
        fake_session.responses[url] = requests.ConnectionError("flaky")
        assert _wait_until(lambda: source.get_status().last_error is not None)
        assert _strs(source.get_ranges()) == ["192.0.2.0/24"]

        fake_session.responses[url] = "203.0.113.0/24\n"
        assert _wait_until(lambda: _strs(source.get_ranges()) == ["203.0.113.0/24"])
    finally:
        source.close(wait=True)


def test_context_cancel_stops_refresh_thread(provision_ctx, fake_session):
    url = "https://ranges.example/list"
    fake_session.responses[url] = "192.0.2.0/24\n"

    class FakeRemoteIPRangeSource(RemoteIPRangeSource):
        NAME = "fake_remote"

        def __init__(self, config=None):
            super().__init__(config, session=fake_session)

    provision_ctx.sources.register(FakeRemoteIPRangeSource.NAME, FakeRemoteIPRangeSource)
    source = provision_ctx.load_source({"source": "fake_remote", "urls": [url], "interval": "1h"})
    assert _strs(source.get_ranges()) == ["192.0.2.0/24"]
    assert source.is_running
    provision_ctx.cancel()
    assert provision_ctx.done.is_set()
    assert _wait_until(lambda: not source.is_running)


def test_shared_done_event_stops_refresh_thread(fake_session):
    url = "https://ranges.example/list"
    fake_session.responses[url] = "192.0.2.0/24\n"
    done = threading.Event()
    sources, matchers = build_default_registries()
    ctx = ProvisionContext(sources=sources, matchers=matchers, done=done)

    source = RemoteIPRangeSource({"urls": [url], "interval": "1h"}, session=fake_session)
    source.provision(ctx)
    assert source.is_running
    try:
        # the host signals shutdown without going through cancel()
        done.set()
        assert _wait_until(lambda: not source.is_running, timeout=2 * CANCEL_POLL_INTERVAL + 1)
    finally:
        source.close(wait=True)


def test_owned_session_closed_after_refresh_thread_exits(provision_ctx, fake_session):
    url = "https://ranges.example/list"
    fake_session.responses[url] = "192.0.2.0/24\n"

    class OwnedSessionSource(RemoteIPRangeSource):
        NAME = "owned_session"

        def _new_session(self):
            return fake_session

    provision_ctx.sources.register(OwnedSessionSource.NAME, OwnedSessionSource)
    source = provision_ctx.load_source({"source": "owned_session", "urls": [url], "interval": "1h"})
    assert source.is_running
    assert not fake_session.closed

    # cancel() closes without waiting, the session must outlive the refresh thread
    provision_ctx.cancel()
    assert _wait_until(lambda: fake_session.closed)
    assert fake_session.closed_by == "EdgeGuardRefresh-owned_session"
    assert _wait_until(lambda: not source.is_running)


class _RangeListHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        try:
            if self.path == "/slow":
                for _ in range(40):
                    self.wfile.write(b"\n")
                    self.wfile.flush()
                    time.sleep(0.2)
            else:
                self.wfile.write(b"192.0.2.0/24\r\n\r\n2001:db8::/32\r\n")
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def range_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RangeListHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest.fixture
def http_session():
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()


def test_fetch_from_http_server(range_server, http_session):
    source = RemoteIPRangeSource({"urls": [f"{range_server}/ranges"], "timeout": "5s"}, session=http_session)
    assert _strs(source.fetch_ranges()) == ["192.0.2.0/24", "2001:db8::/32"]


def test_trickling_endpoint_is_cut_off_at_timeout(range_server, http_session):
    source = RemoteIPRangeSource({"urls": [f"{range_server}/slow"], "timeout": "1s"}, session=http_session)
    started = time.monotonic()
    with pytest.raises(FetchTimeoutError):
        source.fetch_ranges()
    # the server keeps sending for 8s, the deadline is overrun by at most one chunk
    assert time.monotonic() - started < 2.0


def test_concurrent_reads_never_observe_partial_snapshot(provision_ctx, fake_session):
    url_a = "https://ranges.example/a"
    url_b = "https://ranges.example/b"
    body_a = "".join(f"10.{i}.0.0/16\n" for i in range(50))
    body_b = "".join(f"2001:db8:{i:x}::/48\n" for i in range(50))
    fake_session.responses.update({url_a: body_a, url_b: body_b})

    source = RemoteIPRangeSource({"urls": [url_a, url_b]}, session=fake_session)
    source.provision(provision_ctx)
    full = source.get_ranges()
    assert len(full) == 100

    stop = threading.Event()
    errors = []

    def writer():
        flip = False
        while not stop.is_set():
            fake_session.responses[url_b] = requests.ConnectionError("down") if flip else body_b
            source.refresh()
            flip = not flip

    def reader():
        probe = ipaddress.ip_address("2001:db8:31::1")
        while not stop.is_set():
            snapshot = source.get_ranges()
            if len(snapshot) != 100:
                errors.append(len(snapshot))
            if not any(p.contains(probe) for p in snapshot):
                errors.append("missing v6 range")

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
    try:
        for t in threads:
            t.start()
        time.sleep(0.3)
    finally:
        stop.set()
        for t in threads:
            t.join()
        source.close(wait=True)
    assert errors == []
