# edgeguard/core/sources/remote.py
import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import requests

from schemas.sources import RefreshingSourceConfig, RemoteSourceConfig, SourceStatus
from utils.exceptions import EdgeGuardError, FetchTimeoutError, TransportError
from utils.ip import Prefix, parse_prefix_list
from .base import IIPRangeSource

if TYPE_CHECKING:
    from core.context import ProvisionContext

DEFAULT_INTERVAL = 3600.0  # seconds
DEFAULT_TIMEOUT = 15.0  # seconds
CANCEL_POLL_INTERVAL = 0.5  # seconds between checks of the shared done event
# reads block until this many bytes arrive or EOF, the fetch deadline holds only at 1
READ_CHUNK_SIZE = 1

CLOUDFLARE_IPV4_URL = "https://www.cloudflare.com/ips-v4"
CLOUDFLARE_IPV6_URL = "https://www.cloudflare.com/ips-v6"


class RemoteIPRangeSource(IIPRangeSource):
    """
    IP range source backed by one or more HTTP endpoints serving
    line-delimited CIDR lists.

    Provisioning performs one best-effort fetch, then a daemon thread
    refreshes the ranges every `interval` seconds until the provisioning
    context is cancelled. A refresh cycle is all-or-nothing across the
    endpoints: if any of them fails, the previous snapshot stays in place.
    """

    NAME = "remote"
    CONFIG_MODEL = RemoteSourceConfig

    def __init__(self, config: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None):
        super().__init__(config)
        self.interval: float = self.config.interval if self.config.interval > 0 else DEFAULT_INTERVAL
        self.timeout: float = self.config.timeout if self.config.timeout > 0 else DEFAULT_TIMEOUT

        self._session: Optional[requests.Session] = session
        self._owns_session = session is None

        # Immutable snapshot, only the reference is swapped under the lock
        self._ranges: Tuple[Prefix, ...] = ()
        self._lock = threading.Lock()

        self._done: Optional[threading.Event] = None # cancellation signal of the provisioning context
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._last_refreshed: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[datetime] = None

        self.logger = logging.getLogger(f"edgeguard.{__name__}")

    @property
    def endpoints(self) -> List[str]:
        return list(self.config.urls)

    def provision(self, ctx: "ProvisionContext") -> None:
        self._done = ctx.done
        self.logger = ctx.logger(f"ip_sources.{self.NAME}")
        if self._session is None:
            self._session = self._new_session()
            self._owns_session = True

        self.logger.info(f"Fetching initial {self.NAME} IP ranges...")
        try:
            initial_ranges = self.fetch_ranges()
        except EdgeGuardError as e:
            # Come up anyway, the refresh loop will retry on the next tick
            self.logger.error(f"Failed to fetch initial {self.NAME} IP ranges: {e}")
            self._record_failure(e)
        else:
            self._install(initial_ranges)
            self.logger.info(f"{self.NAME} IP ranges loaded successfully. Count: {len(initial_ranges)}")

        self.start()

    def start(self) -> None:
        """Starts the background refresh thread."""
        if self._thread is not None and self._thread.is_alive():
            self.logger.info(f"Refresh thread for '{self.NAME}' already running.")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            name=f"EdgeGuardRefresh-{self.NAME}",
            daemon=True,
        )
        self._thread.start()
        self.logger.debug(f"Refresh thread for '{self.NAME}' started, interval {self.interval}s.")

    def _new_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"User-Agent": "edgeguard-ip-source"})
        return session

    def _cancelled(self) -> bool:
        return self._stop_event.is_set() or (self._done is not None and self._done.is_set())

    def _wait_for_tick(self) -> bool:
        """
        Sleeps for one refresh interval.
        Returns:
            bool: False if `close()` was called or the context's done event was set meanwhile.
        """
        deadline = time.monotonic() + self.interval
        while not self._cancelled():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return True
            # The host may set the shared done event without calling close(),
            # so it is re-checked at least every CANCEL_POLL_INTERVAL.
            self._stop_event.wait(min(remaining, CANCEL_POLL_INTERVAL))
        return False

    def _refresh_loop(self) -> None:
        try:
            while self._wait_for_tick():
                try:
                    self.refresh()
                except Exception as e:
                    # keep the thread alive, the snapshot stays as it was
                    self.logger.error(f"Unexpected error refreshing {self.NAME} IP ranges: {e}", exc_info=True)
        finally:
            if self._owns_session:
                self._close_session()
            self.logger.debug(f"Refresh thread for '{self.NAME}' stopped.")

    def refresh(self) -> bool:
        """
        Runs one fetch cycle and installs the result.
        Returns:
            bool: True if a new snapshot was installed, False if the previous one was kept.
        """
        try:
            new_ranges = self.fetch_ranges()
        except EdgeGuardError as e:
            self.logger.warning(f"Could not refresh {self.NAME} IP ranges: {e}")
            self._record_failure(e)
            return False
        self._install(new_ranges)
        self.logger.debug(f"{self.NAME} IP ranges refreshed. Count: {len(new_ranges)}")
        return True

    def fetch_ranges(self) -> Tuple[Prefix, ...]:
        """
        Fetches every endpoint and concatenates their prefixes in endpoint order.
        Raises on the first failing endpoint, nothing partial is returned.
        """
        full: List[Prefix] = []
        for url in self.endpoints:
            full.extend(self._fetch(url))
        return tuple(full)

    def _fetch(self, url: str) -> Tuple[Prefix, ...]:
        """
        GETs one endpoint. `timeout` bounds the whole request, not just the
        connect and each socket read, so a server trickling bytes is cut off
        once the deadline passes.
        """
        session = self._session
        if session is None:
            raise TransportError(url, "source is not provisioned")
        deadline = time.monotonic() + self.timeout
        try:
            response = session.get(url, timeout=(self.timeout, self.timeout), stream=True)
        except requests.Timeout as e:
            raise FetchTimeoutError(url, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransportError(url, str(e)) from e

        try:
            if not 200 <= response.status_code < 300:
                raise TransportError(url, f"unexpected status {response.status_code}")
            body = self._read_body(url, response, deadline)
        finally:
            response.close()
        return parse_prefix_list(body)

    def _read_body(self, url: str, response: requests.Response, deadline: float) -> str:
        chunks: List[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                self._check_deadline(url, deadline)
                chunks.append(chunk)
        except requests.RequestException as e:
            # iter_content reports a read timeout as a ConnectionError
            self._check_deadline(url, deadline)
            raise TransportError(url, str(e)) from e
        self._check_deadline(url, deadline)
        return b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")

    def _check_deadline(self, url: str, deadline: float) -> None:
        if time.monotonic() > deadline:
            raise FetchTimeoutError(url, f"timed out after {self.timeout}s")

    def _install(self, ranges: Tuple[Prefix, ...]) -> None:
        with self._lock:
            self._ranges = ranges
            self._last_refreshed = datetime.now(timezone.utc)

    def _record_failure(self, error: Exception) -> None:
        with self._lock:
            self._last_error = str(error)
            self._last_error_at = datetime.now(timezone.utc)

    def get_ranges(self, request: Any = None) -> Tuple[Prefix, ...]:
        with self._lock:
            return self._ranges

    def get_status(self) -> SourceStatus:
        with self._lock:
            return SourceStatus(
                name=self.NAME,
                prefix_count=len(self._ranges),
                last_refreshed=self._last_refreshed,
                last_error=self._last_error,
                last_error_at=self._last_error_at,
            )

    def close(self, wait: bool = False) -> None:
        """
        Stops the refresh thread. An in-flight fetch is not interrupted, it
        is bounded by the fetch timeout. An owned session is closed by the
        refresh thread on its way out, or here if no thread is running.
        Args:
            wait (bool): If True, waits for the refresh thread to exit.
        """
        self._stop_event.set()
        thread = self._thread
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.timeout * 2)
        if self._owns_session and (thread is None or not thread.is_alive()):
            self._close_session()

    def _close_session(self) -> None:
        with self._lock:
            session, self._session = self._session, None
        if session is not None:
            session.close()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class CloudflareIPRangeSource(RemoteIPRangeSource):
    """Cloudflare's published edge ranges, one endpoint per address family."""

    NAME = "cloudflare"
    CONFIG_MODEL = RefreshingSourceConfig
    ENDPOINTS = (CLOUDFLARE_IPV4_URL, CLOUDFLARE_IPV6_URL)

    @property
    def endpoints(self) -> List[str]:
        return list(self.ENDPOINTS)
