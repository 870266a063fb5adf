from __future__ import annotations
import socket
import threading
import time
from datetime import datetime, timezone

import requests
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from schemas.models import OutcomeKind, ProbeOutcome
from logging_.engine_logger import get_engine_logger
from .errors import ConfigError

log = get_engine_logger()

DEFAULT_USER_AGENT = "url-checker/0.2"
CHUNK_SIZE = 1024
ALLOWED_METHODS = ("GET", "HEAD")


class ProbeDeadlineExceeded(Exception):
    """The per-probe deadline passed before the response was fully received."""


def _is_timeout(exc: Exception) -> bool:
    if isinstance(exc, (requests.exceptions.Timeout, ProbeDeadlineExceeded)):
        return True
    # requests заворачивает ReadTimeoutError из iter_content в ConnectionError
    s = str(exc).lower()
    return "timed out" in s or "read timeout" in s


def _error_text(exc: Exception) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


def _cut(conn):
    sock = getattr(conn, "sock", None)
    if sock is None:
        return
    try:
        # socket.socket.shutdown напрямую, чтобы и под TLS рвать TCP, а не SSL-сессию
        socket.socket.shutdown(sock, socket.SHUT_RDWR)
    except OSError:
        pass  # уже закрыт


class _DeadlineAdapter(HTTPAdapter):
    """
    HTTPAdapter that remembers every connection it opens.

    requests only bounds each socket read, so a server sending one byte at a
    time never trips its timeout. expire() shuts down every socket this
    adapter has connected, and any connection made afterwards is cut as soon
    as it connects, which makes the blocked read in the probe thread return.
    """

    def __init__(self, **kwargs):
        self._conns = []
        self._conns_lock = threading.Lock()
        self.expired = False
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self._pools = {
            "http": self._tracked_pool(HTTPConnectionPool),
            "https": self._tracked_pool(HTTPSConnectionPool),
        }
        self.poolmanager.pool_classes_by_scheme = self._pools

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        # у SOCKS свои классы пулов
        if not proxy.lower().startswith("socks"):
            manager.pool_classes_by_scheme = self._pools
        return manager

    def _tracked_pool(self, pool_cls):
        adapter = self

        class TrackedConnection(pool_cls.ConnectionCls):
            def connect(self):
                super().connect()
                adapter._register(self)

        class TrackedPool(pool_cls):
            ConnectionCls = TrackedConnection

        return TrackedPool

    def _register(self, conn):
        with self._conns_lock:
            self._conns.append(conn)
            expired = self.expired
        if expired:
            _cut(conn)

    def expire(self):
        with self._conns_lock:
            self.expired = True
            conns = list(self._conns)
        for conn in conns:
            _cut(conn)


class Probe:
    """Performs a single HTTP check of one URL.

    The probe knows nothing about scheduling: it issues exactly one request,
    drains the body to measure its size and classifies what happened. The
    index of the returned outcome is left at -1 for the dispatcher to tag.
    """

    def __init__(
            self,
            method: str = "GET",
            user_agent: str = DEFAULT_USER_AGENT,
            headers: dict[str, str] | None = None,
            max_redirects: int = 10,
            verify_tls: bool = True,
    ):
        self.method = str(method).strip().upper()
        if self.method not in ALLOWED_METHODS:
            raise ConfigError(f"HTTP method must be one of {', '.join(ALLOWED_METHODS)}, got {method!r}")
        self.max_redirects = max_redirects
        self.verify_tls = verify_tls
        self.headers = {"User-Agent": user_agent, "Accept": "*/*"}
        if headers:
            self.headers.update(headers)

    @classmethod
    def from_config(cls, http_cfg, method: str | None = None) -> "Probe":
        return cls(
            method=method or http_cfg.method,
            user_agent=http_cfg.user_agent,
            headers=http_cfg.custom_headers,
            max_redirects=http_cfg.max_redirects,
            verify_tls=http_cfg.verify_tls,
        )

    def _fetch(self, url: str, timeout: float, deadline: float) -> tuple[int, str, int]:
        adapter = _DeadlineAdapter(max_retries=0)
        watchdog = threading.Timer(timeout, adapter.expire)
        watchdog.daemon = True
        with requests.Session() as sess:
            sess.max_redirects = self.max_redirects
            sess.headers.update(self.headers)
            sess.mount("http://", adapter)
            sess.mount("https://", adapter)
            watchdog.start()
            try:
                resp = sess.request(
                    self.method, url, timeout=timeout, stream=True,
                    allow_redirects=True, verify=self.verify_tls,
                )
                try:
                    size = 0
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        size += len(chunk)
                        if time.perf_counter() > deadline:
                            raise ProbeDeadlineExceeded(f"response not received within {timeout}s")
                    if adapter.expired:
                        raise ProbeDeadlineExceeded(f"response not received within {timeout}s")
                    return resp.status_code, resp.reason or "", size
                finally:
                    resp.close()
            except requests.exceptions.RequestException as e:
                if adapter.expired:
                    raise ProbeDeadlineExceeded(f"response not received within {timeout}s") from e
                raise
            finally:
                watchdog.cancel()

    def run(self, url: str, timeout: float) -> ProbeOutcome:
        start = time.perf_counter()
        try:
            status, reason, size = self._fetch(url, timeout, start + timeout)
        except (requests.exceptions.RequestException, ProbeDeadlineExceeded) as e:
            elapsed = time.perf_counter() - start
            if _is_timeout(e):
                log.debug(f"Probe {url}: timeout after {elapsed:.3f}s")
                return ProbeOutcome(
                    url=url,
                    status_code=None,
                    status_reason="timeout",
                    elapsed=timeout,
                    response_size=0,
                    timestamp=datetime.now(timezone.utc),
                    outcome_kind=OutcomeKind.TIMEOUT,
                )
            log.debug(f"Probe {url}: transport error after {elapsed:.3f}s: {e}")
            return ProbeOutcome(
                url=url,
                status_code=None,
                status_reason=_error_text(e),
                elapsed=elapsed,
                response_size=0,
                timestamp=datetime.now(timezone.utc),
                outcome_kind=OutcomeKind.TRANSPORT_ERROR,
            )

        elapsed = time.perf_counter() - start
        log.debug(f"Probe {url}: {status} {reason} in {elapsed:.3f}s, {size} bytes")
        return ProbeOutcome(
            url=url,
            status_code=status,
            status_reason=reason,
            elapsed=elapsed,
            response_size=size,
            timestamp=datetime.now(timezone.utc),
            outcome_kind=OutcomeKind.SUCCESS,
        )
