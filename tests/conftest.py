import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import pytest

from config.loader import ConfigStore


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, *args):
        pass

    def _send(self, code: int, body: bytes = b"", headers: dict | None = None, with_body: bool = True):
        self.send_response(code)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        self.end_headers()
        if with_body and body:
            self.wfile.write(body)

    def _trickle(self, data: bytes, pause: float = 0.05):
        try:
            for i in range(len(data)):
                self.wfile.write(data[i:i + 1])
                self.wfile.flush()
                time.sleep(pause)
        except OSError:
            pass

    def _route(self, with_body: bool):
        parts = urlsplit(self.path)
        qs = parse_qs(parts.query)

        if parts.path == "/ok":
            self._send(200, b"hello world", with_body=with_body)
        elif parts.path == "/missing":
            self._send(404, b"nope", with_body=with_body)
        elif parts.path == "/error":
            self._send(500, b"boom", with_body=with_body)
        elif parts.path == "/redirect":
            self._send(302, b"", headers={"Location": "/ok"}, with_body=with_body)
        elif parts.path == "/slow":
            time.sleep(int(qs.get("ms", ["50"])[0]) / 1000)
            self._send(200, b"slow", with_body=with_body)
        elif parts.path == "/drip":
            # chunked body, 10 bytes every 100 ms for ~3 s
            self.send_response(200)
            self.send_header("Transfer-Encoding", "chunked")
            self.end_headers()
            try:
                for _ in range(30):
                    self.wfile.write(b"a\r\n0123456789\r\n")
                    self.wfile.flush()
                    time.sleep(0.1)
                self.wfile.write(b"0\r\n\r\n")
            except OSError:
                pass
        elif parts.path == "/trickle":
            # Content-Length body, one byte every 50 ms for ~50 s
            self.send_response(200)
            self.send_header("Content-Length", "1000")
            self.end_headers()
            self._trickle(b"x" * 1000)
        elif parts.path == "/slow-headers":
            # status line and headers themselves arrive one byte every 50 ms
            self.close_connection = True
            self._trickle(b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\nX-Padding: "
                          + b"p" * 200 + b"\r\n\r\nok")
        else:
            self._send(404, b"unknown route", with_body=with_body)

    def do_GET(self):
        self._route(with_body=True)

    def do_HEAD(self):
        self._route(with_body=False)


@pytest.fixture(scope="session")
def http_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address
    yield f"http://{host}:{port}"
    server.shutdown()
    server.server_close()


@pytest.fixture
def blackhole_url():
    """Listens but never accepts: the TCP handshake completes, no response ever comes."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    s.listen(64)
    host, port = s.getsockname()
    yield f"http://{host}:{port}/"
    s.close()


@pytest.fixture
def refused_url():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    host, port = s.getsockname()
    s.close()
    return f"http://{host}:{port}/"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("REPORTS_DIR", str(tmp_path / "reports"))
    monkeypatch.delenv("CHECKER_CONFIG", raising=False)
    for key in ("MAX_CONCURRENCY", "CHECK_TIMEOUT_SEC", "REPORT_FORMAT", "HTTP_METHOD",
                "SUCCESS_STATUS_BELOW", "DEDUPE_TARGETS", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    ConfigStore.reset()
    yield tmp_path
    ConfigStore.reset()
