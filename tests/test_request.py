import hashlib
import os
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from ovmwin import logger, request


@pytest.fixture
def log(tmp_path):
    instance = logger.new(str(tmp_path), "request")
    yield instance
    instance.close()


def _read_log(instance):
    with open(instance.file_path, encoding="utf-8") as handle:
        return handle.read()


@pytest.fixture
def http_server():
    state = {"content": b"payload-bytes", "cache_control": [], "methods": []}

    class Handler(BaseHTTPRequestHandler):
        def _reply(self, with_body):
            state["methods"].append(self.command)
            state["cache_control"].append(self.headers.get("Cache-Control"))
            if self.path == "/missing":
                status, body = 404, b"nope"
            else:
                status, body = 200, state["content"]
            self.send_response(status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if with_body:
                self.wfile.write(body)

        def do_GET(self):
            self._reply(True)

        def do_HEAD(self):
            self._reply(False)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}", state
    server.shutdown()
    server.server_close()


def _unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_get_returns_body(http_server):
    base, state = http_server
    assert request.get(f"{base}/file") == state["content"]


def test_get_non_200_raises(http_server):
    base, _ = http_server
    with pytest.raises(OSError, match="unexpected status code 404"):
        request.get(f"{base}/missing")


def test_get_no_cache_sends_header(http_server):
    base, state = http_server
    first = request.get(f"{base}/a", no_cache=True)
    second = request.get(f"{base}/b")
    assert first == state["content"]
    assert second == state["content"]
    assert state["cache_control"] == ["no-cache", None]


def test_get_canceled_before_start(http_server):
    base, state = http_server
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(InterruptedError):
        request.get(f"{base}/file", cancel=cancel)
    assert state["methods"] == []


def test_get_unreachable_raises_connection_error():
    with pytest.raises(ConnectionError, match="failed to send"):
        request.get(f"http://127.0.0.1:{_unused_port()}/x")


def test_download_writes_file(http_server, log, tmp_path):
    base, state = http_server
    output = tmp_path / "file.bin"
    digest = hashlib.sha256(state["content"]).hexdigest()
    request.download(log, f"{base}/file", str(output), digest)
    assert output.read_bytes() == state["content"]
    assert not os.path.exists(f"{output}.tmp")
    assert state["methods"] == ["HEAD", "GET"]


def test_download_replaces_file_with_other_hash(http_server, log, tmp_path):
    base, state = http_server
    output = tmp_path / "file.bin"
    output.write_bytes(b"stale")
    digest = hashlib.sha256(state["content"]).hexdigest()
    request.download(log, f"{base}/file", str(output), digest)
    assert output.read_bytes() == state["content"]
    assert "Expected sha256" in _read_log(log)


def test_download_skips_when_hash_matches(log, tmp_path):
    output = tmp_path / "file.bin"
    output.write_bytes(b"already here")
    digest = hashlib.sha256(b"already here").hexdigest()
    request.download(log, f"http://127.0.0.1:{_unused_port()}/x", str(output), digest)
    assert output.read_bytes() == b"already here"
    assert "skip download" in _read_log(log)


def test_download_renames_matching_temp_file(log, tmp_path):
    output = tmp_path / "file.bin"
    tmp = tmp_path / "file.bin.tmp"
    tmp.write_bytes(b"temp content")
    digest = hashlib.sha256(b"temp content").hexdigest()
    request.download(log, f"http://127.0.0.1:{_unused_port()}/x", str(output), digest)
    assert output.read_bytes() == b"temp content"
    assert not tmp.exists()


def test_download_canceled(http_server, log, tmp_path):
    base, state = http_server
    output = tmp_path / "file.bin"
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(InterruptedError):
        request.download(log, f"{base}/file", str(output), "0" * 64, cancel)
    assert not output.exists()
    assert "GET" not in state["methods"]


def test_download_head_failure(log, tmp_path):
    output = tmp_path / "file.bin"
    with pytest.raises(ConnectionError, match="failed to send head request"):
        request.download(log, f"http://127.0.0.1:{_unused_port()}/x", str(output), "0" * 64)
    assert not output.exists()