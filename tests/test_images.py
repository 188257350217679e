import socket
import threading
import time

import requests
from urllib3.exceptions import ReadTimeoutError

from trafficreport import images
from trafficreport.images import load_image_bytes, make_image_loader


class FakeBody:
    def __init__(self, chunks, delay=0.0, error=None):
        self.chunks = list(chunks)
        self.delay = delay
        self.error = error
        self.reads = 0

    def read1(self, amt, decode_content=None):
        self.reads += 1
        if self.delay:
            time.sleep(self.delay)
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b""


class FakeResponse:
    def __init__(self, status_code=200, content=b"", raw=None):
        self.status_code = status_code
        self.raw = raw or FakeBody([content] if content else [])

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_reads_local_upload(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "a.png").write_bytes(b"png-bytes")
    assert load_image_bytes("/uploads/a.png", upload_dir=uploads) == b"png-bytes"
    assert load_image_bytes("/uploads/missing.png", upload_dir=uploads) is None


def test_local_path_cannot_escape_upload_dir(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (tmp_path / "secret.txt").write_text("top secret")
    assert load_image_bytes("/uploads/../secret.txt", upload_dir=uploads) is None
    assert load_image_bytes("/uploads/", upload_dir=uploads) is None


def test_ignores_empty_and_unknown_references(tmp_path, monkeypatch):
    def _unexpected(*args, **kwargs):
        raise AssertionError("no network access expected")

    monkeypatch.setattr(images.requests, "get", _unexpected)
    for reference in [None, "", "ftp://example.com/a.png", "data:image/png;base64,AAAA", "uploads/a.png"]:
        assert load_image_bytes(reference, upload_dir=tmp_path) is None


def test_fetches_remote_image_with_timeout(tmp_path, monkeypatch):
    calls = []

    def _get(url, timeout=None, stream=False, headers=None):
        calls.append((url, timeout, stream))
        return FakeResponse(200, b"remote-bytes")

    monkeypatch.setattr(images.requests, "get", _get)
    loader = make_image_loader(tmp_path, 3.5)
    assert loader("HTTPS://cdn.example.com/a.jpg") == b"remote-bytes"
    assert calls == [("HTTPS://cdn.example.com/a.jpg", 3.5, True)]


def test_remote_failures_yield_none(tmp_path, monkeypatch):
    monkeypatch.setattr(images.requests, "get", lambda url, **kwargs: FakeResponse(404, b"not found"))
    assert load_image_bytes("http://example.com/a.png", upload_dir=tmp_path) is None

    def _timeout(url, **kwargs):
        raise requests.Timeout("too slow")

    monkeypatch.setattr(images.requests, "get", _timeout)
    assert load_image_bytes("http://example.com/a.png", upload_dir=tmp_path) is None


def test_remote_body_over_size_cap_is_abandoned(tmp_path, monkeypatch):
    body = FakeBody([b"abcd"] * 5)
    monkeypatch.setattr(images, "MAX_REMOTE_IMAGE_BYTES", 10)
    monkeypatch.setattr(images.requests, "get", lambda url, **kwargs: FakeResponse(raw=body))

    assert load_image_bytes("http://example.com/huge.png", upload_dir=tmp_path) is None
    assert body.reads == 3


def test_slow_remote_body_is_cut_off_at_deadline(tmp_path, monkeypatch):
    body = FakeBody([b"x"] * 50, delay=0.05)
    monkeypatch.setattr(images.requests, "get", lambda url, **kwargs: FakeResponse(raw=body))

    started = time.monotonic()
    assert load_image_bytes("http://example.com/slow.png", upload_dir=tmp_path, timeout=0.2) is None
    assert time.monotonic() - started < 1.0
    assert body.reads < 50


def test_remote_body_read_error_yields_none(tmp_path, monkeypatch):
    body = FakeBody([b"partial"], error=ReadTimeoutError(None, "http://example.com/a.png", "read timed out"))
    monkeypatch.setattr(images.requests, "get", lambda url, **kwargs: FakeResponse(raw=body))

    assert load_image_bytes("http://example.com/a.png", upload_dir=tmp_path) is None


def test_remote_body_is_assembled_from_chunks(tmp_path, monkeypatch):
    body = FakeBody([b"ab", b"cd", b"ef"])
    monkeypatch.setattr(images.requests, "get", lambda url, **kwargs: FakeResponse(raw=body))

    assert load_image_bytes("https://example.com/a.png", upload_dir=tmp_path) == b"abcdef"


def test_trickling_server_does_not_outlast_timeout(tmp_path, monkeypatch):
    for name in ("HTTP_PROXY", "http_proxy", "ALL_PROXY", "all_proxy"):
        monkeypatch.delenv(name, raising=False)

    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    def _serve():
        conn, _ = listener.accept()
        with conn:
            conn.recv(4096)
            try:
                conn.sendall(b"HTTP/1.1 200 OK\r\nContent-Type: image/png\r\nContent-Length: 20\r\n\r\n")
                for _ in range(20):
                    conn.sendall(b"x")
                    time.sleep(0.2)
            except OSError:
                pass

    server = threading.Thread(target=_serve, daemon=True)
    server.start()
    try:
        started = time.monotonic()
        result = load_image_bytes(f"http://127.0.0.1:{port}/slow.png", upload_dir=tmp_path, timeout=0.5)
        elapsed = time.monotonic() - started
    finally:
        server.join(timeout=5)
        listener.close()

    assert result is None
    assert elapsed < 2.0
