from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import requests
from urllib3.exceptions import HTTPError as TransportError

from trafficreport.constants import REMOTE_IMAGE_SCHEMES, UPLOAD_URL_PREFIX

log = logging.getLogger("uvicorn.error")

USER_AGENT = "trafficreport/0.3 (+report export)"
MAX_REMOTE_IMAGE_BYTES = 15 * 1024 * 1024
CHUNK_SIZE = 64 * 1024

ImageLoader = Callable[[Optional[str]], Optional[bytes]]


def _read_local_upload(reference: str, upload_dir: Path) -> Optional[bytes]:
    base = Path(upload_dir).resolve()
    relative = reference[len(UPLOAD_URL_PREFIX):]
    candidate = (base / relative).resolve()
    if base not in candidate.parents:
        log.warning("Image %s resolves outside the upload directory; skipping", reference)
        return None
    try:
        return candidate.read_bytes()
    except OSError:
        log.warning("Image %s is not readable; skipping", reference)
        return None


def _iter_body(response: requests.Response) -> Iterator[bytes]:
    # read1 returns after one socket read, so the caller can check its deadline.
    while True:
        chunk = response.raw.read1(CHUNK_SIZE, decode_content=True)
        if not chunk:
            return
        yield chunk


def _fetch_remote(url: str, timeout: float) -> Optional[bytes]:
    # ``timeout`` bounds the whole download, not just each socket read.
    deadline = time.monotonic() + timeout
    chunks: List[bytes] = []
    total = 0
    try:
        with requests.get(url, timeout=timeout, stream=True, headers={"User-Agent": USER_AGENT}) as response:
            if not 200 <= response.status_code < 300:
                log.warning("Image %s returned HTTP %s; skipping", url, response.status_code)
                return None
            for chunk in _iter_body(response):
                total += len(chunk)
                if total > MAX_REMOTE_IMAGE_BYTES:
                    log.warning("Image %s exceeds %s bytes; skipping", url, MAX_REMOTE_IMAGE_BYTES)
                    return None
                if time.monotonic() > deadline:
                    log.warning("Image %s took longer than %ss; skipping", url, timeout)
                    return None
                chunks.append(chunk)
    except (requests.RequestException, TransportError) as exc:
        log.warning("Image %s could not be fetched (%s); skipping", url, exc)
        return None
    return b"".join(chunks)


def load_image_bytes(reference: Optional[str], *, upload_dir: Path, timeout: float = 10.0) -> Optional[bytes]:
    """Return the raw bytes behind an image reference, or ``None``.

    ``/uploads/...`` is read from ``upload_dir``; ``http(s)://`` is fetched with
    ``timeout``; anything else is ignored. Failures never raise.
    """
    if not reference:
        return None
    if reference.startswith(UPLOAD_URL_PREFIX):
        return _read_local_upload(reference, upload_dir)
    if reference.lower().startswith(REMOTE_IMAGE_SCHEMES):
        return _fetch_remote(reference, timeout)
    return None


def make_image_loader(upload_dir: Path, timeout: float) -> ImageLoader:
    def _loader(reference: Optional[str]) -> Optional[bytes]:
        return load_image_bytes(reference, upload_dir=upload_dir, timeout=timeout)

    return _loader


__all__ = ["ImageLoader", "load_image_bytes", "make_image_loader"]
