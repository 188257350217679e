from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from trafficreport.constants import UPLOAD_URL_PREFIX
from trafficreport.errors import ValidationError

log = logging.getLogger("uvicorn.error")

MAX_UPLOAD_SIZE_MB = 5
MAX_UPLOAD_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024
ALLOWED_IMAGE_MIME_MAP = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def store_image_upload(data: bytes, content_type: str, upload_dir: Path) -> str:
    """Write an uploaded image under a random name and return its public URL."""
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    suffix = ALLOWED_IMAGE_MIME_MAP.get(mime)
    if not suffix:
        raise ValidationError("Allowed formats: JPG, PNG, WEBP, GIF.")
    if not data:
        raise ValidationError("Uploaded file is empty.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"Image exceeds {MAX_UPLOAD_SIZE_MB}MB limit.")
    upload_dir = Path(upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid4().hex}{suffix}"
    (upload_dir / filename).write_bytes(data)
    log.info("Stored upload %s (%s bytes)", filename, len(data))
    return f"{UPLOAD_URL_PREFIX}{filename}"


__all__ = ["ALLOWED_IMAGE_MIME_MAP", "MAX_UPLOAD_BYTES", "store_image_upload"]
