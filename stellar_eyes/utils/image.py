from __future__ import annotations

import base64
import binascii
import re

from pathlib import Path
from typing import Tuple

import cv2
import numpy as np

from stellar_eyes.errors import DecodeError

_MIME_BY_FORMAT = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.S)


def image_to_data_url(image: np.ndarray, fmt: str = "png", quality: int = 100) -> str:
    """Encode a BGR/gray image as a self-describing base64 data URL."""
    fmt = str(fmt).lower().lstrip(".")
    mime = _MIME_BY_FORMAT.get(fmt)
    if mime is None:
        raise ValueError(f"Unsupported image format: {fmt}")

    params = []
    if fmt in ("jpg", "jpeg"):
        params = [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)]
    elif fmt == "webp":
        params = [int(cv2.IMWRITE_WEBP_QUALITY), int(quality)]

    ok, buf = cv2.imencode(f".{fmt}", np.asarray(image), params)
    if not ok:
        raise ValueError(f"cv2.imencode failed for format {fmt}")
    payload = base64.b64encode(buf.tobytes()).decode("ascii")
    return f"data:{mime};base64,{payload}"


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into (mime, raw bytes)."""
    if not isinstance(data_url, str):
        raise DecodeError("image uri must be a string")
    m = _DATA_URL_RE.match(data_url.strip())
    if m is None:
        raise DecodeError("image uri is not a base64 data URL")
    try:
        raw = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"invalid base64 payload: {e}") from e
    return m.group("mime") or "text/plain", raw


def data_url_to_image(data_url: str) -> np.ndarray:
    """Decode a data URL back into a BGR image; raises DecodeError on failure."""
    mime, raw = parse_data_url(data_url)
    if not mime.startswith("image/"):
        raise DecodeError(f"data URL is not an image: {mime}")
    img = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
    if img is None:
        raise DecodeError(f"cannot decode {mime} payload ({len(raw)} bytes)")
    return img


def read_image(path: str) -> np.ndarray:
    img = cv2.imread(str(Path(path)))
    if img is None:
        raise DecodeError(f"无法读取图像: {path}")
    return img
