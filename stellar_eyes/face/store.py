from __future__ import annotations

import os
import tempfile
import time

from pathlib import Path
from typing import Iterable, Optional, Union

from stellar_eyes.config import DEFAULT_GALLERY_FILE, EXPORT_FILE_PREFIX
from stellar_eyes.face.models import StoredFace
from stellar_eyes.utils.log import get_logger
from stellar_eyes.utils.serializer import encode_gallery_legacy

logger = get_logger(__name__)


class GalleryStore:
    """Single JSON file holding the whole gallery; every save overwrites it."""

    def __init__(self, path: Union[str, Path], filename: str = DEFAULT_GALLERY_FILE):
        path = Path(path)
        # A directory (existing, or a suffix-less path) holds the default file name.
        if path.is_dir() or not path.suffix:
            path = path / filename
        self.path = path

    def __repr__(self) -> str:
        return f"GalleryStore({str(self.path)!r})"

    def exists(self) -> bool:
        return self.path.is_file()

    def read_text(self) -> Optional[str]:
        """Return file contents, or None when the store has never been written."""
        if not self.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def write_text(self, text: str) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a sibling temp file then rename, so readers never see a half-written gallery.
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return self.path


def export_gallery(faces: Iterable[StoredFace], out_dir: Union[str, Path], now_ms: Optional[int] = None) -> str:
    """Write a timestamp-suffixed snapshot of the gallery and describe the result.

    Never raises: the returned message is meant to be shown to the user as-is.
    """
    faces = list(faces)
    if not faces:
        return "No vector data to export."

    try:
        text = encode_gallery_legacy(faces)
    except (TypeError, ValueError) as e:
        logger.error(f"导出序列化失败: {e}")
        return f"Error: Could not serialize data to JSON. {e}"

    stamp = int(now_ms) if now_ms is not None else int(time.time() * 1000)
    fp = Path(out_dir) / f"{EXPORT_FILE_PREFIX}{stamp}.json"
    try:
        fp.parent.mkdir(parents=True, exist_ok=True)
        fp.write_text(text, encoding="utf-8")
    except OSError as e:
        logger.error(f"导出写入失败: {fp}: {e}")
        try:
            if fp.exists():
                fp.unlink()
        except OSError:
            pass
        return f"Error: Could not write export file. {e}"

    logger.info(f"已导出 {len(faces)} 个人脸到: {fp}")
    return f"Successfully exported to {fp}."
