from __future__ import annotations

import threading
import time

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from stellar_eyes.config import EMBEDDING_DIM, MATCH_THRESHOLD
from stellar_eyes.errors import DecodeError, DimensionMismatchError, DuplicateIdError
from stellar_eyes.face.matcher import CosineMatcher, MatcherConfig
from stellar_eyes.face.models import StoredFace
from stellar_eyes.face.store import GalleryStore
from stellar_eyes.utils.image import data_url_to_image
from stellar_eyes.utils.log import get_logger
from stellar_eyes.utils.math import l2_normalize
from stellar_eyes.utils.serializer import decode_gallery, encode_gallery

logger = get_logger(__name__)


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class GalleryConfig:
    dim: int = EMBEDDING_DIM
    threshold: float = MATCH_THRESHOLD


class FaceGallery:
    """In-memory gallery of enrolled faces with persistence.

    The gallery exclusively owns its entries: `get()` / `list()` hand out copies,
    and every read or write goes through one re-entrant lock.
    """

    def __init__(self, config: Optional[GalleryConfig] = None):
        self.config = config or GalleryConfig()
        self._faces: List[StoredFace] = []
        self._lock = threading.RLock()
        # Bumped on every mutation; lets the matcher reuse its stacked matrix.
        self._revision = 0
        self._matcher = CosineMatcher(MatcherConfig(threshold=float(self.config.threshold), dim=int(self.config.dim)))

    def _touch(self) -> None:
        self._revision += 1

    def _check_dim(self, vec: np.ndarray) -> np.ndarray:
        arr = np.asarray(vec).reshape(-1)
        if arr.shape[0] != int(self.config.dim):
            raise DimensionMismatchError(self.config.dim, arr.shape[0])
        return arr

    def __len__(self) -> int:
        with self._lock:
            return len(self._faces)

    def __contains__(self, face_id: object) -> bool:
        with self._lock:
            return any(f.id == face_id for f in self._faces)

    def add(
        self,
        face_id: str,
        vector: np.ndarray,
        name: str,
        image_uri: str,
        timestamp: Optional[int] = None,
    ) -> StoredFace:
        """Enroll a face. NaN/Inf components become 0.0 before normalization."""
        arr = self._check_dim(vector)
        face = StoredFace(
            id=str(face_id),
            vector=l2_normalize(arr),
            name=str(name),
            image_uri=str(image_uri),
            timestamp=int(timestamp) if timestamp is not None else now_millis(),
        )
        with self._lock:
            if any(f.id == face.id for f in self._faces):
                raise DuplicateIdError(face.id)
            self._faces.append(face)
            self._touch()
        logger.debug(f"gallery add: id={face.id}, name={face.name}, size={len(self)}")
        return face.copy()

    def find_nearest(self, query: np.ndarray) -> Tuple[Optional[str], float]:
        with self._lock:
            return self._matcher.match(query, self._faces, revision=self._revision)

    def rank(self, query: np.ndarray, topk: int = 5) -> List[Tuple[str, float]]:
        with self._lock:
            return self._matcher.rank(query, self._faces, topk=topk, revision=self._revision)

    def remove(self, face_id: str) -> int:
        """Remove every entry with this id; returns how many were removed."""
        with self._lock:
            kept = [f for f in self._faces if f.id != face_id]
            removed = len(self._faces) - len(kept)
            if removed:
                self._faces = kept
                self._touch()
        return removed

    def rename(self, face_id: str, new_name: str) -> bool:
        with self._lock:
            for f in self._faces:
                if f.id == face_id:
                    f.name = str(new_name)
                    return True
        return False

    def get(self, face_id: str) -> Optional[StoredFace]:
        with self._lock:
            for f in self._faces:
                if f.id == face_id:
                    return f.copy()
        return None

    def list(self) -> List[StoredFace]:
        with self._lock:
            return [f.copy() for f in self._faces]

    def clear(self) -> None:
        with self._lock:
            self._faces = []
            self._touch()

    def reembed_all(self, embed_fn: Callable[[np.ndarray], np.ndarray]) -> int:
        """Recompute every vector from its reference image.

        Entries whose image cannot be decoded keep their current vector.
        Returns the number of entries updated.
        """
        with self._lock:
            snapshot = [(f.id, f.image_uri) for f in self._faces]

            staged: Dict[str, np.ndarray] = {}
            for face_id, uri in snapshot:
                try:
                    img = data_url_to_image(uri)
                except DecodeError as e:
                    logger.warning(f"跳过无法解码的参考图像: id={face_id}, {e}")
                    continue
                staged[face_id] = l2_normalize(self._check_dim(embed_fn(img)))

            for f in self._faces:
                if f.id in staged:
                    f.vector = staged[f.id]
            if staged:
                self._touch()

        logger.info(f"重新计算 embedding: {len(staged)}/{len(snapshot)}")
        return len(staged)

    def save(self, store: GalleryStore) -> None:
        with self._lock:
            text = encode_gallery(self._faces)
        fp = store.write_text(text)
        logger.info(f"已保存图库: {len(self)} 个人脸 -> {fp}")

    def load(self, store: GalleryStore) -> bool:
        """Replace in-memory state with the store's contents.

        An absent store empties the gallery and returns False. A present but
        malformed store raises DecodeError and leaves the gallery untouched.
        """
        text = store.read_text()
        if text is None:
            self.clear()
            logger.info(f"图库文件不存在，使用空图库: {store.path}")
            return False

        decoded = decode_gallery(text, dim=int(self.config.dim))
        # Files written by older versions may repeat an id; first entry wins.
        faces: List[StoredFace] = []
        seen = set()
        for f in decoded:
            if f.id in seen:
                logger.warning(f"图库文件中存在重复 id，已忽略后出现的条目: {f.id}")
                continue
            seen.add(f.id)
            faces.append(f)

        with self._lock:
            self._faces = faces
            self._touch()
        logger.info(f"已加载图库: {len(faces)} 个人脸")
        return True
