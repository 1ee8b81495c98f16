from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from stellar_eyes.errors import DecodeError
from stellar_eyes.face.gallery import FaceGallery
from stellar_eyes.face.models import StoredFace
from stellar_eyes.face.store import GalleryStore, export_gallery
from stellar_eyes.utils.log import get_logger

logger = get_logger(__name__)


class FaceRepository:
    """Management-facing view of a gallery: every mutation is persisted.

    Boundary methods (`load`, `export`) report problems as status strings
    rather than raising, so a front end can display them directly.
    """

    def __init__(self, gallery: FaceGallery, store: GalleryStore):
        self.gallery = gallery
        self.store = store

    def load(self) -> str:
        try:
            loaded = self.gallery.load(self.store)
        except DecodeError as e:
            logger.error(f"图库文件损坏: {self.store.path}: {e}")
            return f"Error: gallery file is corrupt. {e}"
        except OSError as e:
            logger.error(f"读取图库失败: {self.store.path}: {e}")
            return f"Error: could not read gallery file. {e}"
        if not loaded:
            return "No saved gallery found; starting empty."
        return f"Loaded {len(self.gallery)} faces."

    def all_faces(self) -> List[StoredFace]:
        return self.gallery.list()

    def get_face(self, face_id: str) -> Optional[StoredFace]:
        return self.gallery.get(face_id)

    def add_face(self, face: StoredFace) -> StoredFace:
        added = self.gallery.add(face.id, face.vector, face.name, face.image_uri, timestamp=face.timestamp)
        self.gallery.save(self.store)
        return added

    def delete_face(self, face_id: str) -> bool:
        removed = self.gallery.remove(face_id)
        if removed:
            self.gallery.save(self.store)
        return removed > 0

    def update_face_name(self, face_id: str, new_name: str) -> bool:
        ok = self.gallery.rename(face_id, new_name)
        if ok:
            self.gallery.save(self.store)
        return ok

    def find_most_similar_face(self, vector: np.ndarray) -> Optional[StoredFace]:
        face_id, _ = self.gallery.find_nearest(vector)
        if face_id is None:
            return None
        return self.gallery.get(face_id)

    def update_vectors(self, embed_fn: Callable[[np.ndarray], np.ndarray]) -> int:
        updated = self.gallery.reembed_all(embed_fn)
        if updated:
            self.gallery.save(self.store)
        return updated

    def export(self, out_dir: Union[str, Path]) -> str:
        return export_gallery(self.gallery.list(), out_dir)
