from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from stellar_eyes.config import EMBEDDING_DIM, MATCH_THRESHOLD
from stellar_eyes.errors import DimensionMismatchError
from stellar_eyes.face.models import StoredFace
from stellar_eyes.utils.math import l2_normalize


@dataclass
class MatcherConfig:
    # Accept only when best similarity is strictly above this value.
    threshold: float = MATCH_THRESHOLD
    dim: int = EMBEDDING_DIM


class CosineMatcher:
    """Brute-force cosine matcher for small galleries (tens to low thousands).

    Assumes gallery vectors are already L2-normalized (or all-zero), so each
    row's dot product with the normalized query is its cosine similarity.
    """

    def __init__(self, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()

        # Flattened gallery index:
        # - matrix: (N, D) float64
        # - ids: list[str] length N, row -> face id
        self._cache_key: Optional[int] = None
        self._cache_ids: List[str] = []
        self._cache_matrix: Optional[np.ndarray] = None

    def invalidate(self) -> None:
        self._cache_key = None
        self._cache_ids = []
        self._cache_matrix = None

    def _ensure_index(self, faces: Sequence[StoredFace], revision: Optional[int]) -> None:
        if revision is not None and revision == self._cache_key and self._cache_matrix is not None:
            return
        if not faces:
            self._cache_ids = []
            self._cache_matrix = None
        else:
            self._cache_ids = [f.id for f in faces]
            self._cache_matrix = np.ascontiguousarray(
                np.stack([np.asarray(f.vector, dtype=np.float64).reshape(-1) for f in faces], axis=0)
            )
        self._cache_key = revision

    def _scores(self, query: np.ndarray, faces: Sequence[StoredFace], revision: Optional[int]) -> np.ndarray:
        q = np.asarray(query).reshape(-1)
        if q.shape[0] != int(self.config.dim):
            raise DimensionMismatchError(self.config.dim, q.shape[0])
        q = l2_normalize(q).astype(np.float64)

        self._ensure_index(faces, revision)
        if self._cache_matrix is None:
            return np.zeros((0,), dtype=np.float64)
        sims = self._cache_matrix @ q
        return np.clip(sims, -1.0, 1.0)

    def match(
        self, query: np.ndarray, faces: Sequence[StoredFace], revision: Optional[int] = None
    ) -> Tuple[Optional[str], float]:
        """Return (face_id or None, best_similarity).

        Empty gallery yields (None, -1.0). Ties resolve to the earliest entry.
        The best score is returned even when it is below the threshold.
        """
        sims = self._scores(query, faces, revision)
        if sims.size == 0:
            return None, -1.0

        # np.argmax returns the first occurrence of the maximum
        best_idx = int(np.argmax(sims))
        best_sim = float(sims[best_idx])
        if best_sim > float(self.config.threshold):
            return self._cache_ids[best_idx], best_sim
        return None, best_sim

    def rank(
        self, query: np.ndarray, faces: Sequence[StoredFace], topk: int = 5, revision: Optional[int] = None
    ) -> List[Tuple[str, float]]:
        """Top-k (face_id, similarity) pairs, best first, for debugging/tuning."""
        sims = self._scores(query, faces, revision)
        if sims.size == 0:
            return []
        # stable sort keeps gallery order among equal scores
        order = np.argsort(-sims, kind="stable")[: int(max(1, topk))]
        return [(self._cache_ids[int(i)], float(sims[int(i)])) for i in order]
