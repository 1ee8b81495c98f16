from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import `stellar_eyes` and `manage_faces`.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from stellar_eyes.config import EMBEDDING_DIM  # noqa: E402


def unit(i: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    v = np.zeros((dim,), dtype=np.float32)
    v[int(i)] = 1.0
    return v


def face_image(k: int) -> np.ndarray:
    """Tiny BGR image whose pixel value encodes which basis vector it embeds to."""
    return np.full((4, 4, 3), int(k), dtype=np.uint8)


class DummyEmbedder:
    """Deterministic stand-in for the recognition model: pixel value k -> e_k."""

    def __init__(self):
        self.calls = 0

    def __call__(self, image: np.ndarray) -> np.ndarray:
        self.calls += 1
        return unit(int(np.asarray(image)[0, 0, 0]))


@pytest.fixture
def embedder() -> DummyEmbedder:
    return DummyEmbedder()
