from __future__ import annotations

import numpy as np
import pytest

from conftest import face_image, unit
from stellar_eyes.errors import EmbeddingError
from stellar_eyes.face.embedder import InsightFaceEmbedder, ThrottledEmbedder


class _DummyRecModel:
    """Mimics insightface ArcFaceONNX.get_feat (batch in, (N, D) out)."""

    def __init__(self, dim: int = 512):
        self.dim = dim
        self.batches = []

    def get_feat(self, imgs):
        self.batches.append(len(imgs))
        out = np.zeros((len(imgs), self.dim), dtype=np.float32)
        for i, img in enumerate(imgs):
            out[i, int(img[0, 0, 0]) % self.dim] = 2.0
        return out


def test_insightface_embedder_returns_flat_vector():
    emb = InsightFaceEmbedder(device="cpu")
    emb._rec_model = _DummyRecModel()

    vec = emb(face_image(7))
    assert vec.shape == (512,)
    assert vec.dtype == np.float32
    assert int(np.argmax(vec)) == 7
    assert emb.ctx_id == -1


def test_insightface_embedder_rejects_wrong_output_dimension():
    emb = InsightFaceEmbedder(device="cpu")
    emb._rec_model = _DummyRecModel(dim=128)
    with pytest.raises(EmbeddingError):
        emb(face_image(1))


def test_insightface_embedder_rejects_non_bgr_input():
    emb = InsightFaceEmbedder(device="cpu")
    emb._rec_model = _DummyRecModel()
    with pytest.raises(EmbeddingError):
        emb(np.zeros((4, 4), dtype=np.uint8))


def test_insightface_embedder_wraps_inference_errors():
    class _Broken:
        def get_feat(self, imgs):
            raise RuntimeError("onnx session died")

    emb = InsightFaceEmbedder(device="cpu")
    emb._rec_model = _Broken()
    with pytest.raises(EmbeddingError):
        emb(face_image(1))


def test_throttled_embedder_skips_fast_calls():
    now = [0.0]
    calls = []

    def embed(img):
        calls.append(img)
        return unit(0)

    throttled = ThrottledEmbedder(embed, min_interval_ms=100, clock=lambda: now[0])

    assert throttled(face_image(1)) is not None
    now[0] = 0.05
    assert throttled(face_image(2)) is None
    now[0] = 0.10
    assert throttled(face_image(3)) is not None
    now[0] = 0.15
    assert throttled(face_image(4)) is None
    assert len(calls) == 2
