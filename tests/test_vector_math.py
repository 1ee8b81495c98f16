from __future__ import annotations

import numpy as np
import pytest

from stellar_eyes.config import EMBEDDING_DIM
from stellar_eyes.errors import DimensionMismatchError
from stellar_eyes.utils.math import cosine_similarity, l2_normalize, sanitize


def test_normalize_random_vectors_have_unit_norm():
    rng = np.random.default_rng(7)
    for _ in range(20):
        v = rng.normal(scale=rng.uniform(0.01, 100.0), size=EMBEDDING_DIM)
        out = l2_normalize(v)
        assert out.shape == (EMBEDDING_DIM,)
        assert out.dtype == np.float32
        assert float(np.linalg.norm(out)) == pytest.approx(1.0, abs=1e-5)


def test_normalize_zero_and_non_finite_vectors_fall_back_to_zero():
    assert not np.any(l2_normalize(np.zeros(EMBEDDING_DIM)))

    bad = np.full(EMBEDDING_DIM, np.nan, dtype=np.float32)
    bad[:3] = [np.inf, -np.inf, np.nan]
    out = l2_normalize(bad)
    assert np.all(np.isfinite(out))
    assert not np.any(out)


def test_normalize_sanitizes_before_scaling():
    v = np.zeros(EMBEDDING_DIM, dtype=np.float32)
    v[0] = np.nan
    v[1] = np.inf
    v[2] = 3.0
    v[3] = 4.0
    out = l2_normalize(v)
    assert out[0] == 0.0 and out[1] == 0.0
    assert out[2] == pytest.approx(0.6)
    assert out[3] == pytest.approx(0.8)


def test_normalize_rows():
    mat = np.array([[3.0, 4.0], [0.0, 0.0]], dtype=np.float32)
    out = l2_normalize(mat)
    assert out[0].tolist() == pytest.approx([0.6, 0.8])
    assert out[1].tolist() == [0.0, 0.0]


def test_sanitize_returns_copy():
    v = np.array([1.0, np.nan], dtype=np.float32)
    out = sanitize(v)
    assert out.tolist() == [1.0, 0.0]
    assert np.isnan(v[1])


def test_cosine_self_similarity_and_symmetry():
    rng = np.random.default_rng(11)
    a = l2_normalize(rng.normal(size=EMBEDDING_DIM))
    b = rng.normal(size=EMBEDDING_DIM)
    assert cosine_similarity(a, a) == pytest.approx(1.0, abs=1e-6)
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a), abs=1e-12)
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, -a) == pytest.approx(-1.0, abs=1e-6)


def test_cosine_is_magnitude_independent():
    a = np.array([1.0, 2.0, 3.0])
    assert cosine_similarity(a, a * 1e4) == pytest.approx(1.0)


def test_cosine_zero_norm_returns_zero():
    a = np.zeros(8)
    b = np.ones(8)
    assert cosine_similarity(a, b) == 0.0
    assert cosine_similarity(b, a) == 0.0


def test_cosine_dimension_mismatch():
    with pytest.raises(DimensionMismatchError):
        cosine_similarity(np.ones(3), np.ones(4))


def test_cosine_ignores_non_finite_components():
    a = np.array([1.0, np.nan, 0.0])
    b = np.array([1.0, 5.0, np.inf])
    assert cosine_similarity(a, b) == pytest.approx(1.0 / np.sqrt(26.0))
