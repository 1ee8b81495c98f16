from __future__ import annotations

import numpy as np

from stellar_eyes.errors import DimensionMismatchError


def sanitize(vec: np.ndarray) -> np.ndarray:
    """Return a float32 copy with NaN/Inf components replaced by 0.0."""
    arr = np.array(vec, dtype=np.float32)
    arr[~np.isfinite(arr)] = 0.0
    return arr


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise).

    Non-finite components are zeroed first. A zero (or NaN) norm yields the
    all-zero vector instead of propagating NaN into stored state.
    """
    arr = sanitize(vec)
    if arr.ndim == 1:
        norm = float(np.linalg.norm(arr.astype(np.float64)))
        if norm == 0.0 or np.isnan(norm):
            return np.zeros_like(arr)
        return (arr.astype(np.float64) / norm).astype(np.float32)
    if arr.ndim == 2:
        mat = arr.astype(np.float64)
        norms = np.linalg.norm(mat, axis=1, keepdims=True)
        safe = np.where(norms > 0.0, norms, 1.0)
        out = np.where(norms > 0.0, mat / safe, 0.0)
        return out.astype(np.float32)
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity for 1D vectors; 0.0 when either norm is zero."""
    va = sanitize(np.asarray(a).reshape(-1)).astype(np.float64)
    vb = sanitize(np.asarray(b).reshape(-1)).astype(np.float64)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    sim = float(np.dot(va, vb) / (na * nb))
    return max(-1.0, min(1.0, sim))
