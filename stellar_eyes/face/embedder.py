from __future__ import annotations

import threading
import time

from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
import torch

from stellar_eyes.config import EMBEDDING_DIM, MIN_INFERENCE_INTERVAL_MS
from stellar_eyes.errors import EmbeddingError
from stellar_eyes.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)

EmbedFn = Callable[[np.ndarray], np.ndarray]

# 进程内模型缓存：避免重复构造 Embedder 时重复加载 ONNX 模型
_FACEAPP_CACHE: Dict[Tuple, Any] = {}


def _resolve_device(device: str) -> str:
    s = str(device).strip().lower()
    if s in {"gpu", "cuda"}:
        return "gpu"
    if s in {"auto", ""}:
        try:
            return "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            return "cpu"
    return "cpu"


class InsightFaceEmbedder:
    """512-d ArcFace embedding of an already cropped face image (BGR).

    Face detection and cropping happen upstream; this only runs the recognition
    model. The model is loaded lazily on first use.
    """

    def __init__(self, model_name: str = "buffalo_l", device: str = "auto", dim: int = EMBEDDING_DIM):
        self.model_name = model_name
        self.device = _resolve_device(device)
        self.dim = int(dim)
        self.ctx_id = 0 if self.device == "gpu" else -1
        self._rec_model = None
        self._lock = threading.Lock()

    def _load(self):
        if self._rec_model is not None:
            return self._rec_model

        providers = ["CUDAExecutionProvider"] if self.device == "gpu" else ["CPUExecutionProvider"]
        key = (str(self.model_name), tuple(providers), int(self.ctx_id))
        app = _FACEAPP_CACHE.get(key)
        if app is None:
            # 懒加载：只有真正需要推理时才引入 insightface
            from insightface.app import FaceAnalysis

            try:
                with suppress_fds():
                    # FaceAnalysis 要求 detection 模块存在；这里只使用 recognition
                    app = FaceAnalysis(
                        name=self.model_name,
                        providers=providers,
                        allowed_modules=["detection", "recognition"],
                    )
                    app.prepare(ctx_id=self.ctx_id)
            except Exception as e:
                logger.error(f"模型初始化失败: {e}")
                raise EmbeddingError(f"cannot load InsightFace model {self.model_name}: {e}") from e
            _FACEAPP_CACHE[key] = app
            logger.info(f"已加载 InsightFace 模型: {self.model_name} ({self.device})")

        rec_model = getattr(app, "models", {}).get("recognition")
        if rec_model is None or not hasattr(rec_model, "get_feat"):
            raise EmbeddingError(f"model pack {self.model_name} has no recognition model")
        self._rec_model = rec_model
        return rec_model

    def __call__(self, image: np.ndarray) -> np.ndarray:
        img = np.asarray(image)
        if img.ndim != 3 or img.shape[2] != 3 or img.size == 0:
            raise EmbeddingError(f"expected HxWx3 BGR face image, got shape {img.shape}")

        with self._lock:
            rec_model = self._load()
            try:
                # get_feat 内部会 resize 到模型输入尺寸 (112x112)
                feat = rec_model.get_feat([img])
            except Exception as e:
                raise EmbeddingError(f"embedding inference failed: {e}") from e

        vec = np.asarray(feat, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.dim:
            raise EmbeddingError(f"model returned {vec.shape[0]}-d embedding, expected {self.dim}")
        return vec


class ThrottledEmbedder:
    """Skip inference when called more often than `min_interval_ms`.

    Purely a throughput limit for continuous camera streams; returns None for
    skipped frames.
    """

    def __init__(
        self,
        embed_fn: EmbedFn,
        min_interval_ms: int = MIN_INFERENCE_INTERVAL_MS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.embed_fn = embed_fn
        self.min_interval_ms = int(min_interval_ms)
        self._clock = clock or time.monotonic
        self._last_ms: Optional[float] = None
        self._lock = threading.Lock()

    def __call__(self, image: np.ndarray) -> Optional[np.ndarray]:
        now_ms = float(self._clock()) * 1000.0
        with self._lock:
            if self._last_ms is not None and now_ms - self._last_ms < self.min_interval_ms:
                return None
            self._last_ms = now_ms
        return self.embed_fn(image)
