"""Recognition session state machine.

One engine instance runs one session at a time:

    Idle --submit(match)--------------------------> Matched
    Idle --submit(no match, auto-record, buffer full)--> PendingSelection
    PendingSelection --commit(i)------------------> Enrolled
    any --reset()---------------------------------> Idle

Below-capacity unknown probes are buffered silently and the engine stays Idle.
"""
from __future__ import annotations

import threading
import uuid

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import numpy as np

from stellar_eyes.config import MAX_CANDIDATES, REFERENCE_IMAGE_FORMAT
from stellar_eyes.errors import DecodeError, DimensionMismatchError, InvalidStateError
from stellar_eyes.face.embedder import ThrottledEmbedder
from stellar_eyes.face.gallery import FaceGallery, now_millis
from stellar_eyes.face.models import (
    Enrolled,
    FaceCandidate,
    Idle,
    Matched,
    PendingSelection,
    RecognitionOutcome,
    StoredFace,
    outcome_name,
)
from stellar_eyes.face.store import GalleryStore
from stellar_eyes.utils.image import data_url_to_image, image_to_data_url
from stellar_eyes.utils.log import get_logger
from stellar_eyes.utils.math import cosine_similarity

logger = get_logger(__name__)


@dataclass
class EngineConfig:
    # Buffer unmatched faces as enrollment candidates.
    auto_record_unknown: bool = False
    max_candidates: int = MAX_CANDIDATES
    image_format: str = REFERENCE_IMAGE_FORMAT


def _uuid4() -> str:
    return str(uuid.uuid4())


class RecognitionEngine:
    def __init__(
        self,
        gallery: FaceGallery,
        embed_fn: Callable[[Any], np.ndarray],
        store: Optional[GalleryStore] = None,
        config: Optional[EngineConfig] = None,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], int]] = None,
        rescore_fn: Optional[Callable[[Any], np.ndarray]] = None,
    ):
        self.gallery = gallery
        self.embed_fn = embed_fn
        # 参考图像重新提取特征时绕过限流
        if rescore_fn is None:
            rescore_fn = embed_fn.embed_fn if isinstance(embed_fn, ThrottledEmbedder) else embed_fn
        self.rescore_fn = rescore_fn
        self.store = store
        self.config = config or EngineConfig()
        self.id_factory = id_factory or _uuid4
        self.clock = clock or now_millis

        self._state: RecognitionOutcome = Idle()
        self._candidates: List[FaceCandidate] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> RecognitionOutcome:
        with self._lock:
            return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._candidates)

    def reset(self) -> RecognitionOutcome:
        with self._lock:
            if self._candidates:
                logger.debug(f"丢弃 {len(self._candidates)} 个未提交的候选人脸")
            self._candidates = []
            self._state = Idle()
            return self._state

    def recognize(self, image: Any) -> RecognitionOutcome:
        """Embed the probe image and run one recognition step.

        A throttled embedder may return None for a skipped frame; the state is
        left as it is in that case.
        """
        embedding = self.embed_fn(image)
        if embedding is None:
            return self.state
        return self.submit(image, embedding)

    def submit(self, image: Any, embedding: np.ndarray) -> RecognitionOutcome:
        with self._lock:
            if not isinstance(self._state, Idle):
                raise InvalidStateError(
                    f"recognition session already in state {outcome_name(self._state)}; call reset() first"
                )

            emb = np.asarray(embedding, dtype=np.float32).reshape(-1)
            face_id, score = self.gallery.find_nearest(emb)

            if face_id is not None:
                face = self.gallery.get(face_id)
                # The entry may vanish between search and lookup if removed concurrently.
                if face is not None:
                    similarity = self._display_similarity(face, emb, score)
                    self._state = Matched(face=face, probe_image=image, similarity=similarity)
                    logger.info(f"识别成功: {face.name} (id={face.id}, 相似度: {similarity:.4f})")
                    return self._state

            if not self.config.auto_record_unknown:
                logger.debug(f"未匹配 (best={score:.4f})，未开启自动记录，丢弃")
                return self._state

            self._candidates.append(FaceCandidate(image=image, embedding=emb.copy()))
            if len(self._candidates) >= int(self.config.max_candidates):
                self._state = PendingSelection(candidates=tuple(self._candidates))
                self._candidates = []
                logger.info(f"收集到 {len(self._state.candidates)} 张新的人脸，等待选择")
            else:
                logger.debug(f"收集到新的候选人脸: {len(self._candidates)}/{self.config.max_candidates}")
            return self._state

    def _display_similarity(self, face: StoredFace, probe: np.ndarray, fallback: float) -> float:
        """Score shown to the operator: probe vs a fresh embedding of the stored image.

        Falls back to the gallery score when the stored image cannot be decoded.
        """
        try:
            ref_img = data_url_to_image(face.image_uri)
        except DecodeError as e:
            logger.warning(f"参考图像解码失败，使用图库相似度: id={face.id}, {e}")
            return float(fallback)
        ref_vec = np.asarray(self.rescore_fn(ref_img), dtype=np.float32).reshape(-1)
        if ref_vec.shape[0] != probe.shape[0]:
            raise DimensionMismatchError(probe.shape[0], ref_vec.shape[0])
        return cosine_similarity(ref_vec, probe)

    def commit(self, index: int) -> Optional[StoredFace]:
        """Enroll the selected candidate of the pending selection.

        Out-of-range indices are ignored (no gallery change, no write).
        """
        with self._lock:
            state = self._state
            if not isinstance(state, PendingSelection):
                raise InvalidStateError(f"commit requires PendingSelection, current state is {outcome_name(state)}")
            if not (0 <= int(index) < len(state.candidates)):
                logger.warning(f"候选索引越界，忽略: {index} (共 {len(state.candidates)} 个)")
                return None

            candidate = state.candidates[int(index)]
            face = self._enroll(candidate.image, candidate.embedding, prefix="p")
            self._state = Enrolled(face=face)
            return face

    def enroll_if_unknown(self, image: Any, embedding: Optional[np.ndarray] = None) -> Optional[StoredFace]:
        """Photo mode: enroll the probe right away unless it already matches someone.

        Does not touch the session state.
        """
        with self._lock:
            emb = self.embed_fn(image) if embedding is None else embedding
            if emb is None:
                return None
            emb = np.asarray(emb, dtype=np.float32).reshape(-1)
            face_id, score = self.gallery.find_nearest(emb)
            if face_id is not None:
                logger.info(f"已存在匹配人脸，跳过入库: id={face_id} (相似度: {score:.4f})")
                return None
            return self._enroll(image, emb, prefix="P")

    def _enroll(self, image: Any, embedding: np.ndarray, prefix: str) -> StoredFace:
        ts = int(self.clock())
        face = self.gallery.add(
            self.id_factory(),
            embedding,
            f"{prefix}{ts}",
            image_to_data_url(image, fmt=self.config.image_format),
            timestamp=ts,
        )
        if self.store is not None:
            try:
                self.gallery.save(self.store)
            except Exception:
                # 持久化失败时撤销入库，保证重试不会重复添加
                self.gallery.remove(face.id)
                logger.error(f"人脸入库保存失败，已回滚: id={face.id}")
                raise
        logger.info(f"新的人脸已入库: {face.name} (id={face.id})")
        return face
