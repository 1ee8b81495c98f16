from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple, Union

import numpy as np


@dataclass(eq=False)
class StoredFace:
    """An enrolled identity.

    `id` is immutable once created; only `name` (rename) and `vector`
    (re-embedding) change during the entry's lifetime.
    """

    id: str
    vector: np.ndarray
    name: str
    image_uri: str
    timestamp: int

    def copy(self) -> "StoredFace":
        return replace(self, vector=np.array(self.vector, dtype=np.float32, copy=True))


@dataclass(eq=False)
class FaceCandidate:
    """Unmatched observation waiting for the operator to pick one to enroll."""

    image: Any
    embedding: np.ndarray


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Matched:
    face: StoredFace
    probe_image: Any
    similarity: float


@dataclass(frozen=True)
class PendingSelection:
    candidates: Tuple[FaceCandidate, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Enrolled:
    face: StoredFace


RecognitionOutcome = Union[Idle, Matched, PendingSelection, Enrolled]


def outcome_name(outcome: Optional[RecognitionOutcome]) -> str:
    if outcome is None:
        return "none"
    return type(outcome).__name__
