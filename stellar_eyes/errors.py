from __future__ import annotations


class FaceGalleryError(Exception):
    """Base class for errors raised by the face gallery core."""


class DimensionMismatchError(FaceGalleryError, ValueError):
    """Vector length differs from the expected embedding dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector must be {expected}-dimensional, got {actual}")
        self.expected = int(expected)
        self.actual = int(actual)


class DecodeError(FaceGalleryError, ValueError):
    """A persisted record or an encoded image could not be decoded."""


class DuplicateIdError(FaceGalleryError, KeyError):
    def __init__(self, face_id: str):
        super().__init__(face_id)
        self.face_id = face_id

    def __str__(self) -> str:
        return f"Face id already enrolled: {self.face_id}"


class InvalidStateError(FaceGalleryError, RuntimeError):
    """Operation not allowed in the current recognition state."""


class EmbeddingError(FaceGalleryError, RuntimeError):
    """The embedding model failed to produce a usable vector."""
