import json
import math

from typing import Dict, Iterable, List, Optional

import numpy as np

from stellar_eyes.config import EMBEDDING_DIM, SCHEMA_VERSION
from stellar_eyes.errors import DecodeError
from stellar_eyes.face.models import StoredFace
from stellar_eyes.utils.math import l2_normalize

_REQUIRED_KEYS = ("id", "vector", "name", "imageUri", "timestamp")


def serialize_face(face: StoredFace) -> Dict:
    """Serialize a StoredFace into a JSON-safe record.

    Key names (`imageUri`, epoch-millis `timestamp`) match the files written by
    the mobile app, so exported galleries stay interchangeable.
    """
    vec = np.asarray(face.vector, dtype=np.float32).reshape(-1)
    return {
        "id": str(face.id),
        "vector": [float(x) for x in vec],
        "name": str(face.name),
        "imageUri": str(face.image_uri),
        "timestamp": int(face.timestamp),
    }


def deserialize_face(record: Dict, dim: int = EMBEDDING_DIM) -> StoredFace:
    """Validate one record and rebuild a StoredFace (vector re-normalized)."""
    if not isinstance(record, dict):
        raise DecodeError(f"face record must be an object, got {type(record).__name__}")
    missing = [k for k in _REQUIRED_KEYS if k not in record]
    if missing:
        raise DecodeError(f"face record missing keys: {missing}")

    face_id = record["id"]
    name = record["name"]
    image_uri = record["imageUri"]
    if not isinstance(face_id, str) or not face_id:
        raise DecodeError("face record id must be a non-empty string")
    if not isinstance(name, str):
        raise DecodeError(f"face {face_id}: name must be a string")
    if not isinstance(image_uri, str):
        raise DecodeError(f"face {face_id}: imageUri must be a string")

    ts = record["timestamp"]
    # bool is an int subclass; reject it explicitly
    if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not math.isfinite(ts) or int(ts) != ts:
        raise DecodeError(f"face {face_id}: timestamp must be integer epoch millis")

    raw = record["vector"]
    if not isinstance(raw, list):
        raise DecodeError(f"face {face_id}: vector must be an array")
    if len(raw) != int(dim):
        raise DecodeError(f"face {face_id}: vector must be {dim}-dimensional, got {len(raw)}")
    if any(isinstance(x, bool) or not isinstance(x, (int, float)) for x in raw):
        raise DecodeError(f"face {face_id}: vector must contain only numbers")

    return StoredFace(
        id=face_id,
        vector=l2_normalize(np.asarray(raw, dtype=np.float32)),
        name=name,
        image_uri=image_uri,
        timestamp=int(ts),
    )


def faces_to_records(faces: Iterable[StoredFace]) -> List[Dict]:
    return [serialize_face(f) for f in faces]


def encode_gallery(faces: Iterable[StoredFace], schema_version: str = SCHEMA_VERSION) -> str:
    """Encode the gallery as a versioned JSON document."""
    doc = {"schema_version": schema_version, "faces": faces_to_records(faces)}
    return json.dumps(doc, ensure_ascii=False)


def encode_gallery_legacy(faces: Iterable[StoredFace]) -> str:
    """Bare JSON array of records (unversioned format used by exports)."""
    return json.dumps(faces_to_records(faces), ensure_ascii=False, indent=2)


def decode_gallery(
    text: str, schema_version: str = SCHEMA_VERSION, dim: int = EMBEDDING_DIM
) -> List[StoredFace]:
    """Decode a stored gallery.

    Accepts the versioned document and, for backward compatibility, the legacy
    bare array. Anything else raises DecodeError.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"gallery is not valid JSON: {e}") from e

    records: Optional[list] = None
    if isinstance(data, dict):
        version = data.get("schema_version")
        if version != schema_version:
            raise DecodeError(f"unsupported gallery schema_version: {version!r}")
        records = data.get("faces")
        if not isinstance(records, list):
            raise DecodeError("gallery document has no 'faces' array")
    elif isinstance(data, list):
        # Legacy: unversioned array of records
        records = data
    else:
        raise DecodeError(f"unexpected gallery JSON type: {type(data).__name__}")

    return [deserialize_face(r, dim=dim) for r in records]
