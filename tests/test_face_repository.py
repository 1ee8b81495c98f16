from __future__ import annotations

from pathlib import Path

import pytest

from conftest import face_image, unit
from stellar_eyes.face.gallery import FaceGallery
from stellar_eyes.face.models import StoredFace
from stellar_eyes.face.repository import FaceRepository
from stellar_eyes.face.store import GalleryStore
from stellar_eyes.utils.image import image_to_data_url


def _repo(tmp_path: Path) -> FaceRepository:
    return FaceRepository(FaceGallery(), GalleryStore(tmp_path / "vectors.json"))


def _reloaded(tmp_path: Path) -> FaceGallery:
    gallery = FaceGallery()
    gallery.load(GalleryStore(tmp_path / "vectors.json"))
    return gallery


def _face(face_id: str, k: int) -> StoredFace:
    return StoredFace(id=face_id, vector=unit(k), name=face_id.upper(), image_uri=image_to_data_url(face_image(k)), timestamp=k)


def test_mutations_are_persisted(tmp_path: Path):
    repo = _repo(tmp_path)
    repo.add_face(_face("a", 1))
    repo.add_face(_face("b", 2))
    assert [f.id for f in _reloaded(tmp_path).list()] == ["a", "b"]

    assert repo.update_face_name("a", "Alice") is True
    assert _reloaded(tmp_path).get("a").name == "Alice"

    assert repo.delete_face("b") is True
    assert [f.id for f in _reloaded(tmp_path).list()] == ["a"]


def test_missing_ids_do_not_write(tmp_path: Path):
    repo = _repo(tmp_path)
    assert repo.delete_face("ghost") is False
    assert repo.update_face_name("ghost", "Casper") is False
    assert not repo.store.exists()


def test_find_most_similar_face(tmp_path: Path):
    repo = _repo(tmp_path)
    repo.add_face(_face("a", 1))
    assert repo.find_most_similar_face(unit(1)).id == "a"
    assert repo.find_most_similar_face(unit(2)) is None


def test_update_vectors_reembeds_and_saves(tmp_path: Path, embedder):
    repo = _repo(tmp_path)
    face = _face("a", 1)
    face.vector = unit(9)
    repo.add_face(face)

    assert repo.update_vectors(embedder) == 1
    assert _reloaded(tmp_path).find_nearest(unit(1))[0] == "a"


def test_load_reports_status(tmp_path: Path):
    repo = _repo(tmp_path)
    assert repo.load().startswith("No saved gallery")

    repo.add_face(_face("a", 1))
    assert repo.load() == "Loaded 1 faces."

    repo.store.path.write_text("[{]", encoding="utf-8")
    status = repo.load()
    assert status.startswith("Error:")
    # gallery kept its previous contents
    assert [f.id for f in repo.all_faces()] == ["a"]


def test_export(tmp_path: Path):
    repo = _repo(tmp_path)
    assert repo.export(tmp_path / "out") == "No vector data to export."
    repo.add_face(_face("a", 1))
    assert repo.export(tmp_path / "out").startswith("Successfully")
    assert len(list((tmp_path / "out").glob("vectors_export_*.json"))) == 1


def test_cli_list_rename_remove(tmp_path: Path, capsys: pytest.CaptureFixture):
    import manage_faces

    repo = _repo(tmp_path)
    repo.add_face(_face("a", 1))
    gallery_arg = str(tmp_path / "vectors.json")

    assert manage_faces.main(["--gallery", gallery_arg, "rename", "a", "Alice"]) == 0
    assert manage_faces.main(["--gallery", gallery_arg, "list"]) == 0
    out = capsys.readouterr().out
    assert "a\tAlice\t1" in out

    assert manage_faces.main(["--gallery", gallery_arg, "remove", "zzz"]) == 1
    assert manage_faces.main(["--gallery", gallery_arg, "remove", "a"]) == 0
    assert len(_reloaded(tmp_path)) == 0


def test_cli_export(tmp_path: Path, capsys: pytest.CaptureFixture):
    import manage_faces

    repo = _repo(tmp_path)
    repo.add_face(_face("a", 1))
    code = manage_faces.main(["--gallery", str(tmp_path / "vectors.json"), "export", str(tmp_path / "out")])
    assert code == 0
    assert "Successfully" in capsys.readouterr().out


def test_cli_enroll_and_recognize_with_dummy_model(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, embedder, capsys):
    import cv2

    import manage_faces

    # Patch the model factory to avoid downloading InsightFace weights during tests.
    monkeypatch.setattr(manage_faces, "_build_embedder", lambda args: embedder)

    img_path = tmp_path / "face.png"
    assert cv2.imwrite(str(img_path), face_image(50))
    gallery_arg = str(tmp_path / "vectors.json")

    assert manage_faces.main(["--gallery", gallery_arg, "enroll", str(img_path), "--name", "Carol"]) == 0
    face_id = capsys.readouterr().out.strip()
    assert _reloaded(tmp_path).get(face_id).name == "Carol"

    # already enrolled
    assert manage_faces.main(["--gallery", gallery_arg, "enroll", str(img_path)]) == 1

    assert manage_faces.main(["--gallery", gallery_arg, "recognize", str(img_path)]) == 0
    assert "Carol" in capsys.readouterr().out
