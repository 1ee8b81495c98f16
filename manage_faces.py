"""命令行入口：管理人脸图库（列出/改名/删除/导出/入库/识别/重算 embedding）。"""

from __future__ import annotations

import argparse
import sys

from stellar_eyes.errors import FaceGalleryError
from stellar_eyes.face.engine import EngineConfig, RecognitionEngine
from stellar_eyes.face.gallery import FaceGallery
from stellar_eyes.face.models import Matched
from stellar_eyes.face.repository import FaceRepository
from stellar_eyes.face.store import GalleryStore
from stellar_eyes.utils.image import read_image
from stellar_eyes.utils.log import get_logger

logger = get_logger(__name__)


def _build_embedder(args):
    from stellar_eyes.face.embedder import InsightFaceEmbedder

    return InsightFaceEmbedder(model_name=args.model, device=args.device)


def cmd_list(repo: FaceRepository, args) -> int:
    faces = repo.all_faces()
    logger.info(f"图库共 {len(faces)} 个人脸")
    for f in faces:
        print(f"{f.id}\t{f.name}\t{f.timestamp}")
    return 0


def cmd_rename(repo: FaceRepository, args) -> int:
    if not repo.update_face_name(args.id, args.name):
        logger.warning(f"未找到人脸: {args.id}")
        return 1
    logger.info(f"已改名: {args.id} -> {args.name}")
    return 0


def cmd_remove(repo: FaceRepository, args) -> int:
    if not repo.delete_face(args.id):
        logger.warning(f"未找到人脸: {args.id}")
        return 1
    logger.info(f"已删除: {args.id}")
    return 0


def cmd_export(repo: FaceRepository, args) -> int:
    status = repo.export(args.out_dir)
    print(status)
    return 0 if status.startswith("Successfully") else 1


def cmd_enroll(repo: FaceRepository, args) -> int:
    engine = RecognitionEngine(repo.gallery, _build_embedder(args), store=repo.store)
    image = read_image(args.image)
    face = engine.enroll_if_unknown(image)
    if face is None:
        logger.info("该人脸已在图库中，未重复入库")
        return 1
    if args.name:
        repo.update_face_name(face.id, args.name)
    print(face.id)
    return 0


def cmd_recognize(repo: FaceRepository, args) -> int:
    engine = RecognitionEngine(repo.gallery, _build_embedder(args), config=EngineConfig(auto_record_unknown=False))
    image = read_image(args.image)
    outcome = engine.recognize(image)
    if isinstance(outcome, Matched):
        print(f"{outcome.face.id}\t{outcome.face.name}\t{outcome.similarity:.4f}")
        return 0
    for face_id, sim in repo.gallery.rank(engine.embed_fn(image), topk=args.topk):
        logger.info(f"  候选: {face_id} 相似度 {sim:.4f}")
    print("未知")
    return 1


def cmd_reembed(repo: FaceRepository, args) -> int:
    updated = repo.update_vectors(_build_embedder(args))
    logger.info(f"已更新 {updated} 个人脸的 embedding")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="人脸图库管理")
    parser.add_argument("--gallery", "-g", default="data", help="图库文件或目录（默认 data/vectors.json）")
    parser.add_argument("--model", default="buffalo_l", help="InsightFace 模型名称")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="计算设备：auto/cpu/gpu（默认 auto：有 CUDA 就用 GPU）",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="列出所有人脸").set_defaults(func=cmd_list)

    p = sub.add_parser("rename", help="修改人脸名称")
    p.add_argument("id")
    p.add_argument("name")
    p.set_defaults(func=cmd_rename)

    p = sub.add_parser("remove", help="删除人脸")
    p.add_argument("id")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("export", help="导出图库 JSON 快照")
    p.add_argument("out_dir")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("enroll", help="从已裁剪的人脸图像入库（已存在则跳过）")
    p.add_argument("image")
    p.add_argument("--name", default=None)
    p.set_defaults(func=cmd_enroll)

    p = sub.add_parser("recognize", help="识别已裁剪的人脸图像")
    p.add_argument("image")
    p.add_argument("--topk", type=int, default=3)
    p.set_defaults(func=cmd_recognize)

    sub.add_parser("reembed", help="用当前模型重新计算所有 embedding").set_defaults(func=cmd_reembed)

    args = parser.parse_args(argv)

    repo = FaceRepository(FaceGallery(), GalleryStore(args.gallery))
    status = repo.load()
    logger.info(status)
    if status.startswith("Error"):
        return 2

    try:
        return int(args.func(repo, args))
    except FaceGalleryError as e:
        logger.error(f"执行失败: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
