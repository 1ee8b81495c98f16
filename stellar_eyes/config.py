# 人脸 embedding 维度（由 512 维识别模型决定，不可配置）
EMBEDDING_DIM = 512

# 余弦相似度接受阈值：严格大于该值才认为是同一个人
MATCH_THRESHOLD = 0.84

# 未知人脸候选缓冲区容量，满了之后提示用户选择一张保存
MAX_CANDIDATES = 3

# 上游推理限速：两次推理最小间隔（毫秒），即最多约 10 FPS
MIN_INFERENCE_INTERVAL_MS = 100

# 持久化文件
DEFAULT_GALLERY_FILE = "vectors.json"
EXPORT_FILE_PREFIX = "vectors_export_"
SCHEMA_VERSION = "v1"

# 入库人脸图像编码格式（data URL 的 MIME 类型由此决定）
REFERENCE_IMAGE_FORMAT = "png"
