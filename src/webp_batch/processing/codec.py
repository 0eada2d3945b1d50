"""图片解码、缩放与 WebP 编码。"""

from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from webp_batch.core.config import MAX_QUALITY, MIN_QUALITY
from webp_batch.core.exceptions import InvalidConfigurationError, WebpBatchError

_RESAMPLING = getattr(Image, "Resampling", Image)

LOGGER = logging.getLogger(__name__)

SUPPORTED_INPUT_FORMATS = {"JPEG", "MPO", "PNG"}  # MPO: 多图 JPEG（相机常见）


class DecodeError(WebpBatchError):
    """源图片缺失、无法读取或格式不受支持。"""


class EncodeError(WebpBatchError):
    """编码器拒绝了图像数据。"""


def decode(path: Path) -> Image.Image:
    """加载单张图片并执行 EXIF 旋转校正。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(path) as img:
            image_format = img.format
            if image_format not in SUPPORTED_INPUT_FORMATS:
                raise DecodeError(f"不支持的图片格式 {image_format}: {path}")
            img.load()
            transposed = ImageOps.exif_transpose(img)
            return transposed.copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise DecodeError(f"无法加载图像: {path}") from exc


def resize(image: Image.Image, width: int, height: int) -> Image.Image:
    """拉伸到精确的 width x height，不保持宽高比。"""

    if width <= 0 or height <= 0:
        raise InvalidConfigurationError(f"缩放尺寸必须大于 0: {width}x{height}")
    return image.resize((width, height), _RESAMPLING.LANCZOS)


def encode_webp(image: Image.Image, quality: int) -> bytes:
    """以有损模式编码为 WebP 字节。"""

    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise InvalidConfigurationError(f"质量必须在 1~100 之间: {quality}")

    width, height = image.size
    if width <= 0 or height <= 0:
        raise EncodeError(f"图像尺寸无效: {width}x{height}")

    prepared = _prepare_mode(image)
    buffer = io.BytesIO()
    try:
        prepared.save(buffer, format="WEBP", quality=quality, lossless=False)
    except (OSError, ValueError) as exc:
        raise EncodeError(f"WebP 编码失败: {exc}") from exc
    finally:
        if prepared is not image:
            prepared.close()
    return buffer.getvalue()


def _prepare_mode(image: Image.Image) -> Image.Image:
    """WebP 只接受 RGB/RGBA，其他模式先转换。"""

    if image.mode in {"RGB", "RGBA"}:
        return image

    if image.mode in {"LA", "PA"} or (image.mode == "P" and "transparency" in image.info):
        return image.convert("RGBA")

    # CMYK / L / P / I;16 等直接转换
    return image.convert("RGB")
