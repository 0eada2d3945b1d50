"""输出目录、目标文件名与字节写入。"""

from __future__ import annotations

import logging
from pathlib import Path

from webp_batch.core.config import ConversionConfig
from webp_batch.core.exceptions import WebpBatchError

LOGGER = logging.getLogger(__name__)

OUTPUT_SUFFIX = ".webp"


class ImageWriteError(WebpBatchError):
    """输出写入失败。"""


class OutputManager:
    """根据配置决定每个输入对应的输出路径。"""

    def __init__(self, config: ConversionConfig, output_dir: Path, batch_size: int) -> None:
        self.config = config
        self.output_dir = output_dir
        self.batch_size = batch_size

    def decide_destination(self, index: int, source_path: Path) -> Path:
        """计算输出路径。

        未启用重命名时使用原文件名主干；启用重命名时，``index`` 策略在多文件批次中
        追加序号，``overwrite`` 策略让所有文件写入同一个名字（后完成的覆盖先完成的）。
        """

        base = self.config.rename_base
        if base is None:
            return self.output_dir / f"{source_path.stem}{OUTPUT_SUFFIX}"

        if self.config.rename.on_collision == "overwrite" or self.batch_size <= 1:
            return self.output_dir / f"{base}{OUTPUT_SUFFIX}"

        return self.output_dir / f"{base}_{index + 1}{OUTPUT_SUFFIX}"


def write_bytes(data: bytes, destination: Path) -> None:
    """创建或截断目标文件并写入全部字节。失败时不清理残留文件。"""

    try:
        with destination.open("wb") as handle:
            handle.write(data)
    except OSError as exc:
        LOGGER.debug("写入 %s 失败: %s", destination, exc)
        raise ImageWriteError(f"写入文件失败: {destination} ({exc.strerror or exc})") from exc
