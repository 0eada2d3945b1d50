"""转换任务的配置模型。"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

from webp_batch.core.exceptions import InvalidConfigurationError

DEFAULT_QUALITY = 80
MIN_QUALITY = 1
MAX_QUALITY = 100

COLLISION_STRATEGIES = {"index", "overwrite"}


def clamp_quality(value: float) -> int:
    """把任意数值限制到合法的 WebP 质量区间 1..100。"""

    return int(max(MIN_QUALITY, min(round(value), MAX_QUALITY)))


@dataclass(slots=True)
class ResizeConfig:
    """缩放配置，启用后强制拉伸到固定宽高。"""

    enabled: bool = False
    width: int = 800
    height: int = 600


@dataclass(slots=True)
class QualityConfig:
    """编码质量覆盖配置。"""

    enabled: bool = False
    value: int = DEFAULT_QUALITY


@dataclass(slots=True)
class RenameConfig:
    """输出文件重命名配置。"""

    enabled: bool = False
    base_name: str = "output"
    on_collision: str = "index"  # index | overwrite


@dataclass(slots=True)
class ConversionConfig:
    """单次批量转换的配置集合。"""

    resize: ResizeConfig = field(default_factory=ResizeConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    rename: RenameConfig = field(default_factory=RenameConfig)
    output_dir: Optional[Path] = None
    max_workers: Optional[int] = None

    def validate(self) -> None:
        """检查配置是否合法，不合法时抛出 InvalidConfigurationError。"""

        if self.resize.enabled and (self.resize.width <= 0 or self.resize.height <= 0):
            raise InvalidConfigurationError(
                f"缩放尺寸必须大于 0: {self.resize.width}x{self.resize.height}"
            )
        if self.quality.enabled and not MIN_QUALITY <= self.quality.value <= MAX_QUALITY:
            raise InvalidConfigurationError(f"质量必须在 1~100 之间: {self.quality.value}")
        if self.rename.on_collision not in COLLISION_STRATEGIES:
            raise InvalidConfigurationError(f"未知的重名策略: {self.rename.on_collision}")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfigurationError(f"并发线程数必须至少为 1: {self.max_workers}")

    @property
    def effective_quality(self) -> int:
        if self.quality.enabled:
            return self.quality.value
        return DEFAULT_QUALITY

    @property
    def resize_spec(self) -> Optional[Tuple[int, int]]:
        if not self.resize.enabled:
            return None
        return self.resize.width, self.resize.height

    @property
    def rename_base(self) -> Optional[str]:
        """启用重命名且名称非空时返回基础文件名。"""

        if not self.rename.enabled:
            return None
        base = self.rename.base_name.strip()
        return base or None

    @property
    def worker_count(self) -> int:
        if self.max_workers:
            return self.max_workers
        return os.cpu_count() or 1


def resolve_output_dir(config: ConversionConfig, input_files: Sequence[Path]) -> Path:
    """确定输出目录：配置值 > 首个输入文件所在目录 > 当前工作目录。"""

    if config.output_dir is not None:
        output_dir = config.output_dir
    elif input_files:
        output_dir = Path(input_files[0]).parent
    else:
        output_dir = Path.cwd()

    output_dir = output_dir.expanduser().resolve()
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir
