"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple


class ItemStatus(str, Enum):
    """单张图片的处理状态，只能单向推进。"""

    LOADED = "loaded"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ItemStatus.SUCCEEDED, ItemStatus.FAILED}

    def can_advance_to(self, target: "ItemStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    ItemStatus.LOADED: {ItemStatus.PROCESSING},
    ItemStatus.PROCESSING: {ItemStatus.SUCCEEDED, ItemStatus.FAILED},
    ItemStatus.SUCCEEDED: set(),
    ItemStatus.FAILED: set(),
}


@dataclass(frozen=True, slots=True)
class JobUnit:
    """描述单个转换任务，提交后不可变。"""

    index: int
    source_path: Path
    destination_path: Path
    resize: Optional[Tuple[int, int]]
    quality: int


@dataclass(slots=True)
class ResultRecord:
    """单个任务的处理结果，与 JobUnit 按 index 一一对应。"""

    index: int
    display_name: str
    original_size: int
    compressed_size: Optional[int] = None
    compression_ratio: Optional[float] = None
    status: ItemStatus = ItemStatus.LOADED
    error_message: Optional[str] = None
    output_path: Optional[Path] = None
    timings: Dict[str, float] = field(default_factory=dict)


def compression_ratio(original_size: int, compressed_size: int) -> float:
    """压缩率：被去掉的体积比例，输出更大时为负数。"""

    if original_size <= 0:
        return 0.0
    return 1.0 - compressed_size / original_size
