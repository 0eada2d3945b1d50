"""批次共享进度状态：计数器、结果记录与正在处理标记。"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from webp_batch.core.exceptions import InvalidStatusTransition
from webp_batch.core.models import ItemStatus, JobUnit, ResultRecord, compression_ratio


@dataclass(slots=True)
class ProgressUpdate:
    """批处理过程中的进度信息。"""

    total: int
    completed: int
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """供界面渲染使用的只读快照。"""

    total: int
    completed: int
    status_text: str
    records: Tuple[ResultRecord, ...]
    active_indices: Tuple[int, ...]


class ProgressState:
    """由所有工作线程与消费者共享的进度状态。

    记录列表、计数器与正在处理标记由同一把锁保护；锁只在读写期间持有，
    事件在释放锁之后再由调用方发出。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[ResultRecord] = []
        self._total = 0
        self._completed = 0
        self._status_text = ""
        self._active: Dict[int, int] = {}

    def begin_batch(self, jobs: Sequence[JobUnit]) -> None:
        """整体替换上一批的记录，并把计数器重置为 (N, 0)。"""

        records = [
            ResultRecord(
                index=job.index,
                display_name=job.source_path.name,
                original_size=_file_size(job.source_path),
            )
            for job in jobs
        ]
        with self._lock:
            self._records = records
            self._total = len(records)
            self._completed = 0
            self._status_text = "开始转换..." if records else "没有需要转换的图片"
            self._active.clear()

    def mark_processing(self, index: int) -> None:
        with self._lock:
            self._advance(index, ItemStatus.PROCESSING)
            self._active[threading.get_ident()] = index

    def mark_succeeded(
        self,
        index: int,
        *,
        original_size: int,
        compressed_size: int,
        output_path: Path,
        timings: Optional[Mapping[str, float]] = None,
    ) -> ResultRecord:
        with self._lock:
            record = self._advance(index, ItemStatus.SUCCEEDED)
            record.original_size = original_size
            record.compressed_size = compressed_size
            record.compression_ratio = compression_ratio(original_size, compressed_size)
            record.output_path = output_path
            record.error_message = None
            if timings:
                record.timings.update(timings)
            return replace(record, timings=dict(record.timings))

    def mark_failed(
        self,
        index: int,
        message: str,
        *,
        timings: Optional[Mapping[str, float]] = None,
    ) -> ResultRecord:
        with self._lock:
            record = self._advance(index, ItemStatus.FAILED)
            record.error_message = message
            if timings:
                record.timings.update(timings)
            return replace(record, timings=dict(record.timings))

    def complete_item(self, index: int) -> ProgressUpdate:
        """完成计数加一并清除当前线程的处理标记，返回新的计数。"""

        with self._lock:
            if self._completed < self._total:
                self._completed += 1
            self._status_text = f"正在转换第 {self._completed}/{self._total} 张"
            if self._active.get(threading.get_ident()) == index:
                del self._active[threading.get_ident()]
            return ProgressUpdate(
                total=self._total,
                completed=self._completed,
                message=self._status_text,
            )

    def finish(self, status_text: str) -> None:
        with self._lock:
            self._status_text = status_text
            self._active.clear()

    def totals(self) -> Tuple[int, int]:
        """返回成功项的 (原始总字节, 压缩后总字节)。"""

        with self._lock:
            succeeded = [r for r in self._records if r.status is ItemStatus.SUCCEEDED]
            return (
                sum(r.original_size for r in succeeded),
                sum(r.compressed_size or 0 for r in succeeded),
            )

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                total=self._total,
                completed=self._completed,
                status_text=self._status_text,
                records=tuple(replace(r, timings=dict(r.timings)) for r in self._records),
                active_indices=tuple(sorted(self._active.values())),
            )

    def record(self, index: int) -> ResultRecord:
        with self._lock:
            record = self._records[index]
            return replace(record, timings=dict(record.timings))

    def _advance(self, index: int, target: ItemStatus) -> ResultRecord:
        record = self._records[index]
        if not record.status.can_advance_to(target):
            raise InvalidStatusTransition(
                f"第 {index} 项状态不能从 {record.status.value} 变为 {target.value}"
            )
        record.status = target
        return record


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
