"""批量转换调度：构建任务、线程池并发执行、事件汇报。"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional, Sequence

from webp_batch.core.config import ConversionConfig, resolve_output_dir
from webp_batch.core.events import AggregateTotals, BatchCompleted, EventChannel, Progress, StatusChanged
from webp_batch.core.exceptions import BatchAlreadyRunning, InvalidConfigurationError, InvalidStatusTransition
from webp_batch.core.models import ItemStatus, JobUnit
from webp_batch.core.output_manager import OutputManager
from webp_batch.core.progress import ProgressState
from webp_batch.processing.worker import WorkerContext, execute_job
from webp_batch.utils.logging import LogBuffer, LogBufferHandler

LOGGER = logging.getLogger(__name__)


def build_jobs(input_files: Sequence[Path], config: ConversionConfig) -> list[JobUnit]:
    """根据输入文件与配置生成不可变的 JobUnit 列表。"""

    config.validate()
    if not input_files:
        return []

    sources = [Path(p) for p in input_files]
    output_dir = resolve_output_dir(config, sources)
    output_manager = OutputManager(config, output_dir, batch_size=len(sources))

    return [
        JobUnit(
            index=index,
            source_path=source,
            destination_path=output_manager.decide_destination(index, source),
            resize=config.resize_spec,
            quality=config.effective_quality,
        )
        for index, source in enumerate(sources)
    ]


class BatchHandle:
    """后台批次的句柄，可等待或请求取消。"""

    def __init__(self, future: "Future[None]", cancel_event: threading.Event) -> None:
        self._future = future
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        """请求协作式取消，正在执行的步骤结束后生效。"""

        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> None:
        """阻塞直到批次结束；批次内的配置错误会在这里重新抛出。"""

        self._future.result(timeout=timeout)


class BatchScheduler:
    """把 JobUnit 分发到线程池并维护共享进度状态。"""

    def __init__(
        self,
        state: ProgressState,
        channel: EventChannel,
        *,
        log_buffer: Optional[LogBuffer] = None,
    ) -> None:
        self.state = state
        self.channel = channel
        self._run_lock = threading.Lock()
        self._background: Optional[ThreadPoolExecutor] = None

        self._logger = logging.getLogger(f"{__name__}.{id(self)}")
        self._log_handler: Optional[LogBufferHandler] = None
        if log_buffer is not None:
            self._log_handler = LogBufferHandler(log_buffer)
            self._logger.addHandler(self._log_handler)
            self._logger.setLevel(logging.INFO)

    def run(
        self,
        jobs: Sequence[JobUnit],
        config: ConversionConfig,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """同步执行一个批次，内部并发；返回时 BatchCompleted 已发出。"""

        config.validate()
        _check_indices(jobs)
        if not self._run_lock.acquire(blocking=False):
            raise BatchAlreadyRunning("已有批次正在执行")
        try:
            self._run_batch(list(jobs), config, cancel_event or threading.Event())
        finally:
            self._run_lock.release()

    def submit(self, jobs: Sequence[JobUnit], config: ConversionConfig) -> BatchHandle:
        """在独立的后台线程中执行批次，立即返回句柄。"""

        if self._background is None:
            self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webp-batch")
        cancel_event = threading.Event()
        future = self._background.submit(self.run, list(jobs), config, cancel_event)
        return BatchHandle(future, cancel_event)

    def close(self) -> None:
        if self._background is not None:
            self._background.shutdown(wait=True)
            self._background = None
        if self._log_handler is not None:
            self._logger.removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    def __enter__(self) -> "BatchScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run_batch(self, jobs: list[JobUnit], config: ConversionConfig, cancel_event: threading.Event) -> None:
        total = len(jobs)
        self.state.begin_batch(jobs)

        if total == 0:
            self._logger.info("没有选择需要转换的图片")
            self.channel.emit(Progress(0, 0))
            self.channel.emit(AggregateTotals(0, 0))
            self.channel.emit(BatchCompleted(cancelled=cancel_event.is_set()))
            return

        workers = min(config.worker_count, total)
        self._logger.info("待转换文件数: %d，线程数: %d", total, workers)
        start = time.perf_counter()

        ctx = WorkerContext(
            state=self.state,
            channel=self.channel,
            logger=self._logger,
            cancel_event=cancel_event,
        )
        succeeded = 0
        failed = 0

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="webp-worker") as executor:
            future_map = {executor.submit(execute_job, job, ctx): job for job in jobs}
            for future in as_completed(future_map):
                job = future_map[future]
                try:
                    status = future.result()
                except Exception as exc:  # noqa: BLE001
                    self._logger.exception("任务执行异常：%s", exc)
                    status = self._recover_failed(job, str(exc))
                if status is ItemStatus.SUCCEEDED:
                    succeeded += 1
                else:
                    failed += 1

        elapsed = time.perf_counter() - start
        original_total, compressed_total = self.state.totals()
        summary = f"转换完成：成功 {succeeded} 张，失败 {failed} 张"
        if cancel_event.is_set():
            summary += "（已取消）"
        self.state.finish(summary)
        self._logger.info("%s，总耗时 %.3fs", summary, elapsed)

        self.channel.emit(AggregateTotals(original_total, compressed_total))
        self.channel.emit(
            BatchCompleted(
                total=total,
                succeeded=succeeded,
                failed=failed,
                cancelled=cancel_event.is_set(),
            )
        )

    def _recover_failed(self, job: JobUnit, message: str) -> ItemStatus:
        """工作函数本身抛出异常时，尽量让该项进入终态并计入完成数。"""

        try:
            self.state.mark_failed(job.index, message)
        except InvalidStatusTransition:
            record = self.state.record(job.index)
            if record.status is ItemStatus.LOADED:
                self.state.mark_processing(job.index)
                self.state.mark_failed(job.index, message)
            elif record.status.is_terminal:
                return record.status
        self.channel.emit(StatusChanged(job.index, ItemStatus.FAILED, message))
        update = self.state.complete_item(job.index)
        self.channel.emit(Progress(update.completed, update.total))
        return ItemStatus.FAILED


def _check_indices(jobs: Sequence[JobUnit]) -> None:
    for position, job in enumerate(jobs):
        if job.index != position:
            raise InvalidConfigurationError(f"任务序号必须与提交顺序一致: 位置 {position} 的序号为 {job.index}")
