"""单个 JobUnit 的转换流程：解码、缩放、编码、写入。"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from PIL import Image

from webp_batch.core.events import AggregateTotals, EventChannel, ItemUpdated, Progress, StatusChanged
from webp_batch.core.exceptions import ConversionCancelled, InvalidConfigurationError
from webp_batch.core.models import ItemStatus, JobUnit
from webp_batch.core.output_manager import ImageWriteError, write_bytes
from webp_batch.core.progress import ProgressState
from webp_batch.processing.codec import DecodeError, EncodeError, decode, encode_webp, resize
from webp_batch.utils.timing import measure

CANCELLED_MESSAGE = "已取消"


@dataclass(slots=True)
class WorkerContext:
    """工作线程共享的协作对象，在派发时按引用传入。"""

    state: ProgressState
    channel: EventChannel
    logger: logging.Logger
    cancel_event: threading.Event


def execute_job(job: JobUnit, ctx: WorkerContext) -> ItemStatus:
    """在工作线程中执行完整的转换流程，任何异常都不会抛出到线程之外。"""

    ctx.state.mark_processing(job.index)
    ctx.channel.emit(StatusChanged(job.index, ItemStatus.PROCESSING))
    ctx.logger.info("开始处理: %s", job.source_path)

    timings: Dict[str, float] = {}
    status = ItemStatus.FAILED
    try:
        compressed_size = _convert(job, ctx, timings)
    except (DecodeError, EncodeError, ImageWriteError, InvalidConfigurationError) as exc:
        _fail(job, ctx, str(exc), timings)
    except ConversionCancelled:
        ctx.logger.info("已取消: %s", job.source_path)
        _fail(job, ctx, CANCELLED_MESSAGE, timings)
    except Exception as exc:  # noqa: BLE001
        ctx.logger.exception("处理 %s 时出现未预期的异常", job.source_path)
        _fail(job, ctx, f"未知错误: {exc}", timings)
    else:
        status = _succeed(job, ctx, compressed_size, timings)

    update = ctx.state.complete_item(job.index)
    ctx.logger.info(update.message)
    ctx.channel.emit(Progress(update.completed, update.total))
    return status


def _convert(job: JobUnit, ctx: WorkerContext, timings: Dict[str, float]) -> int:
    image: Optional[Image.Image] = None
    resized: Optional[Image.Image] = None
    try:
        _check_cancelled(ctx)
        image, timings["decode"] = measure(lambda: decode(job.source_path))
        ctx.logger.info("解码 %s 耗时 %.3fs", job.source_path.name, timings["decode"])

        working = image
        if job.resize is not None:
            _check_cancelled(ctx)
            width, height = job.resize
            resized, timings["resize"] = measure(lambda: resize(image, width, height))
            ctx.logger.info("缩放到 %dx%d 耗时 %.3fs", width, height, timings["resize"])
            working = resized

        _check_cancelled(ctx)
        ctx.logger.info("使用质量: %d", job.quality)
        data, timings["encode"] = measure(lambda: encode_webp(working, job.quality))
        ctx.logger.info("WebP 编码耗时 %.3fs", timings["encode"])

        _check_cancelled(ctx)
        _, timings["write"] = measure(lambda: write_bytes(data, job.destination_path))
        ctx.logger.info("写入 %s 耗时 %.3fs", job.destination_path, timings["write"])
    finally:
        _close_if_needed(image, resized)

    try:
        return job.destination_path.stat().st_size
    except OSError as exc:
        raise ImageWriteError(f"无法读取输出文件大小: {job.destination_path}") from exc


def _succeed(job: JobUnit, ctx: WorkerContext, compressed_size: int, timings: Dict[str, float]) -> ItemStatus:
    try:
        original_size = job.source_path.stat().st_size
    except OSError as exc:
        _fail(job, ctx, f"无法读取源文件大小: {job.source_path} ({exc})", timings)
        return ItemStatus.FAILED

    record = ctx.state.mark_succeeded(
        job.index,
        original_size=original_size,
        compressed_size=compressed_size,
        output_path=job.destination_path,
        timings=timings,
    )
    totals = ctx.state.totals()
    ctx.channel.emit(ItemUpdated(job.index, record.compressed_size, record.compression_ratio))
    ctx.channel.emit(AggregateTotals(*totals))
    ctx.channel.emit(StatusChanged(job.index, ItemStatus.SUCCEEDED))
    ctx.logger.info(
        "完成 %s: %d -> %d 字节，压缩率 %.1f%%",
        job.source_path.name,
        original_size,
        compressed_size,
        (record.compression_ratio or 0.0) * 100,
    )
    return ItemStatus.SUCCEEDED


def _fail(job: JobUnit, ctx: WorkerContext, message: str, timings: Dict[str, float]) -> None:
    ctx.state.mark_failed(job.index, message, timings=timings)
    ctx.channel.emit(StatusChanged(job.index, ItemStatus.FAILED, message))
    ctx.logger.warning("处理失败 %s: %s", job.source_path, message)


def _check_cancelled(ctx: WorkerContext) -> None:
    if ctx.cancel_event.is_set():
        raise ConversionCancelled(CANCELLED_MESSAGE)


def _close_if_needed(*images: Optional[Image.Image]) -> None:
    for img in images:
        if img is not None:
            img.close()
