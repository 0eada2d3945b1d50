"""命令行入口。"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from webp_batch.core.config import (
    ConversionConfig,
    QualityConfig,
    RenameConfig,
    ResizeConfig,
    clamp_quality,
)
from webp_batch.core.events import BatchCompleted, ConversionEvent, EventChannel
from webp_batch.core.events import Progress as ProgressEvent
from webp_batch.core.events import StatusChanged
from webp_batch.core.exceptions import WebpBatchError
from webp_batch.core.models import ItemStatus
from webp_batch.core.progress import ProgressState
from webp_batch.core.scanner import collect_input_files
from webp_batch.processing.pipeline import BatchScheduler, build_jobs
from webp_batch.utils.logging import setup_logging

app = typer.Typer(help="批量将 JPEG/PNG 图片转换为 WebP。")

POLL_INTERVAL = 0.1


def _parse_size(value: str) -> Tuple[int, int]:
    parts = value.lower().split("x")
    if len(parts) != 2:
        raise typer.BadParameter("尺寸必须形如 800x600")
    try:
        w = int(parts[0])
        h = int(parts[1])
    except ValueError as exc:  # noqa: FBT003
        raise typer.BadParameter("尺寸必须为整数") from exc
    if w <= 0 or h <= 0:
        raise typer.BadParameter("尺寸必须大于 0")
    return w, h


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


class _ProgressRenderer:
    """把事件通道中的事件渲染到 rich 进度条上。"""

    def __init__(self, progress: Progress, total: int) -> None:
        self.progress = progress
        self.task_id = progress.add_task("转换图片", total=total)
        self.finished: Optional[BatchCompleted] = None

    def handle(self, event: ConversionEvent) -> None:
        if isinstance(event, ProgressEvent):
            self.progress.update(self.task_id, completed=event.completed, total=event.total)
        elif isinstance(event, StatusChanged) and event.status is ItemStatus.FAILED:
            self.progress.log(f"[red]失败[/red] #{event.index + 1}: {event.error_message}")
        elif isinstance(event, BatchCompleted):
            self.finished = event


@app.command("convert")
def convert_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="源图片文件或目录，可指定多个"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="输出目录，默认为首个输入文件所在目录"),
    size: Optional[str] = typer.Option(None, "--resize", help="拉伸到固定尺寸，形如 800x600"),
    quality: Optional[float] = typer.Option(None, "--quality", "-q", help="WebP 质量 1~100，默认 80"),
    rename: Optional[str] = typer.Option(None, "--rename", help="输出文件的基础名称"),
    on_collision: str = typer.Option("index", "--on-collision", help="重命名冲突策略 index 或 overwrite"),
    max_workers: Optional[int] = typer.Option(None, "--workers", "-w", help="并发线程数量，默认为 CPU 核数"),
    allow_recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描目录"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量转换。"""

    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    input_files = collect_input_files(source, recursive=allow_recursive)
    if not input_files:
        typer.echo("没有找到 JPEG/PNG 图片。")
        raise typer.Exit(code=0)

    resize_cfg = ResizeConfig()
    if size:
        width, height = _parse_size(size)
        resize_cfg = ResizeConfig(enabled=True, width=width, height=height)

    config = ConversionConfig(
        resize=resize_cfg,
        quality=QualityConfig(
            enabled=quality is not None,
            value=clamp_quality(quality) if quality is not None else QualityConfig().value,
        ),
        rename=RenameConfig(enabled=bool(rename), base_name=rename or "", on_collision=on_collision),
        output_dir=output.expanduser().resolve() if output else None,
        max_workers=max_workers,
    )

    try:
        jobs = build_jobs(input_files, config)
    except WebpBatchError as exc:
        raise typer.BadParameter(str(exc)) from exc

    state = ProgressState()
    channel = EventChannel()
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    with BatchScheduler(state, channel) as scheduler, progress:
        renderer = _ProgressRenderer(progress, total=len(jobs))
        handle = scheduler.submit(jobs, config)
        try:
            while renderer.finished is None:
                for event in channel.drain():
                    renderer.handle(event)
                if handle.done() and channel.empty() and renderer.finished is None:
                    handle.wait()
                    break
                time.sleep(POLL_INTERVAL)
        except KeyboardInterrupt:
            handle.cancel()
            progress.log("正在取消，等待当前步骤结束...")
            handle.wait()
            for event in channel.drain():
                renderer.handle(event)

    _print_summary(state)
    snapshot = state.snapshot()
    if any(record.status is ItemStatus.FAILED for record in snapshot.records):
        raise typer.Exit(code=1)


def _print_summary(state: ProgressState) -> None:
    console = Console()
    snapshot = state.snapshot()
    original_total, compressed_total = state.totals()
    console.print(snapshot.status_text)
    if original_total:
        saved = 1 - compressed_total / original_total
        console.print(
            f"总大小：{_format_bytes(original_total)} -> {_format_bytes(compressed_total)}（节省 {saved:.1%}）"
        )
    for record in snapshot.records:
        if record.status is ItemStatus.FAILED:
            console.print(f"[red]失败[/red] {record.display_name}: {record.error_message}")


if __name__ == "__main__":
    app()
