"""批量调度流程测试：并发执行、失败隔离与事件顺序。"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from PIL import Image

from webp_batch.core.config import ConversionConfig, QualityConfig, RenameConfig, ResizeConfig
from webp_batch.core.events import (
    AggregateTotals,
    BatchCompleted,
    EventChannel,
    ItemUpdated,
    Progress,
    StatusChanged,
)
from webp_batch.core.exceptions import InvalidConfigurationError
from webp_batch.core.models import ItemStatus
from webp_batch.core.progress import ProgressState
from webp_batch.processing.pipeline import BatchScheduler, build_jobs
from webp_batch.processing.worker import CANCELLED_MESSAGE
from webp_batch.utils.logging import LogBuffer


def _run(inputs: list[Path], config: ConversionConfig, **kwargs):
    state = ProgressState()
    channel = EventChannel()
    jobs = build_jobs(inputs, config)
    with BatchScheduler(state, channel, **kwargs) as scheduler:
        scheduler.run(jobs, config)
    return jobs, state, channel.drain()


def _terminal_events(events) -> list[StatusChanged]:
    return [e for e in events if isinstance(e, StatusChanged) and e.status.is_terminal]


def test_three_valid_jpegs_use_default_quality(tmp_path: Path, make_image) -> None:
    inputs = [make_image(f"photo{i}.jpg", size=(120, 80)) for i in range(3)]
    output = tmp_path / "output"

    jobs, state, events = _run(inputs, ConversionConfig(output_dir=output, max_workers=3))

    assert [job.quality for job in jobs] == [80, 80, 80]
    snapshot = state.snapshot()
    assert [r.status for r in snapshot.records] == [ItemStatus.SUCCEEDED] * 3
    assert snapshot.completed == snapshot.total == 3
    for i in range(3):
        assert (output / f"photo{i}.webp").exists()
    assert isinstance(events[-1], BatchCompleted)
    assert events[-1].succeeded == 3


def test_missing_source_fails_without_aborting_batch(tmp_path: Path, make_image) -> None:
    good = make_image("good.png")
    missing = tmp_path / "input" / "missing.jpg"

    _, state, events = _run([good, missing], ConversionConfig(output_dir=tmp_path / "out"))

    snapshot = state.snapshot()
    assert snapshot.completed == 2
    assert snapshot.records[0].status is ItemStatus.SUCCEEDED
    failed = snapshot.records[1]
    assert failed.status is ItemStatus.FAILED
    assert failed.error_message is not None and "missing.jpg" in failed.error_message
    assert failed.compressed_size is None
    assert not (tmp_path / "out" / "missing.webp").exists()

    failure_events = [e for e in _terminal_events(events) if e.status is ItemStatus.FAILED]
    assert [(e.index, e.error_message) for e in failure_events] == [(1, failed.error_message)]


def test_rename_overwrite_strategy_reuses_single_name(tmp_path: Path, make_image) -> None:
    # 已知的覆盖风险：所有输出都写入 out.webp，最终内容来自最后完成的任务。
    first = make_image("first.png", size=(20, 20))
    second = make_image("second.png", size=(40, 30))
    output = tmp_path / "out"
    config = ConversionConfig(
        rename=RenameConfig(enabled=True, base_name="out", on_collision="overwrite"),
        output_dir=output,
        max_workers=1,
    )

    jobs, state, _ = _run([first, second], config)

    assert {job.destination_path for job in jobs} == {output / "out.webp"}
    assert [p.name for p in output.iterdir()] == ["out.webp"]
    with Image.open(output / "out.webp") as result:
        assert result.size == (40, 30)
    assert all(r.status is ItemStatus.SUCCEEDED for r in state.snapshot().records)


def test_rename_index_strategy_keeps_every_output(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png"), make_image("b.png")]
    output = tmp_path / "out"
    config = ConversionConfig(rename=RenameConfig(enabled=True, base_name="out"), output_dir=output)

    jobs, _, _ = _run(inputs, config)

    assert [job.destination_path.name for job in jobs] == ["out_1.webp", "out_2.webp"]
    assert sorted(p.name for p in output.iterdir()) == ["out_1.webp", "out_2.webp"]


def test_rename_with_blank_base_falls_back_to_stem(tmp_path: Path, make_image) -> None:
    config = ConversionConfig(rename=RenameConfig(enabled=True, base_name="  "), output_dir=tmp_path / "out")

    jobs = build_jobs([make_image("keep.png")], config)

    assert jobs[0].destination_path.name == "keep.webp"


def test_resize_stretches_to_exact_size(tmp_path: Path, make_image) -> None:
    source = make_image("wide.png", size=(300, 100))
    output = tmp_path / "out"
    config = ConversionConfig(resize=ResizeConfig(enabled=True, width=100, height=50), output_dir=output)

    jobs, state, _ = _run([source], config)

    assert jobs[0].resize == (100, 50)
    with Image.open(output / "wide.webp") as result:
        assert result.size == (100, 50)
    assert "resize" in state.record(0).timings


def test_quality_override_is_applied(tmp_path: Path, make_image) -> None:
    config = ConversionConfig(quality=QualityConfig(enabled=True, value=35), output_dir=tmp_path / "out")

    jobs = build_jobs([make_image("a.png")], config)

    assert jobs[0].quality == 35


def test_invalid_quality_is_rejected(tmp_path: Path, make_image) -> None:
    config = ConversionConfig(quality=QualityConfig(enabled=True, value=101), output_dir=tmp_path / "out")

    with pytest.raises(InvalidConfigurationError):
        build_jobs([make_image("a.png")], config)


def test_compression_ratio_matches_file_sizes(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png", size=(200, 200), color="red"), make_image("b.jpg", size=(90, 60))]

    _, state, events = _run(inputs, ConversionConfig(output_dir=tmp_path / "out"))

    for record in state.snapshot().records:
        original = Path(tmp_path / "input" / record.display_name).stat().st_size
        compressed = record.output_path.stat().st_size
        assert record.original_size == original
        assert record.compressed_size == compressed
        assert record.compression_ratio == pytest.approx(1 - compressed / original)

    updates = {e.index: e for e in events if isinstance(e, ItemUpdated)}
    assert set(updates) == {0, 1}
    assert updates[0].compression_ratio == pytest.approx(state.record(0).compression_ratio)


def test_event_stream_contract(tmp_path: Path, make_image) -> None:
    inputs = [make_image(f"img{i}.png", size=(50 + i, 40)) for i in range(6)]
    inputs.append(tmp_path / "input" / "nope.png")

    _, state, events = _run(inputs, ConversionConfig(output_dir=tmp_path / "out", max_workers=4))

    total = len(inputs)
    terminal = _terminal_events(events)
    assert sorted(e.index for e in terminal) == list(range(total))

    completed_events = [e for e in events if isinstance(e, BatchCompleted)]
    assert len(completed_events) == 1
    assert events[-1] == completed_events[0]
    assert completed_events[0].succeeded == total - 1
    assert completed_events[0].failed == 1

    progress = [e for e in events if isinstance(e, Progress)]
    assert sorted(e.completed for e in progress) == list(range(1, total + 1))
    assert all(e.total == total for e in progress)

    for index in range(total):
        statuses = [e.status for e in events if isinstance(e, StatusChanged) and e.index == index]
        assert statuses[0] is ItemStatus.PROCESSING
        assert len(statuses) == 2 and statuses[1].is_terminal

    final_totals = [e for e in events if isinstance(e, AggregateTotals)][-1]
    assert (final_totals.total_original_bytes, final_totals.total_compressed_bytes) == state.totals()
    assert state.snapshot().active_indices == ()


def test_empty_batch_still_completes(tmp_path: Path) -> None:
    _, state, events = _run([], ConversionConfig(output_dir=tmp_path / "out"))

    assert events[-1] == BatchCompleted()
    assert Progress(0, 0) in events
    snapshot = state.snapshot()
    assert (snapshot.total, snapshot.completed) == (0, 0)


def test_cancelled_batch_fails_every_item(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png"), make_image("b.png")]
    config = ConversionConfig(output_dir=tmp_path / "out")
    state = ProgressState()
    channel = EventChannel()
    cancel = threading.Event()
    cancel.set()

    with BatchScheduler(state, channel) as scheduler:
        scheduler.run(build_jobs(inputs, config), config, cancel_event=cancel)

    snapshot = state.snapshot()
    assert snapshot.completed == 2
    assert all(r.status is ItemStatus.FAILED for r in snapshot.records)
    assert all(r.error_message == CANCELLED_MESSAGE for r in snapshot.records)
    events = channel.drain()
    assert events[-1] == BatchCompleted(total=2, succeeded=0, failed=2, cancelled=True)


def test_unexpected_worker_error_is_isolated(tmp_path: Path, make_image, monkeypatch) -> None:
    from webp_batch.processing import worker

    real_encode = worker.encode_webp

    def flaky_encode(image, quality):
        if image.size == (13, 13):
            raise RuntimeError("codec exploded")
        return real_encode(image, quality)

    monkeypatch.setattr(worker, "encode_webp", flaky_encode)
    inputs = [make_image("ok.png"), make_image("bad.png", size=(13, 13))]

    _, state, events = _run(inputs, ConversionConfig(output_dir=tmp_path / "out"))

    records = state.snapshot().records
    assert records[0].status is ItemStatus.SUCCEEDED
    assert records[1].status is ItemStatus.FAILED
    assert "codec exploded" in (records[1].error_message or "")
    assert len(_terminal_events(events)) == 2


def test_rerun_produces_same_sizes(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png", size=(64, 64), color="purple"), make_image("b.jpg", size=(80, 40))]

    _, first, _ = _run(inputs, ConversionConfig(output_dir=tmp_path / "run1"))
    _, second, _ = _run(inputs, ConversionConfig(output_dir=tmp_path / "run2"))

    assert [r.compressed_size for r in first.snapshot().records] == [
        r.compressed_size for r in second.snapshot().records
    ]


def test_output_dir_defaults_to_first_input_directory(make_image) -> None:
    source = make_image("a.png")

    jobs = build_jobs([source], ConversionConfig())

    assert jobs[0].destination_path == source.parent.resolve() / "a.webp"


def test_submit_runs_in_background(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png"), make_image("b.png")]
    config = ConversionConfig(output_dir=tmp_path / "out")
    state = ProgressState()
    channel = EventChannel()

    with BatchScheduler(state, channel) as scheduler:
        handle = scheduler.submit(build_jobs(inputs, config), config)
        handle.wait(timeout=30)
        assert handle.done()

    events = channel.drain()
    assert isinstance(events[-1], BatchCompleted)
    assert state.snapshot().completed == 2


def test_run_rejects_out_of_order_jobs(tmp_path: Path, make_image) -> None:
    config = ConversionConfig(output_dir=tmp_path / "out")
    jobs = build_jobs([make_image("a.png"), make_image("b.png")], config)

    with BatchScheduler(ProgressState(), EventChannel()) as scheduler:
        with pytest.raises(InvalidConfigurationError):
            scheduler.run(list(reversed(jobs)), config)


def test_log_buffer_receives_timestamped_lines(tmp_path: Path, make_image) -> None:
    buffer = LogBuffer()

    _run([make_image("a.png")], ConversionConfig(output_dir=tmp_path / "out"), log_buffer=buffer)

    lines = buffer.lines()
    assert lines
    assert all(line.startswith("[") and "] " in line for line in lines)
    assert any("使用质量: 80" in line for line in lines)
    assert any("转换完成" in line for line in lines)


def test_oversized_source_is_recorded_as_decode_failure(tmp_path: Path, make_image, monkeypatch) -> None:
    inputs = [make_image("small.png", size=(8, 8)), make_image("huge.png", size=(200, 200))]
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    _, state, _ = _run(inputs, ConversionConfig(output_dir=tmp_path / "out", max_workers=1))

    records = state.snapshot().records
    assert records[0].status is ItemStatus.SUCCEEDED
    assert records[1].status is ItemStatus.FAILED
    assert records[1].error_message is not None
    assert records[1].error_message.startswith("无法加载图像")
    assert "huge.png" in records[1].error_message


def test_unwritable_destination_fails_only_that_item(tmp_path: Path, make_image) -> None:
    inputs = [make_image("a.png"), make_image("blocked.png"), make_image("c.png")]
    output = tmp_path / "out"
    (output / "blocked.webp").mkdir(parents=True)

    _, state, events = _run(inputs, ConversionConfig(output_dir=output))

    snapshot = state.snapshot()
    assert [r.status for r in snapshot.records] == [
        ItemStatus.SUCCEEDED,
        ItemStatus.FAILED,
        ItemStatus.SUCCEEDED,
    ]
    assert "写入文件失败" in (snapshot.records[1].error_message or "")
    assert snapshot.completed == snapshot.total == 3
    assert (output / "a.webp").is_file() and (output / "c.webp").is_file()
    assert events[-1] == BatchCompleted(total=3, succeeded=2, failed=1)


def test_encode_failure_is_recorded(tmp_path: Path, make_image, monkeypatch) -> None:
    from webp_batch.processing import worker
    from webp_batch.processing.codec import EncodeError

    real_encode = worker.encode_webp

    def rejecting_encode(image, quality):
        if image.size == (13, 13):
            raise EncodeError("WebP 编码失败: rejected")
        return real_encode(image, quality)

    monkeypatch.setattr(worker, "encode_webp", rejecting_encode)
    inputs = [make_image("ok.png"), make_image("bad.png", size=(13, 13))]

    _, state, events = _run(inputs, ConversionConfig(output_dir=tmp_path / "out"))

    snapshot = state.snapshot()
    assert snapshot.completed == snapshot.total == 2
    assert snapshot.records[0].status is ItemStatus.SUCCEEDED
    assert snapshot.records[1].status is ItemStatus.FAILED
    assert snapshot.records[1].error_message == "WebP 编码失败: rejected"
    assert not (tmp_path / "out" / "bad.webp").exists()
    failed = [e for e in _terminal_events(events) if e.status is ItemStatus.FAILED]
    assert [(e.index, e.error_message) for e in failed] == [(1, "WebP 编码失败: rejected")]


def test_cancel_during_decode_stops_at_next_step(tmp_path: Path, make_image, monkeypatch) -> None:
    from webp_batch.processing import worker

    inputs = [make_image("first.png"), make_image("second.png"), make_image("third.png")]
    output = tmp_path / "out"
    config = ConversionConfig(output_dir=output, max_workers=1)
    cancel = threading.Event()
    real_decode = worker.decode

    def decode_then_cancel(path):
        image = real_decode(path)
        if path.name == "second.png":
            cancel.set()
        return image

    monkeypatch.setattr(worker, "decode", decode_then_cancel)
    state = ProgressState()
    channel = EventChannel()

    with BatchScheduler(state, channel) as scheduler:
        scheduler.run(build_jobs(inputs, config), config, cancel_event=cancel)

    records = state.snapshot().records
    assert records[0].status is ItemStatus.SUCCEEDED
    assert [r.status for r in records[1:]] == [ItemStatus.FAILED, ItemStatus.FAILED]
    assert all(r.error_message == CANCELLED_MESSAGE for r in records[1:])
    assert "decode" in records[1].timings
    assert "encode" not in records[1].timings
    assert "decode" not in records[2].timings
    assert sorted(p.name for p in output.iterdir()) == ["first.webp"]

    snapshot = state.snapshot()
    assert snapshot.completed == snapshot.total == 3
    events = channel.drain()
    assert events[-1] == BatchCompleted(total=3, succeeded=1, failed=2, cancelled=True)
