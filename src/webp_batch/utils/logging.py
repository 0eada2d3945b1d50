"""日志配置与供界面读取的日志缓冲区。"""

from __future__ import annotations

import logging
import threading
from typing import List

LOG_LINE_FORMAT = "[%(asctime)s.%(msecs)03d] %(message)s"
LOG_TIME_FORMAT = "%H:%M:%S"


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置。"""

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s",
    )


class LogBuffer:
    """带独立锁的日志行缓冲区，与进度状态互不干扰。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._lines: List[str] = []

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class LogBufferHandler(logging.Handler):
    """把格式化后的日志记录追加到 LogBuffer 的 handler。"""

    def __init__(self, buffer: LogBuffer) -> None:
        super().__init__()
        self._buffer = buffer
        self.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_TIME_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._buffer.append(self.format(record))
        except Exception:  # noqa: BLE001
            self.handleError(record)
