"""进度事件定义与多生产者、单消费者的事件通道。"""

from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import List, Optional, Union

from webp_batch.core.models import ItemStatus


@dataclass(frozen=True, slots=True)
class Progress:
    completed: int
    total: int


@dataclass(frozen=True, slots=True)
class ItemUpdated:
    index: int
    compressed_size: Optional[int]
    compression_ratio: Optional[float]


@dataclass(frozen=True, slots=True)
class StatusChanged:
    index: int
    status: ItemStatus
    error_message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AggregateTotals:
    total_original_bytes: int
    total_compressed_bytes: int


@dataclass(frozen=True, slots=True)
class BatchCompleted:
    """整批结束信号，在所有单项终态事件之后发出且只发出一次。"""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False


ConversionEvent = Union[Progress, ItemUpdated, StatusChanged, AggregateTotals, BatchCompleted]


class EventChannel:
    """线程安全的无界事件队列，生产端写入从不阻塞，消费端只做非阻塞轮询。"""

    def __init__(self) -> None:
        self._queue: "queue.Queue[ConversionEvent]" = queue.Queue()

    def emit(self, event: ConversionEvent) -> None:
        self._queue.put(event)

    def poll(self) -> Optional[ConversionEvent]:
        """立即返回一个待处理事件；没有事件时返回 None。"""

        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[ConversionEvent]:
        """取出当前队列中的全部事件。"""

        events: List[ConversionEvent] = []
        while True:
            event = self.poll()
            if event is None:
                return events
            events.append(event)

    def empty(self) -> bool:
        return self._queue.empty()
