"""统一的计时工具。"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def measure(operation: Callable[[], T]) -> tuple[T, float]:
    """执行无参操作，返回 (结果, 耗时秒数)。异常原样抛出。"""

    start = time.perf_counter()
    result = operation()
    return result, time.perf_counter() - start
