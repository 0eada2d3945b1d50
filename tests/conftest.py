from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from PIL import Image


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """在 tmp_path/input 下生成测试图片。"""

    source_dir = tmp_path / "input"
    source_dir.mkdir(exist_ok=True)

    def factory(name: str, size: tuple[int, int] = (64, 48), color: str = "blue", mode: str = "RGB") -> Path:
        path = source_dir / name
        Image.new(mode, size, color).save(path)
        return path

    return factory
