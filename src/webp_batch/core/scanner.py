"""把用户给出的文件/目录展开为待转换的图片列表。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历路径下的所有文件。"""

    if path.is_file():
        yield path
        return

    if not path.is_dir():
        return

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in sorted(iterator, key=lambda x: str(x).lower()):
        if candidate.is_file():
            yield candidate


def collect_input_files(paths: Iterable[Path], *, recursive: bool = True) -> list[Path]:
    """返回去重后的 JPEG/PNG 文件绝对路径，保持用户给出的顺序。

    显式指定但不存在的文件同样保留，由转换阶段记录为失败。
    """

    collected: list[Path] = []
    seen: set[Path] = set()

    for raw in paths:
        root = Path(raw).expanduser().resolve()
        if not root.exists():
            if root not in seen:
                seen.add(root)
                collected.append(root)
            continue

        for candidate in _iter_candidate_files(root, recursive):
            if candidate in seen:
                continue
            if candidate.suffix.lower() not in IMAGE_EXTENSIONS:
                continue
            seen.add(candidate)
            collected.append(candidate)

    return collected
