"""JPEG/PNG 批量转 WebP 的并发转换核心。"""

__version__ = "0.1.0"
