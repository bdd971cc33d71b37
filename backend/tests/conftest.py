"""
Image Resize 测试配置文件

这个文件包含 pytest fixtures（测试夹具）：
- 可控时钟（FakeClock），让 LRU / 过期测试不依赖真实时间
- 临时目录中的缓存存储
- 用 Pillow 生成的测试图片
"""

import pytest
import sys
from io import BytesIO
from pathlib import Path

from PIL import Image

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_resize.cache_store import ImageCacheStore
from image_resize.eviction import EvictionPolicy


# ============================================
# Clock
# ============================================

class FakeClock:
    """手动推进的时钟，返回 epoch 秒"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================
# Cache Fixtures
# ============================================

@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def store(cache_dir, clock):
    """
    创建一个同步保存索引的缓存存储。

    - 预算 1000 字节，最长存活 1 小时
    - 测试结束后自动关闭
    """
    cache = ImageCacheStore(
        cache_dir=str(cache_dir),
        max_cache_bytes=1000,
        eviction_policy=EvictionPolicy(max_age_seconds=3600),
        clock=clock,
        persist_async=False,
    )
    yield cache
    cache.close()


# ============================================
# Helper Functions
# ============================================

def make_image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """
    生成指定尺寸的测试图片。

    使用方式：
    ```python
    data = make_image_bytes(800, 600)
    ```
    """
    color = (200, 100, 50, 255) if mode == "RGBA" else (200, 100, 50)
    img = Image.new(mode, (width, height), color[: len(mode)])
    output = BytesIO()
    img.save(output, format=fmt)
    return output.getvalue()


def image_size(data: bytes) -> tuple:
    """返回图片字节的 (宽, 高)"""
    with Image.open(BytesIO(data)) as img:
        return img.size
