"""
图片变换测试

覆盖缩放规则：
- 只指定宽 / 只指定高：等比例缩放
- 同时指定宽高：覆盖缩放 + 居中裁剪
- 永不放大
- JPEG 质量分级和编码回退

运行测试：
    cd backend
    pytest tests/test_transform.py -v
"""

import pytest
from io import BytesIO
from PIL import Image

from image_resize.errors import EncodeError, InvalidImageError, InvalidParameterError
from image_resize.transform import (
    FULL_QUALITY,
    OUTPUT_CONTENT_TYPE,
    REDUCED_QUALITY,
    decode_image,
    detect_content_type,
    encode_jpeg,
    jpeg_quality_for,
    resize,
    transform_bytes,
)
from conftest import image_size, make_image_bytes


def _image(width, height, mode="RGB"):
    color = (10, 20, 30, 128) if mode == "RGBA" else (10, 20, 30)
    return Image.new(mode, (width, height), color)


# ============================================
# 1. resize 测试
# ============================================

class TestResize:
    """缩放规则测试"""

    def test_no_dimensions_returns_input(self):
        """测试：未指定宽高时原样返回"""
        img = _image(800, 600)
        assert resize(img) is img

    def test_width_only_scales_proportionally(self):
        """测试：800x600 只指定 w=400 -> 400x300"""
        out = resize(_image(800, 600), target_width=400)
        assert out.size == (400, 300)

    def test_height_only_scales_proportionally(self):
        """测试：800x600 只指定 h=300 -> 400x300"""
        out = resize(_image(800, 600), target_height=300)
        assert out.size == (400, 300)

    def test_width_only_rounds_height(self):
        """测试：新高度四舍五入"""
        out = resize(_image(1000, 333), target_width=500)
        assert out.size == (500, round(333 * 0.5))

    def test_cover_crop_exact_box(self):
        """测试：800x600 指定 w=400,h=400 -> 正好 400x400"""
        out = resize(_image(800, 600), target_width=400, target_height=400)
        assert out.size == (400, 400)

    def test_cover_crop_resize_and_offset(self, monkeypatch):
        """测试：覆盖缩放到 533x400，居中裁剪偏移 x=66, y=0"""
        calls = {}
        original_resize = Image.Image.resize
        original_crop = Image.Image.crop

        def spy_resize(self, size, *args, **kwargs):
            calls["resize"] = (tuple(size), args[0] if args else kwargs.get("resample"))
            return original_resize(self, size, *args, **kwargs)

        def spy_crop(self, box=None):
            calls["crop"] = box
            return original_crop(self, box)

        monkeypatch.setattr(Image.Image, "resize", spy_resize)
        monkeypatch.setattr(Image.Image, "crop", spy_crop)

        out = resize(_image(800, 600), target_width=400, target_height=400)

        assert calls["resize"] == ((533, 400), Image.Resampling.BILINEAR)
        assert calls["crop"] == (66, 0, 466, 400)
        assert out.size == (400, 400)

    def test_cover_crop_portrait(self):
        """测试：竖图覆盖裁剪"""
        out = resize(_image(600, 900), target_width=300, target_height=200)
        assert out.size == (300, 200)

    @pytest.mark.parametrize("size,target", [
        ((800, 600), (800, 600)),
        ((800, 600), (1000, 700)),
        ((100, 50), (100, 2000)),
    ])
    def test_never_upscales_when_box_is_larger(self, size, target):
        """测试：目标框不小于原图时原样返回"""
        img = _image(*size)
        assert resize(img, target_width=target[0], target_height=target[1]) is img

    def test_width_larger_than_source_is_noop(self):
        """测试：只指定宽且大于原图，不放大"""
        img = _image(300, 200)
        assert resize(img, target_width=600) is img

    def test_height_larger_than_source_is_noop(self):
        img = _image(300, 200)
        assert resize(img, target_height=200) is img

    def test_cover_with_one_side_larger_is_noop(self):
        """测试：scale = max(...) >= 1 时不缩放"""
        img = _image(800, 600)
        assert resize(img, target_width=1000, target_height=300) is img

    @pytest.mark.parametrize("w,h", [(0, None), (None, -5), (-1, 10)])
    def test_non_positive_dimensions_rejected(self, w, h):
        """测试：非正数尺寸抛出 InvalidParameterError"""
        with pytest.raises(InvalidParameterError):
            resize(_image(100, 100), target_width=w, target_height=h)


# ============================================
# 2. 编码测试
# ============================================

class TestEncode:
    """JPEG 编码测试"""

    def test_quality_tiers(self):
        """测试：两边都 <= 1000 用全质量，否则降低质量"""
        assert jpeg_quality_for(1000, 1000) == FULL_QUALITY
        assert jpeg_quality_for(1001, 10) == REDUCED_QUALITY
        assert jpeg_quality_for(10, 1200) == REDUCED_QUALITY
        assert REDUCED_QUALITY < FULL_QUALITY

    def test_encode_rgba_flattens_to_jpeg(self):
        """测试：透明图编码为 JPEG"""
        data = encode_jpeg(_image(40, 30, mode="RGBA"))
        with Image.open(BytesIO(data)) as img:
            assert img.format == "JPEG"
            assert img.mode == "RGB"
            assert img.size == (40, 30)

    def test_encode_falls_back_to_default_encoder(self, monkeypatch):
        """测试：调优编码失败时回退到默认编码"""
        original_save = Image.Image.save

        def flaky_save(self, fp, format=None, **params):
            if "quality" in params:
                raise OSError("encoder unavailable")
            return original_save(self, fp, format=format, **params)

        monkeypatch.setattr(Image.Image, "save", flaky_save)
        data = encode_jpeg(_image(20, 20))
        assert data[:2] == b"\xff\xd8"

    def test_encode_error_when_all_encoders_fail(self, monkeypatch):
        """测试：所有编码器都失败时抛出 EncodeError"""
        def broken_save(self, fp, format=None, **params):
            raise OSError("no jpeg support")

        monkeypatch.setattr(Image.Image, "save", broken_save)
        with pytest.raises(EncodeError):
            encode_jpeg(_image(20, 20))


# ============================================
# 3. 解码与完整流程
# ============================================

class TestDecodeAndTransform:
    """解码和 transform_bytes 测试"""

    def test_decode_invalid_bytes(self):
        """测试：非图片数据抛出 InvalidImageError"""
        with pytest.raises(InvalidImageError):
            decode_image(b"<html>not an image</html>")

    def test_transform_bytes_scenario_a(self):
        """测试：800x600 PNG, w=400 -> 400x300 JPEG"""
        result = transform_bytes(make_image_bytes(800, 600), target_width=400)
        assert (result.width, result.height) == (400, 300)
        assert detect_content_type(result.data) == OUTPUT_CONTENT_TYPE
        assert image_size(result.data) == (400, 300)

    def test_transform_bytes_scenario_b(self):
        """测试：800x600 PNG, w=400,h=400 -> 400x400 JPEG"""
        result = transform_bytes(make_image_bytes(800, 600), target_width=400, target_height=400)
        assert image_size(result.data) == (400, 400)

    def test_transform_bytes_no_upscale_still_jpeg(self):
        """测试：不缩放时仍输出 JPEG，尺寸不变"""
        result = transform_bytes(make_image_bytes(120, 80), target_width=500)
        assert image_size(result.data) == (120, 80)
        assert result.data[:2] == b"\xff\xd8"

    def test_detect_content_type(self):
        """测试：从图片头识别 MIME 类型"""
        assert detect_content_type(make_image_bytes(5, 5, fmt="PNG")) == "image/png"
        assert detect_content_type(make_image_bytes(5, 5, fmt="GIF")) == "image/gif"
        assert detect_content_type(b"plain text") is None

    def test_exif_orientation_applied(self):
        """测试：EXIF 方向为 6（旋转 90 度）时宽高互换"""
        img = _image(80, 40)
        exif = img.getexif()
        exif[0x0112] = 6
        buf = BytesIO()
        img.save(buf, format="JPEG", exif=exif.tobytes())

        decoded = decode_image(buf.getvalue())
        assert decoded.size == (40, 80)
