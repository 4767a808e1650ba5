"""Tests for image helpers."""
import base64
import io

import pytest
from PIL import Image

from cardflo.core.imaging import (
    crop_box,
    crop_logo,
    decode_image,
    encode_jpeg,
    ensure_jpeg,
    format_image_data_url,
    scale_image,
)


def test_scale_image_halves():
    img = Image.new("RGB", (640, 480))
    assert scale_image(img, 0.5).size == (320, 240)


def test_scale_image_never_upscales():
    img = Image.new("RGB", (100, 50))
    assert scale_image(img, 2.0) is img


def test_scale_image_rejects_non_positive():
    with pytest.raises(ValueError):
        scale_image(Image.new("RGB", (10, 10)), 0)


def test_encode_jpeg_converts_mode():
    img = Image.new("RGBA", (20, 20), (255, 0, 0, 128))
    decoded = decode_image(encode_jpeg(img, 200))
    assert decoded.format == "JPEG"
    assert decoded.mode == "RGB"


def test_ensure_jpeg_reencodes_png():
    buf = io.BytesIO()
    Image.new("RGBA", (30, 20), (0, 128, 255, 200)).save(buf, format="PNG")
    decoded = decode_image(ensure_jpeg(buf.getvalue()))
    assert decoded.format == "JPEG"
    assert decoded.size == (30, 20)


def test_ensure_jpeg_keeps_jpeg(card_jpeg):
    assert ensure_jpeg(card_jpeg) is card_jpeg
    with pytest.raises(OSError):
        ensure_jpeg(b"not an image")


def test_data_url():
    url = format_image_data_url(b"abc", "image/png")
    assert url == "data:image/png;base64," + base64.b64encode(b"abc").decode()


class TestCrop:

    def test_crop_without_padding(self, card_jpeg):
        crop = crop_box(card_jpeg, [100, 100, 300, 300])
        assert decode_image(crop).size == (200, 120)

    def test_logo_padding_is_clamped_to_image(self, card_jpeg):
        crop = crop_logo(card_jpeg, [0, 0, 1000, 1000])
        assert decode_image(crop).size == (1000, 600)

    def test_inverted_box(self, card_jpeg):
        assert crop_box(card_jpeg, [300, 300, 100, 100]) is None

    def test_wrong_length(self, card_jpeg):
        assert crop_box(card_jpeg, [1, 2, 3]) is None

    def test_degenerate_box(self, card_jpeg):
        assert crop_box(card_jpeg, [500, 500, 500, 501]) is None
