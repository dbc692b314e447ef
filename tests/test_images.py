"""Unit tests for job image validation and optimization."""
import base64
import io
from unittest.mock import patch

import pytest
from PIL import Image

from shopcrm.config import settings
from shopcrm.services.images import (
    ImageValidationError,
    decode_base64_image,
    optimize_image_bytes,
    prepare_job_image,
)


def _png(size=(3200, 1600), mode="RGBA"):
    buf = io.BytesIO()
    Image.new(mode, size, (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


class TestDecode:

    def test_raw_base64(self):
        assert decode_base64_image(base64.b64encode(b"abc").decode()) == b"abc"

    def test_data_url(self):
        data = "data:image/png;base64," + base64.b64encode(b"abc").decode()
        assert decode_base64_image(data) == b"abc"

    def test_rejects_other_content_types(self):
        with pytest.raises(ImageValidationError):
            decode_base64_image("data:application/pdf;base64,AAAA")

    def test_rejects_garbage(self):
        with pytest.raises(ImageValidationError):
            decode_base64_image("this is not base64!")
        with pytest.raises(ImageValidationError):
            decode_base64_image("")


class TestOptimize:

    def test_large_image_is_downscaled_to_jpeg(self):
        out = optimize_image_bytes(_png(), max_dim=800)
        img = Image.open(io.BytesIO(out))
        assert img.format == "JPEG"
        assert img.size == (800, 400)

    def test_portrait_orientation(self):
        out = optimize_image_bytes(_png(size=(600, 1200), mode="RGB"), max_dim=300)
        assert Image.open(io.BytesIO(out)).size == (150, 300)

    def test_not_an_image(self):
        with pytest.raises(ImageValidationError):
            optimize_image_bytes(b"plain text")


class TestPrepareJobImage:

    def test_returns_base64_jpeg(self):
        data = "data:image/png;base64," + base64.b64encode(_png()).decode()
        stored = prepare_job_image(data)
        img = Image.open(io.BytesIO(base64.b64decode(stored)))
        assert max(img.size) <= settings.image_max_dim

    def test_size_limit(self):
        with patch.object(settings, "image_max_bytes", 10):
            with pytest.raises(ImageValidationError):
                prepare_job_image(base64.b64encode(_png(size=(50, 50))).decode())
