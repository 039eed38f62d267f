import cv2
import numpy as np
import pytest
from PIL import Image

import photostack.services.image_utils as image_utils
from photostack.config import OutputConfig
from photostack.services.image_utils import (
	from_float,
	load_image,
	save_image,
	to_float,
	to_luma_u8,
	validate_image,
)
from photostack.services.result import ErrorKind, PhotoStackError


class TestLoadImage:
	def test_largest_page_is_selected(self, tmp_path):
		small = np.full((10, 12, 3), 10, dtype=np.uint8)
		large = np.full((40, 50, 3), 200, dtype=np.uint8)
		path = tmp_path / "multi.tif"
		Image.fromarray(small).save(path, save_all=True, append_images=[Image.fromarray(large)])
		img = load_image(path)
		assert img.shape == (40, 50, 3)
		assert np.all(img == 200)

	def test_missing_file(self, tmp_path):
		with pytest.raises(PhotoStackError) as exc:
			load_image(tmp_path / "nothing.tif")
		assert exc.value.kind == ErrorKind.LOAD_FAILED

	def test_not_an_image(self, tmp_path):
		path = tmp_path / "junk.png"
		path.write_bytes(b"not an image at all")
		with pytest.raises(PhotoStackError) as exc:
			load_image(path)
		assert exc.value.kind == ErrorKind.LOAD_FAILED

	def test_empty_path(self):
		with pytest.raises(PhotoStackError) as exc:
			load_image("")
		assert exc.value.kind == ErrorKind.INVALID_INPUT


class TestSaveImage:
	def test_tiff_keeps_alpha_and_depth(self, tmp_path):
		img = np.zeros((20, 30, 4), dtype=np.uint16)
		img[..., 0] = 1000
		img[..., 3] = 65535
		img[:, :10, 3] = 0
		path = tmp_path / "out.tif"
		save_image(img, path)
		back = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
		assert back.dtype == np.uint16
		np.testing.assert_array_equal(back, img)

	def test_tiff_resolution_and_compression(self, tmp_path):
		img = np.full((20, 30, 4), 255, dtype=np.uint8)
		path = tmp_path / "out.tiff"
		save_image(img, path, OutputConfig(dpi=300))
		with Image.open(path) as pil:
			assert len(pil.getbands()) == 4
			assert pil.info.get("compression") == "tiff_lzw"
			dpi = pil.info.get("dpi")
			assert dpi is not None
			assert round(float(dpi[0])) == 300

	def test_png_is_lossless(self, tmp_path):
		rng = np.random.default_rng(1)
		img = rng.integers(0, 256, (16, 16, 3), dtype=np.uint8)
		path = tmp_path / "nested" / "out.png"
		save_image(img, path)
		np.testing.assert_array_equal(cv2.imread(str(path), cv2.IMREAD_UNCHANGED), img)

	def test_lossy_format_is_rejected(self, tmp_path):
		with pytest.raises(PhotoStackError) as exc:
			save_image(np.zeros((4, 4, 3), np.uint8), tmp_path / "out.jpg")
		assert exc.value.kind == ErrorKind.INVALID_INPUT
		assert list(tmp_path.iterdir()) == []

	def test_encode_failure_leaves_nothing(self, tmp_path, monkeypatch):
		monkeypatch.setattr(image_utils.cv2, "imwrite", lambda *a, **k: False)
		with pytest.raises(PhotoStackError) as exc:
			save_image(np.zeros((4, 4, 3), np.uint8), tmp_path / "out.tif")
		assert exc.value.kind == ErrorKind.SAVE_FAILED
		assert list(tmp_path.iterdir()) == []


class TestConversions:
	def test_float_round_trip(self):
		img = np.array([[0, 1, 128, 255]], dtype=np.uint8)
		np.testing.assert_array_equal(from_float(to_float(img), np.uint8), img)

	def test_from_float_clips(self):
		out = from_float(np.array([-0.5, 0.5, 1.5], dtype=np.float32), np.uint16)
		np.testing.assert_array_equal(out, [0, 32768, 65535])

	def test_luma_of_sixteen_bit(self):
		img = np.full((4, 4, 3), 65535, dtype=np.uint16)
		gray = to_luma_u8(img)
		assert gray.dtype == np.uint8
		assert np.all(gray == 255)

	@pytest.mark.parametrize(
		"img",
		[np.zeros((4, 4, 3), np.float32), np.zeros((4, 4, 2), np.uint8), np.zeros((0, 4), np.uint8), None],
	)
	def test_invalid_images(self, img):
		with pytest.raises(PhotoStackError) as exc:
			validate_image(img)
		assert exc.value.kind == ErrorKind.INVALID_INPUT
