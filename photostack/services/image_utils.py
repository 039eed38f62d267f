from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np

from photostack.config import OutputConfig
from photostack.services.result import ErrorKind, PhotoStackError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SUPPORTED_DTYPES = (np.uint8, np.uint16)
SUPPORTED_CHANNELS = (1, 3, 4)
LOSSLESS_SUFFIXES = {".tif", ".tiff", ".png"}

# libtiff compression tags
TIFF_COMPRESSION = {"none": 1, "lzw": 5, "deflate": 8}
TIFF_RESUNIT_INCH = 2


def channel_count(image: np.ndarray) -> int:
	return 1 if image.ndim == 2 else int(image.shape[2])


def image_size(image: np.ndarray) -> Tuple[int, int]:
	"""(width, height), the order OpenCV expects for dsize."""
	return int(image.shape[1]), int(image.shape[0])


def max_value(dtype) -> float:
	return float(np.iinfo(dtype).max)


def validate_image(image: Optional[np.ndarray]) -> np.ndarray:
	if image is None or not isinstance(image, np.ndarray) or image.size == 0:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, "Image is empty")
	if image.dtype not in SUPPORTED_DTYPES:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Unsupported image depth: {image.dtype}")
	if image.ndim not in (2, 3) or channel_count(image) not in SUPPORTED_CHANNELS:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Unsupported image layout: {image.shape}")
	if image.ndim == 3 and image.shape[2] == 1:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, "Single-channel images must be 2-D")
	return image


def load_image(path: PathLike) -> np.ndarray:
	"""
	Decode an image with OpenCV. Multi-page containers (TIFF) are read completely
	and the page with the highest pixel count is returned.
	"""
	if not str(path):
		raise PhotoStackError(ErrorKind.INVALID_INPUT, "Image path is empty")
	p = Path(path)
	if not p.is_file():
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to load image: {p} does not exist")

	pages: List[np.ndarray] = []
	try:
		ok, pages = cv2.imreadmulti(str(p), flags=cv2.IMREAD_UNCHANGED)
		if not ok:
			pages = []
	except cv2.error as e:
		logger.debug("imreadmulti failed for %s: %s", p, e)
		pages = []
	if not pages:
		single = cv2.imread(str(p), cv2.IMREAD_UNCHANGED)
		if single is not None:
			pages = [single]
	if not pages:
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to load image: {p}")

	largest = max(pages, key=lambda page: page.shape[0] * page.shape[1])
	if len(pages) > 1:
		logger.debug("Selected %dx%d page out of %d in %s", largest.shape[1], largest.shape[0], len(pages), p.name)
	return validate_image(largest)


def _encode_params(suffix: str, output: OutputConfig) -> List[int]:
	if suffix in (".tif", ".tiff"):
		dpi = int(round(output.dpi))
		return [
			cv2.IMWRITE_TIFF_COMPRESSION, TIFF_COMPRESSION[output.tiff_compression],
			cv2.IMWRITE_TIFF_RESUNIT, TIFF_RESUNIT_INCH,
			cv2.IMWRITE_TIFF_XDPI, dpi,
			cv2.IMWRITE_TIFF_YDPI, dpi,
		]
	return [cv2.IMWRITE_PNG_COMPRESSION, 3]


def save_image(image: np.ndarray, path: PathLike, output: Optional[OutputConfig] = None) -> str:
	"""
	Encode image losslessly (TIFF or PNG), keeping any alpha channel.
	The file is written next to its destination and renamed only after a
	successful encode, so a failure never leaves a partial output behind.
	"""
	output = output or OutputConfig()
	validate_image(image)
	out_path = Path(path)
	suffix = out_path.suffix.lower()
	if suffix not in LOSSLESS_SUFFIXES:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Unsupported output format '{suffix}', use TIFF or PNG")

	tmp_path = out_path.with_name(f".{out_path.stem}.partial{out_path.suffix}")
	try:
		out_path.parent.mkdir(parents=True, exist_ok=True)
		if not cv2.imwrite(str(tmp_path), image, _encode_params(suffix, output)):
			raise PhotoStackError(ErrorKind.SAVE_FAILED, f"Failed to encode {out_path}")
		os.replace(tmp_path, out_path)
	except PhotoStackError:
		_discard(tmp_path)
		raise
	except (OSError, cv2.error) as e:
		_discard(tmp_path)
		raise PhotoStackError(ErrorKind.SAVE_FAILED, f"Failed to save {out_path}: {e}") from e
	logger.info("Saved %s (%dx%d, %d channels, %s)", out_path, image.shape[1], image.shape[0], channel_count(image), image.dtype)
	return str(out_path)


def _discard(path: Path) -> None:
	try:
		path.unlink()
	except FileNotFoundError:
		pass


def to_float(image: np.ndarray) -> np.ndarray:
	"""Normalize an integer image to float32 in [0, 1]."""
	return image.astype(np.float32) / max_value(image.dtype)


def from_float(arr: np.ndarray, dtype) -> np.ndarray:
	"""Scale a [0, 1] float image to the integer range of dtype, rounding and clipping."""
	top = max_value(dtype)
	return np.clip(np.rint(arr * top), 0.0, top).astype(dtype)


def color_channels(image: np.ndarray) -> np.ndarray:
	"""Drop the alpha plane of a 4-channel image."""
	if image.ndim == 3 and image.shape[2] == 4:
		return image[..., :3]
	return image


def to_luma(image: np.ndarray) -> np.ndarray:
	if image.ndim == 2:
		return image
	if image.shape[2] == 4:
		return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
	return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def to_luma_u8(image: np.ndarray) -> np.ndarray:
	"""8-bit luma for feature detection."""
	gray = to_luma(image)
	if gray.dtype == np.uint16:
		return cv2.convertScaleAbs(gray, alpha=255.0 / 65535.0)
	return gray


def downsample(image: np.ndarray, factor: int) -> np.ndarray:
	if factor <= 1:
		return image
	return cv2.resize(image, None, fx=1.0 / factor, fy=1.0 / factor, interpolation=cv2.INTER_AREA)
