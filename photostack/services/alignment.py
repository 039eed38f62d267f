from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from photostack.config import OutputConfig, RegistrarConfig
from photostack.services.compositing import attach_alpha, opaque_mask
from photostack.services.image_utils import load_image, save_image, validate_image
from photostack.services.registration import FeatureRegistrar, ReferenceCalibration
from photostack.services.result import ErrorKind, Result, guarded

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def warp_to_reference(image: np.ndarray, transform: np.ndarray, size: Tuple[int, int]) -> Tuple[np.ndarray, np.ndarray]:
	"""
	Warp image into the reference frame of the given (width, height).
	Returns (warped, mask); the mask is the warped full-coverage mask at the
	image's depth, zero where the frame has no data.
	"""
	warped = cv2.warpAffine(
		image, transform, size,
		flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=0,
	)
	ones = opaque_mask((image.shape[1], image.shape[0]), image.dtype)
	mask = cv2.warpAffine(
		ones, transform, size,
		flags=cv2.INTER_NEAREST, borderMode=cv2.BORDER_CONSTANT, borderValue=0,
	)
	return warped, mask


class AlignmentSession:
	"""
	Holds one reference calibration and aligns any number of frames against it.
	A failed set_reference keeps the previous calibration. Not safe for
	concurrent use; callers serialize access to one session.
	"""

	def __init__(self, config: Optional[RegistrarConfig] = None, output: Optional[OutputConfig] = None):
		self.registrar = FeatureRegistrar(config)
		self.output = output or OutputConfig()
		self._calibration: Optional[ReferenceCalibration] = None

	@property
	def calibration(self) -> Optional[ReferenceCalibration]:
		return self._calibration

	@property
	def is_calibrated(self) -> bool:
		return self._calibration is not None

	def reset(self) -> None:
		self._calibration = None

	def _calibrate(self, image: np.ndarray, is_preview: bool) -> Tuple[ReferenceCalibration, np.ndarray]:
		validate_image(image)
		calibration = self.registrar.calibrate(image, is_preview).unwrap()
		return calibration, attach_alpha(image, opaque_mask(calibration.reference_size, image.dtype))

	@guarded
	def set_reference(self, image: np.ndarray, is_preview: bool = False) -> np.ndarray:
		"""Calibrate on image and return it with an opaque alpha channel as the base frame."""
		calibration, base = self._calibrate(image, is_preview)
		self._calibration = calibration
		return base

	@guarded
	def align_one(self, image: np.ndarray, is_preview: bool = False) -> np.ndarray:
		calibration = self._calibration
		transform = self.registrar.register_against(calibration, image, is_preview).unwrap()
		warped, mask = warp_to_reference(image, transform, calibration.reference_size)
		return attach_alpha(warped, mask)

	@guarded
	def set_reference_image(self, path: PathLike, output_path: PathLike, is_preview: bool = False) -> str:
		image = load_image(path)
		calibration, base = self._calibrate(image, is_preview)
		saved = save_image(base, output_path, self.output)
		# committed only once the base frame is on disk
		self._calibration = calibration
		return saved

	@guarded
	def align_image(self, path: PathLike, output_path: PathLike, is_preview: bool = False) -> str:
		image = load_image(path)
		aligned = self.align_one(image, is_preview).unwrap()
		return save_image(aligned, output_path, self.output)


def align_set(
	paths: Sequence[PathLike],
	output_dir: PathLike,
	ref_index: int = 0,
	is_preview: bool = False,
	config: Optional[RegistrarConfig] = None,
	output: Optional[OutputConfig] = None,
) -> Result[List[str]]:
	"""
	Align a whole set against paths[ref_index], writing <stem>_aligned.tif for
	each frame into output_dir. Stops at the first failure.
	"""
	out_dir = Path(output_dir)
	if not paths or not 0 <= ref_index < len(paths):
		return Result.failure(ErrorKind.INVALID_INPUT, "Reference index out of range")
	session = AlignmentSession(config, output)
	ref_path = Path(paths[ref_index])
	res = session.set_reference_image(ref_path, out_dir / f"{ref_path.stem}_aligned.tif", is_preview)
	if not res.ok:
		return res
	written = [res.value]
	for idx, p in enumerate(paths):
		if idx == ref_index:
			continue
		p = Path(p)
		res = session.align_image(p, out_dir / f"{p.stem}_aligned.tif", is_preview)
		if not res.ok:
			return res
		written.append(res.value)
	return Result.success(written)
