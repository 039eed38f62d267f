from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from photostack.config import FusionConfig, OutputConfig
from photostack.services.image_utils import (
	channel_count,
	color_channels,
	load_image,
	save_image,
	to_float,
	from_float,
)
from photostack.services.pyramid import gaussian_pyramid, laplacian_pyramid, max_levels, reconstruct
from photostack.services.result import ErrorKind, PhotoStackError, Result, guarded
from photostack.services.weights import WeightMapEstimator

logger = logging.getLogger(__name__)


def _check_geometry(images: Sequence[np.ndarray]) -> None:
	ref_shape = images[0].shape[:2]
	ref_channels = channel_count(images[0])
	for i, img in enumerate(images[1:], start=1):
		if img.shape[:2] != ref_shape or channel_count(img) != ref_channels:
			raise PhotoStackError(
				ErrorKind.INCONSISTENT_GEOMETRY,
				f"Image {i} is {img.shape[1]}x{img.shape[0]}x{channel_count(img)}, "
				f"expected {ref_shape[1]}x{ref_shape[0]}x{ref_channels}",
			)


def _output_dtype(images: Sequence[np.ndarray]):
	return np.uint16 if any(img.dtype == np.uint16 for img in images) else np.uint8


def blend_pyramids(image_lps: List[List[np.ndarray]], weight_gps: List[List[np.ndarray]], epsilon: float = 1e-6) -> List[np.ndarray]:
	"""
	Blend per-image Laplacian pyramids level by level. Both stacks must be
	ordered coarsest first; weights are normalized per level across images.
	"""
	levels = len(image_lps[0])
	blended: List[np.ndarray] = []
	for lvl in range(levels):
		level_shape = image_lps[0][lvl].shape[:2]
		for k, wp in enumerate(weight_gps):
			if wp[lvl].shape[:2] != level_shape or image_lps[k][lvl].shape[:2] != level_shape:
				raise PhotoStackError(
					ErrorKind.INCONSISTENT_GEOMETRY,
					f"Pyramid level {lvl} of image {k} does not match {level_shape}",
				)
		total = np.zeros(level_shape, dtype=np.float32)
		for wp in weight_gps:
			total += wp[lvl]
		total += epsilon

		acc = np.zeros_like(image_lps[0][lvl], dtype=np.float32)
		for k in range(len(image_lps)):
			w = weight_gps[k][lvl] / total
			if acc.ndim == 3:
				w = w[..., np.newaxis]  # broadcast across channels
			acc += w * image_lps[k][lvl]
		blended.append(acc)
	return blended


class ExposureFuser:
	"""Weighted Laplacian-pyramid blending of an aligned, equally sized image set."""

	def __init__(self, config: Optional[FusionConfig] = None):
		self.config = config or FusionConfig()
		self.estimator = WeightMapEstimator(self.config)

	@guarded
	def fuse(self, images: Sequence[np.ndarray], levels: Optional[int] = None) -> np.ndarray:
		if not images:
			raise PhotoStackError(ErrorKind.INVALID_INPUT, "No images to fuse")
		_check_geometry(images)

		requested = levels if levels is not None else self.config.levels
		if requested < 1:
			raise PhotoStackError(ErrorKind.INVALID_INPUT, "levels must be >= 1")
		n_levels = min(requested, max_levels(images[0].shape))
		if n_levels < requested:
			logger.debug("Clamped pyramid levels from %d to %d", requested, n_levels)

		floats = [to_float(img) for img in images]
		logger.debug("Fusing %d images at %d levels", len(floats), n_levels)

		weight_gps: List[List[np.ndarray]] = []
		for f in floats:
			gp = gaussian_pyramid(self.estimator.compute_weight(f), n_levels)
			# reversed so index 0 is the coarsest level, as in the Laplacian stack
			gp.reverse()
			weight_gps.append(gp)

		image_lps = [laplacian_pyramid(gaussian_pyramid(color_channels(f), n_levels)) for f in floats]

		blended = blend_pyramids(image_lps, weight_gps, self.config.epsilon)
		fused = reconstruct(blended)
		fused = np.clip(fused, 0.0, 1.0)

		if channel_count(images[0]) == 4:
			alpha = np.max(np.stack([f[..., 3] for f in floats], axis=0), axis=0)
			fused = np.dstack([fused, alpha])

		return from_float(fused, _output_dtype(images))


@guarded
def fuse_files(
	paths: Sequence[Union[str, Path]],
	output_path: Union[str, Path],
	config: Optional[FusionConfig] = None,
	output: Optional[OutputConfig] = None,
) -> int:
	"""
	Load, fuse and save an image set. Returns the number of fused frames.
	Nothing is written unless every image loads and the fusion succeeds.
	"""
	if not paths:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, "No input paths given")
	images = [load_image(p) for p in paths]
	fused = ExposureFuser(config).fuse(images).unwrap()
	save_image(fused, output_path, output)
	return len(images)


def fuse_images(
	paths: Sequence[Union[str, Path]],
	output_path: Union[str, Path],
	config: Optional[FusionConfig] = None,
	output: Optional[OutputConfig] = None,
) -> int:
	"""Frame count on success, -1 on failure."""
	result = fuse_files(paths, output_path, config, output)
	if not result.ok:
		return -1
	return int(result.value)
