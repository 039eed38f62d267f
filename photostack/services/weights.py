from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from photostack.config import FusionConfig


def _luma(img: np.ndarray) -> np.ndarray:
	if img.ndim == 2:
		return img
	if img.shape[2] == 4:
		return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
	return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


def contrast_weight(gray: np.ndarray) -> np.ndarray:
	lap = cv2.Laplacian(gray, ddepth=cv2.CV_32F, ksize=1)
	return np.abs(lap)


def saturation_weight(img: np.ndarray) -> np.ndarray:
	# mean absolute difference between channels; zero for neutral and gray pixels
	if img.ndim == 2:
		return np.zeros(img.shape, dtype=np.float32)
	b = img[..., 0]
	g = img[..., 1]
	r = img[..., 2]
	return ((np.abs(b - g) + np.abs(g - r) + np.abs(r - b)) / 3.0).astype(np.float32)


def well_exposed_weight(gray: np.ndarray, optimum: float = 0.5, width: float = 0.2) -> np.ndarray:
	return np.exp(-((gray - optimum) ** 2) / (2.0 * width * width)).astype(np.float32)


class WeightMapEstimator:
	"""
	Per-pixel quality score of one float image in [0, 1]: a weighted sum of
	contrast, saturation and well-exposedness, scaled by the entropy factor
	and smoothed so the blend has no seams. Images are scored independently.
	"""

	def __init__(self, config: Optional[FusionConfig] = None):
		self.config = config or FusionConfig()

	def compute_weight(self, img: np.ndarray) -> np.ndarray:
		cfg = self.config
		img = img.astype(np.float32, copy=False)
		gray = _luma(img)

		weight = np.zeros(gray.shape, dtype=np.float32)
		if cfg.contrast_weight:
			weight += contrast_weight(gray) * cfg.contrast_weight
		if cfg.saturation_weight:
			weight += saturation_weight(img) * cfg.saturation_weight
		if cfg.exposure_weight:
			weight += well_exposed_weight(gray, cfg.exposure_optimum, cfg.exposure_width) * cfg.exposure_weight
		# entropy is a fixed configured factor, not measured from the image
		weight *= 1.0 + cfg.entropy_weight

		if cfg.blur_size > 1:
			weight = cv2.GaussianBlur(weight, (cfg.blur_size, cfg.blur_size), 0)
		if img.ndim == 3 and img.shape[2] == 4:
			weight *= img[..., 3]
		return np.maximum(weight, 0.0).astype(np.float32)
