from __future__ import annotations

from typing import List, Sequence, Tuple

import cv2
import numpy as np


def max_levels(shape: Tuple[int, ...]) -> int:
	"""Largest level count whose coarsest level keeps at least one pixel on the short side."""
	short_side = max(1, min(int(shape[0]), int(shape[1])))
	levels = 1
	while short_side > 1:
		short_side = (short_side + 1) // 2
		levels += 1
	return levels


def gaussian_pyramid(img: np.ndarray, levels: int) -> List[np.ndarray]:
	"""Finest first; each level is cv2.pyrDown of the previous one."""
	if levels < 1:
		raise ValueError("levels must be >= 1")
	img = img.astype(np.float32, copy=False)
	pyr = [img]
	for _ in range(1, levels):
		img = cv2.pyrDown(img)
		pyr.append(img)
	return pyr


def _up(img: np.ndarray, like: np.ndarray) -> np.ndarray:
	size = (like.shape[1], like.shape[0])
	up = cv2.pyrUp(img, dstsize=size)
	# pyrUp drops the trailing axis of single-channel 3-D input
	return up.reshape(like.shape)


def laplacian_pyramid(gp: Sequence[np.ndarray]) -> List[np.ndarray]:
	"""
	Band-pass stack built outward from the coarsest level:
	entry 0 is the coarsest Gaussian level, entry k is the Gaussian level
	L-1-k minus the next coarser Gaussian level upsampled to its size.
	"""
	lp: List[np.ndarray] = [gp[-1].astype(np.float32)]
	for i in range(len(gp) - 1, 0, -1):
		up = _up(gp[i], gp[i - 1])
		lp.append((gp[i - 1] - up).astype(np.float32))
	return lp


def reconstruct(lp: Sequence[np.ndarray]) -> np.ndarray:
	img = lp[0].astype(np.float32)
	for band in lp[1:]:
		img = (_up(img, band) + band).astype(np.float32)
	return img
