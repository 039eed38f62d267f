from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np

from photostack.services.image_utils import max_value
from photostack.services.result import ErrorKind, PhotoStackError


def opaque_mask(size: Tuple[int, int], dtype) -> np.ndarray:
	"""Full-coverage mask of the given (width, height) at the dtype maximum."""
	width, height = size
	return np.full((height, width), max_value(dtype), dtype=dtype)


def attach_alpha(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
	"""
	Return a BGRA copy of image with mask as its alpha channel. Gray input is
	expanded to BGR and an existing alpha channel is replaced, so every
	emitted frame has exactly four channels.
	"""
	if mask.ndim != 2 or mask.shape != image.shape[:2]:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Mask shape {mask.shape} does not match image {image.shape[:2]}")
	if mask.dtype != image.dtype:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Mask depth {mask.dtype} does not match image {image.dtype}")

	if image.ndim == 2:
		bgr = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
	else:
		bgr = image[..., :3]
	return np.dstack([bgr, mask])
