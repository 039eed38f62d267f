from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from photostack.config import RegistrarConfig
from photostack.services.image_utils import downsample, image_size, to_luma_u8, validate_image
from photostack.services.result import ErrorKind, PhotoStackError, guarded

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ReferenceCalibration:
	"""Features of the reference frame, detected at working resolution."""

	keypoints: Tuple[cv2.KeyPoint, ...]
	descriptors: np.ndarray
	reference_size: Tuple[int, int]  # (width, height) at full resolution
	scale_factor: int
	working_scale: int  # 1 when calibrated in preview mode, else scale_factor

	@property
	def keypoint_count(self) -> int:
		return len(self.keypoints)


def to_full_resolution(transform: np.ndarray, ref_scale: int, target_scale: int) -> np.ndarray:
	"""
	Lift a transform estimated between working-resolution copies back to full
	resolution: S_ref @ T @ inv(S_target). With equal scales only the
	translation column changes.
	"""
	full = transform.astype(np.float64).copy()
	full[:, :2] *= float(ref_scale) / float(target_scale)
	full[:, 2] *= float(ref_scale)
	return full


class FeatureRegistrar:
	"""
	AKAZE keypoints + Hamming brute-force matching with cross-check, and a
	RANSAC fit of a rotation/uniform-scale/translation transform.
	"""

	def __init__(self, config: Optional[RegistrarConfig] = None):
		self.config = config or RegistrarConfig()
		self._detector = cv2.AKAZE_create(threshold=self.config.detector_threshold)
		self._matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=True)

	def scale_factor_for(self, width: int, height: int) -> int:
		longer = max(int(width), int(height))
		limit = self.config.working_resolution
		if longer < limit:
			return 1
		return max(1, int(math.floor(longer / float(limit))))

	def detect(self, image: np.ndarray) -> Tuple[List[cv2.KeyPoint], np.ndarray]:
		gray = to_luma_u8(image)
		keypoints, descriptors = self._detector.detectAndCompute(gray, None)
		keypoints = list(keypoints or [])
		if descriptors is None or len(keypoints) < self.config.min_keypoints:
			raise PhotoStackError(
				ErrorKind.INSUFFICIENT_KEYPOINTS,
				f"Not enough keypoints detected for reliable alignment ({len(keypoints)} < {self.config.min_keypoints})",
			)
		return keypoints, descriptors

	def match(self, ref_descriptors: np.ndarray, target_descriptors: np.ndarray) -> List[cv2.DMatch]:
		"""Mutual nearest neighbours, best first, at most max_matches."""
		matches = self._matcher.match(ref_descriptors, target_descriptors)
		matches = sorted(matches, key=lambda m: m.distance)
		return matches[: self.config.max_matches]

	@guarded
	def calibrate(self, reference: np.ndarray, is_preview: bool = False) -> ReferenceCalibration:
		validate_image(reference)
		width, height = image_size(reference)
		scale_factor = self.scale_factor_for(width, height)
		working_scale = 1 if is_preview else scale_factor

		keypoints, descriptors = self.detect(downsample(reference, working_scale))
		logger.info(
			"Calibrated %dx%d reference: %d keypoints at 1/%d scale",
			width, height, len(keypoints), working_scale,
		)
		return ReferenceCalibration(
			keypoints=tuple(keypoints),
			descriptors=descriptors,
			reference_size=(width, height),
			scale_factor=scale_factor,
			working_scale=working_scale,
		)

	@guarded
	def register_against(
		self,
		calibration: Optional[ReferenceCalibration],
		target: np.ndarray,
		is_preview: bool = False,
	) -> np.ndarray:
		"""Return the 2x3 transform mapping full-resolution target pixels onto the reference."""
		if calibration is None:
			raise PhotoStackError(ErrorKind.NO_REFERENCE_CALIBRATION, "No reference image has been set")
		validate_image(target)
		target_scale = 1 if is_preview else calibration.scale_factor

		keypoints, descriptors = self.detect(downsample(target, target_scale))
		matches = self.match(calibration.descriptors, descriptors)
		if len(matches) < self.config.min_matches:
			raise PhotoStackError(
				ErrorKind.ALIGNMENT_FAILED,
				f"Failed to compute a valid affine transformation: only {len(matches)} matches",
			)

		ref_pts = np.float32([calibration.keypoints[m.queryIdx].pt for m in matches]).reshape(-1, 1, 2)
		target_pts = np.float32([keypoints[m.trainIdx].pt for m in matches]).reshape(-1, 1, 2)
		transform, inliers = self.estimate(target_pts, ref_pts)

		n_inliers = int(np.count_nonzero(inliers)) if inliers is not None else 0
		logger.info("Registered target: %d matches, %d inliers", len(matches), n_inliers)
		return to_full_resolution(transform, calibration.working_scale, target_scale)

	def estimate(self, src_pts: np.ndarray, dst_pts: np.ndarray) -> Tuple[np.ndarray, Optional[np.ndarray]]:
		cfg = self.config
		transform, inliers = cv2.estimateAffinePartial2D(
			src_pts,
			dst_pts,
			method=cv2.RANSAC,
			ransacReprojThreshold=cfg.ransac_reproj_threshold,
			maxIters=cfg.ransac_max_iters,
			confidence=cfg.ransac_confidence,
			refineIters=cfg.ransac_refine_iters,
		)
		if transform is None or not np.all(np.isfinite(transform)):
			raise PhotoStackError(ErrorKind.ALIGNMENT_FAILED, "Failed to compute a valid affine transformation")
		return transform, inliers


def transform_points(transform: np.ndarray, points: Sequence[Tuple[float, float]]) -> np.ndarray:
	pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
	return pts @ transform[:, :2].T + transform[:, 2]
