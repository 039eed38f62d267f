import cv2
import numpy as np
import pytest


def make_scene(width=480, height=360, seed=7, shapes=60):
	"""Mid-gray canvas covered with random colored rectangles and circles."""
	rng = np.random.default_rng(seed)
	img = np.full((height, width, 3), 128, dtype=np.uint8)
	for _ in range(shapes):
		color = tuple(int(c) for c in rng.integers(0, 256, 3))
		x, y = int(rng.integers(0, width)), int(rng.integers(0, height))
		if rng.random() < 0.5:
			w, h = int(rng.integers(10, max(11, width // 6))), int(rng.integers(10, max(11, height // 6)))
			cv2.rectangle(img, (x, y), (x + w, y + h), color, -1)
		else:
			r = int(rng.integers(6, max(7, min(width, height) // 10)))
			cv2.circle(img, (x, y), r, color, -1)
	return cv2.GaussianBlur(img, (3, 3), 0)


def shift_image(img, dx, dy, fill=128):
	h, w = img.shape[:2]
	m = np.float32([[1, 0, dx], [0, 1, dy]])
	return cv2.warpAffine(img, m, (w, h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=(fill, fill, fill))


@pytest.fixture
def scene():
	return make_scene()


@pytest.fixture
def blank():
	return np.full((360, 480, 3), 128, dtype=np.uint8)


@pytest.fixture
def scene_files(tmp_path, scene):
	"""Reference scene and a copy shifted by (15, -10), written as PNG."""
	ref_path = tmp_path / "ref.png"
	moved_path = tmp_path / "moved.png"
	cv2.imwrite(str(ref_path), scene)
	cv2.imwrite(str(moved_path), shift_image(scene, 15, -10))
	return ref_path, moved_path
