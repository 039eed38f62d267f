import numpy as np
import pytest

from conftest import make_scene, shift_image
import photostack.services.registration as registration
from photostack.config import RegistrarConfig
from photostack.services.registration import FeatureRegistrar, to_full_resolution, transform_points
from photostack.services.result import ErrorKind


class TestScaleFactor:
	@pytest.fixture
	def registrar(self):
		return FeatureRegistrar(RegistrarConfig(working_resolution=1200))

	@pytest.mark.parametrize(
		"size, expected",
		[((6000, 4000), 5), ((4000, 6000), 5), ((800, 600), 1), ((1199, 300), 1), ((1200, 800), 1), ((2400, 10), 2), ((3599, 10), 2)],
	)
	def test_scale_factor(self, registrar, size, expected):
		assert registrar.scale_factor_for(*size) == expected

	def test_full_resolution_keeps_linear_block(self):
		t = np.array([[0.98, -0.17, 4.0], [0.17, 0.98, -2.5]])
		full = to_full_resolution(t, 5, 5)
		np.testing.assert_allclose(full[:, :2], t[:, :2])
		np.testing.assert_allclose(full[:, 2], [20.0, -12.5])

	def test_full_resolution_mixed_scales(self):
		# reference features at 1/2 scale, target at full resolution
		t = np.array([[0.5, 0.0, 3.0], [0.0, 0.5, 1.0]])
		full = to_full_resolution(t, 2, 1)
		np.testing.assert_allclose(full, [[1.0, 0.0, 6.0], [0.0, 1.0, 2.0]])


class TestFeatureRegistrar:
	@pytest.fixture
	def registrar(self):
		return FeatureRegistrar()

	def test_calibrate_scene(self, registrar, scene):
		result = registrar.calibrate(scene)
		assert result.ok, result.message
		cal = result.value
		assert cal.keypoint_count >= 10
		assert cal.descriptors.shape[0] == cal.keypoint_count
		assert cal.reference_size == (480, 360)
		assert cal.scale_factor == 1

	def test_default_registrar_uses_binary_akaze_descriptors(self, scene):
		cal = FeatureRegistrar().calibrate(scene).unwrap()
		# AKAZE's MLDB descriptor: 486 bits packed into 61 bytes
		assert cal.descriptors.dtype == np.uint8
		assert cal.descriptors.shape[1] == 61

	def test_calibrate_blank_fails(self, registrar, blank):
		result = registrar.calibrate(blank)
		assert not result.ok
		assert result.kind == ErrorKind.INSUFFICIENT_KEYPOINTS

	def test_register_without_calibration(self, registrar, scene):
		result = registrar.register_against(None, scene)
		assert result.kind == ErrorKind.NO_REFERENCE_CALIBRATION

	def test_register_blank_target(self, registrar, scene, blank):
		cal = registrar.calibrate(scene).unwrap()
		result = registrar.register_against(cal, blank)
		assert result.kind == ErrorKind.INSUFFICIENT_KEYPOINTS

	def test_recovers_translation(self, registrar, scene):
		cal = registrar.calibrate(scene).unwrap()
		moved = shift_image(scene, 15, -10)
		result = registrar.register_against(cal, moved)
		assert result.ok, result.message
		t = result.value
		assert t.shape == (2, 3)
		np.testing.assert_allclose(t[:, :2], np.eye(2), atol=0.02)
		np.testing.assert_allclose(t[:, 2], [-15.0, 10.0], atol=1.0)
		mapped = transform_points(t, [(200.0, 100.0)])
		np.testing.assert_allclose(mapped, [[185.0, 110.0]], atol=1.0)

	def test_downsampled_registration_rescales_translation(self, registrar):
		big = make_scene(2600, 500, seed=5, shapes=160)
		cal = registrar.calibrate(big).unwrap()
		assert cal.scale_factor == 2
		assert cal.working_scale == 2
		moved = shift_image(big, 20, -12)
		t = registrar.register_against(cal, moved).unwrap()
		np.testing.assert_allclose(t[:, :2], np.eye(2), atol=0.02)
		np.testing.assert_allclose(t[:, 2], [-20.0, 12.0], atol=2.0)

	def test_preview_never_downsamples(self, registrar, monkeypatch):
		factors = []
		original = registration.downsample

		def recording(image, factor):
			factors.append(factor)
			return original(image, factor)

		monkeypatch.setattr(registration, "downsample", recording)
		big = make_scene(2600, 500, seed=5, shapes=160)
		cal = registrar.calibrate(big, is_preview=True).unwrap()
		assert cal.scale_factor == 2
		assert cal.working_scale == 1
		t = registrar.register_against(cal, shift_image(big, 20, -12), is_preview=True).unwrap()
		assert factors == [1, 1]
		np.testing.assert_allclose(t[:, 2], [-20.0, 12.0], atol=1.0)

	def test_too_few_matches(self, registrar, scene, monkeypatch):
		cal = registrar.calibrate(scene).unwrap()
		monkeypatch.setattr(registrar, "match", lambda ref, target: [])
		result = registrar.register_against(cal, scene)
		assert result.kind == ErrorKind.ALIGNMENT_FAILED

	def test_no_consensus(self, registrar, scene, monkeypatch):
		cal = registrar.calibrate(scene).unwrap()
		monkeypatch.setattr(registration.cv2, "estimateAffinePartial2D", lambda *a, **k: (None, None))
		result = registrar.register_against(cal, scene)
		assert not result.ok
		assert result.kind == ErrorKind.ALIGNMENT_FAILED
