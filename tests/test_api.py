import cv2
import numpy as np
import piexif
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from photostack.config import Settings
from photostack.main import create_app


@pytest.fixture
def client():
	return TestClient(create_app(Settings()))


def _align(client, endpoint, src, dst):
	return client.post(endpoint, json={"path": str(src), "output_path": str(dst)})


class TestAlignmentApi:
	def test_frame_before_reference(self, client, scene_files, tmp_path):
		_, moved = scene_files
		r = _align(client, "/align/frame", moved, tmp_path / "out.tif")
		assert r.status_code == 409
		assert r.json()["detail"]["kind"] == "no_reference_calibration"
		assert not (tmp_path / "out.tif").exists()

	def test_reference_then_frame(self, client, scene_files, tmp_path):
		ref, moved = scene_files
		r = _align(client, "/align/reference", ref, tmp_path / "base.tif")
		assert r.status_code == 200, r.text
		body = r.json()
		assert body["keypoints"] >= 10
		assert body["scale_factor"] == 1
		assert body["reference_size"] == [480, 360]

		r = _align(client, "/align/frame", moved, tmp_path / "aligned.tif")
		assert r.status_code == 200, r.text
		aligned = cv2.imread(r.json()["output_path"], cv2.IMREAD_UNCHANGED)
		assert aligned.shape == (360, 480, 4)

	def test_reset(self, client, scene_files, tmp_path):
		ref, moved = scene_files
		assert _align(client, "/align/reference", ref, tmp_path / "base.tif").status_code == 200
		assert client.delete("/align/reference").status_code == 200
		assert _align(client, "/align/frame", moved, tmp_path / "a.tif").status_code == 409

	def test_missing_reference_file(self, client, tmp_path):
		r = _align(client, "/align/reference", tmp_path / "nope.png", tmp_path / "base.tif")
		assert r.status_code == 404
		assert r.json()["detail"]["kind"] == "load_failed"

	def test_featureless_reference(self, client, tmp_path):
		path = tmp_path / "blank.png"
		cv2.imwrite(str(path), np.full((120, 160, 3), 128, np.uint8))
		r = _align(client, "/align/reference", path, tmp_path / "base.tif")
		assert r.status_code == 422
		assert r.json()["detail"]["kind"] == "insufficient_keypoints"


class TestFusionApi:
	def test_fuse(self, client, tmp_path):
		paths = []
		for i, v in enumerate((60, 200)):
			p = tmp_path / f"f{i}.png"
			cv2.imwrite(str(p), np.full((64, 80, 3), v, np.uint8))
			paths.append(str(p))
		out = tmp_path / "fused.tif"
		r = client.post("/fusion", json={"paths": paths, "output_path": str(out)})
		assert r.status_code == 200, r.text
		assert r.json()["frame_count"] == 2
		assert cv2.imread(str(out), cv2.IMREAD_UNCHANGED).shape == (64, 80, 3)

	def test_geometry_mismatch(self, client, tmp_path):
		a, b = tmp_path / "a.png", tmp_path / "b.png"
		cv2.imwrite(str(a), np.zeros((64, 80, 3), np.uint8))
		cv2.imwrite(str(b), np.zeros((32, 80, 3), np.uint8))
		out = tmp_path / "fused.tif"
		r = client.post("/fusion", json={"paths": [str(a), str(b)], "output_path": str(out)})
		assert r.status_code == 422
		assert r.json()["detail"]["kind"] == "inconsistent_geometry"
		assert not out.exists()

	def test_request_validation(self, client):
		assert client.post("/fusion", json={"paths": []}).status_code == 422


class TestMetadataApi:
	def test_read(self, client, scene_files):
		ref, _ = scene_files
		r = client.post("/metadata/read", json={"path": str(ref), "keys": ["Image.ImageWidth", "Image.Make"]})
		assert r.status_code == 200, r.text
		assert r.json()["values"] == {"Image.ImageWidth": "480", "Image.Make": ""}

	def test_copy(self, client, tmp_path):
		src = tmp_path / "src.jpg"
		exif = piexif.dump({"0th": {piexif.ImageIFD.Make: b"Nikon"}, "Exif": {}, "GPS": {}, "1st": {}, "thumbnail": None})
		Image.fromarray(np.full((16, 16, 3), 50, np.uint8)).save(src, format="JPEG", exif=exif)
		dest = tmp_path / "dest.png"
		cv2.imwrite(str(dest), np.zeros((16, 16, 3), np.uint8))

		r = client.post("/metadata/copy", json={"src_path": str(src), "dest_path": str(dest)})
		assert r.status_code == 200, r.text
		assert r.json() == {"status": "ok", "exif_copied": True, "icc_profile_copied": False}

		r = client.post("/metadata/read", json={"path": str(dest), "keys": ["Image.Make", "Image.Software"]})
		assert r.json()["values"] == {"Image.Make": "Nikon", "Image.Software": "PhotoStack"}

	def test_copy_missing_source(self, client, tmp_path):
		dest = tmp_path / "dest.png"
		cv2.imwrite(str(dest), np.zeros((4, 4, 3), np.uint8))
		r = client.post("/metadata/copy", json={"src_path": str(tmp_path / "none.jpg"), "dest_path": str(dest)})
		assert r.status_code == 404
		assert r.json()["detail"]["kind"] == "load_failed"

	def test_read_missing(self, client, tmp_path):
		r = client.post("/metadata/read", json={"path": str(tmp_path / "x.jpg"), "keys": ["Image.Make"]})
		assert r.status_code == 404
