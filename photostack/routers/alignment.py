from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from photostack.routers.errors import unwrap_or_raise


router = APIRouter(prefix="/align", tags=["alignment"])


class AlignRequest(BaseModel):
	path: str
	output_path: str
	is_preview: bool = False


@router.post("/reference", summary="Calibrate the session on a reference image and write the base frame")
def set_reference(body: AlignRequest, request: Request):
	state = request.app.state
	with state.session_lock:
		result = state.session.set_reference_image(body.path, body.output_path, body.is_preview)
		calibration = state.session.calibration
	output_path = unwrap_or_raise(result)
	return {
		"status": "ok",
		"output_path": output_path,
		"keypoints": calibration.keypoint_count,
		"scale_factor": calibration.scale_factor,
		"reference_size": list(calibration.reference_size),
	}


@router.post("/frame", summary="Align one image against the current reference")
def align_frame(body: AlignRequest, request: Request):
	state = request.app.state
	with state.session_lock:
		result = state.session.align_image(body.path, body.output_path, body.is_preview)
	return {"status": "ok", "output_path": unwrap_or_raise(result)}


@router.delete("/reference", summary="Drop the current reference calibration")
def reset_reference(request: Request):
	state = request.app.state
	with state.session_lock:
		state.session.reset()
	return {"status": "ok"}
