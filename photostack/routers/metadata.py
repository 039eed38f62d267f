from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from photostack.routers.errors import unwrap_or_raise
from photostack.services.metadata import copy_exif, copy_icc_profile, read_metadata


router = APIRouter(prefix="/metadata", tags=["metadata"])


class ReadRequest(BaseModel):
	path: str
	keys: List[str]


class CopyRequest(BaseModel):
	src_path: str
	dest_path: str
	software_name: Optional[str] = None
	exif_keys_filter: List[str] = []
	copy_exif: bool = True
	copy_icc_profile: bool = True


@router.post("/read", summary="Read EXIF values and the color space name of an image")
def read(body: ReadRequest):
	return {"path": body.path, "values": unwrap_or_raise(read_metadata(body.path, body.keys))}


@router.post("/copy", summary="Copy EXIF and/or the ICC profile between images")
def copy(body: CopyRequest, request: Request):
	output = request.app.state.settings.output
	response = {"status": "ok", "exif_copied": False, "icc_profile_copied": False}
	if body.copy_exif:
		software = body.software_name if body.software_name is not None else output.software_name
		response["exif_copied"] = unwrap_or_raise(
			copy_exif(body.src_path, body.dest_path, software, body.exif_keys_filter, output)
		)
	if body.copy_icc_profile:
		response["icc_profile_copied"] = unwrap_or_raise(copy_icc_profile(body.src_path, body.dest_path, output))
	return response
