from __future__ import annotations

from typing import List

from fastapi import APIRouter, Request
from pydantic import BaseModel

from photostack.routers.errors import unwrap_or_raise
from photostack.services.fusion import fuse_files


router = APIRouter(prefix="/fusion", tags=["fusion"])


class FuseRequest(BaseModel):
	paths: List[str]
	output_path: str


@router.post("", summary="Fuse an aligned image set into one composite")
def fuse(body: FuseRequest, request: Request):
	settings = request.app.state.settings
	result = fuse_files(body.paths, body.output_path, settings.fusion, settings.output)
	return {"status": "ok", "frame_count": unwrap_or_raise(result), "output_path": body.output_path}
