from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from photostack.services.result import ErrorKind, Result

STATUS_BY_KIND = {
	ErrorKind.INVALID_INPUT: 400,
	ErrorKind.LOAD_FAILED: 404,
	ErrorKind.INSUFFICIENT_KEYPOINTS: 422,
	ErrorKind.NO_REFERENCE_CALIBRATION: 409,
	ErrorKind.ALIGNMENT_FAILED: 422,
	ErrorKind.INCONSISTENT_GEOMETRY: 422,
	ErrorKind.SAVE_FAILED: 500,
	ErrorKind.UNKNOWN: 500,
}


def unwrap_or_raise(result: Result[Any]) -> Any:
	if result.ok:
		return result.value
	raise HTTPException(
		status_code=STATUS_BY_KIND.get(result.kind, 500),
		detail={"kind": result.kind.value, "message": result.message},
	)
