from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

import cv2

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
	INVALID_INPUT = "invalid_input"
	LOAD_FAILED = "load_failed"
	INSUFFICIENT_KEYPOINTS = "insufficient_keypoints"
	NO_REFERENCE_CALIBRATION = "no_reference_calibration"
	ALIGNMENT_FAILED = "alignment_failed"
	INCONSISTENT_GEOMETRY = "inconsistent_geometry"
	SAVE_FAILED = "save_failed"
	UNKNOWN = "unknown"


class PhotoStackError(Exception):
	"""Raised inside the services; converted to a failed Result at the public boundary."""

	def __init__(self, kind: ErrorKind, message: str):
		super().__init__(message)
		self.kind = kind
		self.message = message


@dataclass(frozen=True)
class Result(Generic[T]):
	value: Optional[T] = None
	kind: Optional[ErrorKind] = None
	message: str = ""

	@property
	def ok(self) -> bool:
		return self.kind is None

	@classmethod
	def success(cls, value: Optional[T] = None) -> "Result[T]":
		return cls(value=value)

	@classmethod
	def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
		return cls(kind=kind, message=message)

	def unwrap(self) -> T:
		"""Return the value or re-raise the failure as a PhotoStackError."""
		if self.kind is not None:
			raise PhotoStackError(self.kind, self.message)
		return self.value  # type: ignore[return-value]


def guarded(func: Callable[..., Any]) -> Callable[..., Result[Any]]:
	"""
	Run func and wrap its return value in a Result.
	PhotoStackError keeps its kind; OpenCV and any other error become UNKNOWN.
	"""

	@functools.wraps(func)
	def wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
		try:
			return Result.success(func(*args, **kwargs))
		except PhotoStackError as e:
			logger.warning("%s failed (%s): %s", func.__qualname__, e.kind.value, e.message)
			return Result.failure(e.kind, e.message)
		except cv2.error as e:
			logger.error("OpenCV error in %s: %s", func.__qualname__, e)
			return Result.failure(ErrorKind.UNKNOWN, f"OpenCV error: {e}")
		except Exception as e:
			logger.exception("Unexpected error in %s", func.__qualname__)
			return Result.failure(ErrorKind.UNKNOWN, str(e) or e.__class__.__name__)

	return wrapper
