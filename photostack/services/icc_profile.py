"""
Minimal read-only view of an ICC profile: header, tag table and the
profile description. Every offset and length read from the profile is
checked against the actual buffer before it is used.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

HEADER_SIZE = 128
TAG_ENTRY_SIZE = 12
DESC_SIGNATURE = "desc"


class IccProfileError(ValueError):
	pass


def _read_u32(data: bytes, offset: int) -> int:
	if offset < 0 or offset + 4 > len(data):
		raise IccProfileError(f"read of 4 bytes at {offset} exceeds {len(data)}-byte profile")
	return struct.unpack_from(">I", data, offset)[0]


def _read_sig(data: bytes, offset: int) -> str:
	if offset < 0 or offset + 4 > len(data):
		raise IccProfileError(f"read of signature at {offset} exceeds {len(data)}-byte profile")
	return data[offset:offset + 4].decode("latin-1")


@dataclass(frozen=True)
class IccHeader:
	declared_size: int
	version: str
	device_class: str
	color_space: str
	magic: str

	@classmethod
	def parse(cls, data: bytes) -> "IccHeader":
		if len(data) < HEADER_SIZE:
			raise IccProfileError(f"profile is {len(data)} bytes, shorter than its header")
		raw_version = _read_u32(data, 8)
		major = (raw_version >> 24) & 0xFF
		minor = (raw_version >> 20) & 0x0F
		return cls(
			declared_size=_read_u32(data, 0),
			version=f"{major}.{minor}",
			device_class=_read_sig(data, 12),
			color_space=_read_sig(data, 16).strip(),
			magic=_read_sig(data, 36),
		)


@dataclass(frozen=True)
class IccTagEntry:
	signature: str
	offset: int
	size: int

	def payload(self, data: bytes) -> bytes:
		if self.offset < HEADER_SIZE or self.offset + self.size > len(data):
			raise IccProfileError(f"tag '{self.signature}' at {self.offset}+{self.size} lies outside the profile")
		return data[self.offset:self.offset + self.size]


class IccProfile:
	def __init__(self, data: bytes):
		self.data = bytes(data)
		self.header = IccHeader.parse(self.data)
		self.tags: Dict[str, IccTagEntry] = {}

		count = _read_u32(self.data, HEADER_SIZE)
		table_start = HEADER_SIZE + 4
		# never trust the declared count beyond what the buffer can hold
		max_entries = (len(self.data) - table_start) // TAG_ENTRY_SIZE
		if count > max_entries:
			logger.debug("ICC tag count %d truncated to %d", count, max_entries)
			count = max_entries
		for i in range(count):
			pos = table_start + i * TAG_ENTRY_SIZE
			entry = IccTagEntry(
				signature=_read_sig(self.data, pos),
				offset=_read_u32(self.data, pos + 4),
				size=_read_u32(self.data, pos + 8),
			)
			self.tags.setdefault(entry.signature, entry)

	def tag(self, signature: str) -> Optional[bytes]:
		entry = self.tags.get(signature)
		return entry.payload(self.data) if entry else None

	def description(self) -> str:
		payload = self.tag(DESC_SIGNATURE)
		if payload is None:
			return ""
		kind = _read_sig(payload, 0)
		if kind == "desc":
			return _text_description(payload)
		if kind == "mluc":
			return _multi_localized(payload)
		raise IccProfileError(f"unsupported description type '{kind}'")


def _text_description(payload: bytes) -> str:
	# ICC v2 textDescriptionType: sig, reserved, ASCII count, ASCII bytes
	length = _read_u32(payload, 8)
	if length == 0 or 12 + length > len(payload):
		raise IccProfileError("textDescription length exceeds tag size")
	text = payload[12:12 + length]
	return text.split(b"\0", 1)[0].decode("ascii", errors="replace")


def _multi_localized(payload: bytes) -> str:
	# ICC v4 multiLocalizedUnicodeType; the first record is used
	records = _read_u32(payload, 8)
	record_size = _read_u32(payload, 12)
	if records == 0:
		return ""
	if record_size < 12:
		raise IccProfileError("mluc record size too small")
	length = _read_u32(payload, 16 + 4)
	offset = _read_u32(payload, 16 + 8)
	if offset + length > len(payload):
		raise IccProfileError("mluc string exceeds tag size")
	return payload[offset:offset + length].decode("utf-16-be", errors="replace").rstrip("\0")


def describe(data: Optional[bytes]) -> str:
	"""Profile description, or an empty string for missing or malformed profiles."""
	if not data:
		return ""
	try:
		return IccProfile(data).description()
	except IccProfileError as e:
		logger.debug("Unreadable ICC profile: %s", e)
		return ""
