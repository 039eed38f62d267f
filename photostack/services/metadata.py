from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union

import cv2
import piexif
from PIL import Image

from photostack.config import OutputConfig
from photostack.services import icc_profile
from photostack.services.result import ErrorKind, PhotoStackError, guarded

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

COLORSPACE_KEY = "ColorspaceName"
COLORSPACE_SRGB = "sRGB"
COLORSPACE_ADOBE_RGB = "Adobe RGB (1998)"
COLORSPACE_UNCALIBRATED = "Uncalibrated"

# exiv2-style key groups -> piexif IFD names
GROUP_TO_IFD = {
	"Image": "0th",
	"Photo": "Exif",
	"Iop": "Interop",
	"GPSInfo": "GPS",
	"Thumbnail": "1st",
}
IFD_TAG_TABLE = {"0th": "Image", "1st": "Image", "Exif": "Exif", "GPS": "GPS", "Interop": "Interop"}

PIEXIF_SUFFIXES = {".jpg", ".jpeg", ".webp"}
PILLOW_SUFFIXES = {".tif", ".tiff", ".png"}


@lru_cache(maxsize=None)
def _tag_lookup() -> Dict[Tuple[str, str], int]:
	lookup: Dict[Tuple[str, str], int] = {}
	for ifd, table in IFD_TAG_TABLE.items():
		for tag_id, info in piexif.TAGS[table].items():
			lookup[(ifd, info["name"])] = tag_id
	return lookup


def resolve_key(key: str) -> Optional[Tuple[str, int]]:
	"""Map 'Image.Make' or 'Exif.Photo.ExposureTime' to (piexif IFD, tag id)."""
	parts = key.split(".")
	if len(parts) == 3 and parts[0] == "Exif":
		parts = parts[1:]
	if len(parts) != 2:
		return None
	ifd = GROUP_TO_IFD.get(parts[0])
	if ifd is None:
		return None
	tag_id = _tag_lookup().get((ifd, parts[1]))
	if tag_id is None:
		return None
	return ifd, tag_id


def _is_rational(v: Any) -> bool:
	return isinstance(v, tuple) and len(v) == 2 and all(isinstance(x, int) for x in v)


def format_value(v: Any) -> str:
	if v is None:
		return ""
	if isinstance(v, bytes):
		return v.decode("utf-8", errors="ignore").rstrip("\0").strip()
	if _is_rational(v):
		return f"{v[0]}/{v[1]}"
	if isinstance(v, (list, tuple)):
		return " ".join(format_value(x) for x in v)
	return str(v)


def _load_exif(path: Path, img: Image.Image) -> Dict[str, Any]:
	try:
		return piexif.load(str(path))
	except (piexif.InvalidImageDataError, ValueError, OSError) as e:
		logger.debug("piexif could not read %s directly: %s", path.name, e)
	raw = img.info.get("exif")
	if raw:
		try:
			return piexif.load(raw)
		except (piexif.InvalidImageDataError, ValueError) as e:
			logger.debug("Embedded EXIF of %s is unreadable: %s", path.name, e)
	return {}


def colorspace_name(exif: Dict[str, Any], icc: Optional[bytes]) -> str:
	"""ICC description first, then EXIF ColorSpace, then the interoperability index."""
	name = icc_profile.describe(icc)
	if name:
		return name
	color_space = (exif.get("Exif") or {}).get(piexif.ExifIFD.ColorSpace)
	if color_space is not None:
		return COLORSPACE_SRGB if color_space == 1 else COLORSPACE_UNCALIBRATED
	interop = format_value((exif.get("Interop") or {}).get(piexif.InteropIFD.InteroperabilityIndex))
	return COLORSPACE_ADOBE_RGB if interop == "R03" else interop


@guarded
def read_metadata(path: PathLike, keys: Sequence[str]) -> Dict[str, str]:
	"""
	Look up each key and return its value as a string ("" when absent).
	Image.ImageWidth / Image.ImageLength report the decoded pixel size and
	ColorspaceName a human readable color space.
	"""
	p = Path(path)
	if not p.is_file():
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to open metadata of {p}")
	try:
		with Image.open(p) as img:
			width, height = img.size
			icc = img.info.get("icc_profile")
			exif = _load_exif(p, img)
	except OSError as e:
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to open metadata of {p}: {e}") from e

	values: Dict[str, str] = {}
	for key in keys:
		short = key[5:] if key.startswith("Exif.") else key
		if short == "Image.ImageWidth":
			values[key] = str(width)
		elif short == "Image.ImageLength":
			values[key] = str(height)
		elif key == COLORSPACE_KEY:
			values[key] = colorspace_name(exif, icc)
		else:
			resolved = resolve_key(key)
			if resolved is None:
				values[key] = ""
				continue
			ifd, tag_id = resolved
			values[key] = format_value((exif.get(ifd) or {}).get(tag_id))
	return values


def _is_wide_color(path: Path) -> bool:
	arr = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
	return arr is not None and arr.dtype != "uint8" and arr.ndim == 3


def _rewrite(dest: Path, output: OutputConfig, exif: Optional[bytes] = None, icc: Optional[bytes] = None) -> None:
	"""Re-encode a lossless destination with replaced EXIF and/or ICC blocks."""
	suffix = dest.suffix.lower()
	if suffix in PIEXIF_SUFFIXES and icc is None:
		piexif.insert(exif, str(dest))
		return
	if suffix not in PILLOW_SUFFIXES:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Cannot embed metadata into '{suffix}' files")
	if _is_wide_color(dest):
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"Cannot rewrite metadata of 16-bit color image {dest.name}")

	tmp = dest.with_name(f".{dest.stem}.partial{dest.suffix}")
	with Image.open(dest) as img:
		img.load()
		params: Dict[str, Any] = {"dpi": (output.dpi, output.dpi)}
		new_exif = exif if exif is not None else img.info.get("exif")
		new_icc = icc if icc is not None else img.info.get("icc_profile")
		if new_exif:
			params["exif"] = new_exif
		if new_icc:
			params["icc_profile"] = new_icc
		if suffix in (".tif", ".tiff") and output.tiff_compression != "none":
			params["compression"] = "tiff_lzw" if output.tiff_compression == "lzw" else "tiff_adobe_deflate"
		fmt = img.format
		try:
			img.save(tmp, format=fmt, **params)
		except (OSError, ValueError) as e:
			if tmp.exists():
				tmp.unlink()
			raise PhotoStackError(ErrorKind.SAVE_FAILED, f"Failed to write metadata to {dest}: {e}") from e
	os.replace(tmp, dest)


@guarded
def copy_exif(
	src_path: PathLike,
	dest_path: PathLike,
	software_name: Optional[str] = None,
	exif_keys_filter: Iterable[str] = (),
	output: Optional[OutputConfig] = None,
) -> bool:
	"""
	Copy EXIF from src to dest without thumbnails and without the filtered
	keys, branding the Software tag when software_name is given.
	"""
	src, dest = Path(src_path), Path(dest_path)
	if not src.is_file() or not dest.is_file():
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Missing source or destination: {src}, {dest}")
	try:
		exif = piexif.load(str(src))
	except (piexif.InvalidImageDataError, ValueError) as e:
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to read EXIF of {src}: {e}") from e

	exif["1st"] = {}
	exif["thumbnail"] = None
	for key in exif_keys_filter:
		resolved = resolve_key(key)
		if resolved is None:
			logger.debug("Ignoring unknown EXIF filter key %s", key)
			continue
		ifd, tag_id = resolved
		(exif.get(ifd) or {}).pop(tag_id, None)
	if software_name:
		exif.setdefault("0th", {})[piexif.ImageIFD.Software] = software_name.encode("utf-8")

	try:
		data = piexif.dump(exif)
	except (ValueError, TypeError) as e:
		raise PhotoStackError(ErrorKind.INVALID_INPUT, f"EXIF of {src} cannot be re-encoded: {e}") from e
	_rewrite(dest, output or OutputConfig(), exif=data)
	logger.info("Copied EXIF %s -> %s", src.name, dest.name)
	return True


@guarded
def copy_icc_profile(src_path: PathLike, dest_path: PathLike, output: Optional[OutputConfig] = None) -> bool:
	"""Copy the ICC profile; False when the source carries none."""
	src, dest = Path(src_path), Path(dest_path)
	if not src.is_file() or not dest.is_file():
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Missing source or destination: {src}, {dest}")
	try:
		with Image.open(src) as img:
			icc = img.info.get("icc_profile")
	except OSError as e:
		raise PhotoStackError(ErrorKind.LOAD_FAILED, f"Failed to open {src}: {e}") from e
	if not icc:
		return False
	_rewrite(dest, output or OutputConfig(), icc=icc)
	logger.info("Copied ICC profile %s -> %s", src.name, dest.name)
	return True
