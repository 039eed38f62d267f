from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from photostack.config import load_settings
from photostack.logging_config import setup_logging
from photostack.services.alignment import align_set
from photostack.services.fusion import fuse_files
from photostack.services.metadata import read_metadata
from photostack.services.result import Result

DEFAULT_METADATA_KEYS = [
	"Image.Make",
	"Image.Model",
	"Image.ImageWidth",
	"Image.ImageLength",
	"Photo.ExposureTime",
	"Photo.FNumber",
	"Photo.ISOSpeedRatings",
	"Photo.DateTimeOriginal",
	"ColorspaceName",
]


def _report(result: Result) -> int:
	if result.ok:
		return 0
	print(f"Error [{result.kind.value}]: {result.message}", file=sys.stderr)
	return 1


def _cmd_align(args, settings) -> int:
	paths = [Path(p) for p in args.images]
	result = align_set(
		paths,
		Path(args.output_dir),
		ref_index=args.reference_index,
		is_preview=args.preview,
		config=settings.registration,
		output=settings.output,
	)
	if result.ok:
		for p in result.value:
			print(f"Saved: {p}")
	return _report(result)


def _cmd_fuse(args, settings) -> int:
	result = fuse_files(args.images, args.output, settings.fusion, settings.output)
	if result.ok:
		print(f"Fused {result.value} frames into {args.output}")
	return _report(result)


def _cmd_metadata(args, settings) -> int:
	result = read_metadata(args.image, args.keys or DEFAULT_METADATA_KEYS)
	if result.ok:
		print(json.dumps(result.value, indent=2))
	return _report(result)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="photostack", description="Align bracketed photographs and fuse them into one exposure")
	parser.add_argument("--config", help="YAML settings file (defaults to $PHOTOSTACK_CONFIG)")
	parser.add_argument("--log-level", help="Override the configured log level")
	sub = parser.add_subparsers(dest="command", required=True)

	align = sub.add_parser("align", help="Align images against a reference, writing RGBA TIFFs")
	align.add_argument("images", nargs="+", help="Images to align; the reference is one of them")
	align.add_argument("--output-dir", required=True, help="Folder for <stem>_aligned.tif outputs")
	align.add_argument("--reference-index", type=int, default=0, help="Index of the reference image")
	align.add_argument("--preview", action="store_true", help="Detect features at full resolution (no downsampling)")
	align.set_defaults(func=_cmd_align)

	fuse = sub.add_parser("fuse", help="Exposure-fuse an aligned set")
	fuse.add_argument("images", nargs="+")
	fuse.add_argument("--output", required=True, help="Output TIFF or PNG")
	fuse.set_defaults(func=_cmd_fuse)

	meta = sub.add_parser("metadata", help="Print EXIF values as JSON")
	meta.add_argument("image")
	meta.add_argument("--key", dest="keys", action="append", help="Key such as Image.Make; repeatable")
	meta.set_defaults(func=_cmd_metadata)
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)
	settings = load_settings(Path(args.config) if args.config else None)
	setup_logging(args.log_level or settings.logging.level, settings.logging.log_dir)
	return args.func(args, settings)


if __name__ == "__main__":
	sys.exit(main())
