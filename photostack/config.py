from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_ENV_VAR = "PHOTOSTACK_CONFIG"


@dataclass(frozen=True)
class FusionConfig:
	levels: int = 7
	exposure_weight: float = 1.0
	exposure_optimum: float = 0.5
	exposure_width: float = 0.2
	contrast_weight: float = 0.0
	saturation_weight: float = 0.2
	entropy_weight: float = 0.0
	blur_size: int = 5
	epsilon: float = 1e-6

	def __post_init__(self) -> None:
		if self.levels < 1:
			raise ValueError("levels must be >= 1")
		if self.exposure_width <= 0:
			raise ValueError("exposure_width must be > 0")
		if not 0.0 <= self.exposure_optimum <= 1.0:
			raise ValueError("exposure_optimum must be within [0, 1]")
		for name in ("exposure_weight", "contrast_weight", "saturation_weight", "entropy_weight"):
			if getattr(self, name) < 0:
				raise ValueError(f"{name} must be >= 0")
		if self.blur_size < 1 or self.blur_size % 2 == 0:
			raise ValueError("blur_size must be a positive odd number")
		if self.epsilon <= 0:
			raise ValueError("epsilon must be > 0")


@dataclass(frozen=True)
class RegistrarConfig:
	working_resolution: int = 1200
	min_keypoints: int = 10
	max_matches: int = 50
	min_matches: int = 10
	ransac_reproj_threshold: float = 3.0
	ransac_max_iters: int = 2000
	ransac_confidence: float = 0.99
	ransac_refine_iters: int = 10
	detector_threshold: float = 0.001

	def __post_init__(self) -> None:
		if self.working_resolution < 1:
			raise ValueError("working_resolution must be >= 1")
		if self.min_keypoints < 1:
			raise ValueError("min_keypoints must be >= 1")
		# estimateAffinePartial2D needs two correspondences
		if self.min_matches < 2 or self.max_matches < self.min_matches:
			raise ValueError("need 2 <= min_matches <= max_matches")
		if self.ransac_reproj_threshold <= 0:
			raise ValueError("ransac_reproj_threshold must be > 0")
		if self.ransac_max_iters < 1:
			raise ValueError("ransac_max_iters must be >= 1")
		if not 0.0 < self.ransac_confidence < 1.0:
			raise ValueError("ransac_confidence must be within (0, 1)")
		if self.ransac_refine_iters < 0:
			raise ValueError("ransac_refine_iters must be >= 0")
		if self.detector_threshold <= 0:
			raise ValueError("detector_threshold must be > 0")


@dataclass(frozen=True)
class OutputConfig:
	dpi: float = 300.0
	tiff_compression: str = "lzw"
	software_name: str = "PhotoStack"

	def __post_init__(self) -> None:
		if self.dpi <= 0:
			raise ValueError("dpi must be > 0")
		if self.tiff_compression not in ("lzw", "deflate", "none"):
			raise ValueError("tiff_compression must be one of lzw, deflate, none")


@dataclass(frozen=True)
class LoggingConfig:
	level: str = "INFO"
	log_dir: Optional[str] = None

	def __post_init__(self) -> None:
		if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
			raise ValueError(f"unknown log level: {self.level}")


@dataclass(frozen=True)
class Settings:
	fusion: FusionConfig = field(default_factory=FusionConfig)
	registration: RegistrarConfig = field(default_factory=RegistrarConfig)
	output: OutputConfig = field(default_factory=OutputConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build(cls, data: Optional[Mapping[str, Any]], section: str):
	if data is None:
		return cls()
	if not isinstance(data, Mapping):
		raise ValueError(f"section '{section}' must be a mapping")
	known = {f.name for f in fields(cls)}
	unknown = sorted(set(data) - known)
	if unknown:
		raise ValueError(f"unknown keys in section '{section}': {', '.join(unknown)}")
	return cls(**dict(data))


def settings_from_mapping(data: Optional[Mapping[str, Any]]) -> Settings:
	data = data or {}
	unknown = sorted(set(data) - {"fusion", "registration", "output", "logging"})
	if unknown:
		raise ValueError(f"unknown config sections: {', '.join(unknown)}")
	return Settings(
		fusion=_build(FusionConfig, data.get("fusion"), "fusion"),
		registration=_build(RegistrarConfig, data.get("registration"), "registration"),
		output=_build(OutputConfig, data.get("output"), "output"),
		logging=_build(LoggingConfig, data.get("logging"), "logging"),
	)


def load_settings(path: Optional[Path] = None) -> Settings:
	"""
	Load settings from a YAML file. Without a path, PHOTOSTACK_CONFIG is consulted;
	if neither is set the defaults are returned.
	"""
	if path is None:
		env_path = os.environ.get(CONFIG_ENV_VAR)
		if not env_path:
			return Settings()
		path = Path(env_path)
	with Path(path).open("r", encoding="utf-8") as f:
		raw: Dict[str, Any] = yaml.safe_load(f) or {}
	if not isinstance(raw, Mapping):
		raise ValueError(f"config file {path} must contain a mapping")
	return settings_from_mapping(raw)
