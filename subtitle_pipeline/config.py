"""Configuration loading and validation."""

import logging
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import CorrectionLevel

CONFIG_FILENAME = ".subtitle-pipeline.yaml"

# Valid configuration keys and their expected Python types.
_VALID_KEYS: Dict[str, type] = {
    "language": str,
    "prefer_forced": bool,
    "prefer_closed_captions": bool,
    "correction_level": str,
    "max_passes": int,
    "smart_convergence": bool,
    "output_dir": str,
    "overwrite": bool,
    "ocr_language": str,
    "preserve_sup": bool,
    "rules_file": str,
    "report_format": str,
    # Older on/off switches, mapped onto correction_level.
    "enable_correction": bool,
    "enable_multi_pass": bool,
}

_REPORT_FORMATS = {"json", "csv"}


def validate_config(config: Dict[str, Any]) -> None:
    """Validate *config* dict against known keys and types.

    Calls ``sys.exit(1)`` after printing every problem found so that the user
    sees them all at once.
    """
    errors = []

    for key, value in config.items():
        if key not in _VALID_KEYS:
            errors.append(
                f"Unknown key '{key}'. Valid keys: {', '.join(sorted(_VALID_KEYS))}"
            )
            continue

        expected = _VALID_KEYS[key]
        # bool is an int subclass; `max_passes: true` is still a mistake.
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            errors.append(
                f"'{key}' must be {expected.__name__}, got {type(value).__name__}"
            )

    max_passes = config.get("max_passes")
    if isinstance(max_passes, int) and not isinstance(max_passes, bool) and max_passes < 1:
        errors.append(f"'max_passes' must be >= 1, got {max_passes}")

    level = config.get("correction_level")
    valid_levels = [lvl.value for lvl in CorrectionLevel]
    if isinstance(level, str) and level.lower() not in valid_levels:
        errors.append(f"'correction_level' must be one of {valid_levels}, got '{level}'")

    report_format = config.get("report_format")
    if isinstance(report_format, str) and report_format not in _REPORT_FORMATS:
        errors.append(
            f"'report_format' must be one of {sorted(_REPORT_FORMATS)}, got '{report_format}'"
        )

    output_dir = config.get("output_dir")
    if isinstance(output_dir, str):
        p = Path(output_dir)
        if p.exists() and not p.is_dir():
            errors.append(f"'output_dir' exists but is not a directory: {output_dir}")

    rules_file = config.get("rules_file")
    if isinstance(rules_file, str) and not Path(rules_file).expanduser().is_file():
        errors.append(f"'rules_file' does not exist: {rules_file}")

    if errors:
        print("Configuration error(s):", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)


def load_config() -> Dict[str, Any]:
    """Load and validate configuration from the first existing config file.

    Searches:
      1. ``~/.subtitle-pipeline.yaml``
      2. ``.subtitle-pipeline.yaml`` (current working directory)

    Returns an empty dict when no config file is found.
    """
    config_locations = [
        Path.home() / CONFIG_FILENAME,
        Path(CONFIG_FILENAME),
    ]

    for config_file in config_locations:
        if not config_file.exists():
            continue

        try:
            with open(config_file, encoding="utf-8") as fh:
                config = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logging.warning(f"Could not load config from {config_file}: {exc}")
            break
        if not isinstance(config, dict):
            logging.warning(f"Ignoring {config_file}: top level must be a mapping")
            break
        validate_config(config)  # exits on error
        logging.info(f"Loaded configuration from: {config_file}")
        return config

    return {}


@dataclass
class PipelineSettings:
    """Effective settings for one batch: defaults, then config file, then CLI."""

    language: str = "en"
    prefer_forced: bool = False
    prefer_closed_captions: bool = False
    correction_level: CorrectionLevel = CorrectionLevel.STANDARD
    # Expert overrides of the level preset; None keeps the preset value.
    max_passes: Optional[int] = None
    smart_convergence: Optional[bool] = None
    output_dir: Optional[Path] = None
    overwrite: bool = False
    ocr_language: Optional[str] = None
    preserve_sup: bool = False
    rules_file: Optional[Path] = None
    report_format: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineSettings":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in config.items() if k in known}
        if "correction_level" in values:
            values["correction_level"] = CorrectionLevel(values["correction_level"].lower())
        elif "enable_correction" in config or "enable_multi_pass" in config:
            values["correction_level"] = CorrectionLevel.from_legacy(
                config.get("enable_correction", True), config.get("enable_multi_pass", False)
            )
            logging.info(f"Using correction level '{values['correction_level'].value}' from legacy switches")
        for key in ("output_dir", "rules_file"):
            if values.get(key):
                values[key] = Path(values[key]).expanduser()
        return cls(**values)

    @property
    def effective_ocr_language(self) -> str:
        return self.ocr_language or self.language
