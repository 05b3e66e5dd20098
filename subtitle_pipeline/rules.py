"""Loader for the versioned correction rule table.

The table is YAML::

    version: 1
    categories:
      spacing:
        - pattern: ' {2,}'
          replacement: ' '

Rules run in file order; each category's hits are counted separately.
"""

import logging
import re
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Tuple

import yaml

from .errors import InvalidArgument

SUPPORTED_VERSION = 1
DEFAULT_RULES_RESOURCE = "default_rules.yaml"


class RuleTable:
    """Compiled rule set; calling it corrects one string."""

    def __init__(self, rules: List[Tuple[str, Pattern, str]], version: int = SUPPORTED_VERSION) -> None:
        self.rules = rules
        self.version = version

    def __len__(self) -> int:
        return len(self.rules)

    def __call__(self, text: str) -> Tuple[str, int, Dict[str, int]]:
        total = 0
        by_category: Dict[str, int] = {}
        for category, pattern, replacement in self.rules:
            text, n = pattern.subn(replacement, text)
            if n:
                total += n
                by_category[category] = by_category.get(category, 0) + n
        return text, total, by_category

    @property
    def categories(self) -> List[str]:
        seen: List[str] = []
        for category, _, _ in self.rules:
            if category not in seen:
                seen.append(category)
        return seen

    @classmethod
    def from_mapping(cls, data: Dict, source: str = "<rules>") -> "RuleTable":
        if not isinstance(data, dict):
            raise InvalidArgument(f"{source}: rule table must be a mapping")

        version = data.get("version", SUPPORTED_VERSION)
        if version != SUPPORTED_VERSION:
            raise InvalidArgument(f"{source}: unsupported rule table version {version!r}")

        categories = data.get("categories") or {}
        if not isinstance(categories, dict):
            raise InvalidArgument(f"{source}: 'categories' must be a mapping")

        compiled: List[Tuple[str, Pattern, str]] = []
        errors: List[str] = []
        for category, entries in categories.items():
            for n, entry in enumerate(entries or [], 1):
                if not isinstance(entry, dict) or "pattern" not in entry:
                    errors.append(f"{category}[{n}]: missing 'pattern'")
                    continue
                try:
                    pattern = re.compile(entry["pattern"])
                except re.error as exc:
                    errors.append(f"{category}[{n}]: {exc}")
                    continue
                compiled.append((str(category), pattern, str(entry.get("replacement", ""))))

        if errors:
            raise InvalidArgument(f"{source}: invalid rules: " + "; ".join(errors))
        return cls(compiled, version)


def load_rules(path: Optional[Path] = None) -> RuleTable:
    """Load *path*, or the bundled default table when *path* is ``None``."""
    if path is None:
        text = resources.files("subtitle_pipeline").joinpath("data").joinpath(DEFAULT_RULES_RESOURCE).read_text(
            encoding="utf-8"
        )
        source = DEFAULT_RULES_RESOURCE
    else:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidArgument(f"cannot read rules file {path}: {exc}") from exc
        source = str(path)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidArgument(f"{source}: invalid YAML: {exc}") from exc

    table = RuleTable.from_mapping(data or {}, source)
    logging.debug(
        f"Loaded {len(table)} correction rules from {source} ({', '.join(table.categories)})"
    )
    return table
