# itfstack/config.py
"""
Parse options, optionally read from a YAML file.

Example options file::

    encoding: utf-8
    default_technology: null   # a TECHNOLOGY line becomes required
    retain_unknown_keys: true
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class ParseOptions:
    # codec for parse_from_source when handed bytes; utf-8-sig also strips a BOM
    encoding: str = "utf-8-sig"
    # used when the document has no TECHNOLOGY line; None makes TECHNOLOGY required
    default_technology: Optional[str] = "unknown_technology"
    # False turns unknown block keys into syntax errors instead of opaque extras
    retain_unknown_keys: bool = True


DEFAULT_OPTIONS = ParseOptions()


def options_from_mapping(data: Dict[str, Any]) -> ParseOptions:
    known = {f.name for f in fields(ParseOptions)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown parse option(s): {', '.join(unknown)}")
    if "retain_unknown_keys" in data and not isinstance(data["retain_unknown_keys"], bool):
        raise ValueError("retain_unknown_keys must be true or false")
    if "encoding" in data:
        data = dict(data, encoding=str(data["encoding"]))
    if data.get("default_technology") is not None:
        data = dict(data, default_technology=str(data["default_technology"]))
    return ParseOptions(**data)


def load_options(path: Path) -> ParseOptions:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        return DEFAULT_OPTIONS
    if not isinstance(data, dict):
        raise ValueError("Top-level YAML must be a mapping")
    return options_from_mapping(data)
