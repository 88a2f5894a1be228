from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .schemas import Config

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310


def _merge_sections(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge `overrides` into a copy of `base` (tables merge, scalars replace)."""
    out = dict(base)
    for key, val in overrides.items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = _merge_sections(out[key], val)
        else:
            out[key] = val
    return out


def load_config(path: str | Path, overrides: Optional[Mapping[str, Any]] = None) -> Config:
    """
    Parse a TOML config file into a validated Config.

    overrides: optional nested mapping applied on top of the TOML tables,
    e.g. {"preclustering": {"split_chamber": True}} from CLI flags.
    """
    p = Path(path)
    data = tomllib.loads(p.read_text())
    if overrides:
        data = _merge_sections(data, overrides)
    return Config(**data)


def snapshot_config_toml(path: str | Path) -> str:
    """Return the raw TOML text for embedding in HDF5 metadata."""
    return Path(path).read_text()
