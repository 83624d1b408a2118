"""Constants and loader configuration for :mod:`vrdf_volume`.

The binary layout constants live here so the codec, the lookup builder and
the tests agree on a single definition.  :class:`LoaderConfig` describes
where volumes are discovered and which lookup profile is active by default;
it can be read from a small YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
import logging
from pathlib import Path
from typing import Tuple, Union

import yaml

LOGGER = logging.getLogger(__name__)

# ----------------------------------------------------------------------
# Container format
# ----------------------------------------------------------------------
MAGIC = b"VRDF0001"
HEADER_SIZE = 16  # magic + total_size
LENGTH_PREFIX_SIZE = 8
VOXEL_DTYPE = "float32"
VOXEL_ITEMSIZE = 4

# ----------------------------------------------------------------------
# Lookup tables and label control
# ----------------------------------------------------------------------
LUT_SIZE = 256
AFFINE_EPSILON = 1e-9
# Labels whose initial alpha is below this are considered hidden by default.
VISIBLE_ALPHA_THRESHOLD = 0.001

# ----------------------------------------------------------------------
# Volume discovery
# ----------------------------------------------------------------------
DEFAULT_VOLUME_EXTENSIONS: Tuple[str, ...] = (".vrdf", ".vrdfw")
DEFAULT_CODE = "t1c"


@dataclass
class LoaderConfig:
    """Settings for :class:`vrdf_volume.loader.VolumeLoader`."""

    volume_root: Path = field(default_factory=Path.cwd)
    default_code: str = DEFAULT_CODE
    use_hard_lookup: bool = False
    extensions: Tuple[str, ...] = DEFAULT_VOLUME_EXTENSIONS

    def __post_init__(self) -> None:
        self.volume_root = Path(self.volume_root).expanduser()
        self.extensions = tuple(
            ext.lower() if ext.startswith(".") else "." + ext.lower()
            for ext in self.extensions
        )


def load_config(path: Union[str, Path]) -> LoaderConfig:
    """Read a :class:`LoaderConfig` from the YAML file at *path*.

    Relative ``volume_root`` values are resolved against the directory of the
    configuration file.  Unknown keys are ignored with a warning so older
    configuration files keep working.
    """

    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    known = {f.name for f in fields(LoaderConfig)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            LOGGER.warning("Ignoring unknown config key %r in %s", key, path)
            continue
        kwargs[key] = value

    if "volume_root" in kwargs:
        root = Path(str(kwargs["volume_root"])).expanduser()
        if not root.is_absolute():
            root = path.parent / root
        kwargs["volume_root"] = root
    if "extensions" in kwargs:
        kwargs["extensions"] = tuple(str(e) for e in kwargs["extensions"])
    if "use_hard_lookup" in kwargs:
        kwargs["use_hard_lookup"] = bool(kwargs["use_hard_lookup"])
    if "default_code" in kwargs:
        kwargs["default_code"] = str(kwargs["default_code"])
    return LoaderConfig(**kwargs)


__all__ = [
    "MAGIC",
    "HEADER_SIZE",
    "LENGTH_PREFIX_SIZE",
    "VOXEL_DTYPE",
    "VOXEL_ITEMSIZE",
    "LUT_SIZE",
    "AFFINE_EPSILON",
    "VISIBLE_ALPHA_THRESHOLD",
    "DEFAULT_VOLUME_EXTENSIONS",
    "DEFAULT_CODE",
    "LoaderConfig",
    "load_config",
]
