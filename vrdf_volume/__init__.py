"""VRDF volume package.

Decode VRDF containers into render-ready buffers, lookup tables and a
per-label control plane.
"""

from importlib import metadata

# Re-export the consumer-facing API at the package root.
from .affine import AffinePair, physical_size_m, resolve_affine
from .config import LoaderConfig, load_config
from .container import (
    RawVoxelBuffer,
    TransferFunction,
    TransferFunctionEntry,
    VolumeMetadata,
    decode,
    encode,
    read_container,
    write_container,
)
from .errors import (
    BadMagic,
    DecodeError,
    DegenerateAffine,
    LoadError,
    MetadataParseError,
    SizeMismatch,
    TransferFunctionParseError,
    UnexpectedEof,
    VRDFError,
)
from .interaction import ManipulationArbiter, ManipulationMode
from .label_control import LabelControlPlane
from .labels import LabelInfo, build_label_infos, write_label_table
from .loader import LoadedVolume, VolumeLoader, find_volume, load_volume
from .lookup import LookupProfile, LookupTable, build_lookup_tables

__all__ = [
    "__version__",
    "AffinePair",
    "BadMagic",
    "DecodeError",
    "DegenerateAffine",
    "LabelControlPlane",
    "LabelInfo",
    "LoadError",
    "LoadedVolume",
    "LoaderConfig",
    "LookupProfile",
    "LookupTable",
    "ManipulationArbiter",
    "ManipulationMode",
    "MetadataParseError",
    "RawVoxelBuffer",
    "SizeMismatch",
    "TransferFunction",
    "TransferFunctionEntry",
    "TransferFunctionParseError",
    "UnexpectedEof",
    "VRDFError",
    "VolumeLoader",
    "VolumeMetadata",
    "build_label_infos",
    "build_lookup_tables",
    "decode",
    "encode",
    "find_volume",
    "load_config",
    "load_volume",
    "physical_size_m",
    "read_container",
    "resolve_affine",
    "write_container",
    "write_label_table",
]

try:  # pragma: no cover - version resolution
    __version__ = metadata.version("vrdf-volume")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
