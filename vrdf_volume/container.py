"""Reader and writer for the VRDF volume container.

A VRDF file bundles everything needed to render one volume: a JSON metadata
block (dimensions, spacing, affine, mode), a JSON transfer-function block
(per-label colours or a continuous curve) and the raw voxel payload stored as
little-endian ``float32`` values with ``x`` varying fastest.

Layout (all integers are unsigned 64-bit little-endian)::

    magic       8 bytes   b"VRDF0001"
    total_size  8 bytes   informational only
    meta_len    8 bytes   followed by meta_len bytes of UTF-8 JSON
    tf_len      8 bytes   followed by tf_len bytes of UTF-8 JSON
    raw_len     8 bytes   followed by raw_len bytes of float32 voxels

:func:`decode` reads every block before interpreting any of them so that a
truncated file is always reported as :class:`~vrdf_volume.errors.UnexpectedEof`
instead of a confusing JSON error.  :func:`encode` produces the identical
layout and is used by exporters and the test-suite.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import io
import json
import logging
import math
from pathlib import Path
import struct
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .config import (
    HEADER_SIZE,
    LENGTH_PREFIX_SIZE,
    MAGIC,
    VOXEL_DTYPE,
    VOXEL_ITEMSIZE,
)
from .errors import (
    BadMagic,
    MetadataParseError,
    SizeMismatch,
    TransferFunctionParseError,
    UnexpectedEof,
)

LOGGER = logging.getLogger(__name__)

_U64 = struct.Struct("<Q")
_LE_FLOAT32 = np.dtype("<f4")

DEFAULT_ORDER = "x-fast,y-then,z-outer"

_META_KEYS = (
    "dim",
    "spacing_mm",
    "dtype",
    "intensity_range",
    "affine",
    "mode",
    "endianness",
    "order",
)
_TF_KEYS = ("type", "entries", "curve", "origin", "channel_names_hint")


class VolumeMode(Enum):
    """Interpretation of the voxel values declared by the metadata."""

    LABELMAP = "labelmap"
    CONTINUOUS = "continuous"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "VolumeMode":
        for member in (cls.LABELMAP, cls.CONTINUOUS):
            if name == member.value:
                return member
        return cls.OTHER


# ----------------------------------------------------------------------
# Small JSON validation helpers
# ----------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _floats(value: Any, count: int, what: str, error) -> Tuple[float, ...]:
    if not isinstance(value, (list, tuple)) or len(value) != count:
        raise error(f"'{what}' must be a list of {count} numbers, got {value!r}")
    if not all(_is_number(v) for v in value):
        raise error(f"'{what}' must contain only numbers, got {value!r}")
    return tuple(float(v) for v in value)


def _optional_str(value: Any, what: str, error) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise error(f"'{what}' must be a string, got {value!r}")
    return value


def _load_json_object(payload: bytes, block: str, error) -> Dict[str, Any]:
    try:
        data = json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise error(f"{block} is not valid UTF-8: {exc}") from exc
    except ValueError as exc:
        raise error(f"{block} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise error(f"{block} must be a JSON object, got {type(data).__name__}")
    return data


# ----------------------------------------------------------------------
# Metadata
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class VolumeMetadata:
    """Geometry and interpretation of one volume."""

    dim: Tuple[int, int, int]
    spacing_mm: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    dtype: str = VOXEL_DTYPE
    intensity_range: Optional[Tuple[float, float]] = None
    # Row-major 4x4; ``None`` means the file carried no usable affine.
    affine: Optional[Tuple[Tuple[float, ...], ...]] = None
    mode: str = VolumeMode.LABELMAP.value
    endianness: Optional[str] = "little"
    order: Optional[str] = DEFAULT_ORDER
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> VolumeMode:
        return VolumeMode.from_name(self.mode)

    @property
    def voxel_count(self) -> int:
        x, y, z = self.dim
        return int(x) * int(y) * int(z)

    @property
    def raw_nbytes(self) -> int:
        return self.voxel_count * VOXEL_ITEMSIZE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VolumeMetadata":
        """Validate a decoded metadata object.

        Raises :class:`MetadataParseError` for missing or malformed required
        fields.  A malformed ``affine`` is dropped with a warning, leaving the
        resolver to fall back to identity.
        """

        err = MetadataParseError
        if "dim" not in data:
            raise err("metadata is missing the required 'dim' field")
        dim_raw = data["dim"]
        if not isinstance(dim_raw, (list, tuple)) or len(dim_raw) != 3:
            raise err(f"'dim' must be a list of 3 integers, got {dim_raw!r}")
        dim = []
        for value in dim_raw:
            if not _is_number(value) or not math.isfinite(value) or float(value) != int(value):
                raise err(f"'dim' must contain integers, got {dim_raw!r}")
            if value < 0:
                raise err(f"'dim' components must be non-negative, got {dim_raw!r}")
            dim.append(int(value))

        spacing = data.get("spacing_mm")
        spacing_mm = (1.0, 1.0, 1.0) if spacing is None else _floats(spacing, 3, "spacing_mm", err)

        dtype = data.get("dtype", VOXEL_DTYPE)
        if dtype != VOXEL_DTYPE:
            raise err(
                f"unsupported dtype {dtype!r}; this container version stores {VOXEL_DTYPE}"
            )

        rng = data.get("intensity_range")
        intensity_range = None if rng is None else _floats(rng, 2, "intensity_range", err)

        affine = _parse_affine(data.get("affine"))

        mode = data.get("mode")
        if mode is None:
            mode = VolumeMode.OTHER.value
        elif not isinstance(mode, str):
            raise err(f"'mode' must be a string, got {mode!r}")

        extra = {k: v for k, v in data.items() if k not in _META_KEYS}
        return cls(
            dim=(dim[0], dim[1], dim[2]),
            spacing_mm=spacing_mm,
            dtype=dtype,
            intensity_range=intensity_range,
            affine=affine,
            mode=mode,
            endianness=_optional_str(data.get("endianness", "little"), "endianness", err),
            order=_optional_str(data.get("order", DEFAULT_ORDER), "order", err),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "dim": [int(v) for v in self.dim],
            "spacing_mm": [float(v) for v in self.spacing_mm],
            "dtype": self.dtype,
        }
        if self.intensity_range is not None:
            out["intensity_range"] = [float(v) for v in self.intensity_range]
        if self.affine is not None:
            out["affine"] = [[float(v) for v in row] for row in self.affine]
        out["mode"] = self.mode
        if self.endianness is not None:
            out["endianness"] = self.endianness
        if self.order is not None:
            out["order"] = self.order
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return out


def _parse_affine(value: Any) -> Optional[Tuple[Tuple[float, ...], ...]]:
    if value is None:
        return None
    rows_ok = (
        isinstance(value, (list, tuple))
        and len(value) == 4
        and all(isinstance(row, (list, tuple)) and len(row) == 4 for row in value)
        and all(_is_number(v) for row in value for v in row)
    )
    if not rows_ok:
        LOGGER.warning("Ignoring malformed affine %r; identity will be used", value)
        return None
    return tuple(tuple(float(v) for v in row) for row in value)


# ----------------------------------------------------------------------
# Transfer function
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class TransferFunctionEntry:
    """Colour and opacity assigned to one label value."""

    label: int
    color: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    alpha: float = 0.0
    name: Optional[str] = None
    # Number of colour channels present in the file; the rest were padded.
    channels_given: int = field(default=3, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Any) -> "TransferFunctionEntry":
        err = TransferFunctionParseError
        if not isinstance(data, dict):
            raise err(f"transfer-function entry must be an object, got {data!r}")
        # Exporters write labels as floats (``7.0``).
        label = data.get("label")
        if not _is_number(label) or not math.isfinite(label):
            raise err(f"entry label must be a finite number, got {label!r}")

        color_raw = data.get("color")
        if color_raw is None:
            color_raw = []
        if not isinstance(color_raw, (list, tuple)) or not all(_is_number(c) for c in color_raw):
            raise err(f"entry color must be a list of numbers, got {color_raw!r}")
        channels = [float(c) for c in color_raw[:3]]
        channels += [0.0] * (3 - len(channels))

        alpha = data.get("alpha", 0.0)
        if not _is_number(alpha):
            raise err(f"entry alpha must be a number, got {alpha!r}")

        return cls(
            label=int(round(label)),
            color=(channels[0], channels[1], channels[2]),
            alpha=float(alpha),
            name=_optional_str(data.get("name"), "name", err),
            channels_given=min(len(color_raw), 3),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "label": int(self.label),
            "color": [float(c) for c in self.color[: self.channels_given]],
            "alpha": float(self.alpha),
        }
        if self.name is not None:
            out["name"] = self.name
        return out


@dataclass(frozen=True)
class CurvePoint:
    """Control point of a continuous transfer function (not evaluated)."""

    x: float
    color: Tuple[float, ...] = ()
    alpha: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "CurvePoint":
        err = TransferFunctionParseError
        if not isinstance(data, dict) or not _is_number(data.get("x")):
            raise err(f"curve point must be an object with a numeric 'x', got {data!r}")
        color = data.get("color") or []
        if not isinstance(color, (list, tuple)) or not all(_is_number(c) for c in color):
            raise err(f"curve point color must be a list of numbers, got {color!r}")
        alpha = data.get("alpha", 0.0)
        if not _is_number(alpha):
            raise err(f"curve point alpha must be a number, got {alpha!r}")
        return cls(x=float(data["x"]), color=tuple(float(c) for c in color), alpha=float(alpha))

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "color": list(self.color), "alpha": self.alpha}


@dataclass(frozen=True)
class TransferFunction:
    """Mapping from voxel values to colour and opacity."""

    kind: str = VolumeMode.LABELMAP.value
    entries: Tuple[TransferFunctionEntry, ...] = ()
    curve: Tuple[CurvePoint, ...] = ()
    origin: Optional[str] = None
    channel_names_hint: Tuple[str, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_labelmap(self) -> bool:
        return self.kind == VolumeMode.LABELMAP.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferFunction":
        err = TransferFunctionParseError
        kind = data.get("type", VolumeMode.LABELMAP.value)
        if not isinstance(kind, str):
            raise err(f"'type' must be a string, got {kind!r}")

        entries_raw = data.get("entries") or []
        if not isinstance(entries_raw, list):
            raise err(f"'entries' must be a list, got {entries_raw!r}")
        curve_raw = data.get("curve") or []
        if not isinstance(curve_raw, list):
            raise err(f"'curve' must be a list, got {curve_raw!r}")
        hints = data.get("channel_names_hint") or []
        if not isinstance(hints, list) or not all(isinstance(h, str) for h in hints):
            raise err(f"'channel_names_hint' must be a list of strings, got {hints!r}")

        return cls(
            kind=kind,
            entries=tuple(TransferFunctionEntry.from_dict(e) for e in entries_raw),
            curve=tuple(CurvePoint.from_dict(p) for p in curve_raw),
            origin=_optional_str(data.get("origin"), "origin", err),
            channel_names_hint=tuple(hints),
            extra={k: v for k, v in data.items() if k not in _TF_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.kind,
            "entries": [e.to_dict() for e in self.entries],
        }
        if self.curve:
            out["curve"] = [p.to_dict() for p in self.curve]
        if self.origin is not None:
            out["origin"] = self.origin
        if self.channel_names_hint:
            out["channel_names_hint"] = list(self.channel_names_hint)
        for key, value in self.extra.items():
            out.setdefault(key, value)
        return out


# ----------------------------------------------------------------------
# Voxel payload
# ----------------------------------------------------------------------

class RawVoxelBuffer:
    """Read-only flat ``float32`` voxel array in ``x``-fastest order."""

    __slots__ = ("_data", "_dim")
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, values: Any, dim: Sequence[int]) -> None:
        dim_t = tuple(int(d) for d in dim)
        if len(dim_t) != 3:
            raise ValueError(f"dim must have three components, got {dim!r}")
        arr = np.array(values, dtype=_LE_FLOAT32)
        if arr.ndim == 3:
            if arr.shape != dim_t:
                raise ValueError(f"volume shape {arr.shape} does not match dim {dim_t}")
            arr = arr.reshape(-1, order="F")
        else:
            arr = arr.reshape(-1)
        expected = dim_t[0] * dim_t[1] * dim_t[2]
        if arr.size != expected:
            raise ValueError(f"expected {expected} voxels for dim {dim_t}, got {arr.size}")
        arr.flags.writeable = False
        self._data = arr
        self._dim = dim_t

    @classmethod
    def from_bytes(cls, payload: bytes, dim: Sequence[int]) -> "RawVoxelBuffer":
        """Wrap *payload* without copying; ``bytes`` already makes it immutable."""

        buf = cls.__new__(cls)
        buf._data = np.frombuffer(payload, dtype=_LE_FLOAT32)
        buf._dim = tuple(int(d) for d in dim)
        return buf

    @property
    def dim(self) -> Tuple[int, int, int]:
        return self._dim  # type: ignore[return-value]

    @property
    def values(self) -> np.ndarray:
        return self._data

    @property
    def nbytes(self) -> int:
        return int(self._data.size) * VOXEL_ITEMSIZE

    @property
    def is_empty(self) -> bool:
        return self._data.size == 0

    def __len__(self) -> int:
        return int(self._data.size)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawVoxelBuffer):
            return NotImplemented
        return self._dim == other._dim and bool(
            np.array_equal(self._data, other._data, equal_nan=True)
        )

    def __repr__(self) -> str:
        return f"RawVoxelBuffer(dim={self._dim}, voxels={self._data.size})"

    def as_volume(self) -> np.ndarray:
        """Return a read-only ``(X, Y, Z)`` view of the voxels."""

        return self._data.reshape(self._dim, order="F")

    def to_bytes(self) -> bytes:
        return self._data.astype(_LE_FLOAT32, copy=False).tobytes()


class DecodedContainer(NamedTuple):
    metadata: VolumeMetadata
    transfer_function: TransferFunction
    voxels: RawVoxelBuffer


# ----------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------

def _read_exact(stream: io.BytesIO, size: int, what: str) -> bytes:
    payload = stream.read(size)
    if len(payload) != size:
        raise UnexpectedEof(what, size, len(payload))
    return payload


def _read_u64(stream: io.BytesIO, what: str) -> int:
    return _U64.unpack(_read_exact(stream, _U64.size, what))[0]


def _read_block(stream: io.BytesIO, name: str) -> bytes:
    length = _read_u64(stream, f"{name} length")
    remaining = len(stream.getbuffer()) - stream.tell()
    if length > remaining:
        raise UnexpectedEof(name, length, remaining)
    return _read_exact(stream, length, name)


def decode(data: Union[bytes, bytearray, memoryview]) -> DecodedContainer:
    """Parse a complete VRDF container held in memory."""

    stream = io.BytesIO(data)
    magic = _read_exact(stream, len(MAGIC), "magic")
    if magic != MAGIC:
        raise BadMagic(magic, MAGIC)
    total_size = _read_u64(stream, "total_size")

    meta_bytes = _read_block(stream, "meta block")
    tf_bytes = _read_block(stream, "transfer-function block")
    raw_bytes = _read_block(stream, "raw block")

    parsed = stream.tell()
    trailing = len(stream.read())
    if trailing:
        LOGGER.debug("Ignoring %d trailing bytes after the raw block", trailing)
    if total_size != parsed:
        LOGGER.debug("Declared total_size %d differs from parsed size %d", total_size, parsed)

    metadata = VolumeMetadata.from_dict(
        _load_json_object(meta_bytes, "meta block", MetadataParseError)
    )
    if tf_bytes:
        tf = TransferFunction.from_dict(
            _load_json_object(tf_bytes, "transfer-function block", TransferFunctionParseError)
        )
    else:
        tf = TransferFunction()

    if len(raw_bytes) != metadata.raw_nbytes:
        raise SizeMismatch(metadata.raw_nbytes, len(raw_bytes), metadata.dim)
    if metadata.voxel_count == 0:
        LOGGER.warning("Container declares an empty volume (dim=%s)", metadata.dim)

    return DecodedContainer(metadata, tf, RawVoxelBuffer.from_bytes(raw_bytes, metadata.dim))


def read_container(path: Union[str, Path]) -> DecodedContainer:
    """Read and decode the VRDF file at *path*.

    File-system errors (:class:`FileNotFoundError` and other :class:`OSError`)
    propagate unchanged.
    """

    path = Path(path)
    with open(path, "rb") as fh:
        data = fh.read()
    LOGGER.debug("Read %d bytes from %s", len(data), path)
    return decode(data)


# ----------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------

def _json_block(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


def encode(
    metadata: VolumeMetadata,
    transfer_function: TransferFunction,
    voxels: Any,
) -> bytes:
    """Serialise a volume into VRDF bytes.

    *voxels* may be a :class:`RawVoxelBuffer`, a flat sequence in ``x``-fastest
    order or an ``(X, Y, Z)`` array.
    """

    if not isinstance(voxels, RawVoxelBuffer):
        voxels = RawVoxelBuffer(voxels, metadata.dim)
    if len(voxels) != metadata.voxel_count:
        raise ValueError(
            f"metadata declares {metadata.voxel_count} voxels but {len(voxels)} were given"
        )

    meta_bytes = _json_block(metadata.to_dict())
    tf_bytes = _json_block(transfer_function.to_dict())
    raw_bytes = voxels.to_bytes()

    total_size = HEADER_SIZE + sum(
        LENGTH_PREFIX_SIZE + len(block) for block in (meta_bytes, tf_bytes, raw_bytes)
    )
    out = bytearray(MAGIC)
    out += _U64.pack(total_size)
    for block in (meta_bytes, tf_bytes, raw_bytes):
        out += _U64.pack(len(block))
        out += block
    return bytes(out)


def write_container(
    path: Union[str, Path],
    metadata: VolumeMetadata,
    transfer_function: TransferFunction,
    voxels: Any,
) -> Path:
    path = Path(path)
    payload = encode(metadata, transfer_function, voxels)
    path.write_bytes(payload)
    LOGGER.info("Wrote %s (%d bytes)", path, len(payload))
    return path


__all__ = [
    "VolumeMode",
    "VolumeMetadata",
    "TransferFunctionEntry",
    "CurvePoint",
    "TransferFunction",
    "RawVoxelBuffer",
    "DecodedContainer",
    "decode",
    "encode",
    "read_container",
    "write_container",
]
