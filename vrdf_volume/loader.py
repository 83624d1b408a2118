"""Load VRDF volumes into render-ready state.

:func:`load_volume` runs the whole pipeline for one file: read the bytes,
decode the container, resolve the affine pair, build both lookup tables and
create a fresh :class:`~vrdf_volume.label_control.LabelControlPlane`.  Any
failure is reported as a single :class:`~vrdf_volume.errors.LoadError` whose
``stage`` tells a missing file, a corrupt container and a broken spatial
calibration apart.

:class:`VolumeLoader` keeps track of the volume currently shown.  A new
volume is published only once it is fully built, so a failed reload leaves
the previous one in place.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
from pathlib import Path
import threading
from typing import Iterable, List, Optional, Tuple, Union

import numpy as np

from .affine import AffinePair, physical_size_m, resolve_affine
from .config import LoaderConfig
from .container import (
    RawVoxelBuffer,
    TransferFunction,
    VolumeMetadata,
    VolumeMode,
    read_container,
)
from .errors import DecodeError, DegenerateAffine, LoadError
from .label_control import LabelControlPlane
from .labels import LabelInfo, build_label_infos
from .lookup import LookupProfile, LookupTable, build_lookup_tables, transparent_tables

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(eq=False)
class LoadedVolume:
    """Everything a renderer needs for one volume."""

    path: Path
    metadata: VolumeMetadata
    transfer_function: TransferFunction
    voxels: RawVoxelBuffer
    soft_lookup: LookupTable
    hard_lookup: LookupTable
    affine: AffinePair
    control_plane: LabelControlPlane
    profile: LookupProfile = LookupProfile.SOFT

    @property
    def active_lookup(self) -> LookupTable:
        if self.profile is LookupProfile.HARD:
            return self.hard_lookup
        return self.soft_lookup

    def set_lookup_profile(self, profile: Union[str, LookupProfile]) -> LookupTable:
        """Switch between the soft and hard table without reparsing."""

        self.profile = LookupProfile.coerce(profile)
        return self.active_lookup

    @property
    def dim(self) -> Tuple[int, int, int]:
        return self.metadata.dim

    @property
    def voxel_view(self) -> np.ndarray:
        """Read-only flat ``float32`` voxels, ``x`` fastest."""

        return self.voxels.values

    @property
    def is_labelmap(self) -> bool:
        return self.transfer_function.is_labelmap

    @property
    def intensity_window(self) -> Tuple[float, float]:
        # Only continuous volumes are windowed; label values map 1:1 to rows.
        rng = self.metadata.intensity_range
        if self.transfer_function.kind == VolumeMode.CONTINUOUS.value and rng is not None:
            return rng
        return (0.0, 1.0)

    @property
    def physical_size_m(self) -> Tuple[float, float, float]:
        return physical_size_m(self.metadata)

    @property
    def label_infos(self) -> List[LabelInfo]:
        return build_label_infos(self.transfer_function, self.active_lookup)


def load_volume(
    path: PathLike, profile: Union[str, LookupProfile] = LookupProfile.SOFT
) -> LoadedVolume:
    """Build a :class:`LoadedVolume` from the VRDF file at *path*."""

    path = Path(path)
    try:
        metadata, tf, voxels = read_container(path)
    except FileNotFoundError as exc:
        raise LoadError("read", str(path), "VRDF file not found") from exc
    except OSError as exc:
        raise LoadError("read", str(path), f"cannot read file: {exc}") from exc
    except DecodeError as exc:
        raise LoadError("decode", str(path), f"{type(exc).__name__}: {exc}") from exc

    try:
        affine = resolve_affine(metadata)
    except DegenerateAffine as exc:
        raise LoadError("affine", str(path), str(exc)) from exc

    if voxels.is_empty:
        LOGGER.info("%s holds an empty volume; lookup tables left transparent", path.name)
        soft, hard = transparent_tables()
    else:
        soft, hard = build_lookup_tables(tf)

    volume = LoadedVolume(
        path=path,
        metadata=metadata,
        transfer_function=tf,
        voxels=voxels,
        soft_lookup=soft,
        hard_lookup=hard,
        affine=affine,
        control_plane=LabelControlPlane(),
        profile=LookupProfile.coerce(profile),
    )
    LOGGER.info(
        "Loaded %s: dim=%s mode=%s tf=%s entries=%d",
        path.name,
        "x".join(str(d) for d in metadata.dim),
        metadata.mode,
        tf.kind,
        len(tf.entries),
    )
    return volume


def find_volume(code: str, root: PathLike, extensions: Iterable[str]) -> Optional[Path]:
    """Return the first volume file under *root* whose name contains *code*.

    Matching is case-insensitive and files are visited in sorted order so the
    result does not depend on directory listing order.
    """

    root = Path(root)
    if not root.is_dir():
        return None
    exts = {e.lower() for e in extensions}
    needle = code.lower()
    candidates = sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in exts)
    for candidate in candidates:
        if needle in candidate.name.lower():
            return candidate
    return None


class VolumeLoader:
    """Owns the currently published :class:`LoadedVolume`."""

    def __init__(self, config: Optional[LoaderConfig] = None) -> None:
        self.config = config or LoaderConfig()
        self._lock = threading.Lock()
        self._current: Optional[LoadedVolume] = None
        self._profile = (
            LookupProfile.HARD if self.config.use_hard_lookup else LookupProfile.SOFT
        )
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def current(self) -> Optional[LoadedVolume]:
        return self._current

    @property
    def profile(self) -> LookupProfile:
        return self._profile

    def load(self, path: PathLike) -> LoadedVolume:
        """Load *path* and publish it; on failure the current volume stays."""

        try:
            volume = load_volume(path, self._profile)
        except LoadError as exc:
            LOGGER.error("Failed to load volume: %s", exc)
            raise
        with self._lock:
            # The profile may have been toggled while the file was decoding.
            volume.set_lookup_profile(self._profile)
            self._current = volume
        return volume

    def reload_by_code(self, code: str) -> LoadedVolume:
        """Load the first file in the volume root whose name contains *code*."""

        if not code or not code.strip():
            raise LoadError("resolve", None, "empty volume code")
        root = self.config.volume_root
        path = find_volume(code.strip(), root, self.config.extensions)
        if path is None:
            LOGGER.warning("No volume matching %r under %s", code, root)
            raise LoadError("resolve", str(root), f"no volume file matching {code!r}")
        LOGGER.info("Code %r resolved to %s", code, path.name)
        return self.load(path)

    def load_default(self) -> LoadedVolume:
        return self.reload_by_code(self.config.default_code)

    def set_lookup_profile(self, profile: Union[str, LookupProfile]) -> Optional[LookupTable]:
        """Select the soft or hard table; returns the now active table."""

        profile = LookupProfile.coerce(profile)
        with self._lock:
            self._profile = profile
            if self._current is None:
                return None
            return self._current.set_lookup_profile(profile)

    def load_in_background(self, path: PathLike) -> "Future[LoadedVolume]":
        """Run :meth:`load` on a worker thread."""

        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vrdf-load")
            executor = self._executor
        return executor.submit(self.load, path)

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "VolumeLoader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "LoadedVolume",
    "VolumeLoader",
    "load_volume",
    "find_volume",
]
