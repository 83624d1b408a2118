"""Voxel/world coordinate mapping derived from VRDF metadata."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Tuple

import numpy as np

from .config import AFFINE_EPSILON
from .container import VolumeMetadata
from .errors import DegenerateAffine

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class AffinePair:
    """Forward (voxel -> world) matrix and its inverse, both read-only."""

    forward: np.ndarray
    inverse: np.ndarray

    def as_float32(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return single-precision copies suitable for shader uniforms."""

        return self.forward.astype(np.float32), self.inverse.astype(np.float32)


def _frozen(matrix: np.ndarray) -> np.ndarray:
    matrix = np.array(matrix, dtype=np.float64)
    matrix.flags.writeable = False
    return matrix


def resolve_affine(metadata: VolumeMetadata) -> AffinePair:
    """Build the :class:`AffinePair` for *metadata*.

    Volumes without an affine map voxel indices straight to world units
    (identity).  A matrix with non-finite entries or a determinant within
    ``1e-9`` of zero raises :class:`DegenerateAffine`; callers must treat that
    as a failed load rather than render with a broken mapping.
    """

    if metadata.affine is None:
        identity = _frozen(np.eye(4))
        return AffinePair(identity, identity)

    forward = np.array(metadata.affine, dtype=np.float64)
    if not np.all(np.isfinite(forward)):
        raise DegenerateAffine(float("nan"))
    det = float(np.linalg.det(forward))
    if abs(det) <= AFFINE_EPSILON:
        raise DegenerateAffine(det)
    inverse = np.linalg.inv(forward)
    LOGGER.debug("Resolved affine with determinant %.6g", det)
    return AffinePair(_frozen(forward), _frozen(inverse))


def _apply(matrix: np.ndarray, points) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64)
    single = pts.ndim == 1
    pts = np.atleast_2d(pts)
    if pts.shape[-1] != 3:
        raise ValueError(f"expected points with 3 coordinates, got shape {pts.shape}")
    homogeneous = np.hstack([pts, np.ones((pts.shape[0], 1))])
    mapped = homogeneous @ matrix.T
    out = mapped[:, :3] / mapped[:, 3:4]
    return out[0] if single else out


def voxel_to_world(pair: AffinePair, points) -> np.ndarray:
    """Map voxel coordinates (``(3,)`` or ``(N, 3)``) to world coordinates."""

    return _apply(pair.forward, points)


def world_to_voxel(pair: AffinePair, points) -> np.ndarray:
    """Map world coordinates (``(3,)`` or ``(N, 3)``) to voxel coordinates."""

    return _apply(pair.inverse, points)


def _normalise_spacing(spacing) -> Tuple[float, float, float]:
    values = [float(v) for v in (spacing or ())[:3]]
    values += [1.0] * (3 - len(values))
    # Unusable spacing components fall back to 1 mm.
    sx, sy, sz = (abs(v) if np.isfinite(v) and abs(v) > 1e-6 else 1.0 for v in values)
    return sx, sy, sz


def physical_size_m(metadata: VolumeMetadata) -> Tuple[float, float, float]:
    """Extent of the volume in metres (``dim * spacing_mm / 1000``)."""

    sx, sy, sz = _normalise_spacing(metadata.spacing_mm)
    x, y, z = metadata.dim
    return x * sx * 0.001, y * sy * 0.001, z * sz * 0.001


__all__ = [
    "AffinePair",
    "resolve_affine",
    "voxel_to_world",
    "world_to_voxel",
    "physical_size_m",
]
