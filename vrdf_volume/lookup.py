"""Dense label lookup tables built from a labelmap transfer function.

Every load produces two sibling tables from the same entries:

``soft``
    Full ``float32`` precision, meant to be sampled with linear filtering for
    the smooth "clinical" look.
``hard``
    Each channel quantized to 8 bits, meant for nearest-neighbour sampling and
    crisp segmentation boundaries.

The builder does not know which of the two is eventually displayed; that is a
runtime choice made through :class:`LookupProfile`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Tuple, Union

import numpy as np
from matplotlib import colors as mcolors

from .config import LUT_SIZE
from .container import TransferFunction

LOGGER = logging.getLogger(__name__)


class LookupProfile(str, Enum):
    SOFT = "soft"
    HARD = "hard"

    @classmethod
    def coerce(cls, value: Union[str, "LookupProfile"]) -> "LookupProfile":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown lookup profile {value!r}; expected 'soft' or 'hard'"
            ) from None

    @property
    def filtering(self) -> str:
        return "linear" if self is LookupProfile.SOFT else "nearest"


@dataclass(frozen=True, eq=False)
class LookupTable:
    """256 RGBA rows indexed by label value."""

    profile: LookupProfile
    rgba: np.ndarray

    def __post_init__(self) -> None:
        if self.rgba.shape != (LUT_SIZE, 4):
            raise ValueError(
                f"lookup table must have shape ({LUT_SIZE}, 4), got {self.rgba.shape}"
            )
        self.rgba.flags.writeable = False

    def __len__(self) -> int:
        return LUT_SIZE

    def __getitem__(self, index: int) -> Tuple[float, float, float, float]:
        r, g, b, a = (float(v) for v in self.rgba[index])
        return (r, g, b, a)

    @property
    def filtering(self) -> str:
        return self.profile.filtering

    def as_uint8(self) -> np.ndarray:
        """RGBA32 rows, e.g. for uploading the table as an 8-bit texture."""

        return np.clip(np.rint(self.rgba * 255.0), 0, 255).astype(np.uint8)

    def as_colormap(self) -> mcolors.ListedColormap:
        """Matplotlib colormap whose integer indices are label values."""

        return mcolors.ListedColormap(
            np.asarray(self.rgba, dtype=np.float64), name=f"vrdf_{self.profile.value}"
        )

    @staticmethod
    def boundary_norm() -> mcolors.BoundaryNorm:
        """Norm sending each integer label to its own colormap row."""

        return mcolors.BoundaryNorm(np.arange(-0.5, LUT_SIZE + 0.5), LUT_SIZE)


def _transparent() -> np.ndarray:
    return np.zeros((LUT_SIZE, 4), dtype=np.float32)


def transparent_tables() -> Tuple[LookupTable, LookupTable]:
    """Soft/hard pair with every label fully transparent."""

    return (
        LookupTable(LookupProfile.SOFT, _transparent()),
        LookupTable(LookupProfile.HARD, _transparent()),
    )


def clamp_label(label: int) -> int:
    return min(max(int(label), 0), LUT_SIZE - 1)


def build_lookup_tables(tf: TransferFunction) -> Tuple[LookupTable, LookupTable]:
    """Return the ``(soft, hard)`` lookup tables for *tf*.

    Entries are written in file order, so when several entries share a
    (clamped) label the last one wins.  Labels outside ``0..255`` are clamped
    into range and reported as a warning since they usually point at a
    problem in the exporter.  Non-labelmap transfer functions are not
    evaluated and yield two transparent tables.
    """

    if not tf.is_labelmap:
        LOGGER.debug(
            "Transfer function type %r is not evaluated; using transparent tables", tf.kind
        )
        return transparent_tables()

    soft = _transparent()
    for entry in tf.entries:
        idx = clamp_label(entry.label)
        if idx != entry.label:
            LOGGER.warning(
                "Label %d (%s) is outside 0..%d; clamped to %d",
                entry.label,
                entry.name or "unnamed",
                LUT_SIZE - 1,
                idx,
            )
        r, g, b = entry.color
        soft[idx] = (r, g, b, entry.alpha)

    quantized = np.clip(np.rint(np.nan_to_num(soft.astype(np.float64)) * 255.0), 0.0, 255.0)
    hard = (quantized / 255.0).astype(np.float32)
    return LookupTable(LookupProfile.SOFT, soft), LookupTable(LookupProfile.HARD, hard)


__all__ = [
    "LookupProfile",
    "LookupTable",
    "build_lookup_tables",
    "transparent_tables",
    "clamp_label",
]
