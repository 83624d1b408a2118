"""Per-label descriptors used to populate visibility menus.

Menus list one row per transfer-function entry with a display name, a colour
swatch and whether the label starts visible.  The swatch colour is read from
the active lookup table so that switching between the soft and hard profile
shows exactly what the renderer draws.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import pandas as pd
from matplotlib import colors as mcolors

from .config import LUT_SIZE, VISIBLE_ALPHA_THRESHOLD
from .container import TransferFunction
from .label_control import LabelControlPlane
from .lookup import LookupTable

LOGGER = logging.getLogger(__name__)

LABEL_TABLE_COLUMNS = ("index", "name", "r", "g", "b", "alpha", "hex", "default_visible")


@dataclass(frozen=True)
class LabelInfo:
    index: int
    display_name: str
    color: Tuple[float, float, float, float]
    default_visible: bool

    @property
    def swatch_hex(self) -> str:
        """Opaque hex colour; alpha is dropped so faint labels stay readable."""

        r, g, b, _ = self.color
        return mcolors.to_hex((r, g, b), keep_alpha=False)


def _entry_color(entry) -> Tuple[float, float, float, float]:
    # Channels missing from the file show as white in the swatch.
    r, g, b = (
        float(c) if i < entry.channels_given else 1.0 for i, c in enumerate(entry.color)
    )
    return (r, g, b, float(entry.alpha))


def build_label_infos(tf: TransferFunction, lut: LookupTable) -> List[LabelInfo]:
    """Describe every label of *tf* using colours from *lut*.

    Entries keep their file order.  Labels outside the table fall back to the
    entry's own colour.  A transfer function without entries yields one
    descriptor per table row.
    """

    infos: List[LabelInfo] = []
    if tf.entries:
        for entry in tf.entries:
            idx = int(entry.label)
            name = entry.name or f"Label {idx}"
            color = lut[idx] if 0 <= idx < LUT_SIZE else _entry_color(entry)
            infos.append(
                LabelInfo(idx, name, color, color[3] > VISIBLE_ALPHA_THRESHOLD)
            )
    else:
        for idx in range(LUT_SIZE):
            color = lut[idx]
            infos.append(
                LabelInfo(idx, f"Label {idx}", color, color[3] > VISIBLE_ALPHA_THRESHOLD)
            )
    LOGGER.debug("Built %d label descriptors using the %s table", len(infos), lut.profile.value)
    return infos


def menu_labels(infos: Sequence[LabelInfo], hide_hidden: bool = True) -> List[LabelInfo]:
    """Labels worth listing in a menu: in range and, optionally, visible at start."""

    return [
        info
        for info in infos
        if 0 <= info.index < LUT_SIZE and (info.default_visible or not hide_hidden)
    ]


def apply_default_visibility(
    plane: LabelControlPlane,
    infos: Sequence[LabelInfo],
    hide_hidden: bool = True,
) -> None:
    """Push each listed label's default visibility into *plane* in one update."""

    visibility = {info.index: info.default_visible for info in menu_labels(infos, hide_hidden)}
    plane.set_visibility_many(visibility)


def label_table(infos: Sequence[LabelInfo]) -> pd.DataFrame:
    rows = [
        {
            "index": info.index,
            "name": info.display_name,
            "r": info.color[0],
            "g": info.color[1],
            "b": info.color[2],
            "alpha": info.color[3],
            "hex": info.swatch_hex,
            "default_visible": int(info.default_visible),
        }
        for info in infos
    ]
    return pd.DataFrame(rows, columns=list(LABEL_TABLE_COLUMNS))


def write_label_table(infos: Sequence[LabelInfo], path: Union[str, Path]) -> Path:
    """Write :func:`label_table` as a tab separated file."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    label_table(infos).to_csv(path, sep="\t", index=False)
    LOGGER.info("Wrote %d labels to %s", len(infos), path)
    return path


__all__ = [
    "LabelInfo",
    "LABEL_TABLE_COLUMNS",
    "build_label_infos",
    "menu_labels",
    "apply_default_visibility",
    "label_table",
    "write_label_table",
]
