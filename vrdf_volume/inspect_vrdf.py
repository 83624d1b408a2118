#!/usr/bin/env python3
"""inspect_vrdf.py
~~~~~~~~~~~~~~~~~
Print a human readable summary of a VRDF container.

Optionally the label descriptors of the active lookup profile are written to
a TSV file (one row per label, same columns a visibility menu uses) and an
axial slice can be displayed through the active lookup table.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import MAGIC
from .errors import LoadError
from .labels import write_label_table
from .loader import LoadedVolume, load_volume
from .lookup import LookupProfile


def bytes_to_human(n: int) -> str:
    """Return *n* bytes as a short string such as ``247.5 MB``."""

    step = 1024.0
    x = float(n)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if x < step:
            return f"{x:.1f} {unit}"
        x /= step
    return f"{x:.1f} PB"


def summarize(volume: LoadedVolume) -> List[str]:
    meta = volume.metadata
    tf = volume.transfer_function
    size = volume.path.stat().st_size if volume.path.exists() else 0
    sx, sy, sz = volume.physical_size_m

    lines = [
        f"File:         {volume.path}",
        f"Format:       {MAGIC.decode('ascii')}",
        f"Size:         {bytes_to_human(size)}",
        f"Volume shape: {'x'.join(str(d) for d in meta.dim)} ({len(volume.voxels)} voxels)",
        f"Mode:         {meta.mode}",
        f"Spacing (mm): {', '.join(f'{s:g}' for s in meta.spacing_mm)}",
        f"Extent (m):   {sx:.4f} x {sy:.4f} x {sz:.4f}",
        f"Intensity:    {meta.intensity_range if meta.intensity_range else 'n/a'}",
        f"Endianness:   {meta.endianness or '?'}",
        f"Order:        {meta.order or '?'}",
        f"Affine:       {'identity (absent)' if meta.affine is None else 'present'}",
        f"TF type:      {tf.kind}",
    ]
    if tf.origin:
        lines.append(f"TF origin:    {tf.origin}")
    if tf.channel_names_hint:
        lines.append(f"Channels:     {', '.join(tf.channel_names_hint)}")
    if tf.is_labelmap:
        lines.append(f"Labels ({volume.profile.value} table):")
        for info in volume.label_infos:
            a = info.color[3]
            state = "visible" if info.default_visible else "hidden"
            lines.append(
                f"  {info.index:3d}  {info.display_name:<24} {info.swatch_hex} "
                f"alpha={a:.3f} {state}"
            )
    elif tf.curve:
        lines.append(f"Curve points: {len(tf.curve)} (not evaluated)")
    return lines


def show_slice(volume: LoadedVolume, z_index: int) -> None:
    """Display axial slice *z_index* with matplotlib."""

    dim_z = volume.dim[2]
    if not 0 <= z_index < dim_z:
        raise ValueError(f"slice {z_index} is outside [0, {dim_z - 1}]")

    import matplotlib.pyplot as plt

    plane = volume.voxels.as_volume()[:, :, z_index].T
    fig, ax = plt.subplots()
    if volume.is_labelmap:
        lut = volume.active_lookup
        ax.imshow(
            plane,
            cmap=lut.as_colormap(),
            norm=lut.boundary_norm(),
            origin="lower",
            interpolation="nearest" if lut.filtering == "nearest" else "bilinear",
        )
    else:
        lo, hi = volume.intensity_window
        image = ax.imshow(plane, cmap="gray", vmin=lo, vmax=hi, origin="lower")
        fig.colorbar(image, ax=ax)
    ax.set_title(f"{volume.path.name}  z={z_index}")
    plt.show()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""

    import argparse

    parser = argparse.ArgumentParser(description="Summarise a VRDF volume container")
    parser.add_argument("path", help="VRDF file to inspect")
    parser.add_argument(
        "--profile",
        choices=[p.value for p in LookupProfile],
        default=LookupProfile.SOFT.value,
        help="Lookup table used for label colours (default: soft)",
    )
    parser.add_argument("--labels-tsv", help="Write the label table to this TSV file")
    parser.add_argument("--show-slice", type=int, metavar="Z", help="Display axial slice Z")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    try:
        volume = load_volume(args.path, args.profile)
    except LoadError as exc:
        print(f"Error: {exc}")
        return 1

    print("\n".join(summarize(volume)))

    if args.labels_tsv:
        write_label_table(volume.label_infos, args.labels_tsv)
        print(f"Label table written to {args.labels_tsv}")

    if args.show_slice is not None:
        try:
            show_slice(volume, args.show_slice)
        except ValueError as exc:
            print(f"Error: {exc}")
            return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
