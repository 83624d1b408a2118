from __future__ import annotations

import logging

import numpy as np
import pytest

from vrdf_volume.container import CurvePoint, TransferFunction, TransferFunctionEntry
from vrdf_volume.lookup import (
    LookupProfile,
    LookupTable,
    build_lookup_tables,
    clamp_label,
    transparent_tables,
)


def _labelmap(*entries) -> TransferFunction:
    return TransferFunction(
        kind="labelmap",
        entries=tuple(TransferFunctionEntry(*e) for e in entries),
    )


def test_single_entry_lands_on_its_row():
    soft, hard = build_lookup_tables(_labelmap((7, (0.0, 1.0, 0.0), 0.5, "edema")))

    assert soft[7] == (0.0, 1.0, 0.0, 0.5)
    assert soft[0] == (0.0, 0.0, 0.0, 0.0)
    assert soft[8] == (0.0, 0.0, 0.0, 0.0)
    # values representable in 8 bits survive quantization unchanged
    assert hard[7] == pytest.approx((0.0, 1.0, 0.0, 128 / 255.0))


def test_tables_have_fixed_shape_and_profiles():
    soft, hard = build_lookup_tables(_labelmap((1, (1.0, 0.0, 0.0), 1.0)))

    assert soft.rgba.shape == (256, 4)
    assert hard.rgba.shape == (256, 4)
    assert soft.rgba.dtype == np.float32
    assert soft.profile is LookupProfile.SOFT
    assert hard.profile is LookupProfile.HARD
    assert soft.filtering == "linear"
    assert hard.filtering == "nearest"
    assert len(soft) == 256


def test_hard_table_is_quantized_to_8_bits():
    soft, hard = build_lookup_tables(_labelmap((3, (0.33, 0.5, 0.2), 0.6)))

    assert soft[3] == pytest.approx((0.33, 0.5, 0.2, 0.6))
    assert hard[3] == pytest.approx((84 / 255.0, 128 / 255.0, 51 / 255.0, 153 / 255.0))
    steps = hard.rgba.astype(np.float64) * 255.0
    np.testing.assert_allclose(steps, np.rint(steps), atol=1e-3)


def test_hard_table_clamps_out_of_range_colours():
    _, hard = build_lookup_tables(_labelmap((2, (1.5, -0.2, 0.0), 2.0)))

    assert hard[2] == pytest.approx((1.0, 0.0, 0.0, 1.0))


def test_later_entries_win_on_duplicate_labels():
    soft, _ = build_lookup_tables(
        _labelmap((4, (1.0, 0.0, 0.0), 1.0, "first"), (4, (0.0, 0.0, 1.0), 0.25, "second"))
    )

    assert soft[4] == (0.0, 0.0, 1.0, 0.25)


def test_two_entries_on_label_seven_last_wins():
    soft, _ = build_lookup_tables(
        _labelmap((7, (1.0, 0.0, 0.0), 1.0), (7, (0.0, 1.0, 0.0), 0.5))
    )

    assert soft[7] == (0.0, 1.0, 0.0, 0.5)


def test_out_of_range_labels_are_clamped_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="vrdf_volume.lookup"):
        soft, _ = build_lookup_tables(
            _labelmap((300, (1.0, 1.0, 1.0), 1.0, "high"), (-4, (0.0, 1.0, 0.0), 1.0, "low"))
        )

    assert soft[255] == (1.0, 1.0, 1.0, 1.0)
    assert soft[0] == (0.0, 1.0, 0.0, 1.0)
    assert "clamped to 255" in caplog.text
    assert "clamped to 0" in caplog.text


def test_clamp_label():
    assert clamp_label(-1) == 0
    assert clamp_label(12) == 12
    assert clamp_label(1000) == 255


def test_continuous_transfer_function_gives_transparent_tables():
    tf = TransferFunction(
        kind="continuous",
        curve=(CurvePoint(0.0, (0.0, 0.0, 0.0), 0.0), CurvePoint(1.0, (1.0, 1.0, 1.0), 1.0)),
    )

    soft, hard = build_lookup_tables(tf)

    assert not soft.rgba.any()
    assert not hard.rgba.any()


def test_labelmap_without_entries_is_transparent():
    soft, hard = build_lookup_tables(TransferFunction())

    assert not soft.rgba.any()
    assert not hard.rgba.any()


def test_tables_are_read_only():
    soft, hard = build_lookup_tables(_labelmap((1, (1.0, 0.0, 0.0), 1.0)))

    for table in (soft, hard):
        with pytest.raises(ValueError):
            table.rgba[1, 0] = 0.0


def test_transparent_tables_pair():
    soft, hard = transparent_tables()

    assert soft.profile is LookupProfile.SOFT
    assert hard.profile is LookupProfile.HARD
    assert soft[10] == (0.0, 0.0, 0.0, 0.0)


def test_lookup_table_rejects_wrong_shape():
    with pytest.raises(ValueError):
        LookupTable(LookupProfile.SOFT, np.zeros((255, 4), dtype=np.float32))


def test_as_uint8_matches_hard_table():
    soft, hard = build_lookup_tables(_labelmap((9, (0.33, 0.5, 0.2), 0.6)))

    packed = soft.as_uint8()
    assert packed.dtype == np.uint8
    assert tuple(packed[9]) == (84, 128, 51, 153)
    np.testing.assert_array_equal(packed, hard.as_uint8())


def test_colormap_and_norm_map_labels_to_rows():
    soft, _ = build_lookup_tables(_labelmap((7, (0.0, 1.0, 0.0), 0.5)))

    cmap = soft.as_colormap()
    norm = soft.boundary_norm()

    assert cmap.name == "vrdf_soft"
    assert cmap.N == 256
    assert int(norm(7)) == 7
    assert cmap(int(norm(7))) == pytest.approx((0.0, 1.0, 0.0, 0.5))


@pytest.mark.parametrize(
    "value, expected",
    [
        ("soft", LookupProfile.SOFT),
        (" HARD ", LookupProfile.HARD),
        (LookupProfile.HARD, LookupProfile.HARD),
    ],
)
def test_profile_coerce(value, expected):
    assert LookupProfile.coerce(value) is expected


def test_profile_coerce_rejects_unknown_names():
    with pytest.raises(ValueError):
        LookupProfile.coerce("crisp")
