from __future__ import annotations

from pathlib import Path
import struct

import numpy as np
import pytest

from vrdf_volume.config import LoaderConfig, load_config
from vrdf_volume.container import (
    TransferFunction,
    TransferFunctionEntry,
    VolumeMetadata,
    write_container,
)
from vrdf_volume.errors import (
    DecodeError,
    DegenerateAffine,
    LoadError,
    SizeMismatch,
    UnexpectedEof,
)
from vrdf_volume.loader import VolumeLoader, find_volume, load_volume
from vrdf_volume.lookup import LookupProfile

SINGULAR = (
    (1.0, 0.0, 0.0, 0.0),
    (0.0, 0.0, 0.0, 0.0),
    (0.0, 0.0, 1.0, 0.0),
    (0.0, 0.0, 0.0, 1.0),
)


def _write_volume(path: Path, dim=(2, 2, 2), affine=None, tf=None, mode="labelmap") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    metadata = VolumeMetadata(dim=dim, spacing_mm=(1.0, 1.0, 2.0), affine=affine, mode=mode)
    if tf is None:
        tf = TransferFunction(
            entries=(
                TransferFunctionEntry(1, (1.0, 0.0, 0.0), 1.0, "tumour"),
                TransferFunctionEntry(2, (0.0, 0.33, 0.0), 0.0, "edema"),
            )
        )
    voxels = np.arange(int(np.prod(dim)), dtype=np.float32) % 3
    return write_container(path, metadata, tf, voxels)


def _corrupt(path: Path) -> Path:
    path.write_bytes(path.read_bytes()[:-1])
    return path


def test_load_volume_builds_everything(tmp_path: Path):
    path = _write_volume(tmp_path / "case_t1c.vrdf")

    volume = load_volume(path)

    assert volume.dim == (2, 2, 2)
    assert volume.voxel_view.shape == (8,)
    assert volume.is_labelmap
    assert volume.soft_lookup[1] == (1.0, 0.0, 0.0, 1.0)
    np.testing.assert_array_equal(volume.affine.forward, np.eye(4))
    assert volume.control_plane.revision == 0
    assert volume.profile is LookupProfile.SOFT
    assert volume.active_lookup is volume.soft_lookup
    assert volume.physical_size_m == pytest.approx((0.002, 0.002, 0.004))
    assert volume.intensity_window == (0.0, 1.0)


def test_lookup_profile_toggle_keeps_both_tables(tmp_path: Path):
    volume = load_volume(_write_volume(tmp_path / "a.vrdf"), profile="hard")
    assert volume.active_lookup is volume.hard_lookup

    soft = volume.set_lookup_profile(LookupProfile.SOFT)

    assert soft is volume.soft_lookup
    assert volume.label_infos[1].color[1] == pytest.approx(0.33)


def test_continuous_volume_uses_intensity_range(tmp_path: Path):
    path = tmp_path / "flair.vrdf"
    metadata = VolumeMetadata(dim=(1, 1, 2), intensity_range=(5.0, 90.0), mode="continuous")
    write_container(path, metadata, TransferFunction(kind="continuous"), [5.0, 90.0])

    volume = load_volume(path)

    assert not volume.is_labelmap
    assert volume.intensity_window == (5.0, 90.0)
    assert not volume.soft_lookup.rgba.any()


def test_empty_volume_gets_transparent_tables(tmp_path: Path):
    volume = load_volume(_write_volume(tmp_path / "empty.vrdf", dim=(0, 3, 3)))

    assert volume.voxels.is_empty
    assert not volume.soft_lookup.rgba.any()
    assert not volume.hard_lookup.rgba.any()


def test_missing_file_is_read_stage(tmp_path: Path):
    with pytest.raises(LoadError) as excinfo:
        load_volume(tmp_path / "nope.vrdf")

    assert excinfo.value.stage == "read"
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


def test_corrupt_file_is_decode_stage(tmp_path: Path):
    path = tmp_path / "bad.vrdf"
    path.write_bytes(b"NOTVRDF!" + b"\0" * 40)

    with pytest.raises(LoadError) as excinfo:
        load_volume(path)

    assert excinfo.value.stage == "decode"
    assert "BadMagic" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, DecodeError)


def test_huge_block_length_is_decode_stage(tmp_path: Path):
    path = tmp_path / "huge.vrdf"
    path.write_bytes(b"VRDF0001" + struct.pack("<Q", 0) + struct.pack("<Q", 2 ** 64 - 1) + b"{}")

    with pytest.raises(LoadError) as excinfo:
        load_volume(path)

    assert excinfo.value.stage == "decode"
    assert isinstance(excinfo.value.__cause__, UnexpectedEof)


def test_singular_affine_is_affine_stage(tmp_path: Path):
    path = _write_volume(tmp_path / "flat.vrdf", affine=SINGULAR)

    with pytest.raises(LoadError) as excinfo:
        load_volume(path)

    assert excinfo.value.stage == "affine"
    assert isinstance(excinfo.value.__cause__, DegenerateAffine)


def test_failed_load_keeps_previous_volume(tmp_path: Path):
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path))
    good = loader.load(_write_volume(tmp_path / "good.vrdf"))
    bad = _corrupt(_write_volume(tmp_path / "bad.vrdf"))

    with pytest.raises(LoadError) as excinfo:
        loader.load(bad)

    assert isinstance(excinfo.value.__cause__, (SizeMismatch, DecodeError))
    assert loader.current is good


def test_each_load_gets_a_fresh_control_plane(tmp_path: Path):
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path))
    path = _write_volume(tmp_path / "a.vrdf")
    first = loader.load(path)
    first.control_plane.solo(1)

    second = loader.load(path)

    assert second.control_plane is not first.control_plane
    assert second.control_plane.alpha(2) == 1.0


def test_loader_profile_applies_to_current_and_future_volumes(tmp_path: Path):
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path, use_hard_lookup=True))
    assert loader.profile is LookupProfile.HARD
    assert loader.set_lookup_profile("soft") is None

    volume = loader.load(_write_volume(tmp_path / "a.vrdf"))
    assert volume.profile is LookupProfile.SOFT

    table = loader.set_lookup_profile("hard")
    assert table is volume.hard_lookup


def test_find_volume_is_case_insensitive_and_sorted(tmp_path: Path):
    _write_volume(tmp_path / "b" / "Patient_T1C_2.vrdf")
    _write_volume(tmp_path / "a" / "patient_t1c_1.vrdfw")
    (tmp_path / "a" / "t1c_notes.txt").write_text("x")

    found = find_volume("t1c", tmp_path, (".vrdf", ".vrdfw"))

    assert found == tmp_path / "a" / "patient_t1c_1.vrdfw"
    assert find_volume("flair", tmp_path, (".vrdf",)) is None
    assert find_volume("t1c", tmp_path / "missing", (".vrdf",)) is None


def test_reload_by_code(tmp_path: Path):
    _write_volume(tmp_path / "sub-01" / "scene_t2w.vrdf")
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path))

    volume = loader.reload_by_code("T2W")

    assert volume.path.name == "scene_t2w.vrdf"
    assert loader.current is volume


@pytest.mark.parametrize("code", ["", "   ", "flair"])
def test_reload_by_code_unresolved_is_resolve_stage(tmp_path: Path, code):
    _write_volume(tmp_path / "scene_t2w.vrdf")
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path))
    previous = loader.reload_by_code("t2w")

    with pytest.raises(LoadError) as excinfo:
        loader.reload_by_code(code)

    assert excinfo.value.stage == "resolve"
    assert loader.current is previous


def test_load_default_uses_configured_code(tmp_path: Path):
    _write_volume(tmp_path / "scene_t1c.vrdf")
    loader = VolumeLoader(LoaderConfig(volume_root=tmp_path))

    assert loader.load_default().path.name == "scene_t1c.vrdf"


def test_load_in_background(tmp_path: Path):
    path = _write_volume(tmp_path / "a.vrdf")

    with VolumeLoader(LoaderConfig(volume_root=tmp_path)) as loader:
        volume = loader.load_in_background(path).result(timeout=30)
        assert loader.current is volume


def test_background_failure_surfaces_through_future(tmp_path: Path):
    with VolumeLoader(LoaderConfig(volume_root=tmp_path)) as loader:
        future = loader.load_in_background(tmp_path / "missing.vrdf")
        with pytest.raises(LoadError):
            future.result(timeout=30)
        assert loader.current is None


def test_load_config(tmp_path: Path, caplog):
    cfg = tmp_path / "viewer.yaml"
    cfg.write_text(
        "volume_root: volumes\n"
        "default_code: flair\n"
        "use_hard_lookup: true\n"
        "extensions: [VRDF]\n"
        "window_size: 3\n"
    )

    config = load_config(cfg)

    assert config.volume_root == tmp_path / "volumes"
    assert config.default_code == "flair"
    assert config.use_hard_lookup is True
    assert config.extensions == (".vrdf",)
    assert "window_size" in caplog.text


def test_load_config_rejects_non_mapping(tmp_path: Path):
    cfg = tmp_path / "viewer.yaml"
    cfg.write_text("- a\n- b\n")

    with pytest.raises(ValueError):
        load_config(cfg)
