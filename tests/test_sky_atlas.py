from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from sky_atlas import (
    FACES,
    convert_atlas,
    hsv_to_rgb,
    recode_alpha,
    rgb_to_hsv,
    split_atlas,
    write_placeholders,
)
from sky_settings import ConverterSettings


def _atlas(width: int, height: int, alpha: int = 255) -> np.ndarray:
    rng = np.random.default_rng(7)
    atlas = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    atlas[..., 3] = alpha
    return atlas


def test_rgb_to_hsv_primaries() -> None:
    assert [float(c) for c in rgb_to_hsv(255, 0, 0)] == pytest.approx([0.0, 100.0, 100.0])
    assert [float(c) for c in rgb_to_hsv(0, 255, 0)] == pytest.approx([120.0, 100.0, 100.0])
    assert [float(c) for c in rgb_to_hsv(0, 0, 255)] == pytest.approx([240.0, 100.0, 100.0])


def test_rgb_to_hsv_grey_and_black_have_no_hue() -> None:
    h, s, v = rgb_to_hsv(128, 128, 128)
    assert float(h) == 0.0
    assert float(s) == 0.0
    assert float(v) == pytest.approx(128 * 20 / 51)

    h, s, v = rgb_to_hsv(0, 0, 0)
    assert (float(h), float(s), float(v)) == (0.0, 0.0, 0.0)


def test_rgb_to_hsv_wraps_negative_hue() -> None:
    h, _, _ = rgb_to_hsv(255, 0, 128)
    assert 300.0 <= float(h) < 360.0


def test_hsv_to_rgb_each_sextant() -> None:
    expected = {
        0: (255, 0, 0),
        60: (255, 255, 0),
        120: (0, 255, 0),
        180: (0, 255, 255),
        240: (0, 0, 255),
        300: (255, 0, 255),
    }
    for hue, rgb in expected.items():
        assert [float(c) for c in hsv_to_rgb(hue, 100, 100)] == pytest.approx(rgb)


def test_color_round_trip_within_one() -> None:
    values = np.arange(0, 256, 5)
    r, g, b = (axis.ravel() for axis in np.meshgrid(values, values, values, indexing="ij"))

    back = hsv_to_rgb(*rgb_to_hsv(r, g, b))

    for original, converted in zip((r, g, b), back):
        assert np.max(np.abs(np.rint(converted) - original)) <= 1


def test_recode_alpha_disabled_is_identity() -> None:
    face = _atlas(4, 4)
    before = face.copy()

    recode_alpha(face, enabled=False)

    np.testing.assert_array_equal(face, before)


def test_recode_alpha_moves_brightness_into_alpha() -> None:
    face = np.array(
        [[[128, 128, 128, 255], [0, 0, 0, 255], [255, 0, 0, 255], [10, 20, 30, 100]]],
        dtype=np.uint8,
    )

    recode_alpha(face, enabled=True)

    assert face[0, 0].tolist() == [255, 255, 255, 128]
    assert face[0, 1].tolist() == [255, 255, 255, 0]
    assert face[0, 2].tolist() == [255, 0, 0, 255]
    # already translucent, left alone
    assert face[0, 3].tolist() == [10, 20, 30, 100]


def test_recode_alpha_is_idempotent() -> None:
    face = _atlas(16, 16)
    face[::2, ::3, 3] = 77
    face[0, 0] = [255, 40, 90, 255]

    once = recode_alpha(face.copy(), enabled=True)
    twice = recode_alpha(once.copy(), enabled=True)

    np.testing.assert_array_equal(once, twice)


def test_split_dimensions() -> None:
    k, m = 4, 3
    faces = split_atlas(_atlas(3 * k, 2 * m), transparent=False)

    assert set(faces) == set(FACES)
    for name, face in faces.items():
        height, width = face.shape[:2]
        assert width * height == k * m
        if name in ("top", "bottom"):
            assert (width, height) == (m, k)
        else:
            assert (width, height) == (k, m)


def test_split_rotates_marker_pixels() -> None:
    outw, outh = 4, 3
    atlas = np.zeros((2 * outh, 3 * outw, 4), dtype=np.uint8)
    marker = [255, 1, 2, 255]
    # band1 (top) at band coords x=1, y=0
    atlas[0, outw + 1] = marker
    # band0 (bottom) at band coords x=0, y=2
    atlas[2, 0] = marker
    # band4 (north) at band coords x=2, y=1
    atlas[outh + 1, outw + 2] = marker

    faces = split_atlas(atlas, transparent=False)

    # clockwise: (x, y) -> (outh - 1 - y, x)
    assert np.argwhere(faces["top"][..., 0] == 255).tolist() == [[1, outh - 1 - 0]]
    # counter-clockwise: (x, y) -> (y, outw - 1 - x)
    assert np.argwhere(faces["bottom"][..., 0] == 255).tolist() == [[outw - 1 - 0, 2]]
    assert np.argwhere(faces["north"][..., 0] == 255).tolist() == [[1, 2]]
    for name in ("south", "west", "east"):
        assert not faces[name].any()


def test_split_faces_do_not_share_memory() -> None:
    atlas = _atlas(6, 4)
    faces = split_atlas(atlas, transparent=False)

    faces["south"][:] = 0

    assert atlas[0:2, 4:6].any()


def test_split_crops_bad_dimensions(caplog: pytest.LogCaptureFixture) -> None:
    atlas = _atlas(13, 7)

    with caplog.at_level(logging.WARNING):
        faces = split_atlas(atlas, transparent=False, label="odd.png")

    assert "Wrong dimensions" in caplog.text
    assert faces["north"].shape == (3, 4, 4)
    np.testing.assert_array_equal(faces["east"], atlas[3:6, 8:12])


def test_convert_atlas_writes_six_faces(tmp_path: Path) -> None:
    source = tmp_path / "sky1.png"
    Image.fromarray(_atlas(12, 8)).save(source)
    output_dir = tmp_path / "out" / "sky"

    written = convert_atlas(str(source), str(output_dir), "sky1", ConverterSettings(transparent=False))

    assert sorted(written) == sorted(FACES)
    for face in FACES:
        path = output_dir / f"sky1_{face}.png"
        assert written[face] == str(path)
        with Image.open(path) as img:
            assert img.mode == "RGBA"
            assert img.size == (4, 4)


def test_convert_atlas_swaps_top_and_bottom_size(tmp_path: Path) -> None:
    source = tmp_path / "wide.png"
    Image.fromarray(_atlas(15, 4)).save(source)

    convert_atlas(str(source), str(tmp_path), "wide", ConverterSettings())

    with Image.open(tmp_path / "wide_top.png") as img:
        assert img.size == (2, 5)
    with Image.open(tmp_path / "wide_south.png") as img:
        assert img.size == (5, 2)


def test_convert_atlas_logs_decode_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    source = tmp_path / "broken.png"
    source.write_bytes(b"not a png")

    with caplog.at_level(logging.ERROR):
        written = convert_atlas(str(source), str(tmp_path / "out"), "broken", ConverterSettings())

    assert written == {}
    assert "png error" in caplog.text
    assert not (tmp_path / "out").exists()


def test_write_placeholders(tmp_path: Path) -> None:
    written = write_placeholders(str(tmp_path / "sky"), "missing")

    assert sorted(written) == sorted(FACES)
    for path in written.values():
        with Image.open(path) as img:
            assert img.size == (1, 1)
            assert img.convert("RGBA").getpixel((0, 0)) == (0, 0, 0, 255)


def test_convert_atlas_continues_after_encode_failure(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    source = tmp_path / "sky1.png"
    Image.fromarray(_atlas(6, 4)).save(source)
    output_dir = tmp_path / "out"
    # a directory where the top face should go makes that save fail
    (output_dir / "sky1_top.png").mkdir(parents=True)

    with caplog.at_level(logging.ERROR):
        written = convert_atlas(str(source), str(output_dir), "sky1", ConverterSettings())

    assert "png error" in caplog.text
    assert "top" not in written
    assert sorted(written) == sorted(face for face in FACES if face != "top")
    for path in written.values():
        assert Path(path).is_file()
