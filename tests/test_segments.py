from pathlib import Path

import pytest

from cliptr.src.errors import InvalidRange, RangeNotFound
from cliptr.src.segments import (
    MANIFEST_NAME,
    read_manifest,
    regenerate_manifest,
    segment_index,
    select_window,
    write_concat_list,
)

from conftest import add_segments


def _manifest(count):
    return [Path(f"/library/s/segments/segment_{i:03d}.ts") for i in range(count)]


def test_window_spans_every_intersecting_segment():
    window = select_window(_manifest(5), 50, 130, 60)

    assert [segment_index(p) for p in window.paths] == [0, 1, 2]
    assert window.start_index == 0
    assert window.end_index == 2
    assert window.seek == 50
    assert window.cutoff == 130


def test_window_on_segment_boundaries():
    window = select_window(_manifest(5), 120, 180, 60)

    assert [segment_index(p) for p in window.paths] == [2]
    assert window.seek == 0
    assert window.cutoff == 60


def test_window_clamped_to_captured_segments():
    window = select_window(_manifest(5), 200, 400, 60)

    assert [segment_index(p) for p in window.paths] == [3, 4]
    assert window.seek == pytest.approx(20)
    assert window.cutoff == pytest.approx(220)


def test_range_beyond_capture():
    with pytest.raises(RangeNotFound) as exc:
        select_window(_manifest(5), 400, 450, 60)
    assert exc.value.status_code == 416


@pytest.mark.parametrize("start,end", [
    (10, 10), (30, 20), (-1, 20), (0, float("inf")), (float("nan"), 10), (0, float("nan")),
])
def test_malformed_range(start, end):
    with pytest.raises(InvalidRange) as exc:
        select_window(_manifest(5), start, end, 60)
    assert type(exc.value) is InvalidRange
    assert exc.value.status_code == 400


@pytest.mark.parametrize("duration", [0, -60, float("nan"), float("inf")])
def test_unusable_segment_duration(duration):
    with pytest.raises(InvalidRange):
        select_window(_manifest(5), 0, 10, duration)


def test_read_manifest_resolves_bare_names(tmp_path):
    add_segments(tmp_path, 3)

    paths = read_manifest(tmp_path / "segments")

    assert paths == [tmp_path / "segments" / f"segment_{i:03d}.ts" for i in range(3)]


def test_missing_manifest_is_regenerated_in_index_order(tmp_path):
    segments_dir = tmp_path / "segments"
    segments_dir.mkdir()
    for index in (10, 2, 1):
        (segments_dir / f"segment_{index:03d}.ts").write_bytes(b"x")

    paths = read_manifest(segments_dir)

    assert [segment_index(p) for p in paths] == [1, 2, 10]
    lines = (segments_dir / MANIFEST_NAME).read_text().splitlines()
    assert len(lines) == 3
    assert all(Path(line).is_absolute() for line in lines)


def test_regenerate_with_no_segments(tmp_path):
    (tmp_path / "segments").mkdir()

    assert regenerate_manifest(tmp_path / "segments") == []
    assert not (tmp_path / "segments" / MANIFEST_NAME).exists()


def test_concat_list_escapes_quotes(tmp_path):
    quoted = tmp_path / "it's here"
    quoted.mkdir()
    segment = quoted / "segment_000.ts"
    segment.write_bytes(b"x")

    list_path = write_concat_list(tmp_path / "list.txt", [segment])

    content = list_path.read_text()
    assert content.startswith("file '")
    assert "it'\\''s here" in content
