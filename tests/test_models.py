import os
from datetime import datetime, timedelta, timezone

import pytest

from debridcache.models import (
    DownloadLink,
    File,
    Torrent,
    format_time,
    parse_time,
)


def _sample_torrent():
    generated = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    files = {
        "a.mkv": File(torrent_id="t1", id="1", name="a.mkv", size=10, path="a.mkv",
                      link="https://host/a", generated=generated),
        "b.mkv": File(torrent_id="t1", id="2", name="b.mkv", size=20, path="b.mkv",
                      link="https://host/b", is_rar=True, byte_range=(5, 25)),
    }
    return Torrent(
        id="t1", info_hash="abc", name="Show", folder="Show", filename="Show",
        original_filename="Show.mkv", size=30, bytes=30, files=files,
        status="downloaded", added="2024-01-02T03:04:05Z", progress=100.0,
        links=["https://host/a", "https://host/b"], debrid="realdebrid",
        arr={"name": "sonarr"},
    )


def test_torrent_round_trip():
    torrent = _sample_torrent()
    restored = Torrent.from_dict(torrent.to_dict())
    assert restored == torrent


def test_file_round_trip_and_omits_empty_byte_range():
    f = File(torrent_id="x", name="n", link="l")
    data = f.to_dict()
    assert "byte_range" not in data
    assert data["generated"] == "0001-01-01T00:00:00Z"
    assert File.from_dict(data) == f


def test_file_byte_range_serialised_as_list():
    f = File(name="n", byte_range=(3, 9))
    assert f.to_dict()["byte_range"] == [3, 9]
    assert File.from_dict(f.to_dict()).byte_range == (3, 9)


def test_get_file_hides_deleted():
    torrent = _sample_torrent()
    torrent.files["a.mkv"].deleted = True
    assert torrent.get_file("a.mkv") is None
    assert torrent.get_file("missing") is None
    assert torrent.get_file("b.mkv").id == "2"
    assert [f.name for f in torrent.get_files()] == ["b.mkv"]


def test_symlink_folder_uses_arr_name():
    torrent = _sample_torrent()
    assert torrent.get_symlink_folder("/links") == os.path.join("/links", "sonarr", "Show")


def test_symlink_folder_without_arr_raises():
    torrent = Torrent(folder="x")
    with pytest.raises(ValueError):
        torrent.get_symlink_folder("/links")


def test_mount_folder_falls_back_to_name_without_extension(tmp_path):
    (tmp_path / "Show.S01").mkdir()
    torrent = Torrent(original_filename="Show.S01.mkv", filename="other")
    assert torrent.get_mount_folder(str(tmp_path)) == "Show.S01"


def test_mount_folder_prefers_original_filename(tmp_path):
    (tmp_path / "Show.S01.mkv").mkdir()
    (tmp_path / "Show.S01").mkdir()
    torrent = Torrent(original_filename="Show.S01.mkv", filename="Show.S01")
    assert torrent.get_mount_folder(str(tmp_path)) == "Show.S01.mkv"


def test_mount_folder_missing_raises(tmp_path):
    torrent = Torrent(original_filename="a.mkv", filename="b")
    with pytest.raises(FileNotFoundError):
        torrent.get_mount_folder(str(tmp_path))


def test_cleanup_removes_file(tmp_path):
    target = tmp_path / "file.torrent"
    target.write_text("x")
    Torrent(filename=str(target)).cleanup(True)
    assert not target.exists()


def test_parse_time_handles_zero_and_nanoseconds():
    assert parse_time("0001-01-01T00:00:00Z") is None
    assert parse_time("") is None
    parsed = parse_time("2024-05-06T07:08:09.123456789Z")
    assert parsed == datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc)


def test_format_time_round_trip():
    value = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone(timedelta(hours=2)))
    assert parse_time(format_time(value)) == value
    utc = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    assert format_time(utc).endswith("Z")


def test_download_link_str_and_round_trip():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    dl = DownloadLink(filename="f", link="l", download_link="https://dl/f",
                      generated=now, expires_at=now + timedelta(hours=1))
    assert str(dl) == "https://dl/f"
    assert DownloadLink.from_dict(dl.to_dict()) == dl