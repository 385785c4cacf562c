import re
from datetime import datetime, timedelta, timezone

import pytest

from debridcache.listing import (
    CachedTorrent,
    DirectoryFilter,
    FilterType,
    TorrentCache,
    merge_files,
    parse_duration,
)
from debridcache.models import File, Torrent

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make(tid, name, added=NOW, bad=False, size=0, files=None):
    torrent = Torrent(id=tid, name=name, filename=name, bytes=size, files=files or {})
    return CachedTorrent(torrent=torrent, added_on=added, is_complete=True, bad=bad)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("300ms", timedelta(milliseconds=300)),
        ("-2h", timedelta(hours=-2)),
        ("0", timedelta(0)),
        ("1.5s", timedelta(seconds=1.5)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "10", "5x", "h"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_merge_files_latest_wins_and_skips_deleted():
    old = make("1", "a", added=NOW - timedelta(days=1), files={
        "x": File(name="x", link="old"),
        "y": File(name="y", link="y1"),
    })
    new = make("2", "a", added=NOW, files={
        "x": File(name="x", link="new"),
        "z": File(name="z", link="z", deleted=True),
    })
    merged = merge_files(new, old)
    assert set(merged) == {"x", "y"}
    assert merged["x"].link == "new"


def test_copy_shares_torrent_and_delegates():
    cached = make("7", "movie")
    clone = cached.copy()
    assert clone is not cached
    assert clone.torrent is cached.torrent
    assert clone.id == "7"
    clone.bad = True
    assert cached.bad is False


def test_cached_torrent_round_trip():
    cached = make("9", "show", files={"e1": File(name="e1", link="l", torrent_id="9")})
    cached.bad = True
    restored = CachedTorrent.from_dict(cached.to_dict())
    assert restored.id == "9"
    assert restored.added_on == cached.added_on
    assert restored.bad is True
    assert restored.files["e1"].link == "l"


@pytest.mark.parametrize(
    "kind, value, name, expected",
    [
        ("include", "movie", "My.Movie", True),
        ("exclude", "movie", "My.Movie", False),
        ("starts_with", "my", "My.Movie", True),
        ("not_starts_with", "my", "My.Movie", False),
        ("ends_with", "movie", "My.Movie", True),
        ("not_ends_with", "movie", "My.Movie", False),
        ("exact_match", "my.movie", "My.Movie", True),
        ("not_exact_match", "my.movie", "My.Movie", False),
        ("regex", r"s\d+e\d+", "Show.S01E02", True),
        ("not_regex", r"s\d+e\d+", "Show.S01E02", False),
        ("unknown", "x", "x", False),
    ],
)
def test_filter_name_matching(kind, value, name, expected):
    flt = DirectoryFilter.from_config(kind, value)
    assert flt.matches(name, 0, NOW, NOW) is expected


def test_filter_size_and_age():
    gt = DirectoryFilter.from_config("size_gt", "100")
    lt = DirectoryFilter.from_config("size_lt", "100")
    assert gt.filter_type is FilterType.SIZE_GT
    assert gt.matches("a", 101, NOW, NOW) and not gt.matches("a", 100, NOW, NOW)
    assert lt.matches("a", 99, NOW, NOW) and not lt.matches("a", 100, NOW, NOW)
    recent = DirectoryFilter.from_config("last_added", "1h")
    assert recent.matches("a", 0, NOW - timedelta(minutes=30), NOW)
    assert not recent.matches("a", 0, NOW - timedelta(hours=2), NOW)
    assert not recent.matches("a", 0, None, NOW)


def test_bad_regex_raises():
    with pytest.raises(re.error):
        DirectoryFilter.from_config("regex", "(")


def test_set_get_and_sorted_listing():
    tc = TorrentCache()
    tc.set("b", make("2", "b"))
    tc.set("a", make("1", "a"))
    assert tc.get_by_id("1").name == "a"
    assert tc.get_by_name("b").id == "2"
    assert [f.name for f in tc.get_listing()] == ["a", "b"]
    assert all(f.is_dir for f in tc.get_listing())
    assert tc.count() == 2
    assert tc.get_ids() == {"1", "2"}


def test_bad_folder_and_custom_folder():
    tc = TorrentCache({"movies": [DirectoryFilter.from_config("include", "movie")]})
    tc.set("My.Movie", make("1", "My.Movie"))
    tc.set("show", make("2", "show", bad=True))
    tc.refresh_listing()
    assert [f.name for f in tc.get_folder_listing("__bad__")] == ["show || 2"]
    assert [f.id for f in tc.get_folder_listing("movies")] == ["1"]
    assert tc.get_folder_listing("nothing") == []
    tc.remove("My.Movie")
    tc.refresh_listing()
    assert tc.get_folder_listing("movies") == []


def test_remove_and_reset():
    tc = TorrentCache()
    tc.set("a", make("1", "a"))
    tc.remove_id("1")
    assert tc.get_by_id("1") is None
    assert tc.get_by_name("a") is not None and tc.get_by_name("a").id == "1"
    tc.remove("a")
    assert tc.get_listing() == []
    tc.set("c", make("3", "c"))
    tc.reset()
    assert tc.get_all() == {} and tc.get_all_by_name() == {}