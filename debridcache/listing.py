"""In-memory torrent index with sorted directory listings and folder filters."""

from __future__ import annotations

import re
import stat
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from debridcache.models import File, Torrent, format_time, parse_time

_DIR_MODE = stat.S_IFDIR | 0o755
_EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)
BAD_FOLDER = "__bad__"

_DURATION_UNITS_US = {
    "ns": 0.001,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1_000.0,
    "s": 1_000_000.0,
    "m": 60_000_000.0,
    "h": 3_600_000_000.0,
}
_DURATION_TOKEN = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_FULL = re.compile(rf"[-+]?(?:{_DURATION_TOKEN})+")
_DURATION_PART = re.compile(_DURATION_TOKEN)

_SIZE = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([kmgt]?)(?:i?b)?\s*", re.IGNORECASE)
_SIZE_FACTORS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"300ms"`` or ``"-2h"``."""
    text = text.strip()
    if text in ("0", "+0", "-0"):
        return timedelta(0)
    if not _DURATION_FULL.fullmatch(text):
        raise ValueError(f"invalid duration {text!r}")
    sign = -1 if text.startswith("-") else 1
    total = sum(
        float(number) * _DURATION_UNITS_US[unit]
        for number, unit in _DURATION_PART.findall(text)
    )
    return timedelta(microseconds=sign * total)


def _parse_size(text: str) -> int:
    match = _SIZE.fullmatch(text)
    if match is None:
        return 0
    return int(float(match.group(1)) * _SIZE_FACTORS[match.group(2).lower()])


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class CachedTorrent:
    """A torrent held in the cache, with the cache's own bookkeeping.

    Attributes not defined here are read from the wrapped torrent.
    """

    torrent: Torrent
    added_on: datetime | None = None
    is_complete: bool = False
    bad: bool = False

    def __getattr__(self, name: str) -> Any:
        if name == "torrent":
            raise AttributeError(name)
        return getattr(self.torrent, name)

    def copy(self) -> CachedTorrent:
        """Shallow copy; the wrapped torrent is shared."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data = self.torrent.to_dict()
        data.update(
            added_on=format_time(self.added_on),
            is_complete=self.is_complete,
            bad=self.bad,
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedTorrent:
        return cls(
            torrent=Torrent.from_dict(data),
            added_on=parse_time(data.get("added_on")),
            is_complete=bool(data.get("is_complete")),
            bad=bool(data.get("bad")),
        )


@dataclass(frozen=True)
class FileInfo:
    """A directory entry in a listing."""

    id: str
    name: str
    size: int
    mod_time: datetime | None
    mode: int = _DIR_MODE
    is_dir: bool = True


class FilterType(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    NOT_STARTS_WITH = "not_starts_with"
    NOT_ENDS_WITH = "not_ends_with"
    REGEX = "regex"
    NOT_REGEX = "not_regex"
    EXACT_MATCH = "exact_match"
    NOT_EXACT_MATCH = "not_exact_match"
    SIZE_GT = "size_gt"
    SIZE_LT = "size_lt"
    LAST_ADDED = "last_added"


@dataclass
class DirectoryFilter:
    """One condition a torrent must meet to appear in a custom folder."""

    filter_type: FilterType | str
    value: str
    regex: re.Pattern[str] | None = None
    size_threshold: int = 0
    age_threshold: timedelta = field(default_factory=timedelta)

    @classmethod
    def from_config(cls, filter_type: str, value: str) -> DirectoryFilter:
        """Build a filter from its configured type and value.

        An invalid regular expression raises ``re.error``; unreadable sizes and
        durations become zero. Unknown types never match.
        """
        try:
            kind: FilterType | str = FilterType(filter_type)
        except ValueError:
            kind = filter_type
        result = cls(filter_type=kind, value=value)
        if kind in (FilterType.REGEX, FilterType.NOT_REGEX):
            result.regex = re.compile(value)
        elif kind in (FilterType.SIZE_GT, FilterType.SIZE_LT):
            result.size_threshold = _parse_size(value)
        elif kind is FilterType.LAST_ADDED:
            try:
                result.age_threshold = parse_duration(value)
            except ValueError:
                result.age_threshold = timedelta(0)
        return result

    def _pattern(self) -> re.Pattern[str]:
        if self.regex is None:
            self.regex = re.compile(self.value)
        return self.regex

    def matches(self, name: str, size: int, added_on: datetime | None, now: datetime) -> bool:
        name = name.lower()
        kind = self.filter_type
        value = self.value
        if kind is FilterType.INCLUDE:
            return value in name
        if kind is FilterType.EXCLUDE:
            return value not in name
        if kind is FilterType.STARTS_WITH:
            return name.startswith(value)
        if kind is FilterType.NOT_STARTS_WITH:
            return not name.startswith(value)
        if kind is FilterType.ENDS_WITH:
            return name.endswith(value)
        if kind is FilterType.NOT_ENDS_WITH:
            return not name.endswith(value)
        if kind is FilterType.EXACT_MATCH:
            return name == value
        if kind is FilterType.NOT_EXACT_MATCH:
            return name != value
        if kind is FilterType.REGEX:
            return self._pattern().search(name) is not None
        if kind is FilterType.NOT_REGEX:
            return self._pattern().search(name) is None
        if kind is FilterType.SIZE_GT:
            return size > self.size_threshold
        if kind is FilterType.SIZE_LT:
            return size < self.size_threshold
        if kind is FilterType.LAST_ADDED:
            added = _aware(added_on)
            return added is not None and added > _aware(now) - self.age_threshold
        return False


def merge_files(*args: CachedTorrent) -> dict[str, File]:
    """Merge live files of several torrents by name; the latest added wins."""
    ordered = sorted(args, key=lambda t: _aware(t.added_on) or _EPOCH_MIN)
    merged: dict[str, File] = {}
    for cached in ordered:
        for f in cached.torrent.get_files():
            merged[f.name] = f
    return merged


class TorrentCache:
    """Torrents indexed by id and by folder name, with cached listings."""

    def __init__(self, directory_filters: dict[str, list[DirectoryFilter]] | None = None) -> None:
        self._lock = threading.RLock()
        self._filters = dict(directory_filters or {})
        self._by_id: dict[str, CachedTorrent] = {}
        self._by_name: dict[str, CachedTorrent] = {}
        self._listing: list[FileInfo] = []
        self._folders: dict[str, list[FileInfo]] = {}
        self._sort_needed = False

    def reset(self) -> None:
        with self._lock:
            self._by_id = {}
            self._by_name = {}
            self._listing = []
            self._folders = {}
            self._sort_needed = False

    def get_by_id(self, torrent_id: str) -> CachedTorrent | None:
        with self._lock:
            return self._by_id.get(torrent_id)

    def get_by_name(self, name: str) -> CachedTorrent | None:
        with self._lock:
            return self._by_name.get(name)

    def set(self, name: str, torrent: CachedTorrent) -> None:
        with self._lock:
            self._by_name[name] = torrent
            self._by_id[torrent.torrent.id] = torrent
            self._sort_needed = True

    def get_listing(self) -> list[FileInfo]:
        """All folders sorted by name, refreshed first if anything changed."""
        with self._lock:
            if self._sort_needed:
                self.refresh_listing()
            return list(self._listing)

    def get_folder_listing(self, folder_name: str) -> list[FileInfo]:
        if not folder_name:
            return self.get_listing()
        with self._lock:
            return list(self._folders.get(folder_name, []))

    def refresh_listing(self) -> None:
        """Rebuild the full listing, the bad folder and every custom folder."""
        with self._lock:
            entries = sorted(
                (
                    (name, _aware(t.added_on) or _EPOCH_MIN, t)
                    for name, t in self._by_name.items()
                ),
                key=lambda entry: (entry[0], entry[1]),
            )
            self._sort_needed = False

            self._listing = [
                FileInfo(id=t.torrent.id, name=name, size=t.torrent.bytes, mod_time=t.added_on)
                for name, _, t in entries
            ]

            bad = [
                FileInfo(
                    id=t.torrent.id,
                    name=f"{name} || {t.torrent.id}",
                    size=t.torrent.bytes,
                    mod_time=t.added_on,
                )
                for name, _, t in entries
                if t.bad
            ]
            self._set_folder(BAD_FOLDER, bad)

            now = datetime.now(timezone.utc)
            for folder, filters in self._filters.items():
                matched = [
                    FileInfo(id=t.torrent.id, name=name, size=t.torrent.bytes, mod_time=t.added_on)
                    for name, _, t in entries
                    if all(f.matches(name, t.torrent.bytes, t.added_on, now) for f in filters)
                ]
                self._set_folder(folder, matched)

    def _set_folder(self, folder: str, entries: list[FileInfo]) -> None:
        if entries:
            self._folders[folder] = entries
        else:
            self._folders.pop(folder, None)

    def get_all(self) -> dict[str, CachedTorrent]:
        with self._lock:
            return dict(self._by_id)

    def count(self) -> int:
        with self._lock:
            return len(self._by_id)

    def get_all_by_name(self) -> dict[str, CachedTorrent]:
        with self._lock:
            return dict(self._by_name)

    def get_ids(self) -> set[str]:
        with self._lock:
            return set(self._by_id)

    def remove_id(self, torrent_id: str) -> None:
        with self._lock:
            self._by_id.pop(torrent_id, None)
            self._sort_needed = True

    def remove(self, name: str) -> None:
        with self._lock:
            self._by_name.pop(name, None)
            self._sort_needed = True