"""Data model shared by debrid clients and the torrent cache."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from debridcache.accounts import Accounts

_ZERO_TIME = "0001-01-01T00:00:00Z"
_FRACTION = re.compile(r"\.(\d+)")


def parse_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp; empty or zero timestamps become None."""
    if not value or value.startswith("0001-01-01"):
        return None
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time(value: datetime | None) -> str:
    """Format a timestamp as RFC 3339; None becomes the zero timestamp."""
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat()
    if value.utcoffset() == timezone.utc.utcoffset(None):
        text = text[: -len("+00:00")] + "Z"
    return text


def _remove_extension(name: str) -> str:
    return os.path.splitext(name)[0]


def _plain(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


@dataclass
class DownloadLink:
    """A generated (unrestricted) download link for a hoster link."""

    filename: str = ""
    link: str = ""
    download_link: str = ""
    generated: datetime | None = None
    size: int = 0
    id: str = ""
    expires_at: datetime | None = None

    def __str__(self) -> str:
        return self.download_link

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "link": self.link,
            "download_link": self.download_link,
            "generated": format_time(self.generated),
            "size": self.size,
            "id": self.id,
            "ExpiresAt": format_time(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DownloadLink:
        return cls(
            filename=data.get("filename") or "",
            link=data.get("link") or "",
            download_link=data.get("download_link") or "",
            generated=parse_time(data.get("generated")),
            size=data.get("size") or 0,
            id=data.get("id") or "",
            expires_at=parse_time(data.get("ExpiresAt")),
        )


@dataclass
class File:
    """One file inside a torrent on a debrid service."""

    torrent_id: str = ""
    id: str = ""
    name: str = ""
    size: int = 0
    is_rar: bool = False
    byte_range: tuple[int, int] | None = None
    path: str = ""
    link: str = ""
    account_id: str = ""
    generated: datetime | None = None
    deleted: bool = False
    download_link: DownloadLink | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "torrent_id": self.torrent_id,
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "is_rar": self.is_rar,
        }
        if self.byte_range is not None:
            data["byte_range"] = list(self.byte_range)
        data.update(
            path=self.path,
            link=self.link,
            account_id=self.account_id,
            generated=format_time(self.generated),
            deleted=self.deleted,
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> File:
        byte_range = data.get("byte_range")
        return cls(
            torrent_id=data.get("torrent_id") or "",
            id=data.get("id") or "",
            name=data.get("name") or "",
            size=data.get("size") or 0,
            is_rar=bool(data.get("is_rar")),
            byte_range=(int(byte_range[0]), int(byte_range[1])) if byte_range else None,
            path=data.get("path") or "",
            link=data.get("link") or "",
            account_id=data.get("account_id") or "",
            generated=parse_time(data.get("generated")),
            deleted=bool(data.get("deleted")),
        )


@dataclass
class Torrent:
    """A torrent as known to a debrid service."""

    id: str = ""
    info_hash: str = ""
    name: str = ""
    folder: str = ""
    filename: str = ""
    original_filename: str = ""
    size: int = 0
    bytes: int = 0
    magnet: Any = None
    files: dict[str, File] = field(default_factory=dict)
    status: str = ""
    added: str = ""
    progress: float = 0.0
    speed: int = 0
    seeders: int = 0
    links: list[str] = field(default_factory=list)
    mount_path: str = ""
    deleted_files: list[str] = field(default_factory=list)
    debrid: str = ""
    arr: Any = None
    size_downloaded: int = 0
    download_uncached: bool = False

    def get_file(self, filename: str) -> File | None:
        """Return the named file unless it is missing or marked deleted."""
        found = self.files.get(filename)
        if found is None or found.deleted:
            return None
        return found

    def get_files(self) -> list[File]:
        return [f for f in self.files.values() if not f.deleted]

    def get_symlink_folder(self, parent: str) -> str:
        if isinstance(self.arr, dict):
            arr_name = self.arr.get("name")
        else:
            arr_name = getattr(self.arr, "name", None)
        if arr_name is None:
            raise ValueError("torrent has no arr")
        return os.path.join(parent, arr_name, self.folder)

    def get_mount_folder(self, rclone_path: str) -> str:
        """Return the first candidate folder name present under the mount."""
        candidates = (
            self.original_filename,
            self.filename,
            _remove_extension(self.original_filename),
        )
        for candidate in candidates:
            if os.path.exists(os.path.join(rclone_path, candidate)):
                return candidate
        raise FileNotFoundError("no path found")

    def cleanup(self, remove: bool) -> None:
        if remove:
            try:
                os.remove(self.filename)
            except OSError:
                pass

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "info_hash": self.info_hash,
            "name": self.name,
            "folder": self.folder,
            "filename": self.filename,
            "original_filename": self.original_filename,
            "size": self.size,
            "bytes": self.bytes,
            "magnet": _plain(self.magnet),
            "files": {name: f.to_dict() for name, f in self.files.items()},
            "status": self.status,
            "added": self.added,
            "progress": self.progress,
            "speed": self.speed,
            "seeders": self.seeders,
            "links": list(self.links),
            "mount_path": self.mount_path,
            "deleted_files": list(self.deleted_files),
            "debrid": self.debrid,
            "arr": _plain(self.arr),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Torrent:
        files = data.get("files") or {}
        return cls(
            id=data.get("id") or "",
            info_hash=data.get("info_hash") or "",
            name=data.get("name") or "",
            folder=data.get("folder") or "",
            filename=data.get("filename") or "",
            original_filename=data.get("original_filename") or "",
            size=data.get("size") or 0,
            bytes=data.get("bytes") or 0,
            magnet=data.get("magnet"),
            files={name: File.from_dict(f) for name, f in files.items()},
            status=data.get("status") or "",
            added=data.get("added") or "",
            progress=float(data.get("progress") or 0),
            speed=data.get("speed") or 0,
            seeders=data.get("seeders") or 0,
            links=list(data.get("links") or []),
            mount_path=data.get("mount_path") or "",
            deleted_files=list(data.get("deleted_files") or []),
            debrid=data.get("debrid") or "",
            arr=data.get("arr"),
        )


@dataclass
class IngestData:
    debrid: str = ""
    name: str = ""
    hash: str = ""
    size: int = 0


@dataclass
class Profile:
    name: str = ""
    id: int = 0
    username: str = ""
    email: str = ""
    points: int = 0
    type: str = ""
    premium: int = 0
    expiration: datetime | None = None
    library_size: int = 0
    bad_torrents: int = 0
    active_links: int = 0


class Client(Protocol):
    """What the cache expects of a debrid service client. Failures raise."""

    name: str
    accounts: Accounts
    download_uncached: bool
    mount_path: str

    def submit_magnet(self, torrent: Torrent) -> Torrent | None: ...

    def check_status(self, torrent: Torrent) -> Torrent | None: ...

    def get_file_download_links(self, torrent: Torrent) -> None: ...

    def get_download_link(self, torrent: Torrent, file: File) -> DownloadLink | None: ...

    def delete_torrent(self, torrent_id: str) -> None: ...

    def is_available(self, hashes: list[str]) -> dict[str, bool]: ...

    def update_torrent(self, torrent: Torrent) -> None: ...

    def get_torrent(self, torrent_id: str) -> Torrent: ...

    def get_torrents(self) -> list[Torrent]: ...

    def get_downloading_status(self) -> list[str]: ...

    def get_download_links(self) -> dict[str, DownloadLink]: ...

    def check_link(self, link: str) -> None: ...

    def delete_download_link(self, link_id: str) -> None: ...

    def get_profile(self) -> Profile | None: ...

    def get_available_slots(self) -> int: ...