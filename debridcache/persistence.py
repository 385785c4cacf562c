"""On-disk store of cached torrents, one JSON document per torrent."""

from __future__ import annotations

import json
import logging
import os
import posixpath
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from debridcache.listing import CachedTorrent
from debridcache.models import parse_time

logger = logging.getLogger(__name__)

_TRASH = "trash"


class TorrentStore:
    """Reads and writes ``<id>.json`` files in one cache directory."""

    def __init__(self, directory: str | os.PathLike[str], workers: int = 1) -> None:
        self.directory = Path(directory)
        self.workers = max(1, int(workers))

    def _path(self, torrent_id: str) -> Path:
        return self.directory / f"{torrent_id}.json"

    def load(self) -> dict[str, CachedTorrent]:
        """Load every complete torrent from the directory, keyed by id.

        Files that cannot be read or parsed, torrents without live files and
        torrents with a file lacking a link are skipped.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        paths = sorted(
            p for p in self.directory.iterdir() if p.is_file() and p.suffix == ".json"
        )
        if not paths:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.workers, len(paths))) as pool:
            loaded = list(pool.map(self._read, paths))
        return {cached.torrent.id: cached for cached in loaded if cached is not None}

    def _read(self, path: Path) -> CachedTorrent | None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            cached = CachedTorrent.from_dict(data)
        except OSError:
            logger.error("Failed to read file: %s", path, exc_info=True)
            return None
        except (ValueError, TypeError, AttributeError, KeyError, IndexError):
            logger.error("Failed to unmarshal file: %s", path, exc_info=True)
            return None

        torrent = cached.torrent
        live = torrent.get_files()
        if not live or any(not f.link for f in live):
            return None

        for f in live:
            f.torrent_id = torrent.id
        try:
            added = parse_time(torrent.added)
        except ValueError:
            added = None
        if added is not None:
            cached.added_on = added
        cached.is_complete = True
        torrent.files = {f.name: f for f in live}
        torrent.name = posixpath.normpath(torrent.name)
        return cached

    def save(self, torrent: CachedTorrent) -> None:
        """Write one torrent atomically; failures are logged."""
        torrent_id = torrent.torrent.id
        try:
            payload = json.dumps(torrent.to_dict(), indent=2)
        except (TypeError, ValueError):
            logger.error("Failed to marshal torrent: %s", torrent_id, exc_info=True)
            return

        target = self._path(torrent_id)
        tmp = target.with_name(f"{target.name}.tmp.{time.time_ns()}")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp, target)
        except OSError:
            logger.error("Failed to save torrent file: %s", target, exc_info=True)
        finally:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.debug("Failed to remove temporary file: %s", tmp, exc_info=True)

    def save_all(
        self, torrents: Mapping[str, CachedTorrent] | Iterable[CachedTorrent]
    ) -> None:
        items = torrents.values() if isinstance(torrents, Mapping) else torrents
        for cached in items:
            self.save(cached)

    def remove(self, torrent_id: str, move_to_trash: bool = False) -> None:
        """Delete a torrent's file, or move it into the trash folder."""
        path = self._path(torrent_id)
        if not path.exists():
            return
        if not move_to_trash:
            try:
                path.unlink()
            except OSError:
                logger.error("Failed to remove file: %s", path, exc_info=True)
            return
        trash = self.directory / _TRASH / path.name
        try:
            trash.parent.mkdir(parents=True, exist_ok=True)
            os.replace(path, trash)
        except OSError:
            logger.debug("Failed to move %s to trash", path, exc_info=True)