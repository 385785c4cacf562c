"""Re-inserting broken torrents and detecting files whose hoster is gone."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from urllib.parse import quote

from debridcache.concurrency import InflightRequest
from debridcache.errors import DebridError, HosterUnavailableError
from debridcache.listing import CachedTorrent
from debridcache.models import Client, File, Torrent, parse_time

logger = logging.getLogger(__name__)


class RepairType(str, Enum):
    REINSERT = "reinsert"
    DELETE = "delete"


@dataclass
class RepairRequest:
    type: RepairType
    torrent_id: str
    priority: int = 0
    file_name: str = ""


@dataclass
class _Magnet:
    info_hash: str
    name: str
    size: int = 0
    link: str = ""
    file: bytes = field(default=b"", repr=False)

    def __post_init__(self) -> None:
        if not self.link:
            self.link = f"magnet:?xt=urn:btih:{self.info_hash}&dn={quote(self.name)}"

    def is_torrent(self) -> bool:
        return bool(self.file)


class _Cache(Protocol):
    client: Client

    def get_torrent(self, torrent_id: str) -> CachedTorrent | None: ...

    def set_torrent(
        self, torrent: CachedTorrent, callback: Callable[[CachedTorrent], None] | None
    ) -> None: ...

    def refresh_listings(self, refresh_rclone: bool) -> None: ...

    def refresh_torrent(self, torrent_id: str) -> CachedTorrent | None: ...

    def delete_torrent(self, torrent_id: str) -> None: ...


class Repairer:
    """Re-submits torrents whose files went missing and remembers failures."""

    def __init__(self, cache: _Cache) -> None:
        self._cache = cache
        self._lock = threading.Lock()
        self._failed: set[str] = set()
        self._pending: dict[str, InflightRequest[CachedTorrent]] = {}

    def _set_bad(self, torrent_id: str, bad: bool) -> None:
        cached = self._cache.get_torrent(torrent_id)
        if cached is None:
            return
        updated = cached.copy()
        updated.bad = bad
        self._cache.set_torrent(updated, lambda _: self._cache.refresh_listings(False))

    def mark_failed(self, torrent_id: str) -> None:
        """Remember that re-inserting failed and flag the torrent as bad."""
        with self._lock:
            self._failed.add(torrent_id)
        self._set_bad(torrent_id, True)

    def mark_reinserted(self, torrent_id: str) -> None:
        """Clear an earlier failure, if any, and unflag the torrent."""
        with self._lock:
            if torrent_id not in self._failed:
                return
            self._failed.discard(torrent_id)
        self._set_bad(torrent_id, False)

    def reinsert(self, cached: CachedTorrent) -> CachedTorrent:
        """Submit the torrent's magnet again and replace the old torrent with it."""
        torrent = cached.torrent
        old_id = torrent.id
        with self._lock:
            if old_id in self._failed:
                raise DebridError(f"can't retry re-insert for {old_id}")
            pending = self._pending.get(old_id)
            if pending is None:
                request: InflightRequest[CachedTorrent] = InflightRequest()
                self._pending[old_id] = request
        if pending is not None:
            logger.debug("Waiting for existing reinsert request for torrent %s", old_id)
            result = pending.wait()
            return result if result is not None else cached

        try:
            result = self._reinsert(torrent, old_id)
        except BaseException as exc:
            request.complete(None, exc)
            raise
        else:
            request.complete(result)
        finally:
            with self._lock:
                self._pending.pop(old_id, None)
        self.mark_reinserted(old_id)
        logger.debug("Torrent %s successfully reinserted", old_id)
        return result

    def _reinsert(self, torrent: Torrent, old_id: str) -> CachedTorrent:
        client = self._cache.client
        fresh = Torrent(
            name=torrent.name,
            magnet=_Magnet(info_hash=torrent.info_hash, name=torrent.name, size=torrent.size),
            info_hash=torrent.info_hash,
            size=torrent.size,
            arr=torrent.arr,
        )
        try:
            submitted = client.submit_magnet(fresh)
        except Exception as exc:
            self.mark_failed(old_id)
            raise DebridError(f"failed to submit magnet: {exc}") from exc
        if submitted is None or not submitted.id:
            self.mark_failed(old_id)
            raise DebridError("failed to submit magnet: empty torrent")

        submitted.download_uncached = False
        try:
            checked = client.check_status(submitted)
            if checked is None:
                raise DebridError(f"torrent {submitted.name} returned nil after checking status")
        except Exception:
            try:
                client.delete_torrent(submitted.id)
            except Exception:  # noqa: BLE001 - cleanup is best effort
                logger.debug("failed to delete torrent %s", submitted.id, exc_info=True)
            self.mark_failed(old_id)
            raise

        try:
            added_on = parse_time(checked.added)
        except ValueError:
            added_on = None
        if added_on is None:
            added_on = datetime.now(timezone.utc)
        if any(not f.link for f in checked.get_files()):
            self.mark_failed(old_id)
            raise DebridError("failed to reinsert torrent: empty link")

        replacement = CachedTorrent(
            torrent=checked, added_on=added_on, is_complete=bool(checked.files)
        )
        self._cache.set_torrent(replacement, lambda _: self._cache.refresh_listings(True))

        if old_id:
            try:
                self._cache.delete_torrent(old_id)
            except Exception as exc:
                raise DebridError(f"failed to delete old torrent: {exc}") from exc
        return replacement

    def get_broken_files(
        self, torrent: CachedTorrent, filenames: Iterable[str] | None = None
    ) -> list[str]:
        """Names of broken files; empty when nothing is broken or a re-insert fixed it.

        When the torrent cannot be refreshed the given filenames are returned.
        """
        requested = list(filenames or [])
        if requested:
            files = {n: f for n, f in torrent.torrent.files.items() if n in requested}
        else:
            files = dict(torrent.torrent.files)

        for f in files.values():
            if not f.link:
                refreshed = self._cache.refresh_torrent(f.torrent_id)
                if refreshed is None:
                    logger.error("Failed to refresh torrent %s", torrent.torrent.id)
                    return requested
                torrent = refreshed

        if torrent.torrent is None:
            return requested

        all_files = list(torrent.torrent.files.values())
        broken = threading.Event()

        def check(f: File) -> None:
            if broken.is_set():
                return
            if not f.link:
                broken.set()
                return
            try:
                self._cache.client.check_link(f.link)
            except HosterUnavailableError:
                broken.set()
            except Exception:  # noqa: BLE001 - only a gone hoster counts as broken
                logger.debug("check of %s failed", f.link, exc_info=True)

        if all_files:
            with ThreadPoolExecutor(max_workers=min(16, len(all_files))) as pool:
                list(pool.map(check, all_files))

        if not broken.is_set():
            return []
        broken_files = [f.name for f in all_files]
        try:
            self.reinsert(torrent)
        except Exception:  # noqa: BLE001 - report the broken files instead
            logger.error("Failed to reinsert torrent %s", torrent.torrent.id, exc_info=True)
            return broken_files
        return []

    def handle(self, request: RepairRequest) -> bool:
        """Carry out one repair request; return whether it succeeded."""
        cached = self._cache.get_torrent(request.torrent_id)
        if cached is None:
            logger.warning("Torrent %s not found in cache", request.torrent_id)
            return False
        try:
            if request.type == RepairType.REINSERT:
                self.reinsert(cached)
            elif request.type == RepairType.DELETE:
                self._cache.delete_torrent(request.torrent_id)
            else:
                return False
        except Exception:  # noqa: BLE001 - the worker keeps running
            logger.error(
                "Failed to %s torrent %s", request.type, request.torrent_id, exc_info=True
            )
            return False
        return True