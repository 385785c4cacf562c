"""Cache of a debrid service's torrents, exposed as directory listings."""

from __future__ import annotations

import logging
import os
import posixpath
import queue
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from debridcache.concurrency import Debouncer
from debridcache.errors import DebridError
from debridcache.links import DownloadLinkResolver
from debridcache.listing import (
    CachedTorrent,
    DirectoryFilter,
    FileInfo,
    TorrentCache,
    merge_files,
)
from debridcache.models import Client, File, IngestData, Torrent, parse_time
from debridcache.persistence import TorrentStore
from debridcache.rclone import RcloneClient
from debridcache.repair import RepairRequest, Repairer

_LISTING_DELAY = 0.1
_REPAIR_QUEUE_SIZE = 100
_ALL_FOLDERS = ("__all__", "torrents")


class FolderNaming(str, Enum):
    """How a torrent's folder is named in the listings."""

    FILENAME = "filename"
    ORIGINAL = "original"
    FILENAME_NO_EXT = "filename_no_ext"
    ORIGINAL_NO_EXT = "original_no_ext"
    ID = "id"
    INFOHASH = "infohash"


@dataclass
class CacheConfig:
    """Settings of one debrid service's cache."""

    name: str
    path: str = "."
    workers: int = 1
    folder_naming: FolderNaming | str = FolderNaming.FILENAME
    directories: dict[str, dict[str, str]] = field(default_factory=dict)
    rc_url: str = ""
    rc_user: str = ""
    rc_pass: str = ""
    rc_refresh_dirs: str = ""

    @property
    def cache_dir(self) -> Path:
        return Path(self.path) / "cache" / self.name


def _added_on(added: str) -> datetime:
    try:
        parsed = parse_time(added)
    except ValueError:
        parsed = None
    return parsed if parsed is not None else datetime.now(timezone.utc)


def _is_complete(files: Mapping[str, File]) -> bool:
    return bool(files) and all(f.link for f in files.values())


class Cache:
    """Keeps a debrid service's torrents in memory and on disk."""

    def __init__(self, config: CacheConfig, client: Client) -> None:
        self.config = config
        self.client = client
        self.logger = logging.getLogger(f"{__name__}.{client.name}")
        self.workers = max(1, int(config.workers))
        try:
            self.folder_naming = FolderNaming(config.folder_naming)
        except ValueError:
            self.folder_naming = FolderNaming.FILENAME

        filters = {
            folder: [DirectoryFilter.from_config(kind, value) for kind, value in rules.items()]
            for folder, rules in config.directories.items()
        }
        self.custom_folders = list(filters)
        self.torrents = TorrentCache(filters)
        self.store = TorrentStore(config.cache_dir, self.workers)
        self.rclone = RcloneClient(
            config.rc_url, config.rc_user, config.rc_pass, config.rc_refresh_dirs
        )
        self.links = DownloadLinkResolver(self)
        self.repairer = Repairer(self)
        self.ready = threading.Event()

        self._torrents_refresh_lock = threading.RLock()
        self._links_refresh_lock = threading.Lock()
        self._debouncer: Debouncer[bool] = Debouncer(_LISTING_DELAY, self.refresh_listings)
        self._worker_lock = threading.Lock()
        self._repair_queue: queue.Queue[RepairRequest | None] = queue.Queue(_REPAIR_QUEUE_SIZE)
        self._worker: threading.Thread | None = None

    # -- naming and storing -------------------------------------------------

    def torrent_folder(self, torrent: Torrent | CachedTorrent) -> str:
        """Folder name of a torrent under the configured naming scheme."""
        t = torrent.torrent if isinstance(torrent, CachedTorrent) else torrent
        naming = self.folder_naming
        if naming is FolderNaming.ORIGINAL:
            return posixpath.normpath(t.original_filename)
        if naming is FolderNaming.FILENAME_NO_EXT:
            return posixpath.normpath(os.path.splitext(t.filename)[0])
        if naming is FolderNaming.ORIGINAL_NO_EXT:
            return posixpath.normpath(os.path.splitext(t.original_filename)[0])
        if naming is FolderNaming.ID:
            return t.id
        if naming is FolderNaming.INFOHASH:
            return t.info_hash.lower()
        return posixpath.normpath(t.filename)

    def _index(self, cached: CachedTorrent) -> CachedTorrent:
        name = self.torrent_folder(cached)
        updated = cached.copy()
        existing = self.torrents.get_by_name(name)
        if existing is not None and existing.torrent.id != cached.torrent.id:
            # Files of torrents sharing a folder are merged, the latest added winning.
            updated.torrent.files = merge_files(existing, updated)
        self.torrents.set(name, cached)
        return updated

    def set_torrent(
        self,
        torrent: CachedTorrent,
        callback: Callable[[CachedTorrent], None] | None = None,
    ) -> None:
        """Index and save a torrent, then call the callback with it."""
        updated = self._index(torrent)
        self.store.save(torrent)
        if callback is not None:
            callback(updated)

    def _set_torrents(
        self, torrents: Mapping[str, CachedTorrent], callback: Callable[[], None] | None
    ) -> None:
        for cached in torrents.values():
            self._index(cached)
        self.save_torrents()
        if callback is not None:
            callback()

    def save_torrents(self) -> None:
        self.store.save_all(self.torrents.get_all())

    # -- syncing ------------------------------------------------------------

    def sync(self) -> None:
        """Load saved torrents, reconcile them with the service and index new ones."""
        try:
            cached = self.store.load()
        except OSError:
            self.logger.error("Failed to load cache", exc_info=True)
            cached = {}

        try:
            remote = self.client.get_torrents()
        except Exception as exc:
            raise DebridError(f"failed to sync torrents: {exc}") from exc
        remote = list(remote or [])
        self.logger.info("%d torrents found from %s", len(remote), self.client.name)

        remote_ids = {t.id for t in remote}
        new = [t for t in remote if t.id not in cached]
        deleted = [torrent_id for torrent_id in cached if torrent_id not in remote_ids]
        if deleted:
            self.logger.info("Found %d deleted torrents", len(deleted))
            for torrent_id in deleted:
                del cached[torrent_id]
                self.store.remove(torrent_id, False)

        self._set_torrents(cached, lambda: self._debouncer.call(False))
        self.logger.info("Loaded %d torrents from cache", len(cached))

        if new:
            self.logger.info("Found %d new torrents", len(new))
            self._process_all(new)
            self._debouncer.call(False)
        self.ready.set()

    def _try_process(self, torrent: Torrent) -> bool:
        try:
            self.process_torrent(torrent)
        except Exception:  # noqa: BLE001 - one torrent must not stop the rest
            self.logger.error("sync error for torrent %s", torrent.name, exc_info=True)
            return False
        return True

    def _process_all(self, torrents: list[Torrent]) -> int:
        workers = max(1, min(self.workers, len(torrents)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(self._try_process, torrents))
        failures = results.count(False)
        self.logger.info(
            "Sync complete: %d torrents processed, %d errors", len(torrents), failures
        )
        return failures

    def process_torrent(self, torrent: Torrent) -> None:
        """Fetch a torrent's files if needed and index it once all have links."""
        if not _is_complete(torrent.files):
            try:
                self.client.update_torrent(torrent)
            except Exception as exc:
                raise DebridError(f"failed to update torrent: {exc}") from exc
        if not _is_complete(torrent.files):
            self.logger.debug("Torrent %s is still not complete", torrent.id)
            return
        cached = CachedTorrent(
            torrent=torrent, added_on=_added_on(torrent.added), is_complete=bool(torrent.files)
        )
        self.set_torrent(cached, lambda _: self._debouncer.call(False))

    def add(self, torrent: Torrent) -> None:
        """Index a freshly added torrent and generate its download links."""
        if not torrent.files:
            self.logger.warning("Torrent %s has no files to add. Refreshing", torrent.id)
            try:
                self.client.update_torrent(torrent)
            except Exception as exc:
                raise DebridError(f"failed to update torrent: {exc}") from exc
        cached = CachedTorrent(
            torrent=torrent, added_on=_added_on(torrent.added), is_complete=bool(torrent.files)
        )
        self.set_torrent(cached, lambda _: self.refresh_listings(True))
        threading.Thread(target=self._generate_links, args=(cached,), daemon=True).start()

    def _generate_links(self, cached: CachedTorrent) -> None:
        try:
            self.client.get_file_download_links(cached.torrent)
        except Exception:  # noqa: BLE001 - links are generated again on demand
            self.logger.error(
                "Failed to generate download links for %s", cached.torrent.name, exc_info=True
            )

    # -- deleting -----------------------------------------------------------

    def _delete(self, torrent_id: str, remove_from_debrid: bool) -> bool:
        cached = self.torrents.get_by_id(torrent_id)
        if cached is None:
            return False
        self.torrents.remove_id(torrent_id)
        try:
            name = self.torrent_folder(cached)
            holder = self.torrents.get_by_name(name)
            if holder is not None:
                remaining = {
                    f.name: f
                    for f in holder.torrent.get_files()
                    if f.torrent_id and f.torrent_id != torrent_id
                }
                if not remaining:
                    self.torrents.remove(name)
                else:
                    new_id = next(iter(remaining.values())).torrent_id
                    holder.torrent.files = remaining
                    holder.torrent.id = new_id or holder.torrent.id
                    self.set_torrent(holder, None)
        finally:
            self.store.remove(torrent_id, False)
            if remove_from_debrid:
                try:
                    self.client.delete_torrent(torrent_id)
                except Exception:  # noqa: BLE001 - the service may have lost it already
                    self.logger.debug("Failed to delete %s from debrid", torrent_id, exc_info=True)
        return True

    def delete_torrent(self, torrent_id: str) -> None:
        """Remove a torrent from the cache, the disk and the service."""
        with self._torrents_refresh_lock:
            deleted = self._delete(torrent_id, True)
        if deleted:
            self.refresh_listings(True)

    def delete_torrents(self, torrent_ids: Iterable[str]) -> None:
        ids = list(torrent_ids)
        self.logger.info("Deleting %d torrents", len(ids))
        for torrent_id in ids:
            self._delete(torrent_id, True)
        self._debouncer.call(True)

    def _validate_and_delete(self, torrent_ids: list[str]) -> None:
        def check(torrent_id: str) -> None:
            try:
                self.client.get_torrent(torrent_id)
            except Exception:  # noqa: BLE001 - gone from the service
                self._delete(torrent_id, False)

        with ThreadPoolExecutor(max_workers=max(1, min(self.workers, len(torrent_ids)))) as pool:
            list(pool.map(check, torrent_ids))
        self._debouncer.call(True)

    def on_remove(self, torrent_id: str) -> None:
        self.logger.debug("OnRemove triggered for %s", torrent_id)
        try:
            self.delete_torrent(torrent_id)
        except Exception:  # noqa: BLE001 - called from file-system callbacks
            self.logger.error("Failed to delete torrent: %s", torrent_id, exc_info=True)

    def remove_file(self, torrent_id: str, filename: str) -> None:
        """Mark one file deleted; delete the torrent when no file is left."""
        cached = self.torrents.get_by_id(torrent_id)
        if cached is None:
            raise DebridError(f"torrent {torrent_id} not found")
        found = cached.torrent.get_file(filename)
        if found is None:
            raise DebridError(f"file {filename} not found in torrent {torrent_id}")
        found.deleted = True
        cached.torrent.files[filename] = found
        if not cached.torrent.get_files():
            self.logger.debug("Torrent %s has no files left, deleting it", torrent_id)
            self.delete_torrent(torrent_id)
            return
        self.set_torrent(cached, lambda _: self._debouncer.call(True))

    # -- reading ------------------------------------------------------------

    def get_listing(self, folder: str) -> list[FileInfo]:
        if folder in _ALL_FOLDERS:
            return self.torrents.get_listing()
        return self.torrents.get_folder_listing(folder)

    def get_torrents(self) -> dict[str, CachedTorrent]:
        return self.torrents.get_all()

    def total_torrents(self) -> int:
        return self.torrents.count()

    def get_torrent(self, torrent_id: str) -> CachedTorrent | None:
        return self.torrents.get_by_id(torrent_id)

    def get_torrent_by_name(self, name: str) -> CachedTorrent | None:
        return self.torrents.get_by_name(name)

    def get_torrents_by_name(self) -> dict[str, CachedTorrent]:
        return self.torrents.get_all_by_name()

    def get_ingests(self) -> list[IngestData]:
        return [
            IngestData(
                debrid=self.client.name,
                name=cached.torrent.filename,
                hash=cached.torrent.info_hash,
                size=cached.torrent.bytes,
            )
            for cached in self.torrents.get_all().values()
        ]

    # -- refreshing ---------------------------------------------------------

    def refresh_listings(self, refresh_rclone: bool) -> None:
        self.torrents.refresh_listing()
        if refresh_rclone:
            self.rclone.refresh()

    def refresh_torrents(self) -> None:
        """Pick up torrents added on the service and drop those removed from it."""
        if not self._torrents_refresh_lock.acquire(blocking=False):
            return
        try:
            try:
                remote = list(self.client.get_torrents() or [])
            except Exception:  # noqa: BLE001 - retried on the next run
                self.logger.error("Failed to get torrents", exc_info=True)
                return
            if not remote:
                return

            remote_ids = {t.id for t in remote}
            known = self.torrents.get_ids()
            deleted = [torrent_id for torrent_id in known if torrent_id not in remote_ids]
            if deleted:
                self._validate_and_delete(deleted)

            new = [t for t in remote if t.id not in known]
            if not new:
                return
            self.logger.debug("Found %d new torrents", len(new))
            self._process_all(new)
            self._debouncer.call(False)
        finally:
            self._torrents_refresh_lock.release()

    def refresh_torrent(self, torrent_id: str) -> CachedTorrent | None:
        """Fetch one torrent from the service and re-index it."""
        if not torrent_id:
            self.logger.error("Torrent ID is empty")
            return None
        try:
            torrent = self.client.get_torrent(torrent_id)
        except Exception:  # noqa: BLE001 - callers treat None as failure
            self.logger.error("Failed to get torrent %s", torrent_id, exc_info=True)
            return None
        cached = CachedTorrent(
            torrent=torrent, added_on=_added_on(torrent.added), is_complete=bool(torrent.files)
        )
        self.set_torrent(cached, lambda _: self._debouncer.call(True))
        return cached

    def refresh_download_links(self) -> None:
        if not self._links_refresh_lock.acquire(blocking=False):
            return
        try:
            try:
                links = self.client.get_download_links()
            except Exception:  # noqa: BLE001 - retried on the next run
                self.logger.error("Failed to get download links", exc_info=True)
                return
            self.client.accounts.set_download_links(links)
            self.logger.debug(
                "Refreshed %d download links", self.client.accounts.get_links_count()
            )
        finally:
            self._links_refresh_lock.release()

    def reset_invalid_links(self) -> None:
        self.logger.debug("Resetting accounts")
        self.links.reset_invalid()
        self.refresh_download_links()

    # -- links and repair ---------------------------------------------------

    def get_download_link(self, torrent_name: str, filename: str, file_link: str) -> str:
        return self.links.get_download_link(torrent_name, filename, file_link)

    def get_broken_files(
        self, torrent: CachedTorrent, filenames: Iterable[str] | None = None
    ) -> list[str]:
        return self.repairer.get_broken_files(torrent, filenames)

    def submit_repair(self, request: RepairRequest) -> None:
        """Queue a repair request for the background repair worker."""
        with self._worker_lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._repair_loop, args=(self._repair_queue,), daemon=True
                )
                self._worker.start()
            pending = self._repair_queue
        pending.put(request)

    def _repair_loop(self, requests: queue.Queue[RepairRequest | None]) -> None:
        while True:
            request = requests.get()
            if request is None:
                self.logger.debug("Repair queue closed, shutting down worker")
                return
            self.logger.debug("Received repair request for %s", request.torrent_id)
            self.repairer.handle(request)

    def reset(self) -> None:
        """Drop all state so the cache can be started again."""
        self._debouncer.stop()
        with self._worker_lock:
            try:
                self._repair_queue.put_nowait(None)
            except queue.Full:
                self.logger.debug("Repair queue full while resetting")
            self._repair_queue = queue.Queue(_REPAIR_QUEUE_SIZE)
            self._worker = None
        self.torrents.reset()
        self.links = DownloadLinkResolver(self)
        self.repairer = Repairer(self)
        self.ready = threading.Event()
        self._debouncer = Debouncer(_LISTING_DELAY, self.refresh_listings)