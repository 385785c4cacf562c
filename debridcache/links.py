"""Resolves hoster links to download links, reusing cached and in-flight results."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from debridcache.concurrency import InflightRequest
from debridcache.errors import DebridError, HosterUnavailableError, TrafficExceededError
from debridcache.listing import CachedTorrent
from debridcache.models import Client, DownloadLink, File

logger = logging.getLogger(__name__)

BANDWIDTH_EXCEEDED = "bandwidth_exceeded"


class _Cache(Protocol):
    client: Client
    repairer: Any

    def get_torrent_by_name(self, name: str) -> CachedTorrent | None: ...

    def refresh_torrent(self, torrent_id: str) -> CachedTorrent | None: ...


class DownloadLinkResolver:
    """Turns file links of cached torrents into download links.

    Cached links are reused unless marked invalid, and concurrent requests for
    the same file link share one fetch.
    """

    def __init__(self, cache: _Cache) -> None:
        self._cache = cache
        self._lock = threading.Lock()
        self._pending: dict[str, InflightRequest[str]] = {}
        self._invalid: dict[str, str] = {}

    @property
    def _client(self) -> Client:
        return self._cache.client

    def get_download_link(self, torrent_name: str, filename: str, file_link: str) -> str:
        """Return a download link for a file, fetching one if none is cached."""
        cached = self._cached_link(file_link)
        if cached:
            return cached

        with self._lock:
            pending = self._pending.get(file_link)
            if pending is None:
                request: InflightRequest[str] = InflightRequest()
                self._pending[file_link] = request
        if pending is not None:
            return pending.wait() or ""

        try:
            link = self._fetch(torrent_name, filename, file_link)
            if link is None or not link.download_link:
                raise DebridError(
                    f"download link is empty for {filename} in torrent {torrent_name}"
                )
        except BaseException as exc:
            request.complete(None, exc)
            raise
        else:
            request.complete(link.download_link)
        finally:
            with self._lock:
                self._pending.pop(file_link, None)
        return link.download_link

    def _cached_link(self, file_link: str) -> str | None:
        try:
            link = self._client.accounts.get_download_link(file_link)
        except DebridError:
            return None
        if self.is_invalid(link.download_link):
            return None
        return link.download_link

    def _file_of(self, cached: CachedTorrent, filename: str, what: str, torrent_name: str) -> File:
        found = cached.torrent.get_file(filename)
        if found is None:
            raise DebridError(f"file {filename} not found in {what}torrent {torrent_name}")
        return found

    def _reinsert(self, cached: CachedTorrent, sep: str) -> CachedTorrent:
        try:
            return self._cache.repairer.reinsert(cached)
        except Exception as exc:
            raise DebridError(f"failed to reinsert torrent{sep} {exc}") from exc

    def _fetch(self, torrent_name: str, filename: str, file_link: str) -> DownloadLink | None:
        cached = self._cache.get_torrent_by_name(torrent_name)
        if cached is None:
            raise DebridError("torrent not found")
        file = self._file_of(cached, filename, "", torrent_name)

        if not file.link:
            refreshed = self._cache.refresh_torrent(file.torrent_id)
            if refreshed is None:
                raise DebridError("failed to refresh torrent")
            cached = refreshed
            file = self._file_of(cached, filename, "refreshed ", torrent_name)

        if not file.link:
            cached = self._reinsert(cached, ".")
            file = self._file_of(cached, filename, "reinserted ", torrent_name)

        logger.debug("Getting download link for %s(%s)", filename, file.link)
        try:
            link = self._client.get_download_link(cached.torrent, file)
        except HosterUnavailableError:
            cached = self._reinsert(cached, ":")
            file = self._file_of(cached, filename, "reinserted ", torrent_name)
            retried = self._client.get_download_link(cached.torrent, file)
            if retried is None:
                raise DebridError("download link is empty for") from None
            return None
        except TrafficExceededError:
            raise
        except Exception as exc:
            raise DebridError(f"failed to get download link: {exc}") from exc

        if link is None:
            raise DebridError("download link is empty")
        self._client.accounts.set_download_link(file_link, link)
        return link

    def mark_invalid(self, link: str, download_link: str, reason: str) -> None:
        """Stop reusing a download link; on exhausted bandwidth disable its account."""
        with self._lock:
            self._invalid[download_link] = reason
        if reason != BANDWIDTH_EXCEEDED:
            return
        accounts = self._client.accounts
        try:
            _, account = accounts.get_download_link_with_account(link)
        except DebridError:
            return
        accounts.disable(account)

    def is_invalid(self, download_link: str) -> bool:
        with self._lock:
            reason = self._invalid.get(download_link)
        if reason is None:
            return False
        logger.debug("Download link %s is invalid: %s", download_link, reason)
        return True

    def reset_invalid(self) -> None:
        """Forget invalid links and reset the accounts and their cached links."""
        with self._lock:
            self._invalid = {}
        self._client.accounts.reset()

    def get_byte_range(self, torrent_name: str, filename: str) -> tuple[int, int] | None:
        cached = self._cache.get_torrent_by_name(torrent_name)
        if cached is None:
            raise DebridError("torrent not found")
        found = cached.torrent.files.get(filename)
        return found.byte_range if found is not None else None

    def total_active_links(self) -> int:
        return self._client.accounts.get_links_count()