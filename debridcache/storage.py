"""Registry of configured debrid services and torrent submission across them."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from debridcache.models import Client, Torrent

logger = logging.getLogger(__name__)


class ProcessError(Exception):
    """Submitting a torrent failed on every candidate service."""

    def __init__(self, message: str, errors: list[BaseException] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


@dataclass
class Debrid:
    """A debrid client and, when WebDAV is used, its cache."""

    client: Client
    cache: Any = None


class Storage:
    """Thread-safe collection of debrid services keyed by name."""

    def __init__(self, debrids: Mapping[str, Debrid] | None = None) -> None:
        self._lock = threading.RLock()
        self._debrids: dict[str, Debrid] = dict(debrids or {})
        self.last_used = ""

    def debrid(self, name: str) -> Debrid | None:
        with self._lock:
            return self._debrids.get(name)

    def debrids(self) -> dict[str, Debrid]:
        with self._lock:
            return {name: d for name, d in self._debrids.items() if d is not None}

    def client(self, name: str) -> Client | None:
        with self._lock:
            found = self._debrids.get(name)
            return found.client if found is not None else None

    def reset(self) -> None:
        with self._lock:
            self._debrids = {}
        self.last_used = ""

    def clients(self) -> dict[str, Client]:
        with self._lock:
            return {
                name: d.client
                for name, d in self._debrids.items()
                if d is not None and d.client is not None
            }

    def caches(self) -> dict[str, Any]:
        with self._lock:
            return {
                name: d.cache
                for name, d in self._debrids.items()
                if d is not None and d.cache is not None
            }

    def filter_clients(self, predicate: Callable[[Client], bool]) -> dict[str, Client]:
        with self._lock:
            return {
                name: d.client
                for name, d in self._debrids.items()
                if d is not None and predicate(d.client)
            }


def _delete_quietly(client: Client, torrent_id: str) -> None:
    try:
        client.delete_torrent(torrent_id)
    except Exception:  # noqa: BLE001 - cleanup is best effort
        logger.debug("failed to delete torrent %s", torrent_id, exc_info=True)


def process(
    storage: Storage,
    selected_debrid: str,
    magnet: Any,
    arr: Any,
    action: str,
    override_download_uncached: bool,
) -> Torrent:
    """Submit a magnet to the first service that accepts and resolves it."""
    torrent = Torrent(
        info_hash=getattr(magnet, "info_hash", ""),
        magnet=magnet,
        name=getattr(magnet, "name", ""),
        arr=arr,
        size=getattr(magnet, "size", 0),
    )

    clients = storage.filter_clients(
        lambda c: not selected_debrid or c.name == selected_debrid
    )
    if not clients:
        raise ProcessError("no debrid clients available")

    arr_uncached = getattr(arr, "download_uncached", None)
    arr_name = getattr(arr, "name", "")
    if override_download_uncached:
        torrent.download_uncached = True
    elif arr_uncached is not None:
        torrent.download_uncached = bool(arr_uncached)
    else:
        torrent.download_uncached = False

    errors: list[BaseException] = []
    for key, client in clients.items():
        logger.info(
            "Processing torrent debrid=%s arr=%s hash=%s name=%s action=%s",
            client.name, arr_name, torrent.info_hash, torrent.name, action,
        )
        if not override_download_uncached and arr_uncached is None:
            torrent.download_uncached = client.download_uncached

        try:
            submitted = client.submit_magnet(torrent)
        except Exception as exc:  # noqa: BLE001 - try the next service
            errors.append(exc)
            continue
        if submitted is None or not submitted.id:
            errors.append(RuntimeError(f"{client.name}: torrent was not submitted"))
            continue

        submitted.arr = arr
        logger.info("Torrent: %s submitted to %s (id %s)", submitted.name, client.name, submitted.id)
        storage.last_used = key

        try:
            checked = client.check_status(submitted)
        except Exception as exc:  # noqa: BLE001 - try the next service
            if submitted.id:
                threading.Thread(
                    target=_delete_quietly, args=(client, submitted.id), daemon=True
                ).start()
            errors.append(exc)
            continue
        if checked is None:
            errors.append(
                RuntimeError(f"torrent {submitted.name} returned nil after checking status")
            )
            continue
        return checked

    if not errors:
        raise ProcessError("failed to process torrent: no clients available")
    joined = "\n".join(str(e) for e in errors)
    raise ProcessError(f"failed to process torrent: {joined}", errors)