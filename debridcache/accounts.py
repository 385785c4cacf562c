"""Download accounts of a debrid service and their cached download links."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from debridcache.errors import (
    DownloadLinkExpiredError,
    EmptyDownloadLinkError,
    NoActiveAccountsError,
    NoDownloadLinkError,
)
from debridcache.models import DownloadLink

_REALDEBRID_LINK_LENGTH = 39


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(eq=False)
class Account:
    """One download token and the download links generated with it."""

    debrid: str
    token: str
    order: int
    disabled: bool = False
    _links: dict[str, DownloadLink] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def slice_file_link(self, file_link: str) -> str:
        """Real-Debrid links are keyed by their first 39 characters."""
        if self.debrid != "realdebrid" or len(file_link) < _REALDEBRID_LINK_LENGTH:
            return file_link
        return file_link[:_REALDEBRID_LINK_LENGTH]

    def links_count(self) -> int:
        with self._lock:
            return len(self._links)

    def _get_link(self, file_link: str) -> DownloadLink | None:
        with self._lock:
            return self._links.get(self.slice_file_link(file_link))

    def _set_link(self, file_link: str, link: DownloadLink) -> None:
        with self._lock:
            self._links[self.slice_file_link(file_link)] = link

    def _delete_link(self, file_link: str) -> None:
        with self._lock:
            self._links.pop(self.slice_file_link(file_link), None)

    def _reset_links(self) -> None:
        with self._lock:
            self._links = {}

    def _set_links(self, links: Iterable[DownloadLink]) -> None:
        now = _now()
        with self._lock:
            for link in links:
                if link.expires_at is not None and _aware(link.expires_at) < now:
                    continue
                self._links[self.slice_file_link(link.link)] = link


class Accounts:
    """The download accounts of one debrid service, one of them current."""

    def __init__(self, debrid_name: str, tokens: Iterable[str]) -> None:
        self._lock = threading.RLock()
        self._accounts = [
            Account(debrid=debrid_name, token=token, order=index)
            for index, token in enumerate(tokens)
            if token
        ]
        self._current: Account | None = self._accounts[0] if self._accounts else None

    def all(self) -> list[Account]:
        """Accounts that are not disabled, in configuration order."""
        with self._lock:
            return [a for a in self._accounts if not a.disabled]

    def current(self) -> Account | None:
        with self._lock:
            if self._current is None:
                self._current = next((a for a in self._accounts if not a.disabled), None)
            return self._current

    def disable(self, account: Account) -> None:
        with self._lock:
            account.disabled = True
            if self._current is account:
                self._current = next((a for a in self._accounts if not a.disabled), None)

    def reset(self) -> None:
        """Re-enable every account, forget their links and select the first."""
        with self._lock:
            for account in self._accounts:
                account._reset_links()
                account.disabled = False
            self._current = self._accounts[0] if self._accounts else None

    def get_download_link_with_account(self, file_link: str) -> tuple[DownloadLink, Account]:
        account = self.current()
        if account is None:
            raise NoActiveAccountsError()
        link = account._get_link(file_link)
        if link is None:
            raise NoDownloadLinkError()
        if link.expires_at is None or _aware(link.expires_at) < _now():
            raise DownloadLinkExpiredError()
        if not link.download_link:
            raise EmptyDownloadLinkError()
        return link, account

    def get_download_link(self, file_link: str) -> DownloadLink:
        link, _ = self.get_download_link_with_account(file_link)
        return link

    def set_download_link(self, file_link: str, link: DownloadLink) -> None:
        account = self.current()
        if account is not None:
            account._set_link(file_link, link)

    def delete_download_link(self, file_link: str) -> None:
        account = self.current()
        if account is not None:
            account._delete_link(file_link)

    def get_links_count(self) -> int:
        account = self.current()
        return account.links_count() if account is not None else 0

    def set_download_links(self, links: Mapping[str, DownloadLink] | None) -> None:
        account = self.current()
        if account is not None and links:
            account._set_links(links.values())