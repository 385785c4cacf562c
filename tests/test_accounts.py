from datetime import datetime, timedelta, timezone

import pytest

from debridcache.accounts import Account, Accounts
from debridcache.errors import (
    DownloadLinkExpiredError,
    EmptyDownloadLinkError,
    NoActiveAccountsError,
    NoDownloadLinkError,
)
from debridcache.models import DownloadLink

RD_PREFIX = "https://real-debrid.com/d/"


def _link(file_link, download="https://dl/file", hours=1):
    expires = datetime.now(timezone.utc) + timedelta(hours=hours)
    return DownloadLink(link=file_link, download_link=download, expires_at=expires)


def test_empty_tokens_are_skipped_and_order_kept():
    accounts = Accounts("torbox", ["token", "", "secret"])
    active = accounts.all()
    assert [a.token for a in active] == ["token", "secret"]
    assert [a.order for a in active] == [0, 2]
    assert accounts.current() is active[0]


def test_no_accounts():
    accounts = Accounts("torbox", [])
    assert accounts.current() is None
    assert accounts.get_links_count() == 0
    with pytest.raises(NoActiveAccountsError):
        accounts.get_download_link("x")


def test_disable_current_moves_to_next():
    accounts = Accounts("torbox", ["token", "secret"])
    first, second = accounts.all()
    accounts.disable(first)
    assert accounts.current() is second
    assert accounts.all() == [second]
    accounts.disable(second)
    assert accounts.current() is None


def test_disable_other_keeps_current():
    accounts = Accounts("torbox", ["token", "secret"])
    first, second = accounts.all()
    accounts.disable(second)
    assert accounts.current() is first


def test_reset_reenables_and_clears_links():
    accounts = Accounts("torbox", ["token", "secret"])
    first, second = accounts.all()
    accounts.set_download_link("link", _link("link"))
    accounts.disable(first)
    accounts.reset()
    assert accounts.current() is first
    assert len(accounts.all()) == 2
    assert first.links_count() == 0


def test_set_and_get_download_link():
    accounts = Accounts("torbox", ["token"])
    dl = _link("https://host/file")
    accounts.set_download_link("https://host/file", dl)
    assert accounts.get_download_link("https://host/file") is dl
    link, account = accounts.get_download_link_with_account("https://host/file")
    assert link is dl
    assert account is accounts.current()
    assert accounts.get_links_count() == 1


def test_missing_link_raises():
    accounts = Accounts("torbox", ["token"])
    with pytest.raises(NoDownloadLinkError):
        accounts.get_download_link("nothing")


def test_expired_link_raises():
    accounts = Accounts("torbox", ["token"])
    accounts.set_download_link("f", _link("f", hours=-1))
    with pytest.raises(DownloadLinkExpiredError):
        accounts.get_download_link("f")


def test_link_without_expiry_is_expired():
    accounts = Accounts("torbox", ["token"])
    accounts.set_download_link("f", DownloadLink(link="f", download_link="https://dl"))
    with pytest.raises(DownloadLinkExpiredError):
        accounts.get_download_link("f")


def test_empty_download_link_raises():
    accounts = Accounts("torbox", ["token"])
    accounts.set_download_link("f", _link("f", download=""))
    with pytest.raises(EmptyDownloadLinkError):
        accounts.get_download_link("f")


def test_delete_download_link():
    accounts = Accounts("torbox", ["token"])
    accounts.set_download_link("f", _link("f"))
    accounts.delete_download_link("f")
    with pytest.raises(NoDownloadLinkError):
        accounts.get_download_link("f")


def test_set_download_links_skips_expired():
    accounts = Accounts("torbox", ["token"])
    fresh = _link("fresh")
    stale = _link("stale", hours=-2)
    accounts.set_download_links({"fresh": fresh, "stale": stale})
    assert accounts.get_links_count() == 1
    assert accounts.get_download_link("fresh") is fresh


def test_realdebrid_links_sliced():
    account = Account(debrid="realdebrid", token="token", order=0)
    long_link = RD_PREFIX + "ABCDEFGHIJKLM" + "/file.mkv"
    assert account.slice_file_link(long_link) == long_link[:39]
    assert account.slice_file_link("short") == "short"


def test_other_debrids_not_sliced():
    account = Account(debrid="torbox", token="token", order=0)
    long_link = RD_PREFIX + "ABCDEFGHIJKLM" + "/file.mkv"
    assert account.slice_file_link(long_link) == long_link


def test_realdebrid_lookup_ignores_suffix():
    accounts = Accounts("realdebrid", ["token"])
    base = RD_PREFIX + "ABCDEFGHIJKLM"
    dl = _link(base + "/one.mkv")
    accounts.set_download_links({dl.link: dl})
    assert accounts.get_download_link(base + "/two.mkv") is dl
    assert accounts.get_links_count() == 1