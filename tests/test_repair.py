import pytest

from debridcache.errors import DebridError, HosterUnavailableError
from debridcache.listing import CachedTorrent
from debridcache.models import File, Torrent
from debridcache.repair import Repairer, RepairRequest, RepairType


def make_cached(torrent_id, files, name="Show"):
    return CachedTorrent(
        torrent=Torrent(
            id=torrent_id,
            name=name,
            info_hash="abc123",
            files={n: File(torrent_id=torrent_id, name=n, link=link) for n, link in files.items()},
        )
    )


class FakeClient:
    def __init__(self):
        self.submitted = []
        self.deleted = []
        self.submit_error = None
        self.submit_id = "new"
        self.check_error = None
        self.check_files = {"a.mkv": "https://host/new-a"}
        self.dead_links = set()

    def submit_magnet(self, torrent):
        self.submitted.append(torrent)
        if self.submit_error is not None:
            raise self.submit_error
        if self.submit_id is None:
            return None
        torrent.id = self.submit_id
        return torrent

    def check_status(self, torrent):
        if self.check_error is not None:
            raise self.check_error
        torrent.added = "2024-01-02T03:04:05Z"
        torrent.files = {
            n: File(torrent_id=torrent.id, name=n, link=link) for n, link in self.check_files.items()
        }
        return torrent

    def delete_torrent(self, torrent_id):
        self.deleted.append(torrent_id)

    def check_link(self, link):
        if link in self.dead_links:
            raise HosterUnavailableError()


class FakeCache:
    def __init__(self, client):
        self.client = client
        self.torrents = {}
        self.refreshed = {}
        self.deleted = []
        self.listing_refreshes = []

    def get_torrent(self, torrent_id):
        return self.torrents.get(torrent_id)

    def set_torrent(self, torrent, callback):
        self.torrents[torrent.torrent.id] = torrent
        if callback is not None:
            callback(torrent)

    def refresh_listings(self, refresh_rclone):
        self.listing_refreshes.append(refresh_rclone)

    def refresh_torrent(self, torrent_id):
        return self.refreshed.get(torrent_id)

    def delete_torrent(self, torrent_id):
        self.deleted.append(torrent_id)
        self.torrents.pop(torrent_id, None)


@pytest.fixture
def setup():
    client = FakeClient()
    cache = FakeCache(client)
    old = make_cached("old", {"a.mkv": "https://host/a"})
    cache.torrents["old"] = old
    return client, cache, Repairer(cache), old


def test_reinsert_replaces_torrent(setup):
    client, cache, repairer, old = setup
    result = repairer.reinsert(old)
    assert result.torrent.id == "new"
    assert result.is_complete
    assert cache.deleted == ["old"]
    assert cache.torrents["new"] is result
    assert True in cache.listing_refreshes
    assert result.added_on.year == 2024


def test_reinsert_submits_magnet_of_hash(setup):
    client, _, repairer, old = setup
    repairer.reinsert(old)
    magnet = client.submitted[0].magnet
    assert magnet.link.startswith("magnet:?xt=urn:btih:abc123")
    assert client.submitted[0].download_uncached is False


def test_failed_submit_marks_bad_and_blocks_retry(setup):
    client, cache, repairer, old = setup
    client.submit_error = RuntimeError("down")
    with pytest.raises(DebridError, match="failed to submit magnet: down"):
        repairer.reinsert(old)
    assert cache.torrents["old"].bad is True
    with pytest.raises(DebridError, match="can't retry re-insert for old"):
        repairer.reinsert(old)
    assert len(client.submitted) == 1


def test_empty_submit_result_raises(setup):
    client, _, repairer, old = setup
    client.submit_id = None
    with pytest.raises(DebridError, match="empty torrent"):
        repairer.reinsert(old)


def test_check_status_failure_deletes_new_torrent(setup):
    client, cache, repairer, old = setup
    client.check_error = RuntimeError("not cached")
    with pytest.raises(RuntimeError, match="not cached"):
        repairer.reinsert(old)
    assert client.deleted == ["new"]
    assert cache.torrents["old"].bad is True


def test_empty_link_after_reinsert_fails(setup):
    client, cache, repairer, old = setup
    client.check_files = {"a.mkv": ""}
    with pytest.raises(DebridError, match="empty link"):
        repairer.reinsert(old)
    assert cache.deleted == []


def test_mark_reinserted_clears_bad(setup):
    _, cache, repairer, _ = setup
    repairer.mark_failed("old")
    assert cache.torrents["old"].bad is True
    repairer.mark_reinserted("old")
    assert cache.torrents["old"].bad is False


def test_healthy_torrent_has_no_broken_files(setup):
    client, _, repairer, old = setup
    assert repairer.get_broken_files(old, None) == []
    assert client.submitted == []


def test_dead_hoster_with_failed_reinsert_reports_all_files(setup):
    client, _, repairer, _ = setup
    torrent = make_cached("old", {"a.mkv": "https://host/a", "b.mkv": "https://host/b"})
    client.dead_links = {"https://host/b"}
    client.submit_error = RuntimeError("down")
    assert sorted(repairer.get_broken_files(torrent, ["a.mkv"])) == ["a.mkv", "b.mkv"]


def test_dead_hoster_fixed_by_reinsert(setup):
    client, cache, repairer, old = setup
    client.dead_links = {"https://host/a"}
    assert repairer.get_broken_files(old, []) == []
    assert "new" in cache.torrents


def test_unrefreshable_torrent_returns_requested_names(setup):
    _, _, repairer, _ = setup
    torrent = make_cached("old", {"a.mkv": ""})
    assert repairer.get_broken_files(torrent, ["a.mkv"]) == ["a.mkv"]


def test_handle_requests(setup):
    _, cache, repairer, _ = setup
    assert repairer.handle(RepairRequest(type=RepairType.DELETE, torrent_id="old")) is True
    assert cache.deleted == ["old"]
    assert repairer.handle(RepairRequest(type=RepairType.DELETE, torrent_id="old")) is False


def test_handle_reinsert(setup):
    _, cache, repairer, _ = setup
    assert repairer.handle(RepairRequest(type=RepairType.REINSERT, torrent_id="old")) is True
    assert "new" in cache.torrents
    assert RepairType("reinsert") is RepairType.REINSERT