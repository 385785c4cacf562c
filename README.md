# debridcache

`debridcache` is a library that keeps a local index of the torrents a debrid
service holds. It can:

- index torrents by id and by folder name, and merge the files of torrents that
  share a folder (the one added last wins)
- build sorted directory listings, a `__bad__` folder for torrents that could
  not be repaired, and custom folders selected by filter rules
- store each torrent as `<id>.json` under `<path>/cache/<name>/`
- resolve hoster links to download links, cache them per account, and share a
  fetch between concurrent callers that ask for the same link
- repair broken torrents by submitting their magnet again
- ask an rclone remote-control endpoint to run `vfs/forget` and `vfs/refresh`

## Installation

```
pip install debridcache
```

The tests need the `test` extra (`pytest` and `responses`):

```
pip install "debridcache[test]"
pytest
```

## Modules

- `debridcache.models` holds the data types `Torrent`, `File`, `DownloadLink`,
  `IngestData` and `Profile`. It also holds `Client`, a protocol that describes
  what a service backend provides. A backend has the attributes `name`,
  `accounts`, `download_uncached` and `mount_path`. Its methods include
  `submit_magnet`, `check_status`, `update_torrent`, `get_torrent`,
  `get_torrents`, `get_download_link`, `get_download_links`, `check_link` and
  `delete_torrent`. A method that fails raises an exception.
- `debridcache.accounts` holds `Accounts(debrid_name, tokens)`, the download
  tokens of one service. Empty tokens are skipped. The class tracks the current
  account, lets you `disable()` an account, and keeps the download links
  generated with each account. Links that have expired are refused.
  `reset()` re-enables every account and forgets its links.
- `debridcache.listing` holds `TorrentCache`, `CachedTorrent`, `FileInfo`,
  `DirectoryFilter`, `FilterType`, `merge_files` and `parse_duration`.
- `debridcache.persistence` holds `TorrentStore`, which reads and writes the
  JSON files. Files are written atomically. On loading, torrents with a file
  that lacks a link are skipped.
- `debridcache.rclone` holds `RcloneClient` and `build_refresh_data`.
- `debridcache.links` holds `DownloadLinkResolver`.
- `debridcache.repair` holds `Repairer`, `RepairRequest` and `RepairType`
  (`REINSERT` or `DELETE`).
- `debridcache.cache` holds `Cache`, `CacheConfig` and `FolderNaming`. `Cache`
  ties the modules above together for one service.
- `debridcache.storage` holds `Storage` and `Debrid`. `Storage` is a registry
  of several services. `process()` submits a magnet to the first service that
  accepts it and resolves it.
- `debridcache.concurrency` holds `InflightRequest` and `Debouncer`.

## Example

```python
from debridcache.cache import Cache, CacheConfig, FolderNaming

config = CacheConfig(
    name="myservice",
    path="/var/lib/debridcache",
    workers=4,
    folder_naming=FolderNaming.ORIGINAL,
    directories={
        "shows": {"regex": r"s\d\de\d\d", "size_gt": "1GB"},
        "recent": {"last_added": "24h"},
    },
    rc_url="http://localhost:5572",
)
cache = Cache(config, client)   # client: an object implementing debridcache.models.Client

cache.sync()                    # load saved torrents, drop removed ones, index new ones
for entry in cache.get_listing("__all__"):
    print(entry.name, entry.size, entry.mod_time)

print(cache.get_listing("shows"))
link = cache.get_download_link("Some.Show.S01", "episode01.mkv", file_link)
```

### Folder naming

`FolderNaming` sets the folder name of each torrent. The options are
`filename`, `original`, `filename_no_ext`, `original_no_ext`, `id` and
`infohash`. An unknown value falls back to `filename`.

### Custom folders

Each folder in `directories` is a mapping from filter type to value. A torrent
appears in the folder only if it matches every filter. Name filters compare
against the lower-cased folder name. The filter types are:

- `include`, `exclude`
- `starts_with`, `not_starts_with`
- `ends_with`, `not_ends_with`
- `exact_match`, `not_exact_match`
- `regex`, `not_regex`
- `size_gt`, `size_lt`: sizes such as `500MB` or `1.5GB`, in powers of 1024
- `last_added`: durations such as `24h` or `1h30m`

## Maintenance

These methods are meant to be called on a schedule:

- `Cache.refresh_torrents()` picks up torrents that were added on the service.
  It also removes torrents that the service no longer knows.
- `Cache.refresh_download_links()` reloads the download links of the current
  account.
- `Cache.reset_invalid_links()` forgets the links that were marked invalid,
  resets the accounts and reloads the links.

`Cache.get_broken_files()` checks the links of a torrent. If a hoster is gone,
it submits the torrent again.

`Cache.submit_repair(RepairRequest(...))` queues a re-insert or a delete. A
background thread carries out the queued requests.

`Cache.refresh_listings(True)` rebuilds the listings. When `rc_url` is set, it
also refreshes rclone.

## Errors

Failures raise exceptions from `debridcache.errors`. `DebridError` is the base
class of `NoActiveAccountsError`, `NoDownloadLinkError`,
`DownloadLinkExpiredError`, `EmptyDownloadLinkError`,
`HosterUnavailableError` and `TrafficExceededError`. `process()` raises
`ProcessError`, whose `errors` attribute lists what each service reported.
`RcloneClient.send()` raises `RcloneError`.

## What this package does not do

- It has no client for any particular debrid service. You supply an object that
  implements the `Client` protocol.
- It does not read a configuration file. `CacheConfig` and `Storage` are built
  in code.
- It does not serve the listings over WebDAV or HTTP.
- It does not schedule the maintenance jobs itself.
- It has no command-line program.