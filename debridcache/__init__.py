"""Local cache of debrid-service torrents: listings, JSON storage, download links and repair."""

__version__ = "0.1.0"

__all__ = [
    "accounts",
    "cache",
    "concurrency",
    "errors",
    "links",
    "listing",
    "models",
    "persistence",
    "rclone",
    "repair",
    "storage",
]