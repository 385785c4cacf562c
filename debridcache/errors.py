"""Errors raised when talking to debrid services and their link caches."""

from __future__ import annotations


class DebridError(Exception):
    """Base error carrying a human message and a machine-readable code."""

    default_message = "Debrid error"
    code = "debrid_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message if message is not None else self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


class NoActiveAccountsError(DebridError):
    default_message = "No active accounts"
    code = "no_active_accounts"


class NoDownloadLinkError(DebridError):
    default_message = "No download link found"
    code = "no_download_link"


class DownloadLinkExpiredError(DebridError):
    default_message = "Download link expired"
    code = "download_link_expired"


class EmptyDownloadLinkError(DebridError):
    default_message = "Download link is empty"
    code = "empty_download_link"


class HosterUnavailableError(DebridError):
    default_message = "Hoster is unavailable"
    code = "hoster_unavailable"


class TrafficExceededError(DebridError):
    default_message = "Traffic exceeded"
    code = "traffic_exceeded"