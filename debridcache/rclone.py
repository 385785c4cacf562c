"""Asks an rclone remote-control endpoint to forget and refresh its VFS."""

from __future__ import annotations

import logging
import re

import requests

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[,&]")
_BODY_LIMIT = 1024


class RcloneError(Exception):
    """An rclone remote-control request failed."""


def build_refresh_data(refresh_dirs: str) -> str:
    """Form body naming the directories to refresh; all of them if none are given."""
    dirs = [d for d in _SEPARATORS.split(refresh_dirs or "") if d]
    if not dirs:
        return "dir=__all__"
    parts = [f"dir={dirs[0]}"]
    parts.extend(f"&dir{index}={d}" for index, d in enumerate(dirs[1:], start=2))
    return "".join(parts)


class RcloneClient:
    """Client for the ``vfs/forget`` and ``vfs/refresh`` rclone commands."""

    def __init__(
        self,
        url: str,
        user: str = "",
        password: str = "",
        refresh_dirs: str = "",
        timeout: float = 60.0,
    ) -> None:
        self.url = url
        self.user = user
        self.password = password
        self.refresh_dirs = refresh_dirs
        self.timeout = timeout
        self._session = requests.Session()

    def send(self, endpoint: str, data: str) -> None:
        """POST form data to an endpoint; raise RcloneError unless it answers 200."""
        auth = (self.user, self.password) if self.user and self.password else None
        try:
            response = self._session.post(
                f"{self.url}/{endpoint}",
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                auth=auth,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RcloneError(f"failed to perform {endpoint}: {exc}") from exc
        with response:
            if response.status_code != 200:
                body = response.content[:_BODY_LIMIT].decode("utf-8", errors="replace")
                raise RcloneError(
                    f"failed to perform {endpoint}: "
                    f"{response.status_code} {response.reason} - {body}"
                )

    def refresh(self) -> None:
        """Send forget and refresh; failures are logged, never raised."""
        if not self.url:
            return
        data = build_refresh_data(self.refresh_dirs)
        for endpoint in ("vfs/forget", "vfs/refresh"):
            try:
                self.send(endpoint, data)
            except RcloneError:
                logger.error("Failed to send rclone %s request", endpoint, exc_info=True)