# filter_downloader.py

import logging
import os
import tempfile

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class DownloadError(Exception):
    """Transport failure or non-200 response while fetching a filter."""

    def __init__(self, url, reason):
        super().__init__(f"Couldn't download filter from {url}: {reason}")
        self.url = url
        self.reason = reason


def is_rule_line(line: str) -> bool:
    # Only empty lines and comments are insignificant
    return bool(line) and line[0] not in "#!"


def count_rules(body: bytes) -> int:
    text = body.decode("utf-8", errors="replace")
    return sum(1 for line in text.split("\n") if is_rule_line(line))


def download(session, url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """
    GET *url* with *session* and return the raw body.
    Raises DownloadError on transport errors or when the status is not 200.
    """
    logger.debug("Downloading filter from %s", url)
    try:
        response = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise DownloadError(url, e) from e

    try:
        if response.status_code != 200:
            raise DownloadError(url, f"status code: {response.status_code}")
        return response.content
    finally:
        response.close()


def write_filter(path: str, body: bytes):
    """Atomic write: temp file in the same directory, then rename over *path*."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(body)
        os.replace(tmp_path, path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    logger.debug("Saved filter at %s", path)
