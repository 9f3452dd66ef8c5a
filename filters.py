# filters.py

import logging
import os
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional

from filter_downloader import DEFAULT_TIMEOUT, count_rules, download, write_filter

logger = logging.getLogger(__name__)

# modify() result flags
STATUS_NOT_FOUND = 1
STATUS_CHANGED_ENABLED = 2
STATUS_CHANGED_URL = 4


class FilterError(Exception):
    pass


class DuplicateFilterError(FilterError):
    def __init__(self, name, url):
        super().__init__("filter with this Name or URL already exists")
        self.name = name
        self.url = url


@dataclass
class FilterRecord:
    name: str
    url: str
    id: int = 0
    enabled: bool = True
    rule_count: int = 0
    last_updated: Optional[datetime] = None
    path: str = ""

    # scheduling state, never persisted
    next_due_at: float = 0.0
    pending_id: int = 0


@dataclass
class FiltersConf:
    filter_dir: str
    update_interval_hours: int = 24
    session: object = None
    download_timeout: float = DEFAULT_TIMEOUT
    filters: List[FilterRecord] = field(default_factory=list)


class FilterStore:
    """
    The ordered filter collection and everything that touches it.

    Every read or write of `conf.filters` happens under `self.lock`. The lock
    is never held across a download; callers that do network or file I/O
    re-locate their record by URL afterwards.
    """

    def __init__(self, conf: FiltersConf):
        # next_due_at must land in the future after every claim
        if conf.update_interval_hours < 1:
            raise ValueError(
                f"filter update interval must be at least 1 hour, got {conf.update_interval_hours}"
            )
        self.conf = conf
        self.lock = threading.Lock()
        self._updated = False
        self._last_id = max(
            [f.id for f in conf.filters] + [f.pending_id for f in conf.filters] + [0]
        )

    @property
    def interval(self) -> float:
        return self.conf.update_interval_hours * 3600.0

    def filter_path(self, filter_id: int) -> str:
        return os.path.join(self.conf.filter_dir, f"{filter_id}.txt")

    def _copy(self, f: FilterRecord) -> FilterRecord:
        return replace(f, path=self.filter_path(f.id))

    def _next_filter_id(self) -> int:
        fid = int(time.time())
        if fid <= self._last_id:
            fid = self._last_id + 1
        self._last_id = fid
        return fid

    def next_filter_id(self) -> int:
        with self.lock:
            return self._next_filter_id()

    def _check_unique(self, name, url, skip=None):
        for f in self.conf.filters:
            if f is skip:
                continue
            if f.name == name or f.url == url:
                raise DuplicateFilterError(name, url)

    def _find(self, url) -> Optional[FilterRecord]:
        for f in self.conf.filters:
            if f.url == url:
                return f
        return None

    # ------------------------------------------------------------------ #
    # startup
    # ------------------------------------------------------------------ #

    def load_existing(self):
        """Pick up metadata for filters that already have a file on disk."""
        with self.lock:
            filters = [(f.url, self.filter_path(f.id)) for f in self.conf.filters]

        for url, fname in filters:
            try:
                mtime = os.stat(fname).st_mtime
                with open(fname, "rb") as fh:
                    body = fh.read()
            except OSError as e:
                logger.error("Filters: can't load %s: %s", fname, e)
                continue

            with self.lock:
                f = self._find(url)
                if f is None:
                    continue
                f.last_updated = datetime.fromtimestamp(mtime)
                f.next_due_at = mtime + self.interval
                f.rule_count = count_rules(body)

    # ------------------------------------------------------------------ #
    # public operations
    # ------------------------------------------------------------------ #

    def add(self, nf: FilterRecord) -> FilterRecord:
        """
        Download a new filter and append it.
        Raises DuplicateFilterError or DownloadError; nothing is stored then.
        """
        with self.lock:
            self._check_unique(nf.name, nf.url)
            nf = replace(nf, id=self._next_filter_id(), enabled=True, pending_id=0)

        body = download(self.conf.session, nf.url, self.conf.download_timeout)
        fname = self.filter_path(nf.id)
        write_filter(fname, body)

        with self.lock:
            try:
                self._check_unique(nf.name, nf.url)
            except DuplicateFilterError:
                _remove_quietly(fname)
                raise
            nf.rule_count = count_rules(body)
            nf.last_updated = datetime.now()
            nf.next_due_at = time.time() + self.interval
            self.conf.filters.append(nf)
            logger.debug("Filters: added filter %s", nf.url)
            return self._copy(nf)

    def delete(self, url: str) -> Optional[FilterRecord]:
        """Remove a filter. The caller deletes the file at the returned path."""
        with self.lock:
            f = self._find(url)
            if f is None:
                return None
            self.conf.filters.remove(f)
            logger.debug("Filters: removed filter %s", url)
            return self._copy(f)

    def modify(self, url: str, enabled: bool, name: str, new_url: str) -> int:
        """Set filter properties, returns STATUS_* bits (0 if nothing notable changed)."""
        with self.lock:
            f = self._find(url)
            if f is None:
                return STATUS_NOT_FOUND

            self._check_unique(name, new_url, skip=f)

            st = 0
            f.name = name
            if f.enabled != enabled:
                f.enabled = enabled
                st |= STATUS_CHANGED_ENABLED
            if f.url != new_url:
                f.url = new_url
                st |= STATUS_CHANGED_URL
            return st

    def list(self) -> List[FilterRecord]:
        with self.lock:
            return [self._copy(f) for f in self.conf.filters]

    def snapshot_config(self) -> FiltersConf:
        with self.lock:
            return replace(self.conf, filters=[self._copy(f) for f in self.conf.filters])

    def refresh(self, url: Optional[str] = None) -> int:
        """Make enabled filters (or just the one at *url*) due right away."""
        n = 0
        with self.lock:
            for f in self.conf.filters:
                if f.enabled and (url is None or f.url == url):
                    f.next_due_at = 0.0
                    n += 1
        return n

    # ------------------------------------------------------------------ #
    # refresh engine critical sections
    # ------------------------------------------------------------------ #

    def claim_next_due(self, now: float) -> Optional[FilterRecord]:
        """Return a copy of the first due filter after pushing its next_due_at forward."""
        with self.lock:
            for f in self.conf.filters:
                if f.enabled and f.next_due_at <= now:
                    f.next_due_at = now + self.interval
                    return self._copy(f)
        return None

    def set_pending(self, url, new_id, rule_count, last_updated):
        """
        Attach a downloaded revision to the filter at *url*.

        Returns (found, stale_id): *found* is False when the filter went away
        during the download, *stale_id* is an older unswapped revision the
        caller should delete (0 if none).
        """
        with self.lock:
            f = self._find(url)
            if f is None:
                return False, 0
            stale_id = f.pending_id if f.pending_id not in (0, f.id) else 0
            f.pending_id = new_id
            f.rule_count = rule_count
            f.last_updated = last_updated
            self._updated = True
            return True, stale_id

    def take_updated(self) -> bool:
        """Report and clear the "new revisions were downloaded" mark."""
        with self.lock:
            updated = self._updated
            self._updated = False
            return updated

    def swap_pending(self) -> int:
        """Rename every pending revision over its active file. Returns the number swapped."""
        n = 0
        with self.lock:
            for f in self.conf.filters:
                if f.pending_id == 0 or f.pending_id == f.id:
                    continue
                src = self.filter_path(f.pending_id)
                dst = self.filter_path(f.id)
                try:
                    os.replace(src, dst)
                    n += 1
                except OSError as e:
                    logger.error("Filters: rename %s -> %s: %s", src, dst, e)
                    _remove_quietly(src)
                f.pending_id = 0
        return n


def _remove_quietly(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("Filters: can't remove %s: %s", path, e)
