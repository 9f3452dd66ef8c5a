"""
Background refresh of subscribed filters.

Algorithm:
  . Take the next filter that is due:
    . download it into a new file (never touching the served one)
    . remember the new revision on the filter
    . repeat for the next due filter
  (nothing is due any more)
  . tell consumers to stop reading filter files
  . rename "new file" -> "served file" for every updated filter
  . tell consumers to reload
"""

import logging
import os
import threading
import time
from datetime import datetime

from filter_downloader import DownloadError, count_rules, download, write_filter
from filters import FilterStore
from notifications import EVENT_AFTER_UPDATE, EVENT_BEFORE_UPDATE, NotificationBus

logger = logging.getLogger(__name__)

DEFAULT_POLL_PERIOD = 3600.0


class FilterUpdater:
    def __init__(self, store: FilterStore, bus: NotificationBus,
                 poll_period: float = DEFAULT_POLL_PERIOD):
        self.store = store
        self.bus = bus
        self.poll_period = poll_period
        self._running = False
        self._thread = None
        self._wake = threading.Event()

    def start(self):
        """Start the background update thread (once)."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._update_loop, daemon=True, name="FilterUpdater"
        )
        self._thread.start()

    def stop(self, timeout=None):
        self._running = False
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wake(self):
        """Cut the current idle wait short, e.g. after a forced refresh."""
        self._wake.set()

    def _update_loop(self):
        while self._running:
            try:
                if self.update_step():
                    continue
            except Exception:
                logger.exception("Filters: update step failed")
            self._wake.wait(self.poll_period)
            self._wake.clear()

    def update_step(self) -> bool:
        """
        Refresh one due filter, or apply pending revisions when none is due.
        Returns True if a filter was claimed (the caller should loop right away).
        """
        f = self.store.claim_next_due(time.time())
        if f is None:
            self.apply_update()
            return False

        new_id = self.store.next_filter_id()
        conf = self.store.conf
        try:
            body = download(conf.session, f.url, conf.download_timeout)
        except DownloadError as e:
            logger.debug("Filters: %s", e)
            return True

        fname = self.store.filter_path(new_id)
        try:
            write_filter(fname, body)
        except OSError as e:
            logger.error("Filters: can't save %s: %s", fname, e)
            return True

        found, stale_id = self.store.set_pending(
            f.url, new_id, count_rules(body), datetime.now()
        )
        if not found:
            logger.debug("Filters: %s was removed during update", f.url)
            _unlink(fname)
        elif stale_id:
            _unlink(self.store.filter_path(stale_id))
        return True

    def apply_update(self) -> int:
        """Swap downloaded revisions in between the before/after notifications."""
        if not self.store.take_updated():
            logger.debug("Filters: no filters were updated")
            return 0

        self.bus.notify(EVENT_BEFORE_UPDATE)
        try:
            n = self.store.swap_pending()
        finally:
            self.bus.notify(EVENT_AFTER_UPDATE)

        logger.debug("Filters: %d filters were updated", n)
        return n


def _unlink(path):
    try:
        os.remove(path)
    except OSError as e:
        logger.error("Filters: can't remove %s: %s", path, e)
