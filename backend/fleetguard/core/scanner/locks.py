import threading
import logging
from typing import Set

logger = logging.getLogger(__name__)


class WebsiteLockRegistry:
    """
    Exclusive, fail-fast lock per website.

    ``try_acquire`` never waits: a second caller for the same website gets
    False immediately. Check and set happen under one mutex, so this is safe
    from both the event loop and worker threads.
    """

    def __init__(self):
        self._held: Set[int] = set()
        self._mutex = threading.Lock()

    def try_acquire(self, website_id: int) -> bool:
        with self._mutex:
            if website_id in self._held:
                return False
            self._held.add(website_id)
            return True

    def release(self, website_id: int) -> None:
        with self._mutex:
            self._held.discard(website_id)

    def is_locked(self, website_id: int) -> bool:
        with self._mutex:
            return website_id in self._held

