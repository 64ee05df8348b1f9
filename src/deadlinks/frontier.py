import threading
from collections import deque
from typing import Deque, Optional, Set


class CrawlFrontier:
    """
    Visited, in-flight and pending sets over canonical URLs.

    Every operation holds one lock, so checking whether a URL is known and marking it
    happen as a single step. A URL enters `visited` once, when a caller claims it, and
    never leaves; a visited URL is never handed out again.
    """

    def __init__(self, max_pages: Optional[int] = None):
        self.max_pages = max_pages
        self._lock = threading.Lock()
        self._visited: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._pending: Deque[str] = deque()
        self._pending_set: Set[str] = set()
        self._closed = False
        self._claimed = 0

    def offer(self, url: str) -> bool:
        """Queue a URL unless it is already visited, in flight or pending."""
        with self._lock:
            if self._closed or self._cap_reached():
                return False
            if url in self._visited or url in self._pending_set:
                return False
            self._pending.append(url)
            self._pending_set.add(url)
            return True

    def try_claim(self, url: str) -> bool:
        """Atomically move a URL to visited+in-flight; True means the caller fetches it."""
        with self._lock:
            if self._closed or self._cap_reached() or url in self._visited:
                return False
            self._claim(url)
            return True

    def claim_next(self) -> Optional[str]:
        with self._lock:
            while self._pending and not self._closed and not self._cap_reached():
                url = self._pending.popleft()
                self._pending_set.discard(url)
                if url in self._visited:
                    continue
                self._claim(url)
                return url
            return None

    def settle(self, url: str) -> None:
        with self._lock:
            self._in_flight.discard(url)

    def mark_visited(self, url: str) -> bool:
        """Record an alias (e.g. a redirect target) as visited without fetching it."""
        with self._lock:
            if url in self._visited:
                return False
            self._visited.add(url)
            if url in self._pending_set:
                self._pending_set.discard(url)
                self._pending.remove(url)
            return True

    def close(self) -> None:
        """Stop handing out or accepting work; in-flight URLs still settle."""
        with self._lock:
            self._closed = True

    def _claim(self, url: str) -> None:
        self._visited.add(url)
        self._in_flight.add(url)
        self._claimed += 1

    def _cap_reached(self) -> bool:
        return self.max_pages is not None and self._claimed >= self.max_pages

    @property
    def cap_reached(self) -> bool:
        with self._lock:
            return self._cap_reached()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def pages_found(self) -> int:
        with self._lock:
            return len(self._visited) + len(self._pending)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._visited
