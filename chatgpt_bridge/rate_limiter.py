import threading
import time
from typing import Dict, List, Optional, Tuple

WINDOW_SECONDS = 60.0


class RequestTracker:
    """
    Per-client sliding-window budgets for request count and token count.

    State is keyed by client identity (the caller's network address) and lives
    for the lifetime of the process. A single lock covers every read-modify-write
    so two concurrent callers can never both observe "under budget" and overrun
    it. Nothing in here performs I/O or awaits.
    """

    def __init__(self, window_seconds: float = WINDOW_SECONDS) -> None:
        self.window_seconds = float(window_seconds)
        self._lock = threading.Lock()
        # { identity: [timestamp1, timestamp2, ...] }
        self._requests: Dict[str, List[float]] = {}
        # { identity: (window_start, token_count) }
        self._token_usage: Dict[str, Tuple[float, int]] = {}

    def admit_request(self, identity: str, now: Optional[float] = None, max_requests_per_minute: int = 60) -> bool:
        now = time.time() if now is None else float(now)
        with self._lock:
            # Clean up old timestamps (older than the window)
            window = [t for t in self._requests.get(identity, []) if now - t < self.window_seconds]
            self._requests[identity] = window

            if len(window) >= max_requests_per_minute:
                return False

            window.append(now)
            return True

    def record_tokens(self, identity: str, tokens: int, now: Optional[float] = None, max_tokens_per_minute: int = 40000) -> bool:
        now = time.time() if now is None else float(now)
        tokens = int(tokens)
        with self._lock:
            entry = self._token_usage.get(identity)
            if entry is None or now - entry[0] >= self.window_seconds:
                # A fresh window always accepts its first observation, however large.
                self._token_usage[identity] = (now, tokens)
                return True

            window_start, token_count = entry
            if token_count + tokens > max_tokens_per_minute:
                return False

            self._token_usage[identity] = (window_start, token_count + tokens)
            return True

    def retry_after(self, identity: str, now: Optional[float] = None) -> int:
        """Seconds until the oldest request in the identity's window expires (at least 1)."""
        now = time.time() if now is None else float(now)
        with self._lock:
            window = [t for t in self._requests.get(identity, []) if now - t < self.window_seconds]
        if not window:
            return 1
        return max(1, int(self.window_seconds - (now - min(window))))

    def token_retry_after(self, identity: str, now: Optional[float] = None) -> int:
        """Seconds until the identity's token window resets (at least 1)."""
        now = time.time() if now is None else float(now)
        with self._lock:
            entry = self._token_usage.get(identity)
        if entry is None or now - entry[0] >= self.window_seconds:
            return 1
        return max(1, int(self.window_seconds - (now - entry[0])))

    def tokens_used(self, identity: str, now: Optional[float] = None) -> int:
        now = time.time() if now is None else float(now)
        with self._lock:
            entry = self._token_usage.get(identity)
        if entry is None or now - entry[0] >= self.window_seconds:
            return 0
        return entry[1]

    def active_identities(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else float(now)
        with self._lock:
            return sum(
                1
                for timestamps in self._requests.values()
                if any(now - t < self.window_seconds for t in timestamps)
            )

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._token_usage.clear()


def create_request_tracker() -> RequestTracker:
    return RequestTracker()
