import threading
import time
from collections import defaultdict, deque


class SimpleRateLimiter:
    """
    Rate limiter em memória (processo único, thread-safe).
    - window_s: janela em segundos (ex.: 60)
    - max_requests: máx. requisições por janela
    - min_interval_s: intervalo mínimo entre req (ex.: 1.0)
    """
    def __init__(self, window_s: int = 60, max_requests: int = 6, min_interval_s: float = 1.0):
        self.window_s = window_s
        self.max_requests = max_requests
        self.min_interval_s = min_interval_s
        self.events = defaultdict(deque)
        self.last_call = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        with self._lock:
            now = time.monotonic()
            q = self.events[key]
            while q and (now - q[0]) > self.window_s:
                q.popleft()

            if q and (now - self.last_call.get(key, 0)) < self.min_interval_s:
                return False
            if len(q) >= self.max_requests:
                return False

            q.append(now)
            self.last_call[key] = now
            return True

