import threading
import time
from collections import deque
from contextlib import contextmanager

# Only the most recent events are kept in process
MAX_PUBLISHED_EVENTS = 1000


class Chain:
    """Stand-in for the ordering substrate: a block height clock plus the
    recent events printed by committed operations."""

    def __init__(self, height=0, max_events=MAX_PUBLISHED_EVENTS):
        self.height = height
        self.events = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def mine_block(self):
        self.height += 1
        return self.height

    @contextmanager
    def block(self):
        """Run one operation alone in a freshly mined block."""
        with self._lock:
            yield self.mine_block()

    def publish(self, event):
        self.events.append({
            **event,
            "height": self.height,
            "timestamp": time.time()
        })

    def events_for(self, cert_id):
        return [e for e in self.events if e.get("cert_id") == cert_id]
