"""Fan-out of cascade events to connected observers.

Each observer is a bounded queue drained by its own HTTP stream. Delivery
is best effort: a message goes to whoever is subscribed at publish time,
and an observer whose queue is full misses that message. Nothing is
replayed; a new observer starts from a fresh cascade list.
"""
import queue
import threading

from cdp_session import ts_print

print = ts_print

CASCADE_LIST = 'cascade_list'
SNAPSHOT_UPDATE = 'snapshot_update'


class Broadcaster:

    def __init__(self, membership_source=None, maxsize=100):
        # membership_source() -> list of Cascade, read at send time
        self.membership_source = membership_source
        self.maxsize = maxsize
        self._observers = []
        self._lock = threading.Lock()

    @property
    def observer_count(self):
        with self._lock:
            return len(self._observers)

    def subscribe(self):
        """Register a new observer queue, primed with the current cascade list."""
        q = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._observers.append(q)
            self._offer(q, self._membership_message())
        return q

    def unsubscribe(self, q):
        with self._lock:
            if q in self._observers:
                self._observers.remove(q)

    def publish(self, message):
        """Queue message for every current observer. Returns how many accepted it."""
        with self._lock:
            return sum(1 for q in self._observers if self._offer(q, message))

    def membership(self, cascades=None):
        message = self._membership_message(cascades)
        delivered = self.publish(message)
        print(f"[broadcast] Cascade list: {len(message['cascades'])} cascade(s) -> {delivered} observer(s)")
        return delivered

    def snapshot_update(self, cascade_id):
        return self.publish({'type': SNAPSHOT_UPDATE, 'cascadeId': cascade_id})

    def _membership_message(self, cascades=None):
        if cascades is None:
            cascades = self.membership_source() if self.membership_source else []
        return {'type': CASCADE_LIST, 'cascades': [c.describe() for c in cascades]}

    @staticmethod
    def _offer(q, message):
        try:
            q.put_nowait(message)
            return True
        except queue.Full:
            return False
