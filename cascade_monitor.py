"""The running monitor: registry, poller and broadcaster wired together.

Two daemon threads drive it:
  discovery loop -- registry.discover() every DISCOVERY_INTERVAL seconds
  poll loop      -- poller.poll() every POLL_INTERVAL seconds

The query methods below are what the HTTP layer calls. Unknown cascade ids
raise CascadeNotFound before anything is sent to a window.
"""
import threading

from broadcaster import Broadcaster
from cascade_registry import CascadeRegistry
from cascade_scripts import inject_message, perform_action
from cdp_session import ts_print
from snapshot_poller import SnapshotPoller

print = ts_print

DISCOVERY_INTERVAL = 10
POLL_INTERVAL = 3
CLOSE_REDISCOVER_DELAY = 0.5


class CascadeNotFound(LookupError):
    pass


class CascadeMonitor:

    def __init__(self, registry=None, discovery_interval=DISCOVERY_INTERVAL,
                 poll_interval=POLL_INTERVAL, **registry_options):
        self.registry = registry or CascadeRegistry(**registry_options)
        self.broadcaster = Broadcaster(membership_source=self.registry.records)
        self.registry.on_membership_change = self.broadcaster.membership
        self.poller = SnapshotPoller(self.registry, on_change=self.broadcaster.snapshot_update)
        self.discovery_interval = discovery_interval
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads = []

    # ── Loops ────────────────────────────────────────────────────────────

    def start(self):
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._loop, name='discovery',
                             args=('discovery', self.discovery_interval, self.registry.discover, True),
                             daemon=True),
            threading.Thread(target=self._loop, name='poll',
                             args=('poll', self.poll_interval, self.poller.poll, False),
                             daemon=True),
        ]
        for t in self._threads:
            t.start()

    def stop(self):
        self._stop.set()
        for t in self._threads:
            t.join(timeout=5)
        self._threads = []
        self.registry.close_all()

    def _loop(self, name, interval, step, immediate):
        """Run step every interval seconds until stopped. Errors never end the loop."""
        if not immediate and self._stop.wait(interval):
            return
        while not self._stop.is_set():
            try:
                step()
            except Exception as e:
                print(f"[loop] {name} error: {e}")
            if self._stop.wait(interval):
                return

    def schedule_discovery(self, delay=CLOSE_REDISCOVER_DELAY):
        """Out-of-band discovery pass, e.g. right after a window closed a cascade."""
        def _run():
            try:
                self.registry.discover()
            except Exception as e:
                print(f"[loop] discovery error: {e}")

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        timer.start()
        return timer

    # ── Queries ──────────────────────────────────────────────────────────

    def require(self, cascade_id):
        """The live cascade with this id. Raises CascadeNotFound."""
        cascade = self.registry.get(cascade_id)
        if cascade is None:
            raise CascadeNotFound(cascade_id)
        return cascade

    def list_cascades(self):
        return [c.summary() for c in self.registry.records()]

    def get_snapshot(self, cascade_id):
        snapshot = self.require(cascade_id).snapshot
        if snapshot is None:
            raise CascadeNotFound(cascade_id)
        return snapshot

    def get_styles(self, cascade_id):
        return self.require(cascade_id).css or ''

    def primary_snapshot(self):
        """Snapshot of the focused cascade, else the first one. None if nothing captured."""
        cascades = self.registry.records()
        primary = next((c for c in cascades if c.active), cascades[0] if cascades else None)
        return primary.snapshot if primary else None

    def send_message(self, cascade_id, text):
        cascade = self.require(cascade_id)
        print(f"[api] Message to {cascade.chat_title}: {text}")
        return inject_message(cascade.session, text)

    def perform_action(self, cascade_id, action):
        cascade = self.require(cascade_id)
        print(f"[api] Action {action} on {cascade.chat_title}")
        result = perform_action(cascade.session, action)
        if result.ok and action == 'close':
            self.schedule_discovery()
        return result

    # ── Live updates ─────────────────────────────────────────────────────

    def subscribe(self):
        return self.broadcaster.subscribe()

    def unsubscribe(self, q):
        self.broadcaster.unsubscribe(q)
