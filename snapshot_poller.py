"""Change-detecting snapshot poller.

Each poll captures every live cascade in parallel and compares the markup
fingerprint with the cached one. Only a different fingerprint replaces the
cached snapshot and fires on_change(cascade_id); observers fetch the
snapshot itself separately. A failed capture keeps the previous snapshot.
"""
import hashlib
import threading
from concurrent.futures import ThreadPoolExecutor

from cascade_scripts import capture_content
from cdp_session import ts_print

print = ts_print


def fingerprint(html):
    # Change detection only, not integrity.
    return hashlib.md5(html.encode('utf-8')).hexdigest()


class SnapshotPoller:

    def __init__(self, registry, on_change=None):
        self.registry = registry
        self.on_change = on_change
        self._lock = threading.Lock()

    def poll(self):
        """Capture all cascades once. Returns the ids that changed, or None if skipped."""
        if not self._lock.acquire(blocking=False):
            return None
        try:
            cascades = self.registry.records()
            if not cascades:
                return []
            with ThreadPoolExecutor(max_workers=len(cascades), thread_name_prefix='poll') as pool:
                hits = list(pool.map(self._refresh, cascades))
            return [c.id for c, hit in zip(cascades, hits) if hit]
        finally:
            self._lock.release()

    def _refresh(self, cascade):
        try:
            snap = capture_content(cascade.session)
            if snap is None:
                return False
            digest = fingerprint(snap.html)
            if digest == cascade.snapshot_hash:
                return False
            cascade.update_snapshot(snap, digest)
        except Exception as e:
            print(f"[poll] Capture error for {cascade.chat_title}: {e}")
            return False
        if self.on_change:
            self.on_change(cascade.id)
        return True
