"""Registry of live cascades, one per Antigravity window.

discover() rescans the CDP ports and reconciles the result with the
cascades already held: windows that still answer keep their connection,
new windows get one, vanished windows are closed. The cascade map is
rebuilt on every pass and swapped in with a single assignment, so readers
always see a complete map from either before or after the pass.
"""
import hashlib
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from cascade_scripts import capture_styles, extract_metadata
from cdp_session import CdpError, CdpSession, ts_print
from discovery import DEFAULT_PORTS, scan

print = ts_print


def stable_id(address):
    """Cascade id for a debugger address. Same address, same id, across restarts."""
    return hashlib.sha1(address.encode('utf-8')).hexdigest()[:12]


@dataclass(eq=False)
class Cascade:
    id: str
    session: object
    window_title: str
    chat_title: str
    active: bool = False
    context_id: int = None
    css: str = ''
    snapshot: object = None
    snapshot_hash: str = None
    lock: object = field(default_factory=threading.Lock, repr=False)

    def refresh(self, meta, window_title=None):
        self.chat_title = meta.chat_title
        self.active = meta.active
        self.context_id = meta.context_id
        self.session.root_context_id = meta.context_id
        if window_title:
            self.window_title = window_title

    def update_snapshot(self, snapshot, digest):
        with self.lock:
            self.snapshot = snapshot
            self.snapshot_hash = digest

    def summary(self):
        return {'id': self.id, 'title': self.chat_title, 'active': self.active}

    def describe(self):
        return {'id': self.id, 'title': self.chat_title, 'window': self.window_title, 'active': self.active}

    def close(self):
        try:
            self.session.close()
        except Exception:
            pass


class CascadeRegistry:
    """Sole owner of the cascade map."""

    def __init__(self, ports=None, scan_timeout=2.0, connect_timeout=5.0, call_timeout=10.0,
                 settle=0.5, on_membership_change=None, scanner=scan, opener=None):
        self.ports = list(ports or DEFAULT_PORTS)
        self.scan_timeout = scan_timeout
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.settle = settle
        self.on_membership_change = on_membership_change
        self.scanner = scanner
        self.opener = opener or self._open_session
        self._cascades = {}
        self._discover_lock = threading.Lock()

    def _open_session(self, address):
        return CdpSession.open(address, timeout=self.connect_timeout, call_timeout=self.call_timeout)

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, cascade_id):
        return self._cascades.get(cascade_id)

    def records(self):
        return list(self._cascades.values())

    def __len__(self):
        return len(self._cascades)

    # ── Reconciliation ───────────────────────────────────────────────────

    def discover(self):
        """Run one discovery pass. Returns False if a pass was already running."""
        if not self._discover_lock.acquire(blocking=False):
            print("[registry] Discovery already running, skipped")
            return False
        try:
            self._reconcile()
        finally:
            self._discover_lock.release()
        return True

    def _reconcile(self):
        wanted = {}
        for cand in self.scanner(self.ports, timeout=self.scan_timeout):
            wanted.setdefault(stable_id(cand.address), cand)

        previous = self._cascades
        reconciled = {}
        if wanted:
            with ThreadPoolExecutor(max_workers=len(wanted), thread_name_prefix='discover') as pool:
                futures = {cid: pool.submit(self._resolve, cid, cand, previous.get(cid))
                           for cid, cand in wanted.items()}
            for cid, fut in futures.items():
                try:
                    cascade = fut.result()
                except Exception as e:
                    print(f"[registry] Error resolving {wanted[cid].title}: {e}")
                    continue
                if cascade is not None:
                    reconciled[cid] = cascade

        self._cascades = reconciled

        for cid, old in previous.items():
            if reconciled.get(cid) is old:
                continue
            if cid not in reconciled:
                print(f"[registry] Removing cascade: {old.chat_title}  [{cid}]")
            old.close()

        # Count only: an add and a remove in the same pass go unannounced.
        if len(previous) != len(reconciled) and self.on_membership_change:
            self.on_membership_change(list(reconciled.values()))
        return reconciled

    def _resolve(self, cid, cand, existing):
        if existing is not None and existing.session.is_open:
            meta = extract_metadata(existing.session)
            if meta is not None:
                existing.refresh(meta, window_title=cand.title)
                return existing
            print(f"[registry] Lost cascade: {existing.chat_title}  [{cid}], reconnecting")
        return self._connect(cid, cand)

    def _connect(self, cid, cand):
        print(f"[registry] Connecting to {cand.title}  (port {cand.port})")
        try:
            session = self.opener(cand.address)
        except CdpError as e:
            print(f"[registry] Failed to connect to {cand.title}: {e}")
            return None
        try:
            session.enable_runtime(self.settle)
            meta = extract_metadata(session)
        except CdpError as e:
            print(f"[registry] Setup failed for {cand.title}: {e}")
            meta = None
        if meta is None:
            session.close()
            return None

        session.root_context_id = meta.context_id
        cascade = Cascade(
            id=cid,
            session=session,
            window_title=cand.title,
            chat_title=meta.chat_title,
            active=meta.active,
            context_id=meta.context_id,
            css=capture_styles(session),  # once per connection, it is large
        )
        print(f"[registry] Added cascade: {meta.chat_title}  [{cid}]")
        return cascade

    def close_all(self):
        cascades, self._cascades = self._cascades, {}
        for cascade in cascades.values():
            cascade.close()
