"""CDP transport for a single Antigravity workbench window.

One CdpSession owns one WebSocket to one debugger address. A reader thread
runs for the whole life of the session: it hands call responses back to the
waiting caller by message id and tracks execution contexts from the
Runtime.executionContext* events. Everything else on the wire is ignored.

Exports:
    CdpSession.open(address) -- connect, start the reader, return the session
    CdpSession.call(method, params) -- correlated request/response
    ts_print -- timestamped print used for logging across the project
"""
import builtins
import json
import socket
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeout
from datetime import datetime

import websocket


def ts_print(*args, **kwargs):
    ts = datetime.now().strftime('%H:%M:%S.%f')[:-3]
    kwargs.setdefault('flush', True)
    builtins.print(f"[{ts}]", *args, **kwargs)

print = ts_print


# ── Errors ───────────────────────────────────────────────────────────────────

class CdpError(Exception):
    """Base class for everything that can go wrong talking to a window."""


class ConnectError(CdpError):
    pass


class ConnectTimeout(ConnectError):
    pass


class ConnectRefused(ConnectError):
    pass


class RemoteError(CdpError):
    """The window answered the call with an error object."""

    def __init__(self, error):
        if not isinstance(error, dict):
            error = {'message': str(error)}
        self.code = error.get('code')
        super().__init__(error.get('message') or 'remote error')


class CallTimeout(CdpError):
    pass


class ChannelClosed(CdpError):
    pass


# ── Session ──────────────────────────────────────────────────────────────────

CONTEXT_CREATED = 'Runtime.executionContextCreated'
CONTEXT_DESTROYED = 'Runtime.executionContextDestroyed'
CONTEXTS_CLEARED = 'Runtime.executionContextsCleared'


class CdpSession:
    """Request/response channel over the CDP event stream of one window."""

    def __init__(self, conn, address, call_timeout=10.0):
        self.conn = conn
        self.address = address
        self.call_timeout = call_timeout
        # Last context where #cascade was found; cleared when it goes stale.
        self.root_context_id = None
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._next_id = 0
        self._pending = {}   # message id -> Future
        self._contexts = {}  # context id -> origin, in creation order
        self._closed = threading.Event()
        self._reader = None

    @classmethod
    def open(cls, address, timeout=5.0, call_timeout=10.0):
        """Connect to a debugger address. Blocks until the handshake is done."""
        try:
            conn = websocket.create_connection(address, timeout=timeout)
        except (websocket.WebSocketTimeoutException, socket.timeout) as e:
            raise ConnectTimeout(f"{address}: {e}") from e
        except (OSError, websocket.WebSocketException) as e:
            raise ConnectRefused(f"{address}: {e}") from e
        # The reader blocks on recv() until close() shuts the socket down.
        conn.settimeout(None)
        session = cls(conn, address, call_timeout=call_timeout)
        session.start()
        return session

    @property
    def label(self):
        return self.address.rsplit('/', 1)[-1][:8]

    @property
    def is_open(self):
        return not self._closed.is_set()

    @property
    def contexts(self):
        """Known execution context ids, oldest first."""
        with self._lock:
            return list(self._contexts)

    def start(self):
        self._reader = threading.Thread(
            target=self._read_loop, name=f'cdp-reader-{self.label}', daemon=True)
        self._reader.start()

    def call(self, method, params=None, timeout=None):
        """Send a command and wait for its response.

        Returns the response's result dict. Raises RemoteError, CallTimeout
        or ChannelClosed.
        """
        fut = Future()
        with self._lock:
            if self._closed.is_set():
                raise ChannelClosed(f"{method}: channel closed")
            self._next_id += 1
            mid = self._next_id
            self._pending[mid] = fut
        try:
            with self._send_lock:
                self.conn.send(json.dumps({'id': mid, 'method': method, 'params': params or {}}))
        except Exception as e:
            with self._lock:
                self._pending.pop(mid, None)
            raise ChannelClosed(f"{method}: send failed ({e})") from e

        wait = timeout if timeout is not None else self.call_timeout
        try:
            msg = fut.result(timeout=wait)
        except FutureTimeout:
            with self._lock:
                self._pending.pop(mid, None)
            raise CallTimeout(f"{method}: no response after {wait}s") from None
        if 'error' in msg:
            raise RemoteError(msg['error'])
        return msg.get('result') or {}

    def enable_runtime(self, settle=0.5):
        """Turn on the context lifecycle feed and let existing contexts report in."""
        self.call('Runtime.enable')
        if settle:
            time.sleep(settle)

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self.conn.abort()
        except Exception:
            pass
        try:
            self.conn.close()
        except Exception:
            pass
        self._fail_pending()

    # ── Reader thread ────────────────────────────────────────────────────

    def _read_loop(self):
        try:
            while not self._closed.is_set():
                raw = self.conn.recv()
                if not raw:
                    continue
                try:
                    msg = json.loads(raw)
                except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
                    continue
                if not isinstance(msg, dict):
                    continue
                if 'id' in msg:
                    with self._lock:
                        fut = self._pending.pop(msg['id'], None)
                    if fut is not None:
                        fut.set_result(msg)
                else:
                    self._on_event(msg)
        except Exception as e:
            if not self._closed.is_set():
                print(f"[cdp] Channel ended: {self.label} ({e})")
        finally:
            self._closed.set()
            self._fail_pending()

    def _on_event(self, msg):
        method = msg.get('method')
        params = msg.get('params') or {}
        if method == CONTEXT_CREATED:
            ctx = params.get('context') or {}
            if ctx.get('id') is not None:
                with self._lock:
                    self._contexts[ctx['id']] = ctx.get('origin', '')
        elif method == CONTEXT_DESTROYED:
            with self._lock:
                self._contexts.pop(params.get('executionContextId'), None)
        elif method == CONTEXTS_CLEARED:
            with self._lock:
                self._contexts.clear()

    def _fail_pending(self):
        with self._lock:
            pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(ChannelClosed('channel closed'))
